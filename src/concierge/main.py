"""
Concierge entry point.

Parses the command line, configures logging, checks that the tool providers are usable and then
serves the API (optionally with the terminal chat client attached).
"""

import argparse
import logging
import sys
from pathlib import Path

from concierge.api.app import run_api
from concierge.config import settings

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _init_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # One line per Moments / model SDK request is noise at info level
    for noisy in ("httpx", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _check_providers() -> None:
    """Warn early about tool providers that will fail on first use."""
    if not Path(settings.PRODUCTS_FILE).is_file():
        logger.warning(
            "Product catalog %s not found; fetch_products will fail", settings.PRODUCTS_FILE
        )
    if not settings.MOMENTS_API_ENDPOINT:
        logger.warning("MOMENTS_API_ENDPOINT is not set; fetch_visitor_data will fail")
    if settings.MODEL_PROVIDER == "openai" and not settings.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY is not set")
    elif settings.MODEL_PROVIDER == "anthropic" and not settings.ANTHROPIC_API_KEY:
        logger.warning("ANTHROPIC_API_KEY is not set")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Concierge chat backend")
    parser.add_argument(
        "--mode",
        choices=["api", "cli"],
        type=str.lower,
        default="api",
        help="Serve the API only, or the API plus a terminal client (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error", "critical"],
        type=str.lower,
        default=settings.LOG_LEVEL,
        help="Logging level (default from env: %(default)s)",
    )
    parser.add_argument(
        "--model",
        type=str.lower,
        default=settings.MODEL_PROVIDER,
        help="Model back-end: openai, anthropic or echo (default from env: %(default)s)",
    )
    return parser


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> None:
    """
    Main entry point for the Concierge application.

    Command-line values override the environment settings before anything reads them.
    """
    args = _build_parser().parse_args(sys.argv[1:] if argv is None else argv)
    settings.LOG_LEVEL = args.log_level
    settings.MODEL_PROVIDER = args.model

    _init_logging(settings.LOG_LEVEL)
    logger.info("Starting Concierge [%s mode, model=%s]", args.mode, settings.MODEL_PROVIDER)
    _check_providers()

    if args.mode == "api":
        run_api(port=settings.API_PORT, reload=settings.DEBUG)
        return

    # pylint: disable=import-outside-toplevel
    import threading

    from concierge.client.cli import run_cli

    # Reload needs the main thread, so the embedded server never reloads
    threading.Thread(
        target=run_api,
        kwargs={"port": settings.API_PORT, "reload": False, "log_level": "warning"},
        name="concierge-api",
        daemon=True,
    ).start()
    run_cli()


if __name__ == "__main__":
    main()
