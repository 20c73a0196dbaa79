"""
Tests for the command-line entry point.

Run with:
$ pytest -q
"""

import logging

import pytest

from concierge import main as entry
from concierge.config import settings


def test_parser_defaults_follow_settings(monkeypatch) -> None:
    monkeypatch.setattr(settings, "MODEL_PROVIDER", "echo")

    args = entry._build_parser().parse_args([])  # pylint: disable=protected-access

    assert args.mode == "api"
    assert args.model == "echo"


def test_parser_rejects_unknown_mode() -> None:
    with pytest.raises(SystemExit):
        entry._build_parser().parse_args(["--mode", "web"])  # pylint: disable=protected-access


def test_main_overrides_settings_and_starts_api(monkeypatch) -> None:
    started = {}
    monkeypatch.setattr(entry, "run_api", lambda **kwargs: started.update(kwargs))
    monkeypatch.setattr(entry, "_init_logging", lambda level: None)
    monkeypatch.setattr(settings, "LOG_LEVEL", "info")
    monkeypatch.setattr(settings, "MODEL_PROVIDER", "openai")

    entry.main(["--model", "ECHO", "--log-level", "debug"])

    assert settings.MODEL_PROVIDER == "echo"
    assert settings.LOG_LEVEL == "debug"
    assert started["port"] == settings.API_PORT


def test_provider_check_warns(tmp_path, monkeypatch, caplog) -> None:
    monkeypatch.setattr(settings, "PRODUCTS_FILE", str(tmp_path / "missing.json"))
    monkeypatch.setattr(settings, "MOMENTS_API_ENDPOINT", None)
    monkeypatch.setattr(settings, "MODEL_PROVIDER", "echo")

    with caplog.at_level(logging.WARNING, logger="concierge.main"):
        entry._check_providers()  # pylint: disable=protected-access

    assert "missing.json" in caplog.text
    assert "MOMENTS_API_ENDPOINT" in caplog.text
