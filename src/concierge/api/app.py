"""
HTTP backend for Concierge.

Every POST endpoint takes a JSON-RPC 2.0 request body and answers with a JSON-RPC response:
- **GET /health**         - liveness probe for health checks.
- **GET /tools/list**     - catalog of every tool the router exposes.
- **POST /rpc**           - raw tool invocation: one request, a notification or a batch.
- **POST /visitor-data**  - visitor profile lookup: {"params": {"visitorId": "..."}}
- **POST /chat**          - one full turn: {"params": {"messages": [...], "visitorId": "..."}}
- **POST /chat/stream**   - the same turn streamed as server-sent events.
"""

import asyncio
import json
import logging
from functools import lru_cache
from typing import (
    Any,
    AsyncIterator,
    Dict,
    Tuple,
    Type,
    TypeVar,
)

from fastapi import (
    Body,
    Depends,
    FastAPI,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import (
    JSONResponse,
    Response,
    StreamingResponse,
)
from pydantic import (
    BaseModel,
    ValidationError,
)

from concierge.agent.model_interface import (
    BaseChatModel,
    load_model,
)
from concierge.agent.orchestrator import (
    Orchestrator,
    session_payload,
)
from concierge.agent.router import (
    ToolRouter,
    build_default_router,
)
from concierge.agent.sink import QueueSink
from concierge.api.models import (
    ChatParams,
    VisitorDataParams,
)
from concierge.common import (
    AnsiColors,
    colored_print,
)
from concierge.config import settings
from concierge.core.errors import (
    BatchNotHandledError,
    ConciergeError,
    EnvelopeError,
    ToolNotFoundError,
    TurnError,
)
from concierge.core.protocol import (
    JSONRPC_VERSION,
    ErrorCode,
    JsonRpcNotification,
    JsonRpcRequest,
    JsonRpcResponse,
    RequestId,
    make_error,
    make_success,
    parse_envelope,
)

logger = logging.getLogger(__name__)

APOLOGY = "Sorry, an error occurred while processing your request."

P = TypeVar("P", bound=BaseModel)

app = FastAPI(title="Concierge API", version="0.1.0", description="Tool-augmented chat backend")

# Add CORS middleware to allow requests from the web client
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_router() -> ToolRouter:
    """Process-wide router; registries are sealed on first use."""
    return build_default_router()


@lru_cache(maxsize=1)
def get_model() -> BaseChatModel:
    """Process-wide model back-end selected by ``settings.MODEL_PROVIDER``."""
    return load_model()


def get_orchestrator(
    router: ToolRouter = Depends(get_router), model: BaseChatModel = Depends(get_model)
) -> Orchestrator:
    """Fresh orchestrator per request; it holds no per-turn state itself."""
    return Orchestrator(router, model)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
class RpcHttpError(Exception):
    """Abort a request with a JSON-RPC error body and an HTTP status."""

    def __init__(self, response: JsonRpcResponse, status_code: int) -> None:
        super().__init__(response.error.message if response.error else "rpc error")
        self.response = response
        self.status_code = status_code


@app.exception_handler(RpcHttpError)
async def _rpc_http_error(_: Request, exc: RpcHttpError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.response.to_wire())


def _parse_call(payload: Any, params_model: Type[P], missing_msg: str) -> Tuple[RequestId, P]:
    """Validate the JSON-RPC body of an endpoint call and its params."""
    if not isinstance(payload, dict):
        raise RpcHttpError(
            make_error(None, ErrorCode.INVALID_REQUEST, "Invalid request data"), status_code=400
        )
    request_id = payload.get("id")
    if payload.get("jsonrpc") != JSONRPC_VERSION:
        raise RpcHttpError(
            make_error(request_id, ErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version"),
            status_code=400,
        )
    try:
        params = params_model.model_validate(payload.get("params") or {})
    except ValidationError as exc:
        raise RpcHttpError(
            make_error(
                request_id,
                ErrorCode.INVALID_PARAMS,
                missing_msg,
                data=[err["msg"] for err in exc.errors()],
            ),
            status_code=400,
        ) from exc
    return request_id, params


def _turn_failure(request_id: RequestId, exc: Exception) -> JsonRpcResponse:
    """Generic apology for the end user; the details were already logged."""
    code = exc.code if isinstance(exc, ConciergeError) else ErrorCode.INTERNAL_ERROR
    return make_error(request_id, code, APOLOGY)


def _sse(response: JsonRpcResponse) -> str:
    return f"data: {json.dumps(response.to_wire(), default=str)}\n\n"


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Concierge API is running. Use /docs for API documentation."}


@app.get("/tools/list", summary="List available tools")
async def list_tools(router: ToolRouter = Depends(get_router)) -> Dict[str, Any]:
    """Catalog of every registry's tools, in routing order."""
    catalog = router.catalog()
    logger.debug("Available tools: %s", [tool.name for tool in catalog])
    return make_success(None, {"tools": [tool.summary() for tool in catalog]}).to_wire()


@app.post("/rpc", summary="Invoke tools with raw JSON-RPC envelopes")
async def rpc_endpoint(
    payload: Any = Body(...), router: ToolRouter = Depends(get_router)
) -> Response:
    """
    Route a JSON-RPC request, notification or batch through the registries.

    A batch is all-or-nothing: it either returns every result from one registry or a single
    ``TOOL_NOT_FOUND`` error.
    """
    if isinstance(payload, list):
        try:
            envelopes = [parse_envelope(item) for item in payload]
        except EnvelopeError as exc:
            raise RpcHttpError(
                make_error(None, exc.code, exc.message, exc.data), status_code=400
            ) from exc
        requests = [env for env in envelopes if isinstance(env, JsonRpcRequest)]
        if len(requests) != len(envelopes) or not requests:
            raise RpcHttpError(
                make_error(None, ErrorCode.INVALID_REQUEST, "Batch must contain only requests"),
                status_code=400,
            )
        try:
            responses = await router.dispatch_batch(requests)
        except BatchNotHandledError as exc:
            return JSONResponse(content=make_error(None, exc.code, exc.message, exc.data).to_wire())
        return JSONResponse(content=[response.to_wire() for response in responses])

    try:
        envelope = parse_envelope(payload)
    except EnvelopeError as exc:
        raise RpcHttpError(
            make_error(None, exc.code, exc.message, exc.data), status_code=400
        ) from exc

    if isinstance(envelope, JsonRpcNotification):
        await router.notify(envelope)
        return Response(status_code=204)
    if not isinstance(envelope, JsonRpcRequest):
        raise RpcHttpError(
            make_error(None, ErrorCode.INVALID_REQUEST, "Expected a request, not a response"),
            status_code=400,
        )
    if envelope.jsonrpc != JSONRPC_VERSION:
        raise RpcHttpError(
            make_error(envelope.id, ErrorCode.INVALID_REQUEST, "Invalid JSON-RPC version"),
            status_code=400,
        )
    response = await router.dispatch(envelope)
    return JSONResponse(content=response.to_wire())


@app.post("/visitor-data", summary="Fetch visitor data")
async def visitor_data(
    payload: Any = Body(...), router: ToolRouter = Depends(get_router)
) -> Dict[str, Any]:
    """Visitor profile used to personalize the first page before any chat."""
    request_id, params = _parse_call(payload, VisitorDataParams, "Visitor ID is required")
    logger.info("Fetching visitor data for ID: %s", params.visitor_id)
    try:
        result = await router.call("fetch_visitor_data", {"visitorId": params.visitor_id})
    except ToolNotFoundError as exc:
        logger.error("Visitor data lookup failed: %s (data=%s)", exc, exc.data)
        raise RpcHttpError(
            make_error(
                request_id, ErrorCode.INTERNAL_ERROR, "Failed to fetch visitor data", exc.data
            ),
            status_code=500,
        ) from exc
    return make_success(request_id, result).to_wire()


@app.post("/chat", summary="Process a chat turn")
async def chat(
    payload: Any = Body(...), orchestrator: Orchestrator = Depends(get_orchestrator)
) -> Dict[str, Any]:
    """Run one full turn and return the final answer plus session data."""
    request_id, params = _parse_call(payload, ChatParams, "Messages and visitorId are required")
    try:
        result = await orchestrator.run(params.messages, params.visitor_id)
    except TurnError as exc:
        raise RpcHttpError(_turn_failure(request_id, exc), status_code=500) from exc
    return make_success(request_id, session_payload(result)).to_wire()


@app.post("/chat/stream", summary="Process a chat turn, streamed")
async def chat_stream(
    payload: Any = Body(...), orchestrator: Orchestrator = Depends(get_orchestrator)
) -> StreamingResponse:
    """
    Stream a turn as server-sent events.

    Each ``data:`` frame is a JSON-RPC response whose result holds the *cumulative* content; the
    last frame carries ``{"done": true, ...session data}`` or an error.
    """
    request_id, params = _parse_call(payload, ChatParams, "Messages and visitorId are required")

    async def events() -> AsyncIterator[str]:
        sink = QueueSink()
        task = asyncio.create_task(orchestrator.run(params.messages, params.visitor_id, sink))
        task.add_done_callback(_log_abandoned_failure)
        try:
            async for content in sink:
                yield _sse(make_success(request_id, {"content": content}))
            try:
                result = await task
            except Exception as exc:  # noqa: BLE001
                if not isinstance(exc, TurnError):
                    logger.exception("Streaming turn crashed")
                yield _sse(_turn_failure(request_id, exc))
                return
            yield _sse(make_success(request_id, {"done": True, **session_payload(result)}))
        finally:
            # Client went away (or we are done): stop the orchestrator from emitting further.
            sink.close()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


def _log_abandoned_failure(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None and not isinstance(exc, TurnError):
        logger.error("Streaming turn crashed: %r", exc)


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 3001, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Concierge API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    router = get_router()
    logger.info("Serving tools: %s", [tool.name for tool in router.catalog()])
    logger.debug(
        "API settings: %s",
        settings.model_dump(exclude={"OPENAI_API_KEY", "ANTHROPIC_API_KEY"}),
    )

    colored_print(f"Concierge API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "concierge.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m concierge.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
