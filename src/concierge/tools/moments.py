"""
Visitor-profile tools backed by the Moments real-time audience API.

The API is queried with the visitor id as an attribute value and answers with the audiences,
badges and metrics the visitor currently qualifies for.
"""

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
)

from concierge.config import settings
from concierge.core.errors import (
    InvalidParamsError,
    ToolExecutionError,
)
from concierge.tools import (
    ToolDescriptor,
    ToolRegistry,
)

logger = logging.getLogger(__name__)


class VisitorData(BaseModel):
    """Audience classification for one visitor."""

    visitor_id: str = Field(..., alias="visitorId")
    audiences: List[str] = Field(default_factory=list)
    badges: List[str] = Field(default_factory=list)
    metrics: Any = Field(default_factory=list)


def _build_client() -> httpx.AsyncClient:
    headers = {"X-Engine-Id": settings.MOMENTS_ENGINE_ID} if settings.MOMENTS_ENGINE_ID else {}
    return httpx.AsyncClient(timeout=settings.MOMENTS_TIMEOUT, headers=headers)


async def fetch_visitor_profile(
    visitor_id: str, client: httpx.AsyncClient | None = None
) -> VisitorData:
    """
    Look up *visitor_id* in the Moments API.

    Parameters
    ----------
    visitor_id:
        The visitor identifier passed through as the attribute value.
    client:
        Optional pre-built client; when omitted one is created (and closed) per call.

    Raises
    ------
    ToolExecutionError
        If the endpoint is not configured or the request fails.
    """
    if not settings.MOMENTS_API_ENDPOINT:
        raise ToolExecutionError("Moments API endpoint is not configured")

    url = f"{settings.MOMENTS_API_ENDPOINT.rstrip('/')}/"
    query = {"attributeId": settings.MOMENTS_ATTRIBUTE_ID, "attributeValue": visitor_id}

    owns_client = client is None
    http = client or _build_client()
    try:
        logger.debug("Fetching visitor data for %s", visitor_id)
        resp = await http.get(url, params=query)
        resp.raise_for_status()
        body = resp.json()
    except httpx.HTTPError as exc:
        logger.error("Moments request error for visitor %s: %s", visitor_id, exc)
        raise ToolExecutionError(f"Error fetching visitor data: {exc}") from exc
    except ValueError as exc:
        raise ToolExecutionError(f"Moments API returned invalid JSON: {exc}") from exc
    finally:
        if owns_client:
            await http.aclose()

    if not isinstance(body, Mapping):
        raise ToolExecutionError("Moments API returned an unexpected payload")

    return VisitorData(
        visitorId=str(visitor_id),
        audiences=body.get("audiences") or [],
        badges=body.get("badges") or [],
        metrics=body.get("metrics") or [],
    )


async def _execute_fetch_visitor_data(args: Mapping[str, Any]) -> Dict[str, Any]:
    visitor_id = args.get("visitorId") if isinstance(args, Mapping) else None
    if not visitor_id:
        raise InvalidParamsError("Visitor ID is required", data={"required": ["visitorId"]})
    profile = await fetch_visitor_profile(str(visitor_id))
    return profile.model_dump(by_alias=True)


moments_registry = ToolRegistry(
    "moments",
    "Access real-time visitor data from the Moments API",
    allow_override=settings.ALLOW_TOOL_OVERRIDE,
)
moments_registry.register(
    ToolDescriptor(
        name="fetch_visitor_data",
        description="Retrieve visitor data including audience and badges",
        executor=_execute_fetch_visitor_data,
        parameters={
            "type": "object",
            "properties": {"visitorId": {"type": "string", "description": "Visitor ID"}},
            "required": ["visitorId"],
        },
        session_key="visitor_data",
    )
)
