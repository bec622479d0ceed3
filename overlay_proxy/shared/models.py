"""Data models for the overlay proxy."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class OutboundRequest(BaseModel):
    """Request forwarded to an allowlisted upstream."""

    model_config = ConfigDict(frozen=True)

    method: Annotated[str, Field(description="HTTP method, unchanged from the inbound request")]
    url: Annotated[str, Field(description="Absolute upstream URL")]
    headers: Annotated[dict[str, str], Field(description="Forwarded headers")] = {}
    body: Annotated[str | None, Field(description="Request body as text (None for GET/HEAD)")] = None


class UpstreamResponse(BaseModel):
    """Response read back from the upstream."""

    model_config = ConfigDict(frozen=True)

    status: Annotated[int, Field(ge=100, le=999, description="HTTP status code")]
    content_type: Annotated[str, Field(description="Upstream Content-Type")] = "application/json"
    body: Annotated[str, Field(description="Response body as text")] = ""
