from __future__ import annotations

from typing import Optional

from pydantic import ConfigDict
from sqlmodel import Field, SQLModel


class SubmitRequest(SQLModel):
    """Body of ``POST /submit``: ``services`` plus any other keys, passed on as extra."""

    model_config = ConfigDict(extra="allow")

    services: list[str] = Field(min_length=1)


class SubmitResponse(SQLModel):
    """Request id, flattened resource handles, and per-tag errors when any tag failed."""

    model_config = ConfigDict(extra="allow")

    request_id: str = Field(alias="requestId")
    errors: Optional[dict[str, str]] = None
    warnings: Optional[list[str]] = None
