from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, String
from sqlmodel import Field, SQLModel

from dynaprov.services.records import utc_now


class ProvisioningRequestBase(SQLModel):
    requested_services: list[str]
    extra: dict[str, Any] = Field(default_factory=dict)


class ProvisioningRequestORM(ProvisioningRequestBase, table=True):
    __tablename__ = "provisioning_request"

    request_id: str = Field(sa_column=Column(String(36), primary_key=True))
    requested_services: list[str] = Field(sa_column=Column(JSON, nullable=False))
    extra: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    # Written once, when provisioning completes; NULL means intent only.
    outcome: Optional[dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False))
    completed_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
