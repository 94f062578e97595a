from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Union

from dynaprov.services.errors import PersistenceWarning, ValidationError

ServiceTag = str

RESULT_SUCCESS = "success"
RESULT_FAILURE = "failure"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything stored is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Success:
    handle: dict[str, str]

    def to_json(self) -> dict[str, Any]:
        return {"status": RESULT_SUCCESS, "handle": dict(self.handle)}


@dataclass(frozen=True)
class Failure:
    reason: str

    def to_json(self) -> dict[str, Any]:
        return {"status": RESULT_FAILURE, "reason": self.reason}


Result = Union[Success, Failure]


def result_from_json(payload: Mapping[str, Any]) -> Result:
    status = payload.get("status")
    if status == RESULT_SUCCESS:
        return Success(handle={str(k): str(v) for k, v in (payload.get("handle") or {}).items()})
    if status == RESULT_FAILURE:
        return Failure(reason=str(payload.get("reason", "")))
    raise ValueError(f"Unknown result status: {status!r}")


def outcome_to_json(outcome: Mapping[ServiceTag, Result]) -> dict[str, Any]:
    return {tag: result.to_json() for tag, result in outcome.items()}


def outcome_from_json(payload: Mapping[str, Any] | None) -> dict[ServiceTag, Result] | None:
    if payload is None:
        return None
    return {tag: result_from_json(value) for tag, value in payload.items()}


@dataclass(frozen=True)
class ProvisioningRequest:
    """Client request: which service tags to provision plus opaque extra fields.

    ``requested_services`` behaves as a set; duplicates are dropped but the
    caller's order is kept so logs read in the order the client asked.
    """

    requested_services: tuple[ServiceTag, ...]
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(cls, services: Iterable[ServiceTag], extra: Mapping[str, Any] | None = None) -> "ProvisioningRequest":
        unique: list[ServiceTag] = []
        for tag in services:
            if not isinstance(tag, str):
                raise ValidationError("services must contain only strings")
            if tag not in unique:
                unique.append(tag)
        return cls(requested_services=tuple(unique), extra=dict(extra or {}))


@dataclass
class ProvisioningRecord:
    request_id: str
    requested_services: tuple[ServiceTag, ...]
    extra: dict[str, Any]
    created_at: datetime
    outcome: dict[ServiceTag, Result] | None = None
    completed_at: datetime | None = None
    # Not persisted: surfaced to the caller of a single provision() call.
    warnings: list[PersistenceWarning] = field(default_factory=list)

    def successes(self) -> dict[ServiceTag, Success]:
        return {tag: r for tag, r in (self.outcome or {}).items() if isinstance(r, Success)}

    def failures(self) -> dict[ServiceTag, Failure]:
        return {tag: r for tag, r in (self.outcome or {}).items() if isinstance(r, Failure)}

    def to_item(self) -> dict[str, Any]:
        return {
            "requestId": self.request_id,
            "requestedServices": list(self.requested_services),
            "extra": self.extra,
            "outcome": outcome_to_json(self.outcome) if self.outcome is not None else None,
            "createdAt": as_utc(self.created_at).isoformat(),
            "completedAt": as_utc(self.completed_at).isoformat() if self.completed_at else None,
        }
