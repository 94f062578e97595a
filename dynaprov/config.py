from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dynaprov.services.errors import ConfigurationError

DEFAULT_DATABASE_URL = "sqlite:///./dynaprov.db"
DEFAULT_TABLE_NAME = "ProvisioningRequests"
DEFAULT_ALLOWED_ORIGIN = "http://localhost:3000"
DEFAULT_TIMEOUT_SEC = 120.0

STORE_BACKENDS = ("sql", "dynamodb")
SECRET_BACKENDS = ("env", "secretsmanager")


@dataclass(frozen=True)
class RoutineCredentials:
    """Where a single routine gets its AWS identity from.

    At most one of ``role_arn`` or ``secret_name`` is expected. With neither set
    the routine uses the ambient credential chain.
    """

    role_arn: Optional[str] = None
    secret_name: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    database_url: str = DEFAULT_DATABASE_URL
    store_backend: str = "sql"
    table_name: str = DEFAULT_TABLE_NAME
    region_name: Optional[str] = None
    endpoint_url: Optional[str] = None
    allowed_origin: str = DEFAULT_ALLOWED_ORIGIN
    routine_timeout_sec: float = DEFAULT_TIMEOUT_SEC
    request_timeout_sec: float = DEFAULT_TIMEOUT_SEC
    bucket_prefix: str = "demo-bucket"
    api_name_prefix: str = "API"
    secret_backend: str = "env"
    source_token_secret: Optional[str] = None
    routine_credentials: dict[str, RoutineCredentials] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"Unsupported store backend {self.store_backend!r}; expected one of {', '.join(STORE_BACKENDS)}"
            )
        if self.secret_backend not in SECRET_BACKENDS:
            raise ConfigurationError(
                f"Unsupported secret backend {self.secret_backend!r}; expected one of {', '.join(SECRET_BACKENDS)}"
            )
        if self.routine_timeout_sec <= 0 or self.request_timeout_sec <= 0:
            raise ConfigurationError("Timeouts must be positive")

    def credentials_for(self, tag: str) -> RoutineCredentials:
        return self.routine_credentials.get(tag, RoutineCredentials())

    @staticmethod
    def from_env() -> "Settings":
        region_name = os.getenv("AWS_REGION") or os.getenv("AWS_DEFAULT_REGION")
        return Settings(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            store_backend=os.getenv("DYNAPROV_STORE_BACKEND", "sql").lower(),
            table_name=os.getenv("DYNAPROV_TABLE_NAME", DEFAULT_TABLE_NAME),
            region_name=region_name,
            endpoint_url=os.getenv("DYNAPROV_AWS_ENDPOINT_URL") or None,
            allowed_origin=os.getenv("DYNAPROV_ALLOWED_ORIGIN", DEFAULT_ALLOWED_ORIGIN),
            routine_timeout_sec=_float_env("DYNAPROV_ROUTINE_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC),
            request_timeout_sec=_float_env("DYNAPROV_REQUEST_TIMEOUT_SEC", DEFAULT_TIMEOUT_SEC),
            bucket_prefix=os.getenv("DYNAPROV_BUCKET_PREFIX", "demo-bucket"),
            api_name_prefix=os.getenv("DYNAPROV_API_NAME_PREFIX", "API"),
            secret_backend=os.getenv("DYNAPROV_SECRET_BACKEND", "env").lower(),
            source_token_secret=os.getenv("DYNAPROV_SOURCE_TOKEN_SECRET") or None,
            routine_credentials={
                "object-store": _credentials_env("OBJECT_STORE"),
                "rest-api": _credentials_env("REST_API"),
            },
        )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from exc


def _credentials_env(prefix: str) -> RoutineCredentials:
    return RoutineCredentials(
        role_arn=os.getenv(f"DYNAPROV_{prefix}_ROLE_ARN") or None,
        secret_name=os.getenv(f"DYNAPROV_{prefix}_SECRET") or None,
    )
