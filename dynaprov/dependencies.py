from __future__ import annotations

from functools import lru_cache

from dynaprov import db
from dynaprov.aws import AwsSessionFactory
from dynaprov.config import Settings
from dynaprov.provisioner import build_default_registry
from dynaprov.services.orchestrator import ProvisioningOrchestrator
from dynaprov.services.registry import ServiceRegistry
from dynaprov.services.secrets import EnvSecretSource, SecretSource, SecretsManagerSecretSource
from dynaprov.services.store import DynamoDBRequestStore, RequestStore, SqlRequestStore


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()


@lru_cache
def get_secret_source() -> SecretSource:
    """Runtime secret access; secrets never live in code or settings values."""
    settings = get_settings()
    if settings.secret_backend == "secretsmanager":
        factory = AwsSessionFactory(region_name=settings.region_name, endpoint_url=settings.endpoint_url)
        return SecretsManagerSecretSource(client=factory.client("secretsmanager"))
    return EnvSecretSource()


@lru_cache
def get_session_factory() -> AwsSessionFactory:
    settings = get_settings()
    return AwsSessionFactory(
        region_name=settings.region_name,
        endpoint_url=settings.endpoint_url,
        secrets=get_secret_source(),
    )


@lru_cache
def get_registry() -> ServiceRegistry:
    return build_default_registry(get_settings(), get_session_factory())


@lru_cache
def get_request_store() -> RequestStore:
    settings = get_settings()
    if settings.store_backend == "dynamodb":
        return DynamoDBRequestStore(
            table_name=settings.table_name,
            client=get_session_factory().client("dynamodb"),
        )
    engine = db.engine if settings.database_url == db.DATABASE_URL else db.build_engine(settings.database_url)
    return SqlRequestStore(engine)


def get_orchestrator() -> ProvisioningOrchestrator:
    settings = get_settings()
    return ProvisioningOrchestrator(
        store=get_request_store(),
        registry=get_registry(),
        routine_timeout=settings.routine_timeout_sec,
        request_timeout=settings.request_timeout_sec,
    )


def get_source_control_token() -> str | None:
    """Token for the source-control integration, resolved only on demand."""
    settings = get_settings()
    if not settings.source_token_secret:
        return None
    return get_secret_source().get_secret(settings.source_token_secret)
