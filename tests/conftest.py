import importlib
import os

# Must be set before dynaprov.db creates its module-level engine.
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from starlette.testclient import TestClient
from typer.testing import CliRunner

from dynaprov import dependencies
from dynaprov.db import build_engine, init_db
from dynaprov.dependencies import get_orchestrator
from dynaprov.main import app
from dynaprov.services.orchestrator import ProvisioningOrchestrator
from dynaprov.services.registry import ServiceRegistry
from dynaprov.services.store import SqlRequestStore
from routine_utils import ALLOWED_ORIGIN, FakeBucketRoutine, FakeRoutine



# Captured at import so tests may monkeypatch the module attributes.
_CACHED_PROVIDERS = (
    dependencies.get_settings,
    dependencies.get_secret_source,
    dependencies.get_session_factory,
    dependencies.get_registry,
    dependencies.get_request_store,
)


def _clear_dependency_caches() -> None:
    for provider in _CACHED_PROVIDERS:
        provider.cache_clear()


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Mocked AWS Credentials for moto."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SECURITY_TOKEN", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    monkeypatch.delenv("AWS_REGION", raising=False)
    monkeypatch.delenv("AWS_PROFILE", raising=False)
    _clear_dependency_caches()
    yield
    _clear_dependency_caches()


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlRequestStore(engine)


@pytest.fixture
def routines():
    return {"object-store": FakeBucketRoutine(), "rest-api": FakeRoutine(handle_key="apiGatewayId")}


@pytest.fixture
def registry(routines):
    registry = ServiceRegistry()
    for tag, routine in routines.items():
        registry.register(tag, routine)
    return registry.freeze()


@pytest.fixture
def orchestrator(store, registry):
    return ProvisioningOrchestrator(store=store, registry=registry, routine_timeout=5, request_timeout=5)


@pytest.fixture
def client(orchestrator, monkeypatch):
    monkeypatch.setenv("DYNAPROV_ALLOWED_ORIGIN", ALLOWED_ORIGIN)
    dependencies.get_settings.cache_clear()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture()
def cli_runner(tmp_path, monkeypatch):
    # File-based SQLite so every CLI invocation sees the same database.
    db_path = tmp_path / "test_cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")

    import dynaprov.db as db

    importlib.reload(db)
    _clear_dependency_caches()
    dependencies.get_request_store().initialize()

    import dynaprov.cli as cli

    return CliRunner(), cli.app
