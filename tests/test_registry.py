import pytest

from dynaprov.config import Settings
from dynaprov.aws import AwsSessionFactory
from dynaprov.provisioner import ObjectStoreRoutine, RestApiRoutine, build_default_registry
from dynaprov.services.errors import RegistryError
from dynaprov.services.registry import ServiceRegistry
from routine_utils import FakeRoutine


def test_lookup_returns_registered_routine_or_none() -> None:
    routine = FakeRoutine()
    registry = ServiceRegistry().register("object-store", routine).freeze()

    assert registry.lookup("object-store") is routine
    assert registry.lookup("queue") is None
    assert "object-store" in registry
    assert registry.tags() == ["object-store"]


def test_registry_is_closed_after_freeze() -> None:
    registry = ServiceRegistry().register("a", FakeRoutine()).freeze()

    with pytest.raises(RegistryError):
        registry.register("b", FakeRoutine())
    assert registry.frozen is True
    assert registry.tags() == ["a"]


def test_duplicate_or_blank_tags_are_rejected() -> None:
    registry = ServiceRegistry().register("a", FakeRoutine())

    with pytest.raises(RegistryError):
        registry.register("a", FakeRoutine())
    with pytest.raises(RegistryError):
        registry.register("", FakeRoutine())


def test_default_registry_wires_builtin_routines() -> None:
    settings = Settings(bucket_prefix="acme", api_name_prefix="acme-api")
    registry = build_default_registry(settings, AwsSessionFactory(region_name="us-east-1"))

    assert registry.frozen is True
    assert registry.tags() == ["object-store", "rest-api"]
    assert isinstance(registry.lookup("object-store"), ObjectStoreRoutine)
    assert isinstance(registry.lookup("rest-api"), RestApiRoutine)
