from __future__ import annotations

import logging
from typing import Any, Callable, Mapping

from dynaprov.services.errors import RegistryError
from dynaprov.services.records import Result, ServiceTag

logger = logging.getLogger(__name__)

ProvisioningRoutine = Callable[[str, Mapping[str, Any]], Result]


class ServiceRegistry:
    """Service tag -> provisioning routine dispatch table.

    Populated at startup and then frozen; lookups never mutate it, so one
    instance is shared by all concurrent requests.
    """

    def __init__(self) -> None:
        self._routines: dict[ServiceTag, ProvisioningRoutine] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, tag: ServiceTag, routine: ProvisioningRoutine) -> "ServiceRegistry":
        if self._frozen:
            raise RegistryError(f"Cannot register {tag!r}: registry is frozen")
        if not tag or not isinstance(tag, str):
            raise RegistryError("Service tag must be a non-empty string")
        if tag in self._routines:
            raise RegistryError(f"Service tag {tag!r} is already registered")
        self._routines[tag] = routine
        logger.debug("Registered provisioning routine for tag=%s", tag)
        return self

    def freeze(self) -> "ServiceRegistry":
        self._frozen = True
        logger.info("Service registry closed with tags: %s", ", ".join(self.tags()) or "<none>")
        return self

    def lookup(self, tag: ServiceTag) -> ProvisioningRoutine | None:
        return self._routines.get(tag)

    def tags(self) -> list[ServiceTag]:
        return sorted(self._routines)

    def __contains__(self, tag: object) -> bool:
        return tag in self._routines
