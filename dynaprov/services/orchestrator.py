from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from contextvars import copy_context
from copy import deepcopy
from datetime import datetime
import logging
import time
from typing import Any, Callable, Mapping

from dynaprov.config import DEFAULT_TIMEOUT_SEC
from dynaprov.logging_config import bind_request_id
from dynaprov.services.errors import (
    InternalError,
    PersistenceWarning,
    ProvisioningFailure,
    UnsupportedServiceError,
    ValidationError,
)
from dynaprov.services.naming import new_request_id
from dynaprov.services.records import (
    Failure,
    ProvisioningRecord,
    ProvisioningRequest,
    Result,
    ServiceTag,
    Success,
    utc_now,
)
from dynaprov.services.registry import ProvisioningRoutine, ServiceRegistry
from dynaprov.services.store import RequestStore

logger = logging.getLogger(__name__)

UNSUPPORTED_REASON = "unsupported service tag"
TIMEOUT_REASON = "timeout"


class ProvisioningOrchestrator:
    """Record a provisioning request, run one routine per service tag, and
    aggregate the per-tag results.

    The intent record is written before any routine runs. Routines run
    concurrently and each tag's result is independent: a failing, raising or
    hung routine only degrades its own tag.
    """

    def __init__(
        self,
        *,
        store: RequestStore,
        registry: ServiceRegistry,
        routine_timeout: float = DEFAULT_TIMEOUT_SEC,
        request_timeout: float = DEFAULT_TIMEOUT_SEC,
        id_factory: Callable[[], str] = new_request_id,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._registry = registry
        self._routine_timeout = routine_timeout
        self._request_timeout = request_timeout
        self._id_factory = id_factory
        self._clock = clock

    def provision(self, request: ProvisioningRequest) -> ProvisioningRecord:
        if not request.requested_services:
            raise ValidationError("at least one service must be requested")

        request_id = self._id_factory()
        with bind_request_id(request_id):
            return self._provision(request_id, request)

    def _provision(self, request_id: str, request: ProvisioningRequest) -> ProvisioningRecord:
        record = ProvisioningRecord(
            request_id=request_id,
            requested_services=tuple(request.requested_services),
            extra=deepcopy(dict(request.extra)),
            created_at=self._clock(),
        )
        logger.info("Received provisioning request services=%s", ",".join(record.requested_services))

        try:
            self._store.put(record)
        except Exception as exc:
            logger.exception("Failed to persist provisioning intent")
            raise InternalError(f"Failed to persist request {request_id}", request_id=request_id) from exc

        record.outcome = self._dispatch(request_id, record.requested_services, record.extra)
        record.completed_at = self._clock()

        try:
            self._store.attach_outcome(request_id, record.outcome, completed_at=record.completed_at)
        except Exception as exc:
            warning = PersistenceWarning(request_id, str(exc))
            logger.warning("%s", warning, exc_info=True)
            record.warnings.append(warning)

        logger.info(
            "Finished provisioning request succeeded=%s failed=%s",
            ",".join(record.successes()) or "-",
            ",".join(record.failures()) or "-",
        )
        return record

    def _dispatch(
        self,
        request_id: str,
        tags: tuple[ServiceTag, ...],
        extra: Mapping[str, Any],
    ) -> dict[ServiceTag, Result]:
        outcome: dict[ServiceTag, Result] = {}
        runnable: dict[ServiceTag, ProvisioningRoutine] = {}
        for tag in tags:
            routine = self._registry.lookup(tag)
            if routine is None:
                logger.warning("%s", UnsupportedServiceError(tag))
                outcome[tag] = Failure(UNSUPPORTED_REASON)
            else:
                runnable[tag] = routine

        if runnable:
            outcome.update(self._run_concurrently(request_id, runnable, extra))
        return {tag: outcome[tag] for tag in tags}

    def _run_concurrently(
        self,
        request_id: str,
        routines: dict[ServiceTag, ProvisioningRoutine],
        extra: Mapping[str, Any],
    ) -> dict[ServiceTag, Result]:
        results: dict[ServiceTag, Result] = {}
        executor = ThreadPoolExecutor(
            max_workers=len(routines),
            thread_name_prefix=f"provision-{request_id[:8]}",
        )
        try:
            deadline = time.monotonic() + min(self._routine_timeout, self._request_timeout)
            futures: dict[ServiceTag, Future[Result]] = {
                # One context copy per task: a Context cannot be entered by two threads at once.
                tag: executor.submit(
                    copy_context().run, self._invoke, tag, routine, request_id, deepcopy(dict(extra))
                )
                for tag, routine in routines.items()
            }
            for tag, future in futures.items():
                remaining = max(deadline - time.monotonic(), 0.0)
                try:
                    results[tag] = future.result(timeout=remaining)
                except FutureTimeoutError:
                    future.cancel()
                    logger.error("Provisioning routine timed out tag=%s", tag)
                    results[tag] = Failure(TIMEOUT_REASON)
        finally:
            # Hung routines are abandoned, not joined.
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    @staticmethod
    def _invoke(
        tag: ServiceTag,
        routine: ProvisioningRoutine,
        request_id: str,
        extra: dict[str, Any],
    ) -> Result:
        logger.debug("Invoking routine tag=%s", tag)
        try:
            result = routine(request_id, extra)
        except ProvisioningFailure as exc:
            logger.warning("Routine signalled failure tag=%s: %s", tag, exc.reason)
            return Failure(exc.reason)
        except Exception as exc:
            logger.exception("Routine raised unexpectedly tag=%s", tag)
            return Failure(f"{type(exc).__name__}: {exc}")
        if not isinstance(result, (Success, Failure)):
            logger.error("Routine returned %r instead of a result tag=%s", result, tag)
            return Failure("routine returned an invalid result")
        return result
