from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status

from dynaprov.api.utils import get_cors_headers
from dynaprov.dependencies import get_orchestrator
from dynaprov.schemas import SubmitRequest, SubmitResponse
from dynaprov.services.errors import DynaprovException, InternalError
from dynaprov.services.orchestrator import ProvisioningOrchestrator
from dynaprov.services.records import ProvisioningRecord, ProvisioningRequest

router = APIRouter(tags=["provisioning"])

logger = logging.getLogger(__name__)


def render_submit_response(record: ProvisioningRecord) -> SubmitResponse:
    """Flatten successful handles into top-level fields; failed tags go under ``errors``."""
    handles: dict[str, str] = {}
    for success in record.successes().values():
        for key, value in success.handle.items():
            handles.setdefault(key, value)
    for reserved in ("requestId", "errors", "warnings"):
        handles.pop(reserved, None)
    failures = record.failures()
    return SubmitResponse(
        requestId=record.request_id,
        errors={tag: failure.reason for tag, failure in failures.items()} or None,
        warnings=[str(warning) for warning in record.warnings] or None,
        **handles,
    )


@router.options("/submit", status_code=status.HTTP_204_NO_CONTENT)
def submit_preflight(headers: dict[str, str] = Depends(get_cors_headers)) -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=headers)


@router.post("/submit", response_model=SubmitResponse, response_model_exclude_none=True)
def submit(
    payload: SubmitRequest,
    response: Response,
    orchestrator: ProvisioningOrchestrator = Depends(get_orchestrator),
    headers: dict[str, str] = Depends(get_cors_headers),
) -> SubmitResponse:
    response.headers.update(headers)
    request = ProvisioningRequest.build(payload.services, payload.model_extra)
    try:
        record = orchestrator.provision(request)
    except DynaprovException:
        raise
    except Exception as exc:
        raise InternalError("internal error") from exc
    return render_submit_response(record)
