from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List

import typer
import uvicorn
import yaml
from fastapi.encoders import jsonable_encoder

from dynaprov import dependencies
from dynaprov.logging_config import configure_logging
from dynaprov.provisioner import AwsRoutine
from dynaprov.services.errors import DynaprovException
from dynaprov.services.records import ProvisioningRecord, ProvisioningRequest

configure_logging()
logger = logging.getLogger(__name__)
app = typer.Typer(help="dynaprov CLI", pretty_exceptions_show_locals=False)


def _parse_json_object_input(
    *,
    json_text: str | None,
    json_file: Path | None,
    json_option_name: str,
    file_option_name: str,
) -> dict | None:
    if json_text is not None and json_file is not None:
        raise ValueError(f"Provide only one of {json_option_name} or {file_option_name}")

    if json_text is not None:
        try:
            parsed = json.loads(json_text)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON for {json_option_name}: {exc.msg}") from exc
        if not isinstance(parsed, dict):
            raise ValueError(f"{json_option_name} must decode to a JSON object")
        return parsed

    if json_file is not None:
        try:
            content = json_file.read_text()
        except OSError as exc:
            raise ValueError(f"Unable to read {file_option_name}: {exc}") from exc
        try:
            parsed = json.loads(content)
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in {file_option_name}: {exc.msg}") from exc
        if not isinstance(parsed, dict):
            raise ValueError(f"{file_option_name} must contain a JSON object")
        return parsed

    return None


def _exit_for_domain_error(exc: DynaprovException) -> None:
    logger.warning("CLI command failed with domain error: %s", exc)
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


def _echo_yaml_entity(entity: object) -> None:
    encoded = jsonable_encoder(entity)
    typer.echo(yaml.safe_dump(encoded, sort_keys=False), nl=False)


def _record_view(record: ProvisioningRecord) -> dict[str, Any]:
    view = record.to_item()
    if record.warnings:
        view["warnings"] = [str(warning) for warning in record.warnings]
    return view


@app.command("submit")
def submit(
    services: List[str] = typer.Argument(..., help="Service tags to provision, e.g. object-store rest-api."),
    extra_json: str | None = typer.Option(
        None,
        "--extra-json",
        help="JSON object string passed to every routine as extra fields.",
    ),
    extra_file: Path | None = typer.Option(
        None,
        "--extra-file",
        help="Path to a JSON file containing the extra fields object.",
    ),
) -> None:
    try:
        extra = _parse_json_object_input(
            json_text=extra_json,
            json_file=extra_file,
            json_option_name="--extra-json",
            file_option_name="--extra-file",
        )
    except ValueError as e:
        logger.warning("Invalid extra JSON input: %s", e)
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1)

    try:
        request = ProvisioningRequest.build(services, extra)
        record = dependencies.get_orchestrator().provision(request)
    except DynaprovException as e:
        _exit_for_domain_error(e)

    _echo_yaml_entity(_record_view(record))
    # Exit code stays 0; per-tag failures are part of the record.
    failures = record.failures()
    if failures:
        typer.echo(
            f"Warning: {len(failures)} of {len(record.requested_services)} services failed for request "
            f"{record.request_id}: {', '.join(failures)}",
            err=True,
        )


@app.command("get-request")
def get_request(request_id: str) -> None:
    try:
        record = dependencies.get_request_store().get(request_id)
    except DynaprovException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(_record_view(record))


@app.command("list-requests")
def list_requests(limit: int = typer.Option(100, "--limit", min=1)) -> None:
    try:
        records = dependencies.get_request_store().list(limit=limit)
    except DynaprovException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity([_record_view(record) for record in records])


@app.command("list-services")
def list_services() -> None:
    _echo_yaml_entity(dependencies.get_registry().tags())


@app.command("init-db")
def init_db() -> None:
    """Create the request store table if it does not exist yet."""
    store = dependencies.get_request_store()
    store.initialize()
    typer.echo(f"Initialized {dependencies.get_settings().store_backend} request store")


@app.command("check-credentials")
def check_credentials() -> None:
    """Resolve each routine's scoped AWS identity and the source-control token."""
    registry = dependencies.get_registry()
    report: dict[str, Any] = {"routines": {}}
    try:
        for tag in registry.tags():
            routine = registry.lookup(tag)
            if isinstance(routine, AwsRoutine):
                report["routines"][tag] = {
                    "identity": routine.caller_identity(),
                    "actions": list(routine.actions),
                }
        report["sourceControlToken"] = dependencies.get_source_control_token() is not None
    except DynaprovException as e:
        _exit_for_domain_error(e)
    _echo_yaml_entity(report)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host"),
    port: int = typer.Option(8001, "--port"),
) -> None:
    uvicorn.run("dynaprov.main:app", host=host, port=port, log_level="info")


if __name__ == "__main__":
    app()
