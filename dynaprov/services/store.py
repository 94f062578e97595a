from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import json
import logging
from typing import Any, Mapping, Protocol

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from dynaprov.db import init_db
from dynaprov.models import ProvisioningRequestORM
from dynaprov.services.errors import DuplicateRequestError, InternalError, RecordNotFoundError
from dynaprov.services.records import (
    ProvisioningRecord,
    Result,
    ServiceTag,
    as_utc,
    outcome_from_json,
    outcome_to_json,
)

logger = logging.getLogger(__name__)


class RequestStore(Protocol):
    """Durable, write-once mapping of request id to provisioning record."""

    def initialize(self) -> None: ...

    def put(self, record: ProvisioningRecord) -> None: ...

    def attach_outcome(
        self, request_id: str, outcome: Mapping[ServiceTag, Result], *, completed_at: datetime
    ) -> None: ...

    def get(self, request_id: str) -> ProvisioningRecord: ...

    def list(self, *, limit: int = 100) -> list[ProvisioningRecord]: ...


def _record_from_orm(row: ProvisioningRequestORM) -> ProvisioningRecord:
    return ProvisioningRecord(
        request_id=row.request_id,
        requested_services=tuple(row.requested_services),
        extra=dict(row.extra or {}),
        outcome=outcome_from_json(row.outcome),
        created_at=as_utc(row.created_at),
        completed_at=as_utc(row.completed_at) if row.completed_at else None,
    )


class SqlRequestStore:
    """Request store backed by the ``provisioning_request`` table.

    Every operation runs in its own session so one store instance can be shared
    by concurrent orchestrator invocations.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def initialize(self) -> None:
        init_db(self._engine)

    def put(self, record: ProvisioningRecord) -> None:
        row = ProvisioningRequestORM(
            request_id=record.request_id,
            requested_services=list(record.requested_services),
            extra=dict(record.extra),
            created_at=as_utc(record.created_at),
        )
        with Session(self._engine) as session:
            try:
                session.add(row)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                logger.warning("Rejected duplicate write for request_id=%s", record.request_id)
                raise DuplicateRequestError(f"Request {record.request_id} already exists") from exc
        logger.debug("Stored provisioning intent request_id=%s", record.request_id)

    def attach_outcome(
        self, request_id: str, outcome: Mapping[ServiceTag, Result], *, completed_at: datetime
    ) -> None:
        with Session(self._engine) as session:
            row = session.get(ProvisioningRequestORM, request_id)
            if row is None:
                raise RecordNotFoundError(f"Request {request_id} not found")
            if row.outcome is not None:
                raise DuplicateRequestError(f"Outcome for request {request_id} is already recorded")
            row.outcome = outcome_to_json(outcome)
            row.completed_at = as_utc(completed_at)
            session.add(row)
            session.commit()
        logger.debug("Stored provisioning outcome request_id=%s", request_id)

    def get(self, request_id: str) -> ProvisioningRecord:
        with Session(self._engine) as session:
            row = session.get(ProvisioningRequestORM, request_id)
            if row is None:
                raise RecordNotFoundError(f"Request {request_id} not found")
            return _record_from_orm(row)

    def list(self, *, limit: int = 100) -> list[ProvisioningRecord]:
        stmt = (
            select(ProvisioningRequestORM)
            .order_by(ProvisioningRequestORM.created_at.desc(), ProvisioningRequestORM.request_id)
            .limit(limit)
        )
        try:
            with Session(self._engine) as session:
                return [_record_from_orm(row) for row in session.exec(stmt).all()]
        except SQLAlchemyError as exc:
            raise InternalError("Failed to list provisioning requests") from exc


_serializer = TypeSerializer()
_deserializer = TypeDeserializer()


def _to_dynamo(value: Any) -> dict[str, Any]:
    # TypeSerializer rejects float; route JSON numbers through Decimal.
    return _serializer.serialize(json.loads(json.dumps(value), parse_float=Decimal))


def _from_dynamo(raw: dict[str, Any]) -> Any:
    return _plain(_deserializer.deserialize(raw))


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, set, tuple)):
        return [_plain(v) for v in value]
    return value


def _is_conditional_failure(exc: ClientError) -> bool:
    return exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DynamoDBRequestStore:
    """Request store backed by a DynamoDB table keyed by string ``requestId``."""

    def __init__(self, *, table_name: str, client: Any) -> None:
        self._table_name = table_name
        self._client = client

    def initialize(self) -> None:
        try:
            self._client.describe_table(TableName=self._table_name)
            logger.debug("DynamoDB table already exists: %s", self._table_name)
            return
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") != "ResourceNotFoundException":
                raise
        logger.info("Creating DynamoDB table: %s", self._table_name)
        self._client.create_table(
            TableName=self._table_name,
            KeySchema=[{"AttributeName": "requestId", "KeyType": "HASH"}],
            AttributeDefinitions=[{"AttributeName": "requestId", "AttributeType": "S"}],
            BillingMode="PAY_PER_REQUEST",
        )
        self._client.get_waiter("table_exists").wait(TableName=self._table_name)

    def put(self, record: ProvisioningRecord) -> None:
        item = {k: v for k, v in record.to_item().items() if v is not None}
        try:
            self._client.put_item(
                TableName=self._table_name,
                Item={k: _to_dynamo(v) for k, v in item.items()},
                ConditionExpression="attribute_not_exists(requestId)",
            )
        except ClientError as exc:
            if _is_conditional_failure(exc):
                logger.warning("Rejected duplicate write for request_id=%s", record.request_id)
                raise DuplicateRequestError(f"Request {record.request_id} already exists") from exc
            raise
        logger.debug("Stored provisioning intent request_id=%s table=%s", record.request_id, self._table_name)

    def attach_outcome(
        self, request_id: str, outcome: Mapping[ServiceTag, Result], *, completed_at: datetime
    ) -> None:
        try:
            self._client.update_item(
                TableName=self._table_name,
                Key={"requestId": {"S": request_id}},
                UpdateExpression="SET outcome = :outcome, completedAt = :completed",
                ConditionExpression="attribute_exists(requestId) AND attribute_not_exists(outcome)",
                ExpressionAttributeValues={
                    ":outcome": _to_dynamo(outcome_to_json(outcome)),
                    ":completed": {"S": as_utc(completed_at).isoformat()},
                },
            )
        except ClientError as exc:
            if not _is_conditional_failure(exc):
                raise
            # Distinguish an unknown id from an outcome that is already set.
            self.get(request_id)
            raise DuplicateRequestError(f"Outcome for request {request_id} is already recorded") from exc
        logger.debug("Stored provisioning outcome request_id=%s table=%s", request_id, self._table_name)

    def get(self, request_id: str) -> ProvisioningRecord:
        response = self._client.get_item(
            TableName=self._table_name,
            Key={"requestId": {"S": request_id}},
            ConsistentRead=True,
        )
        raw = response.get("Item")
        if not raw:
            raise RecordNotFoundError(f"Request {request_id} not found")
        return self._record_from_item(raw)

    def list(self, *, limit: int = 100) -> list[ProvisioningRecord]:
        records: list[ProvisioningRecord] = []
        paginator = self._client.get_paginator("scan")
        for page in paginator.paginate(TableName=self._table_name):
            records.extend(self._record_from_item(raw) for raw in page.get("Items", []))
        records.sort(key=lambda r: (-r.created_at.timestamp(), r.request_id))
        return records[:limit]

    @staticmethod
    def _record_from_item(raw: dict[str, Any]) -> ProvisioningRecord:
        item = {k: _from_dynamo(v) for k, v in raw.items()}
        completed_at = item.get("completedAt")
        return ProvisioningRecord(
            request_id=item["requestId"],
            requested_services=tuple(item.get("requestedServices", [])),
            extra=item.get("extra", {}),
            outcome=outcome_from_json(item.get("outcome")),
            created_at=as_utc(datetime.fromisoformat(item["createdAt"])),
            completed_at=as_utc(datetime.fromisoformat(completed_at)) if completed_at else None,
        )
