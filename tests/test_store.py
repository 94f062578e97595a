from __future__ import annotations

from datetime import datetime, timedelta, timezone

import boto3
import pytest
from moto import mock_aws

from dynaprov.services.errors import DuplicateRequestError, RecordNotFoundError
from dynaprov.services.naming import new_request_id
from dynaprov.services.records import Failure, ProvisioningRecord, Success, utc_now
from dynaprov.services.store import DynamoDBRequestStore

TABLE_NAME = "ProvisioningRequests"


def _record(*, extra: dict | None = None, created_at: datetime | None = None) -> ProvisioningRecord:
    return ProvisioningRecord(
        request_id=new_request_id(),
        requested_services=("object-store", "rest-api"),
        extra=extra if extra is not None else {"team": "web", "ratio": 0.5, "count": 3},
        created_at=created_at or datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc),
    )


OUTCOME = {"object-store": Success({"s3Bucket": "demo-bucket-x"}), "rest-api": Failure("quota exceeded")}


@pytest.fixture
def dynamo_store():
    with mock_aws():
        store = DynamoDBRequestStore(
            table_name=TABLE_NAME,
            client=boto3.client("dynamodb", region_name="us-east-1"),
        )
        store.initialize()
        yield store


@pytest.fixture(params=["sql", "dynamodb"])
def any_store(request):
    if request.param == "sql":
        return request.getfixturevalue("store")
    return request.getfixturevalue("dynamo_store")


def test_put_then_get_round_trips_intent(any_store) -> None:
    record = _record()
    any_store.put(record)

    stored = any_store.get(record.request_id)
    assert stored.request_id == record.request_id
    assert stored.requested_services == ("object-store", "rest-api")
    assert stored.extra == {"team": "web", "ratio": 0.5, "count": 3}
    assert stored.outcome is None
    assert stored.completed_at is None


def test_put_never_overwrites(any_store) -> None:
    record = _record()
    any_store.put(record)

    with pytest.raises(DuplicateRequestError):
        any_store.put(_record_with_id(record.request_id, extra={"other": True}))
    assert any_store.get(record.request_id).extra == record.extra


def _record_with_id(request_id: str, *, extra: dict) -> ProvisioningRecord:
    clone = _record(extra=extra)
    clone.request_id = request_id
    return clone


def test_attach_outcome_is_write_once(any_store) -> None:
    record = _record()
    any_store.put(record)
    completed = datetime(2024, 5, 1, 12, 0, 5, tzinfo=timezone.utc)

    any_store.attach_outcome(record.request_id, OUTCOME, completed_at=completed)
    stored = any_store.get(record.request_id)
    assert stored.outcome == OUTCOME
    assert stored.completed_at == completed

    with pytest.raises(DuplicateRequestError):
        any_store.attach_outcome(record.request_id, {}, completed_at=completed)
    assert any_store.get(record.request_id).outcome == OUTCOME


def test_unknown_request_id_raises_not_found(any_store) -> None:
    missing = new_request_id()
    with pytest.raises(RecordNotFoundError):
        any_store.get(missing)
    with pytest.raises(RecordNotFoundError):
        any_store.attach_outcome(missing, OUTCOME, completed_at=datetime(2024, 1, 1, tzinfo=timezone.utc))


def test_list_returns_newest_first_and_honours_limit(any_store) -> None:
    base = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    records = [_record(created_at=base + timedelta(minutes=i)) for i in range(3)]
    for record in records:
        any_store.put(record)

    listed = any_store.list(limit=2)
    assert [r.request_id for r in listed] == [records[2].request_id, records[1].request_id]


def test_dynamo_initialize_is_idempotent(dynamo_store) -> None:
    dynamo_store.initialize()
    record = _record()
    dynamo_store.put(record)
    assert dynamo_store.get(record.request_id).request_id == record.request_id


def test_sql_initialize_creates_table(engine) -> None:
    from sqlalchemy import inspect

    from dynaprov.services.store import SqlRequestStore

    SqlRequestStore(engine).initialize()
    assert "provisioning_request" in inspect(engine).get_table_names()


def test_timestamps_round_trip_as_utc(any_store) -> None:
    created = datetime(2024, 5, 1, 14, 0, 0, tzinfo=timezone(timedelta(hours=2)))
    record = _record(created_at=created)
    any_store.put(record)
    any_store.attach_outcome(record.request_id, OUTCOME, completed_at=utc_now())

    stored = any_store.get(record.request_id)
    assert stored.created_at == created
    assert stored.created_at.utcoffset() == timedelta(0)
    assert stored.completed_at.tzinfo is not None
    assert stored.completed_at >= stored.created_at


def test_sql_store_accepts_naive_utc_timestamps(store) -> None:
    record = _record(created_at=datetime(2024, 5, 1, 12, 0, 0))
    store.put(record)

    assert store.get(record.request_id).created_at == datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
