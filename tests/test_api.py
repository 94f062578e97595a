from concurrent.futures import ThreadPoolExecutor

import boto3
from moto import mock_aws

from dynaprov.aws import AwsSessionFactory
from dynaprov.config import Settings
from dynaprov.dependencies import get_orchestrator
from dynaprov.main import app
from dynaprov.provisioner import build_default_registry
from dynaprov.services.errors import DynaprovException
from dynaprov.services.orchestrator import ProvisioningOrchestrator
from routine_utils import ALLOWED_ORIGIN, FakeRoutine, FlakyStore

CORS_HEADERS = {
    "access-control-allow-origin": ALLOWED_ORIGIN,
    "access-control-allow-headers": "Content-Type",
    "access-control-allow-methods": "OPTIONS,POST",
}


def _assert_cors(response) -> None:
    for name, value in CORS_HEADERS.items():
        assert response.headers[name] == value


def test_submit_object_store(client, store):
    resp = client.post("/submit", json={"services": ["object-store"], "owner": "team-web"})
    assert resp.status_code == 200
    _assert_cors(resp)

    body = resp.json()
    request_id = body["requestId"]
    assert body == {"requestId": request_id, "s3Bucket": f"demo-bucket-{request_id}"}

    record = store.get(request_id)
    assert record.extra == {"owner": "team-web"}
    assert record.successes()["object-store"].handle == {"s3Bucket": f"demo-bucket-{request_id}"}


def test_submit_flattens_handles_and_reports_errors(client, store):
    resp = client.post("/submit", json={"services": ["object-store", "rest-api", "queue"]})
    assert resp.status_code == 200

    body = resp.json()
    request_id = body["requestId"]
    assert body["s3Bucket"] == f"demo-bucket-{request_id}"
    assert body["apiGatewayId"] == f"apiGatewayId-{request_id}"
    assert body["errors"] == {"queue": "unsupported service tag"}
    assert set(store.get(request_id).outcome) == {"object-store", "rest-api", "queue"}


def test_submit_with_empty_services_is_rejected_without_store_write(client, store, routines):
    resp = client.post("/submit", json={"services": []})

    assert resp.status_code == 400
    assert "error" in resp.json()
    _assert_cors(resp)
    assert store.list() == []
    assert all(routine.calls == [] for routine in routines.values())


def test_submit_validation_errors(client, store):
    for payload in ({}, {"services": "object-store"}, {"services": [1]}, ["object-store"]):
        resp = client.post("/submit", json=payload)
        assert resp.status_code == 400, payload
        assert set(resp.json()) == {"error"}

    resp = client.post("/submit", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    _assert_cors(resp)

    resp = client.post("/submit")
    assert resp.status_code == 400

    assert store.list() == []


def test_submit_blank_tag_is_reported_per_tag(client, store):
    resp = client.post("/submit", json={"services": ["", "object-store"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["errors"] == {"": "unsupported service tag"}
    assert body["s3Bucket"] == f"demo-bucket-{body['requestId']}"
    assert store.get(body["requestId"]).requested_services == ("", "object-store")


def test_submit_empty_services_names_the_field(client):
    resp = client.post("/submit", json={"services": [], "owner": "team-web"})

    assert resp.status_code == 400
    assert resp.json()["error"].startswith("invalid request body: services")


def test_preflight_returns_cors_headers_without_body(client):
    resp = client.options("/submit")

    assert resp.status_code == 204
    assert resp.content == b""
    _assert_cors(resp)


def test_submit_reports_persistence_warning(client, store, registry):
    app.dependency_overrides[get_orchestrator] = lambda: ProvisioningOrchestrator(
        store=FlakyStore(store, fail_attach=True), registry=registry
    )

    resp = client.post("/submit", json={"services": ["object-store"]})

    assert resp.status_code == 200
    body = resp.json()
    assert body["s3Bucket"] == f"demo-bucket-{body['requestId']}"
    assert len(body["warnings"]) == 1


def test_submit_internal_error_returns_500(client, store, registry):
    app.dependency_overrides[get_orchestrator] = lambda: ProvisioningOrchestrator(
        store=FlakyStore(store, fail_put=True), registry=registry
    )

    resp = client.post("/submit", json={"services": ["object-store"]})

    assert resp.status_code == 500
    assert resp.json()["error"].startswith("Failed to persist request")
    _assert_cors(resp)


def test_submit_unexpected_error_returns_500(client):
    class Exploding:
        def provision(self, request):
            raise KeyError("boom")

    app.dependency_overrides[get_orchestrator] = lambda: Exploding()

    resp = client.post("/submit", json={"services": ["object-store"]})

    assert resp.status_code == 500
    assert resp.json() == {"error": "internal error"}


def test_concurrent_submissions_produce_distinct_records(client, tmp_path):
    from dynaprov.db import build_engine, init_db
    from dynaprov.services.registry import ServiceRegistry
    from dynaprov.services.store import SqlRequestStore

    engine = build_engine(f"sqlite:///{tmp_path / 'api.db'}")
    init_db(engine)
    file_store = SqlRequestStore(engine)
    registry = ServiceRegistry().register("object-store", FakeRoutine(handle_key="s3Bucket")).freeze()
    app.dependency_overrides[get_orchestrator] = lambda: ProvisioningOrchestrator(store=file_store, registry=registry)

    def submit(n: int):
        return client.post("/submit", json={"services": ["object-store"], "n": n})

    with ThreadPoolExecutor(max_workers=6) as pool:
        responses = list(pool.map(submit, range(6)))

    assert all(r.status_code == 200 for r in responses)
    ids = {r.json()["requestId"] for r in responses}
    assert len(ids) == 6
    assert {record.request_id for record in file_store.list()} == ids
    engine.dispose()


def test_submit_end_to_end_with_builtin_routines(client, store):
    with mock_aws():
        registry = build_default_registry(Settings(), AwsSessionFactory(region_name="us-east-1"))
        app.dependency_overrides[get_orchestrator] = lambda: ProvisioningOrchestrator(store=store, registry=registry)

        resp = client.post("/submit", json={"services": ["object-store", "rest-api"]})

        assert resp.status_code == 200
        body = resp.json()
        request_id = body["requestId"]
        assert body["s3Bucket"] == f"demo-bucket-{request_id}"
        assert "errors" not in body
        buckets = [b["Name"] for b in boto3.client("s3", region_name="us-east-1").list_buckets()["Buckets"]]
        assert buckets == [f"demo-bucket-{request_id}"]
        api = boto3.client("apigateway", region_name="us-east-1").get_rest_api(restApiId=body["apiGatewayId"])
        assert api["name"] == f"API-{request_id}"


def test_root_redirects_to_docs(client):
    resp = client.get("/", follow_redirects=False)

    assert resp.status_code in (302, 307)
    assert resp.headers["location"] == "/docs"


def test_domain_exception_base_maps_to_500(client):
    class Failing:
        def provision(self, request):
            raise DynaprovException("unexpected domain state")

    app.dependency_overrides[get_orchestrator] = lambda: Failing()

    resp = client.post("/submit", json={"services": ["object-store"]})

    assert resp.status_code == 500
    assert resp.json() == {"error": "unexpected domain state"}
