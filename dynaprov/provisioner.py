from __future__ import annotations

import logging
from typing import Any, Mapping

from botocore.exceptions import BotoCoreError, ClientError
from jsonschema import ValidationError as SchemaValidationError
from jsonschema import validate as jsonschema_validate

from dynaprov.aws import AwsSessionFactory, describe_client_error
from dynaprov.config import RoutineCredentials, Settings
from dynaprov.services.errors import ConfigurationError, ProvisioningFailure
from dynaprov.services.naming import bucket_name_for_request, rest_api_name_for_request
from dynaprov.services.records import Failure, Result, Success
from dynaprov.services.registry import ServiceRegistry

logger = logging.getLogger(__name__)

OBJECT_STORE = "object-store"
REST_API = "rest-api"


class AwsRoutine:
    """Base for routines that create one AWS resource per provisioning request.

    Subclasses declare the tag they serve, the boto3 service they talk to, the
    IAM actions they perform and a JSON schema for the ``extra`` keys they read.
    Any AWS, naming or validation failure is returned as a ``Failure``.
    """

    tag: str = ""
    service_name: str = ""
    actions: tuple[str, ...] = ()
    extra_schema: dict[str, Any] | None = None

    def __init__(self, *, sessions: AwsSessionFactory, credentials: RoutineCredentials | None = None) -> None:
        self._sessions = sessions
        self._credentials = credentials or RoutineCredentials()

    def __call__(self, request_id: str, extra: Mapping[str, Any]) -> Result:
        try:
            self.validate_extra(extra)
            name = self.name_resource(request_id)
            session = self._sessions.session_for(
                tag=self.tag,
                credentials=self._credentials,
                actions=self.actions,
            )
            client = self._sessions.client(self.service_name, session=session)
            handle = self.provision(client, name=name, extra=extra)
        except ProvisioningFailure as exc:
            logger.warning("Provisioning failed tag=%s: %s", self.tag, exc.reason)
            return Failure(exc.reason)
        except ClientError as exc:
            reason = describe_client_error(exc, action=exc.operation_name)
            logger.warning("Provisioning failed tag=%s: %s", self.tag, reason)
            return Failure(reason)
        except (BotoCoreError, ConfigurationError) as exc:
            logger.warning("Provisioning failed tag=%s: %s", self.tag, exc)
            return Failure(f"{self.tag} provisioning failed: {exc}")
        logger.info("Provisioned tag=%s handle=%s", self.tag, handle)
        return Success(handle)

    def caller_identity(self) -> str:
        """ARN of the identity this routine's calls would run as."""
        try:
            session = self._sessions.session_for(
                tag=self.tag,
                credentials=self._credentials,
                actions=self.actions,
            )
            return self._sessions.client("sts", session=session).get_caller_identity()["Arn"]
        except ClientError as exc:
            raise ConfigurationError(describe_client_error(exc, action=exc.operation_name)) from exc
        except BotoCoreError as exc:
            raise ConfigurationError(f"Unable to resolve AWS identity for {self.tag}: {exc}") from exc

    def validate_extra(self, extra: Mapping[str, Any]) -> None:
        if self.extra_schema is None:
            return
        try:
            jsonschema_validate(instance=dict(extra), schema=self.extra_schema)
        except SchemaValidationError as exc:
            raise ProvisioningFailure(f"invalid extra for {self.tag}: {exc.message}") from exc

    def name_resource(self, request_id: str) -> str:
        try:
            return self._resource_name(request_id)
        except ValueError as exc:
            raise ProvisioningFailure(f"cannot name {self.tag} resource for request {request_id!r}: {exc}") from exc

    def _resource_name(self, request_id: str) -> str:
        raise NotImplementedError

    def provision(self, client: Any, *, name: str, extra: Mapping[str, Any]) -> dict[str, str]:
        raise NotImplementedError


class ObjectStoreRoutine(AwsRoutine):
    tag = OBJECT_STORE
    service_name = "s3"
    actions = ("s3:CreateBucket", "s3:PutBucketVersioning")
    extra_schema = {
        "type": "object",
        "properties": {"versioning": {"type": "boolean"}},
    }

    def __init__(
        self,
        *,
        sessions: AwsSessionFactory,
        credentials: RoutineCredentials | None = None,
        bucket_prefix: str = "demo-bucket",
    ) -> None:
        super().__init__(sessions=sessions, credentials=credentials)
        self._bucket_prefix = bucket_prefix

    def _resource_name(self, request_id: str) -> str:
        return bucket_name_for_request(request_id, prefix=self._bucket_prefix)

    def provision(self, client: Any, *, name: str, extra: Mapping[str, Any]) -> dict[str, str]:
        kwargs: dict[str, Any] = {"Bucket": name}
        region = client.meta.region_name
        if region and region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": region}

        logger.debug("Creating S3 bucket %s in region %s", name, region)
        client.create_bucket(**kwargs)
        if extra.get("versioning"):
            client.put_bucket_versioning(
                Bucket=name,
                VersioningConfiguration={"Status": "Enabled"},
            )
        return {"s3Bucket": name}


class RestApiRoutine(AwsRoutine):
    tag = REST_API
    service_name = "apigateway"
    actions = ("apigateway:POST",)
    extra_schema = {
        "type": "object",
        "properties": {
            "apiDescription": {"type": "string", "maxLength": 1024},
            "endpointType": {"enum": ["REGIONAL", "EDGE", "PRIVATE"]},
        },
    }

    def __init__(
        self,
        *,
        sessions: AwsSessionFactory,
        credentials: RoutineCredentials | None = None,
        name_prefix: str = "API",
    ) -> None:
        super().__init__(sessions=sessions, credentials=credentials)
        self._name_prefix = name_prefix

    def _resource_name(self, request_id: str) -> str:
        return rest_api_name_for_request(request_id, prefix=self._name_prefix)

    def provision(self, client: Any, *, name: str, extra: Mapping[str, Any]) -> dict[str, str]:
        kwargs: dict[str, Any] = {"name": name}
        if extra.get("apiDescription"):
            kwargs["description"] = extra["apiDescription"]
        if extra.get("endpointType"):
            kwargs["endpointConfiguration"] = {"types": [extra["endpointType"]]}

        logger.debug("Creating REST API %s", name)
        response = client.create_rest_api(**kwargs)
        return {"apiGatewayId": response["id"], "apiGatewayName": name}


def build_default_registry(settings: Settings, sessions: AwsSessionFactory) -> ServiceRegistry:
    registry = ServiceRegistry()
    registry.register(
        OBJECT_STORE,
        ObjectStoreRoutine(
            sessions=sessions,
            credentials=settings.credentials_for(OBJECT_STORE),
            bucket_prefix=settings.bucket_prefix,
        ),
    )
    registry.register(
        REST_API,
        RestApiRoutine(
            sessions=sessions,
            credentials=settings.credentials_for(REST_API),
            name_prefix=settings.api_name_prefix,
        ),
    )
    return registry.freeze()
