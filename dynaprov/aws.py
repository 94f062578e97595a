from __future__ import annotations

import json
import logging
from typing import Any, Literal, Sequence

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError

from dynaprov.config import RoutineCredentials
from dynaprov.services.errors import ConfigurationError
from dynaprov.services.secrets import SecretSource

logger = logging.getLogger(__name__)

ErrorCategory = Literal["retryable", "fatal"]

_RETRYABLE_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ProvisionedThroughputExceededException",
        "ServiceUnavailable",
        "SlowDown",
        "RequestTimeout",
        "InternalError",
        "InternalFailure",
    }
)
_ASSUMED_SESSION_SECONDS = 900


def classify_client_error(exc: ClientError) -> ErrorCategory:
    code = exc.response.get("Error", {}).get("Code", "")
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    if code in _RETRYABLE_CODES or status >= 500:
        return "retryable"
    return "fatal"


def describe_client_error(exc: ClientError, *, action: str) -> str:
    """One-line failure reason for a boto call, safe to return to API clients."""
    error = exc.response.get("Error", {})
    code = error.get("Code", "Unknown")
    detail = (error.get("Message") or "").strip()
    if len(detail) > 400:
        detail = f"{detail[:397]}..."
    return f"{action} failed (category={classify_client_error(exc)}, code={code}, detail={detail!r})"


def client_config(*, connect_timeout: float = 5, read_timeout: float = 60, max_attempts: int = 3) -> Config:
    return Config(
        retries={"max_attempts": max_attempts, "mode": "standard"},
        connect_timeout=connect_timeout,
        read_timeout=read_timeout,
    )


def scoped_policy(actions: Sequence[str]) -> dict[str, Any]:
    """Inline session policy allowing exactly ``actions`` and nothing else."""
    return {
        "Version": "2012-10-17",
        "Statement": [{"Effect": "Allow", "Action": sorted(set(actions)), "Resource": "*"}],
    }


class AwsSessionFactory:
    """Builds boto3 sessions and clients, one identity per provisioning routine.

    boto3 sessions are not thread-safe, so every call returns a fresh session;
    clients created from it may be used from the calling thread only.
    """

    def __init__(
        self,
        *,
        region_name: str | None = None,
        endpoint_url: str | None = None,
        secrets: SecretSource | None = None,
        config: Config | None = None,
    ) -> None:
        self.region_name = region_name
        self.endpoint_url = endpoint_url
        self._secrets = secrets
        self._config = config or client_config()

    def client(self, service_name: str, *, session: boto3.Session | None = None) -> Any:
        active = session or boto3.Session(region_name=self.region_name)
        return active.client(service_name, endpoint_url=self.endpoint_url, config=self._config)

    def session_for(
        self,
        *,
        tag: str,
        credentials: RoutineCredentials,
        actions: Sequence[str],
    ) -> boto3.Session:
        if credentials.secret_name:
            return self._session_from_secret(tag=tag, secret_name=credentials.secret_name)
        if credentials.role_arn:
            return self._assume_role(tag=tag, role_arn=credentials.role_arn, actions=actions)
        logger.debug("Using ambient AWS credentials for tag=%s", tag)
        return boto3.Session(region_name=self.region_name)

    def _session_from_secret(self, *, tag: str, secret_name: str) -> boto3.Session:
        if self._secrets is None:
            raise ConfigurationError(f"Routine {tag!r} needs secret {secret_name!r} but no secret source is configured")
        try:
            payload = json.loads(self._secrets.get_secret(secret_name))
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Secret {secret_name!r} for routine {tag!r} is not valid JSON") from exc
        if not isinstance(payload, dict) or not payload.get("accessKeyId") or not payload.get("secretAccessKey"):
            raise ConfigurationError(
                f"Secret {secret_name!r} for routine {tag!r} must hold accessKeyId and secretAccessKey"
            )
        logger.debug("Using credentials from secret %r for tag=%s", secret_name, tag)
        return boto3.Session(
            aws_access_key_id=payload["accessKeyId"],
            aws_secret_access_key=payload["secretAccessKey"],
            aws_session_token=payload.get("sessionToken"),
            region_name=self.region_name,
        )

    def _assume_role(self, *, tag: str, role_arn: str, actions: Sequence[str]) -> boto3.Session:
        sts = self.client("sts")
        logger.debug("Assuming role %s for tag=%s actions=%s", role_arn, tag, list(actions))
        response = sts.assume_role(
            RoleArn=role_arn,
            RoleSessionName=f"dynaprov-{tag}"[:64],
            Policy=json.dumps(scoped_policy(actions)),
            DurationSeconds=_ASSUMED_SESSION_SECONDS,
        )
        creds = response["Credentials"]
        return boto3.Session(
            aws_access_key_id=creds["AccessKeyId"],
            aws_secret_access_key=creds["SecretAccessKey"],
            aws_session_token=creds["SessionToken"],
            region_name=self.region_name,
        )
