from __future__ import annotations

import logging
import os
import re
from typing import Any, Protocol

from botocore.exceptions import ClientError

from dynaprov.services.errors import ConfigurationError

logger = logging.getLogger(__name__)

_ENV_NAME_RE = re.compile(r"[^A-Z0-9]+")


class SecretSource(Protocol):
    def get_secret(self, name: str) -> str: ...


class EnvSecretSource:
    """Resolve secrets from environment variables.

    A secret named ``github/token`` is read from ``DYNAPROV_SECRET_GITHUB_TOKEN``.
    """

    def __init__(self, *, prefix: str = "DYNAPROV_SECRET_", environ: dict[str, str] | None = None) -> None:
        self._prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def variable_name(self, name: str) -> str:
        return self._prefix + _ENV_NAME_RE.sub("_", name.upper()).strip("_")

    def get_secret(self, name: str) -> str:
        variable = self.variable_name(name)
        value = self._environ.get(variable)
        if not value:
            raise ConfigurationError(f"Secret {name!r} is not set (expected environment variable {variable})")
        logger.debug("Resolved secret %r from environment", name)
        return value


class SecretsManagerSecretSource:
    def __init__(self, *, client: Any) -> None:
        self._client = client

    def get_secret(self, name: str) -> str:
        try:
            response = self._client.get_secret_value(SecretId=name)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "Unknown")
            raise ConfigurationError(f"Unable to read secret {name!r} from Secrets Manager ({code})") from exc
        value = response.get("SecretString")
        if value is None:
            raise ConfigurationError(f"Secret {name!r} has no string value")
        logger.debug("Resolved secret %r from Secrets Manager", name)
        return value
