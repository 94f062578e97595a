from __future__ import annotations

import re
import uuid

BUCKET_NAME_RE = re.compile(r"^[a-z0-9][a-z0-9-]{1,61}[a-z0-9]$")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_HYPHEN_RUN_RE = re.compile(r"-+")

MAX_BUCKET_NAME_LEN = 63
REQUEST_ID_LEN = 36
PREFIX_MAX_LEN = MAX_BUCKET_NAME_LEN - (REQUEST_ID_LEN + 1)


def slugify_token(value: str) -> str:
    lowered = value.lower()
    replaced = _NON_ALNUM_RE.sub("-", lowered)
    collapsed = _HYPHEN_RUN_RE.sub("-", replaced)
    return collapsed.strip("-")


def is_valid_bucket_name(value: str) -> bool:
    return bool(BUCKET_NAME_RE.fullmatch(value)) and not value.startswith("xn--")


def new_request_id() -> str:
    return str(uuid.uuid4())


def _normalize_request_id(request_id: str) -> str:
    try:
        return str(uuid.UUID(request_id))
    except ValueError as exc:
        raise ValueError("request_id must be a UUID") from exc


def bucket_name_for_request(request_id: str, *, prefix: str = "demo-bucket") -> str:
    """Deterministic S3 bucket name for a request, e.g. ``demo-bucket-<uuid>``."""
    base = slugify_token(prefix)[:PREFIX_MAX_LEN].strip("-") or "bucket"
    name = f"{base}-{_normalize_request_id(request_id)}"
    if len(name) > MAX_BUCKET_NAME_LEN or not is_valid_bucket_name(name):
        raise ValueError("generated bucket name is not a valid S3 bucket name")
    return name


def rest_api_name_for_request(request_id: str, *, prefix: str = "API") -> str:
    base = prefix.strip() or "API"
    return f"{base}-{_normalize_request_id(request_id)}"
