from __future__ import annotations

import base64
import binascii
import logging
import re
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import HTTPException

from fastidp.core.aws import s3
from fastidp.core.settings import S
from fastidp.errors import ProviderError, ValidationError

logger = logging.getLogger(__name__)

DOCUMENT_CATEGORIES = ("driversLicense", "passportPhoto", "signature")
REQUIRED_DOCUMENT_CATEGORIES = ("driversLicense", "passportPhoto")

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/webp",
    "image/heic",
    "application/pdf",
}

_DATA_URL_RE = re.compile(r"^data:(?P<type>[\w.+-]+/[\w.+-]+)?(;[\w=.-]+)*;base64,(?P<data>.*)$", re.S)
_SAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def _bucket() -> str:
    if not S.uploads_bucket:
        raise HTTPException(500, "uploads bucket not configured")
    return S.uploads_bucket


def is_data_url(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("data:") and ";base64," in value


def decode_data_url(value: str, fallback_type: Optional[str] = None) -> Tuple[str, bytes]:
    m = _DATA_URL_RE.match(value or "")
    if m:
        content_type = m.group("type") or fallback_type or "application/octet-stream"
        payload = m.group("data")
    else:
        content_type = fallback_type or "application/octet-stream"
        payload = value or ""
    try:
        return content_type.lower(), base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("File data is not valid base64", code="INVALID_FILE") from exc


def safe_name(name: Optional[str], default: str) -> str:
    cleaned = _SAFE_NAME_RE.sub("_", (name or "").strip()).strip("._")
    return cleaned[:100] or default


def object_url(key: str) -> str:
    if S.uploads_public_base_url:
        return f"{S.uploads_public_base_url}/{quote(key)}"
    return f"https://{_bucket()}.s3.{S.aws_region}.amazonaws.com/{quote(key)}"


def store_file(application_id: str, category: str, index: int, upload: Dict[str, Any]) -> Dict[str, Any]:
    content_type, body = decode_data_url(upload.get("data") or "", upload.get("type"))
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise ValidationError(f"Unsupported file type for {category}: {content_type}", code="INVALID_FILE")
    if not body:
        raise ValidationError(f"Empty file for {category}", code="INVALID_FILE")
    if len(body) > S.upload_max_bytes:
        raise ValidationError(
            f"File for {category} exceeds {S.upload_max_bytes} bytes",
            code="FILE_TOO_LARGE",
        )

    name = safe_name(upload.get("name"), default=f"{category}-{index + 1}")
    key = f"applications/{application_id}/{category}/{index + 1}-{name}"
    try:
        s3.put_object(
            Bucket=_bucket(),
            Key=key,
            Body=body,
            ContentType=content_type,
            Metadata={"application_id": application_id, "category": category},
        )
    except (ClientError, BotoCoreError) as exc:
        raise ProviderError(f"Failed to store {category} upload", code="UPLOAD_FAILED") from exc

    return {
        "name": upload.get("name") or name,
        "path": key,
        "url": object_url(key),
        "size": len(body),
        "type": content_type,
    }


def store_application_files(application_id: str, file_data: Dict[str, List[Dict[str, Any]]]) -> Dict[str, List[Dict[str, Any]]]:
    """Upload every document and return ``{category: [file ref, ...]}``.

    Any failure aborts the whole request; the application row is only written
    after all uploads succeeded.
    """
    refs: Dict[str, List[Dict[str, Any]]] = {}
    for category in DOCUMENT_CATEGORIES:
        uploads = file_data.get(category) or []
        if not uploads:
            continue
        refs[category] = [store_file(application_id, category, i, up) for i, up in enumerate(uploads)]
        logger.info("stored %d %s file(s) for %s", len(uploads), category, application_id)
    unknown = set(file_data) - set(DOCUMENT_CATEGORIES)
    if unknown:
        logger.warning("ignoring unknown upload categories %s for %s", sorted(unknown), application_id)
    return refs
