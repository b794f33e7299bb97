"""Document identity resolution and file-presence helpers.

The contract's embedded list labels the real document identifier
``documentId`` while the document service calls it ``id``; neither is
guaranteed to be present.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from brokerage.models import ContractDocument, DocumentStatus

_ABSOLUTE_URL = re.compile(r"^https?://", re.IGNORECASE)

# Wire key -> model attribute for the fields read from either shape.
_ATTRS = {
    "id": "id",
    "documentId": "document_id",
    "documentTypeId": "document_type_id",
    "documentTypeName": "document_type_name",
    "documentType": "document_type",
    "multimediaId": "multimedia_id",
    "multimedia": "multimedia",
    "url": "url",
    "fileUrl": "file_url",
    "multimediaUrl": "multimedia_url",
    "title": "title",
    "status": "status",
    "uploaded": "uploaded",
}


def field_value(doc: Any, key: str) -> Any:
    """Read a wire field from a raw mapping or a ContractDocument."""
    if doc is None:
        return None
    if isinstance(doc, Mapping):
        return doc.get(key)
    return getattr(doc, _ATTRS.get(key, key), None)


def clean_text(value: Any) -> str | None:
    """Trimmed string, or None for non-strings and blanks."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def normalize_key(value: Any) -> str | None:
    """Case-insensitive lookup key for an identifier."""
    text = clean_text(value)
    return text.lower() if text else None


def resolve_document_id(doc: Any) -> str | None:
    """Best available identifier: documentId first, then id, else None."""
    return clean_text(field_value(doc, "documentId")) or clean_text(field_value(doc, "id"))


# ---------------------------------------------------------------------------
# Key extractors (used by the reconciler to build and probe indexes)
# ---------------------------------------------------------------------------

KeyExtractor = Callable[[Any], "str | None"]


def by_id(doc: Any) -> str | None:
    return normalize_key(field_value(doc, "id"))


def by_document_id(doc: Any) -> str | None:
    return normalize_key(field_value(doc, "documentId"))


def by_document_type(doc: Any) -> str | None:
    return normalize_key(field_value(doc, "documentTypeId"))


def multimedia_id(doc: Any) -> str | None:
    return clean_text(field_value(doc, "multimediaId"))


# ---------------------------------------------------------------------------
# File presence
# ---------------------------------------------------------------------------

def _multimedia_field(doc: Any, key: str) -> str | None:
    ref = field_value(doc, "multimedia")
    if isinstance(ref, Mapping):
        return clean_text(ref.get(key))
    return clean_text(getattr(ref, key, None))


def file_url(doc: Any) -> str | None:
    """The first file URL carried by the document, unresolved."""
    for key in ("url", "fileUrl", "multimediaUrl"):
        value = clean_text(field_value(doc, key))
        if value:
            return value
    return _multimedia_field(doc, "url")


def has_file(doc: Any) -> bool:
    """A document has a file iff it carries a file id or a file URL."""
    return bool(multimedia_id(doc) or _multimedia_field(doc, "id") or file_url(doc))


def resolve_document_url(doc: Any, base_url: str) -> str | None:
    """Absolute URL of the attached file; relative paths hang off base_url."""
    candidate = file_url(doc)
    if not candidate:
        return None
    if _ABSOLUTE_URL.match(candidate):
        return candidate
    path = candidate if candidate.startswith("/") else f"/{candidate}"
    return f"{base_url.rstrip('/')}{path}"


def _type_name(doc: Any) -> str | None:
    name = clean_text(field_value(doc, "documentTypeName"))
    if name:
        return name
    doc_type = field_value(doc, "documentType")
    if isinstance(doc_type, Mapping):
        return clean_text(doc_type.get("name"))
    return None


def document_type_name(doc: Any) -> str:
    return _type_name(doc) or "Associated document"


def document_title(doc: Any, index: int = 0) -> str:
    return clean_text(field_value(doc, "title")) or _type_name(doc) or f"Document {index + 1}"


def status_badge(doc: ContractDocument | Mapping | None) -> str:
    """Status shown for a document: a known explicit status wins."""
    status = field_value(doc, "status")
    if status in {s.value for s in DocumentStatus}:
        return status
    if field_value(doc, "uploaded"):
        return DocumentStatus.UPLOADED.value
    return DocumentStatus.PENDING.value
