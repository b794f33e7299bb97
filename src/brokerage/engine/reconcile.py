"""Document reconciliation engine.

Merges a contract's embedded document requirements with the document
service's records into one deduplicated list. Matching is driven by a
declarative list of indexes and match rules; merging by a per-entity field
policy. Nothing here raises on malformed input: non-list inputs are empty,
non-mapping records are skipped.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from brokerage.engine.identity import (
    KeyExtractor,
    by_document_id,
    by_document_type,
    by_id,
    clean_text,
    has_file,
    multimedia_id,
)
from brokerage.models import ContractDocument, DocumentStatus, FileReference

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Generic ranked-key reconciliation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Index:
    """A lookup over incoming records. ``many`` keeps every record per key,
    otherwise the last record with a key wins."""

    name: str
    key: KeyExtractor
    many: bool = False


@dataclass(frozen=True)
class MatchRule:
    """Probe ``index`` with the key ``probe`` extracts from a base record."""

    name: str
    probe: KeyExtractor
    index: str


def build_indexes(records: Sequence[T], indexes: Iterable[Index]) -> dict[str, dict[str, list[int]]]:
    built: dict[str, dict[str, list[int]]] = {}
    for index in indexes:
        table: dict[str, list[int]] = {}
        for pos, record in enumerate(records):
            key = index.key(record)
            if not key:
                continue
            if index.many:
                table.setdefault(key, []).append(pos)
            else:
                table[key] = [pos]
        built[index.name] = table
    return built


def reconcile(
    base: Sequence[T],
    incoming: Sequence[T],
    *,
    indexes: Sequence[Index],
    rules: Sequence[MatchRule],
    merge: Callable[[T, T], T],
) -> tuple[list[T], list[T]]:
    """Enrich each base record with its best incoming match.

    Rules are tried in order; the first rule yielding an unused candidate
    wins. An incoming record is consumed by at most one base record.
    Returns (merged base records, incoming records never matched).
    """
    tables = build_indexes(incoming, indexes)
    used: set[int] = set()
    merged: list[T] = []

    for record in base:
        match: int | None = None
        for rule in rules:
            key = rule.probe(record)
            if not key:
                continue
            candidates = tables.get(rule.index, {}).get(key, [])
            match = next((pos for pos in candidates if pos not in used), None)
            if match is not None:
                logger.debug("Matched base record via %s (%s)", rule.name, key)
                break

        if match is None:
            merged.append(record)
            continue
        used.add(match)
        merged.append(merge(record, incoming[match]))

    leftovers = [record for pos, record in enumerate(incoming) if pos not in used]
    return merged, leftovers


def dedupe(
    records: Iterable[T],
    identity_keys: Callable[[T], list[str]],
    prefer: Callable[[T, T], bool] | None = None,
) -> list[T]:
    """Keep the first record per identity; a record sharing any key is a duplicate.

    Records without keys get a synthetic one so they are never merged with
    each other. ``prefer(new, kept)`` may swap a duplicate in for the record
    already kept, in the kept record's position, when the duplicate collides
    with that record alone.
    """
    result: list[T] = []
    seen: dict[str, int] = {}
    synthetic = 0

    for record in records:
        if record is None:
            continue
        keys = identity_keys(record)
        if not keys:
            keys = [f"fallback:{synthetic}"]
            synthetic += 1

        hits = {seen[k] for k in keys if k in seen}
        if not hits:
            for k in keys:
                seen[k] = len(result)
            result.append(record)
            continue

        # swap only when every shared key belongs to one kept record
        if prefer is not None and len(hits) == 1:
            hit = hits.pop()
            if prefer(record, result[hit]):
                result[hit] = record
                for k in keys:
                    seen.setdefault(k, hit)
                continue
        logger.debug("Dropped duplicate record %s", keys)

    return result


# ---------------------------------------------------------------------------
# Document normalization
# ---------------------------------------------------------------------------

_TEXT_FIELDS = (
    "id", "document_id", "document_type_id", "document_type_name", "person_id",
    "person_name", "person_dni", "title", "notes", "status", "multimedia_id",
    "url", "file_url", "multimedia_url", "uploaded_by_name", "contract_code",
    "payment_id",
)
_NESTED_FIELDS = ("document_type", "person")
_PASSTHROUGH_FIELDS = ("created_at", "updated_at")

_FIELD_NAMES = set(ContractDocument.model_fields)
_KNOWN_KEYS = _FIELD_NAMES | {to_camel(name) for name in _FIELD_NAMES}


def coerce_required(value: Any) -> bool | None:
    """Strict boolean from a bool, 'true'/'false' string, or 1/0 number."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
        return None
    if isinstance(value, (int, float)):
        return value == 1
    return None


def _nested(value: Any) -> dict[str, Any] | None:
    return dict(value) if isinstance(value, Mapping) else None


def _nested_text(value: Any, key: str) -> str | None:
    return clean_text(value.get(key)) if isinstance(value, Mapping) else None


def _file_reference(value: Any) -> FileReference | None:
    if isinstance(value, FileReference):
        return value
    if not isinstance(value, Mapping):
        return None
    extras = {k: v for k, v in value.items() if isinstance(k, str) and k not in ("id", "url", "filename")}
    return FileReference(
        id=clean_text(value.get("id")),
        url=clean_text(value.get("url")),
        filename=clean_text(value.get("filename")),
        **extras,
    )


def _raw_mapping(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, BaseModel):
        return raw.model_dump(by_alias=True, exclude_none=True)
    if isinstance(raw, Mapping):
        return dict(raw)
    return None


def apply_file_state(doc: dict[str, Any]) -> dict[str, Any]:
    """Reconcile status and ``uploaded`` toward file presence.

    A file implies at least UPLOADED; an explicit RECIBIDO or REJECTED
    status is kept even with a file attached.
    """
    if has_file(doc):
        doc["uploaded"] = True
        if doc.get("status") in (None, DocumentStatus.PENDING.value):
            doc["status"] = DocumentStatus.UPLOADED.value
        return doc

    if doc.get("status") is None:
        doc["status"] = DocumentStatus.UPLOADED.value if doc.get("uploaded") else DocumentStatus.PENDING.value
    if doc.get("uploaded") is None:
        doc["uploaded"] = doc["status"] != DocumentStatus.PENDING.value
    return doc


def _to_field_names(data: dict[str, Any]) -> dict[str, Any]:
    """Camel wire keys -> model field names, dropping None values."""
    out: dict[str, Any] = {}
    for name in _FIELD_NAMES:
        camel = to_camel(name)
        value = data.get(camel, data.get(name))
        if value is not None:
            out[name] = value
    return out


def normalize_document(raw: Any, contract_code: str | None = None) -> ContractDocument | None:
    """Canonical ContractDocument from a raw record of either source.

    Returns None for records that are not mappings.
    """
    data = _raw_mapping(raw)
    if data is None:
        return None

    fields = _to_field_names(data)
    clean: dict[str, Any] = {name: clean_text(fields.get(name)) for name in _TEXT_FIELDS}
    for name in _NESTED_FIELDS:
        clean[name] = _nested(fields.get(name))
    for name in _PASSTHROUGH_FIELDS:
        clean[name] = fields.get(name)
    clean["multimedia"] = _file_reference(fields.get("multimedia"))

    required = coerce_required(data.get("required"))
    if required is None and isinstance(data.get("isRequired"), bool):
        required = data["isRequired"]
    clean["required"] = bool(required)
    clean["uploaded"] = data["uploaded"] if isinstance(data.get("uploaded"), bool) else None

    doc_type = clean["document_type"]
    clean["document_type_name"] = clean["document_type_name"] or _nested_text(doc_type, "name")
    clean["document_type_id"] = clean["document_type_id"] or _nested_text(doc_type, "id")
    person = clean["person"]
    clean["person_name"] = clean["person_name"] or _nested_text(person, "name")
    clean["person_dni"] = clean["person_dni"] or _nested_text(person, "dni")
    uploaded_by = data.get("uploadedBy")
    clean["uploaded_by_name"] = (
        clean["uploaded_by_name"]
        or _nested_text(uploaded_by, "name")
        or _nested_text(uploaded_by, "email")
    )
    clean["contract_code"] = (
        clean["contract_code"] or _nested_text(data.get("contract"), "code") or contract_code
    )
    if clean["updated_at"] is None:
        clean["updated_at"] = clean["created_at"]

    status_supplied = clean["status"] is not None and not (
        isinstance(raw, ContractDocument) and raw._status_defaulted
    )
    wire = {to_camel(k): v for k, v in clean.items() if v is not None}
    wire["required"] = clean["required"]
    apply_file_state(wire)
    clean["status"] = wire["status"]
    clean["uploaded"] = wire["uploaded"]

    extras = {k: v for k, v in data.items() if isinstance(k, str) and k not in _KNOWN_KEYS}
    doc = ContractDocument(**{k: v for k, v in clean.items() if v is not None}, **extras)
    doc._status_defaulted = not status_supplied
    return doc


def normalize_documents(raw: Any, contract_code: str | None = None) -> list[ContractDocument]:
    if not isinstance(raw, (list, tuple)):
        return []
    docs = (normalize_document(item, contract_code) for item in raw)
    return [doc for doc in docs if doc is not None]


# ---------------------------------------------------------------------------
# Document merge policy
# ---------------------------------------------------------------------------

DOCUMENT_INDEXES = (
    Index("id", by_id),
    Index("documentId", by_document_id),
    Index("documentType", by_document_type, many=True),
)

DOCUMENT_RULES = (
    MatchRule("documentId in service ids", by_document_id, "id"),
    MatchRule("id in service ids", by_id, "id"),
    MatchRule("first unused of same type", by_document_type, "documentType"),
    MatchRule("documentId in service documentIds", by_document_id, "documentId"),
)

# Fields where the service record wins when it has a value.
_SERVICE_WINS = (
    "title", "person_id", "person_name", "person", "document_type_id",
    "document_type_name", "document_type", "multimedia_id", "multimedia",
    "uploaded_by_name",
)
# Fields where the base record keeps its value and the service only fills gaps.
_FILL_GAPS = ("url", "file_url", "multimedia_url")


def merge_document(base: ContractDocument, candidate: ContractDocument,
                   contract_code: str | None = None) -> ContractDocument:
    """Field-level merge of a base record with its matched service record."""
    updates: dict[str, Any] = {}

    service_id = candidate.document_id or candidate.id
    if service_id:
        updates["document_id"] = service_id
        if not base.id:
            updates["id"] = service_id

    for name in _SERVICE_WINS:
        value = getattr(candidate, name)
        if value is not None:
            updates[name] = value
    if candidate.status is not None and not candidate._status_defaulted:
        updates["status"] = candidate.status
    for name in _FILL_GAPS:
        if getattr(base, name) is None and getattr(candidate, name) is not None:
            updates[name] = getattr(candidate, name)

    updates["required"] = candidate.required
    updates["notes"] = candidate.notes if candidate.notes is not None else base.notes
    updates["contract_code"] = candidate.contract_code or base.contract_code or contract_code
    if candidate.updated_at is not None:
        updates["updated_at"] = candidate.updated_at

    merged = base.model_copy(update=updates)
    if candidate.model_extra:
        merged = merged.model_copy(update=candidate.model_extra)

    state = apply_file_state(_file_view(merged))
    merged = merged.model_copy(update={"status": state["status"], "uploaded": state["uploaded"]})
    merged._status_defaulted = base._status_defaulted and "status" not in updates
    return merged


def _file_view(doc: ContractDocument) -> dict[str, Any]:
    # uploaded is left out so it is derived again from file presence and status
    return {
        "status": doc.status,
        "multimediaId": doc.multimedia_id,
        "multimedia": doc.multimedia,
        "url": doc.url,
        "fileUrl": doc.file_url,
        "multimediaUrl": doc.multimedia_url,
    }


def document_identity_keys(doc: ContractDocument) -> list[str]:
    # keys keep their case, unlike the lowercased match indexes
    keys: list[str] = []
    if doc.id:
        keys.append(f"id:{doc.id}")
    if doc.document_id:
        keys.append(f"documentId:{doc.document_id}")
    file_id = multimedia_id(doc)
    if file_id:
        keys.append(f"multimedia:{file_id}")
    if not keys and doc.document_type_id:
        keys.append(f"type:{doc.document_type_id}")
    return keys


def _prefer_with_file(new: ContractDocument, kept: ContractDocument) -> bool:
    return has_file(new) and not has_file(kept)


def merge_documents(
    embedded: Any,
    service: Any,
    fallback: Any = None,
    *,
    contract_code: str | None = None,
    enrich_embedded: bool = False,
) -> list[ContractDocument]:
    """Reconcile embedded and service documents into one list.

    The embedded list is the base set when the service returned nothing, or
    always when ``enrich_embedded`` is set. Output order: merged base
    records, unmatched service records, then fallback records, deduplicated.
    """
    service_docs = normalize_documents(service, contract_code)
    use_embedded = enrich_embedded or not service_docs
    base_docs = normalize_documents(embedded, contract_code) if use_embedded else []
    fallback_docs = normalize_documents(fallback, contract_code)

    merged_base, leftovers = reconcile(
        base_docs,
        service_docs,
        indexes=DOCUMENT_INDEXES,
        rules=DOCUMENT_RULES,
        merge=lambda b, c: merge_document(b, c, contract_code),
    )
    combined = [*merged_base, *leftovers, *fallback_docs]
    result = dedupe(combined, document_identity_keys, prefer=_prefer_with_file)

    logger.debug(
        "Reconciled documents: %d base, %d service (%d unmatched), %d fallback -> %d",
        len(base_docs), len(service_docs), len(leftovers), len(fallback_docs), len(result),
    )
    return result
