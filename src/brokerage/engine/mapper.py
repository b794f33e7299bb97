"""Contract aggregate mapper.

Builds the in-memory Contract consumed by every view from the raw contract
payload and the document service result. Never raises on malformed input.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from brokerage.engine.history import normalize_history
from brokerage.engine.identity import clean_text
from brokerage.engine.payments import normalize_payments
from brokerage.engine.reconcile import merge_documents
from brokerage.engine.validation import as_number
from brokerage.labels import Labels
from brokerage.models import AssignedUser, Contract, Currency, Participant

logger = logging.getLogger(__name__)

_USER_TEXT = ("id", "email", "username", "firstName", "lastName", "role")
_CONTRACT_TEXT = ("id", "code", "operation", "status", "description", "userId")
_CONTRACT_NUMBERS = ("ufValue", "commissionPercent", "commissionAmount")
_MAPPED = set(_CONTRACT_TEXT) | set(_CONTRACT_NUMBERS) | {
    "amount", "currency", "property", "user", "payments", "documents", "people",
    "changeHistory", "createdAt", "updatedAt",
} | set(Contract.model_fields)


def agent_display_name(user: Mapping[str, Any], labels: Labels | None = None) -> str:
    """'First Last (Admin)' or 'First Last (Agent)' for an assigned user."""
    labels = labels or Labels()
    info = user.get("personalInfo") if isinstance(user.get("personalInfo"), Mapping) else {}
    first = clean_text(info.get("firstName")) or clean_text(user.get("firstName")) or ""
    last = clean_text(info.get("lastName")) or clean_text(user.get("lastName")) or ""
    name = f"{first} {last}".strip()
    return f"{name} ({labels.user_role(clean_text(user.get('role')))})".strip()


def map_user(raw: Any, labels: Labels | None = None) -> AssignedUser | None:
    if not isinstance(raw, Mapping):
        return None
    info = raw.get("personalInfo")
    values = {key: clean_text(raw.get(key)) for key in _USER_TEXT}
    return AssignedUser(
        **{k: v for k, v in values.items() if v is not None},
        personal_info=dict(info) if isinstance(info, Mapping) else None,
        display_name=agent_display_name(raw, labels),
    )


def map_participants(raw: Any) -> list[Participant]:
    if not isinstance(raw, (list, tuple)):
        return []
    people = []
    for item in raw:
        if not isinstance(item, Mapping):
            continue
        person = item.get("person")
        people.append(Participant(
            person_id=clean_text(item.get("personId")),
            role=clean_text(item.get("role")) or "",
            person=dict(person) if isinstance(person, Mapping) else None,
        ))
    return people


def map_contract(
    raw_contract: Any,
    document_service_result: Any = None,
    fallback_documents: Any = None,
    *,
    enrich_embedded: bool = False,
    labels: Labels | None = None,
) -> Contract | None:
    """Compose the contract aggregate; None when there is no contract."""
    if not isinstance(raw_contract, Mapping):
        return None

    code = clean_text(raw_contract.get("code"))
    documents = merge_documents(
        raw_contract.get("documents"),
        document_service_result,
        fallback_documents,
        contract_code=code,
        enrich_embedded=enrich_embedded,
    )
    currency = clean_text(raw_contract.get("currency")) or Currency.CLP.value
    prop = raw_contract.get("property")

    fields: dict[str, Any] = {
        "id": clean_text(raw_contract.get("id")),
        "code": code,
        "operation": clean_text(raw_contract.get("operation")),
        "status": clean_text(raw_contract.get("status")),
        "description": clean_text(raw_contract.get("description")),
        "user_id": clean_text(raw_contract.get("userId")),
        "amount": raw_contract.get("amount"),
        "currency": currency,
        "uf_value": as_number(raw_contract.get("ufValue")),
        "commission_percent": as_number(raw_contract.get("commissionPercent")),
        "commission_amount": as_number(raw_contract.get("commissionAmount")),
        "property": dict(prop) if isinstance(prop, Mapping) else None,
        "user": map_user(raw_contract.get("user"), labels),
        "payments": normalize_payments(raw_contract.get("payments")),
        "documents": documents,
        "people": map_participants(raw_contract.get("people")),
        "change_history": normalize_history(raw_contract.get("changeHistory")),
        "created_at": raw_contract.get("createdAt"),
        "updated_at": raw_contract.get("updatedAt"),
    }
    extras = {k: v for k, v in raw_contract.items() if isinstance(k, str) and k not in _MAPPED}

    contract = Contract(**fields, **extras)
    logger.debug(
        "Mapped contract %s: %d payments, %d documents",
        contract.code or contract.id, len(contract.payments), len(contract.documents),
    )
    return contract
