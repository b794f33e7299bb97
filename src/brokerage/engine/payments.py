"""Payment ledger normalization and optimistic paid-at tracking.

Payments that have not been persisted yet carry no server id, so each one
gets a local identity token for addressing it in lists and status updates.
The token is stripped before a payment list is sent back to the backend.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from pydantic.alias_generators import to_camel

from brokerage.engine.identity import clean_text
from brokerage.models import Payment, PaymentIdentity, PaymentStatus

logger = logging.getLogger(__name__)

# Client-side key under which a local token travels inside raw payment dicts.
LOCAL_TOKEN_KEY = "__clientId"

_FIELD_NAMES = set(Payment.model_fields) - {"identity"}
_KNOWN_KEYS = _FIELD_NAMES | {to_camel(name) for name in _FIELD_NAMES} | {LOCAL_TOKEN_KEY, "identity"}


def new_local_token(seed: str) -> str:
    return f"payment-{seed}-{uuid.uuid4().hex[:12]}"


def _identity_for(raw: Mapping[str, Any], index: int) -> PaymentIdentity:
    server_id = clean_text(raw.get("id"))
    if server_id:
        return PaymentIdentity(server_id=server_id, local_token=server_id)

    existing = raw.get("identity")
    if isinstance(existing, PaymentIdentity):
        return existing
    token = clean_text(raw.get(LOCAL_TOKEN_KEY))
    if token:
        return PaymentIdentity(local_token=token)

    seed = f"{raw.get('type') or 'payment'}-{raw.get('date') or index}-{index}"
    token = new_local_token(seed)
    logger.debug("Assigned local token %s to draft payment #%d", token, index)
    return PaymentIdentity(local_token=token)


def normalize_payment(raw: Any, index: int = 0) -> Payment:
    """Canonical Payment from a raw record; never raises."""
    if isinstance(raw, Payment):
        data: dict[str, Any] = raw.model_dump(by_alias=True)
        data["identity"] = raw.identity
    elif isinstance(raw, BaseModel):
        data = raw.model_dump(by_alias=True)
    elif isinstance(raw, Mapping):
        data = dict(raw)
    else:
        data = {}

    identity = _identity_for(data, index)
    status = clean_text(data.get("status")) or PaymentStatus.PENDING.value
    agency = data.get("isAgencyRevenue", data.get("is_agency_revenue"))
    description = data.get("description")

    extras = {k: v for k, v in data.items() if isinstance(k, str) and k not in _KNOWN_KEYS}
    return Payment(
        id=identity.server_id,
        amount=data.get("amount"),
        date=data.get("date"),
        type=clean_text(data.get("type")),
        description=description if isinstance(description, str) else None,
        is_agency_revenue=agency if isinstance(agency, bool) else None,
        status=status,
        paid_at=data.get("paidAt", data.get("paid_at")),
        identity=identity,
        **extras,
    )


def normalize_payments(raw_payments: Any) -> list[Payment]:
    """Normalize a payment list. Non-lists become an empty ledger."""
    if not isinstance(raw_payments, (list, tuple)):
        return []
    return [normalize_payment(raw, index) for index, raw in enumerate(raw_payments)]


def sanitize_for_persist(payments: Any) -> list[dict[str, Any]]:
    """Wire payloads for a payment list, without local identity tokens."""
    if not isinstance(payments, (list, tuple)):
        return []
    payloads = []
    for payment in payments:
        if isinstance(payment, Payment):
            payload = payment.model_dump(by_alias=True, exclude_none=True)
        elif isinstance(payment, Mapping):
            payload = {k: v for k, v in payment.items() if v is not None}
        else:
            continue
        payload.pop(LOCAL_TOKEN_KEY, None)
        payload.pop("identity", None)
        payloads.append(payload)
    return payloads


def payment_key(payment: Any, index: int) -> str:
    """Key used to address a payment in views: server id, local token, or position."""
    if isinstance(payment, Payment):
        if payment.identity.server_id:
            return f"id:{payment.identity.server_id}"
        return f"client:{payment.identity.local_token}"
    if isinstance(payment, Mapping):
        server_id = clean_text(payment.get("id"))
        if server_id:
            return f"id:{server_id}"
        token = clean_text(payment.get(LOCAL_TOKEN_KEY))
        if token:
            return f"client:{token}"
    return f"index:{index}"


# ---------------------------------------------------------------------------
# Optimistic paid-at
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def derive_display_paid_at(
    previous_statuses: Mapping[str, str],
    stamps: Mapping[str, datetime],
    payments: Any,
    now: Callable[[], datetime] = _utcnow,
) -> tuple[dict[str, str], dict[str, datetime]]:
    """One step of the paid-at state machine.

    Given the statuses seen in the previous snapshot and the current
    optimistic stamps, returns the statuses of this snapshot and the new
    stamps. A payment is stamped the first time it is observed moving from a
    non-PAID status to PAID without a server ``paidAt``; the stamp is
    discarded once the server supplies one, when the payment leaves PAID, or
    when it disappears from the list.
    """
    if not isinstance(payments, (list, tuple)):
        return {}, {}

    next_statuses: dict[str, str] = {}
    next_stamps = dict(stamps)
    visible: set[str] = set()

    for index, payment in enumerate(payments):
        key = payment_key(payment, index)
        visible.add(key)

        if isinstance(payment, Payment):
            status, server_paid_at = payment.status, payment.paid_at
        elif isinstance(payment, Mapping):
            status, server_paid_at = payment.get("status"), payment.get("paidAt")
        else:
            status, server_paid_at = None, None

        if status:
            next_statuses[key] = status
        previous = previous_statuses.get(key)

        if status == PaymentStatus.PAID.value:
            if server_paid_at:
                next_stamps.pop(key, None)
            elif previous and previous != PaymentStatus.PAID.value and key not in next_stamps:
                next_stamps[key] = now()
        else:
            next_stamps.pop(key, None)

    for key in list(next_stamps):
        if key not in visible:
            del next_stamps[key]

    return next_statuses, next_stamps


@dataclass
class PaidAtTracker:
    """Holds the paid-at state machine across snapshots of one contract view.

    Snapshots must be fed in the order they were observed.
    """

    now: Callable[[], datetime] = _utcnow
    previous_statuses: dict[str, str] = field(default_factory=dict)
    stamps: dict[str, datetime] = field(default_factory=dict)

    def observe(self, payments: Any) -> dict[str, datetime]:
        self.previous_statuses, self.stamps = derive_display_paid_at(
            self.previous_statuses, self.stamps, payments, self.now,
        )
        return dict(self.stamps)

    def reset(self) -> None:
        self.previous_statuses = {}
        self.stamps = {}

    def display_paid_at(self, payment: Any, index: int) -> Any:
        """Server paidAt when known, otherwise the optimistic stamp (or None)."""
        if isinstance(payment, Payment) and payment.paid_at:
            return payment.paid_at
        if isinstance(payment, Mapping) and payment.get("paidAt"):
            return payment["paidAt"]
        return self.stamps.get(payment_key(payment, index))
