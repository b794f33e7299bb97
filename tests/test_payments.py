from __future__ import annotations

from datetime import datetime, timedelta, timezone

from brokerage.engine.payments import (
    LOCAL_TOKEN_KEY,
    PaidAtTracker,
    derive_display_paid_at,
    normalize_payment,
    normalize_payments,
    payment_key,
    sanitize_for_persist,
)
from brokerage.models import Payment, PaymentIdentity


def test_draft_payment_gets_pending_status_and_local_token():
    payment = normalize_payment({"amount": 500000, "date": "2025-03-01", "type": "RENT_PAYMENT"})
    assert payment.status == "PENDING"
    assert payment.amount == 500000
    assert payment.id is None
    assert payment.is_draft
    assert payment.identity.local_token
    assert payment.identity.local_token.startswith("payment-RENT_PAYMENT-2025-03-01-0-")


def test_server_identity_is_stable_across_normalizations():
    raw = {"id": "pay-1", "amount": 10, "status": "PAID"}
    first = normalize_payment(raw)
    second = normalize_payment(raw)
    assert first.identity == second.identity
    assert first.identity.local_token == second.identity.local_token == "pay-1"
    assert not first.is_draft


def test_renormalizing_a_draft_keeps_its_token():
    draft = normalize_payment({"amount": 1, "date": "2025-01-01", "type": "OTHER"})
    again = normalize_payments([draft])[0]
    assert again.identity.local_token == draft.identity.local_token


def test_new_drafts_always_get_fresh_tokens():
    raw = {"amount": 1, "date": "2025-01-01", "type": "OTHER"}
    assert normalize_payment(raw).identity != normalize_payment(raw).identity


def test_existing_client_token_is_reused():
    payment = normalize_payment({"amount": 1, LOCAL_TOKEN_KEY: "payment-abc"})
    assert payment.identity.local_token == "payment-abc"


def test_identity_equality_uses_server_id_first():
    assert PaymentIdentity(server_id="p1", local_token="t1") == PaymentIdentity(server_id="p1", local_token="t2")
    assert PaymentIdentity(local_token="t1") != PaymentIdentity(local_token="t2")
    assert len({PaymentIdentity(server_id="p1", local_token="a"), PaymentIdentity(server_id="p1", local_token="b")}) == 1


def test_malformed_fields_pass_through():
    payment = normalize_payment({"amount": "not a number", "date": 20250301, "isAgencyRevenue": "yes"}, 3)
    assert payment.amount == "not a number"
    assert payment.date == 20250301
    assert payment.is_agency_revenue is None
    assert normalize_payment(None).status == "PENDING"


def test_non_list_ledger_is_empty():
    assert normalize_payments(None) == []
    assert normalize_payments({"id": "p"}) == []


def test_sanitize_strips_local_tokens():
    draft = normalize_payment({"amount": 5, "date": "2025-01-01", "type": "DEPOSIT", "isAgencyRevenue": True})
    payloads = sanitize_for_persist([draft, {"id": "p1", LOCAL_TOKEN_KEY: "tok", "status": "PAID", "paidAt": None}])
    assert payloads[0] == {
        "amount": 5, "date": "2025-01-01", "type": "DEPOSIT",
        "isAgencyRevenue": True, "status": "PENDING",
    }
    assert payloads[1] == {"id": "p1", "status": "PAID"}
    assert sanitize_for_persist("nope") == []


def test_sanitize_keeps_unknown_backend_fields():
    payment = normalize_payment({"id": "p1", "receiptUrl": "/r.pdf"})
    assert sanitize_for_persist([payment])[0]["receiptUrl"] == "/r.pdf"


def test_payment_key_forms():
    saved = normalize_payment({"id": "p1"})
    draft = normalize_payment({"amount": 1})
    assert payment_key(saved, 0) == "id:p1"
    assert payment_key(draft, 1) == f"client:{draft.identity.local_token}"
    assert payment_key({LOCAL_TOKEN_KEY: "tok"}, 2) == "client:tok"
    assert payment_key({"amount": 1}, 3) == "index:3"


# ---------------------------------------------------------------------------
# Optimistic paid-at
# ---------------------------------------------------------------------------

NOW = datetime(2025, 3, 5, 9, 0, tzinfo=timezone.utc)


def _snapshot(status, paid_at=None):
    payment = {"id": "p1", "amount": 100, "status": status}
    if paid_at:
        payment["paidAt"] = paid_at
    return [payment]


def test_paid_transition_is_stamped_then_cleared_on_cancel():
    tracker = PaidAtTracker(now=lambda: NOW)
    tracker.observe(_snapshot("PENDING"))
    tracker.observe(_snapshot("PENDING"))
    assert tracker.display_paid_at(_snapshot("PENDING")[0], 0) is None

    paid = _snapshot("PAID")
    tracker.observe(paid)
    assert tracker.display_paid_at(paid[0], 0) == NOW

    cancelled = _snapshot("CANCELLED")
    tracker.observe(cancelled)
    assert tracker.display_paid_at(cancelled[0], 0) is None


def test_stamp_is_kept_while_payment_stays_paid():
    clock = [NOW]
    tracker = PaidAtTracker(now=lambda: clock[0])
    tracker.observe(_snapshot("PENDING"))
    tracker.observe(_snapshot("PAID"))
    clock[0] = NOW + timedelta(hours=1)
    stamps = tracker.observe(_snapshot("PAID"))
    assert stamps == {"id:p1": NOW}


def test_server_paid_at_replaces_stamp():
    tracker = PaidAtTracker(now=lambda: NOW)
    tracker.observe(_snapshot("PENDING"))
    tracker.observe(_snapshot("PAID"))
    confirmed = _snapshot("PAID", paid_at="2025-03-04T18:00:00.000Z")
    assert tracker.observe(confirmed) == {}
    assert tracker.display_paid_at(confirmed[0], 0) == "2025-03-04T18:00:00.000Z"


def test_first_snapshot_already_paid_is_not_stamped():
    tracker = PaidAtTracker(now=lambda: NOW)
    assert tracker.observe(_snapshot("PAID")) == {}


def test_payment_leaving_the_list_drops_its_stamp():
    statuses, stamps = derive_display_paid_at({}, {}, _snapshot("PENDING"), lambda: NOW)
    statuses, stamps = derive_display_paid_at(statuses, stamps, _snapshot("PAID"), lambda: NOW)
    assert stamps == {"id:p1": NOW}
    statuses, stamps = derive_display_paid_at(statuses, stamps, [], lambda: NOW)
    assert stamps == {}
    assert statuses == {}


def test_draft_payments_are_tracked_by_local_token():
    draft = normalize_payment({"amount": 1, "date": "2025-01-01", "type": "OTHER"})
    tracker = PaidAtTracker(now=lambda: NOW)
    tracker.observe([draft])
    paid = draft.model_copy(update={"status": "PAID"})
    tracker.observe([paid])
    assert tracker.display_paid_at(paid, 0) == NOW
    tracker.reset()
    assert tracker.display_paid_at(paid, 0) is None


def test_non_list_snapshot_resets_state():
    assert derive_display_paid_at({"id:p1": "PENDING"}, {"id:p1": NOW}, None) == ({}, {})


def test_payment_model_is_accepted_by_tracker():
    payment = Payment(id="p1", status="PENDING", identity=PaymentIdentity(server_id="p1", local_token="p1"))
    statuses, _ = derive_display_paid_at({}, {}, [payment])
    assert statuses == {"id:p1": "PENDING"}
