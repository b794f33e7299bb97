from __future__ import annotations

import pytest

from brokerage.engine.validation import (
    as_number,
    commission_amount,
    validate_financial_update,
    validate_new_document,
    validate_new_payment,
)
from brokerage.models import Contract


@pytest.mark.parametrize(
    "value, expected",
    [(5, 5.0), (2.5, 2.5), (" 1200 ", 1200.0), ("abc", None), (True, None),
     (None, None), ("nan", None), (float("inf"), None)],
)
def test_as_number(value, expected):
    assert as_number(value) == expected


def test_commission_in_clp():
    assert commission_amount(650000, 50, "CLP") == 325000
    assert commission_amount("100000", "2.5", "CLP") == 2500


def test_commission_in_uf_uses_reference_value():
    assert commission_amount(3000, 2, "UF", 37000) == 2220000
    assert commission_amount(3000, 2, "UF") is None
    assert commission_amount(3000, 2, "UF", 0) is None


@pytest.mark.parametrize("amount, percent", [(0, 2), (-10, 2), (100, -1), ("x", 2), (100, None)])
def test_commission_not_computable(amount, percent):
    assert commission_amount(amount, percent, "CLP") is None


def test_financial_update_checks():
    contract = Contract(id="c1", currency="CLP")
    assert validate_financial_update(contract, 1000, 2).all_passed

    report = validate_financial_update(contract, 0, 2)
    assert not report.all_passed
    assert report.critical_failures == 1
    assert report.first_failure == "Enter a valid amount greater than 0"

    report = validate_financial_update(contract, 1000, 0)
    assert [r.check_id for r in report.failures] == ["FIN-003"]


def test_uf_contract_requires_uf_value():
    report = validate_financial_update(Contract(id="c1", currency="UF"), 3000, 2)
    assert [r.check_id for r in report.failures] == ["FIN-002"]
    assert validate_financial_update(Contract(id="c1", currency="UF", uf_value=37000), 3000, 2).all_passed


def test_new_payment_checks():
    assert validate_new_payment(500000, "2025-03-01", "RENT_PAYMENT").all_passed

    report = validate_new_payment(0, " ", "BOGUS")
    assert [r.check_id for r in report.failures] == ["PAY-001", "PAY-002", "PAY-003"]


def test_payment_type_must_fit_the_operation():
    allowed = ["RENT_PAYMENT", "DEPOSIT", "OTHER"]
    assert validate_new_payment(1, "2025-03-01", "DEPOSIT", allowed).all_passed
    report = validate_new_payment(1, "2025-03-01", "SALE_FINAL_PAYMENT", allowed)
    assert "not available" in report.first_failure


def test_new_document_checks():
    assert validate_new_document("dt-1", "Deed").all_passed
    report = validate_new_document("", "  ")
    assert [r.check_id for r in report.failures] == ["DOC-001", "DOC-002"]
    assert report.first_failure == "Select a document type"
