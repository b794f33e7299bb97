"""Input validation for contract mutations.

Checks run before any backend call. A failed report means the mutation is
not attempted and its messages are surfaced to the operator as warnings.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from brokerage.models import Contract, Currency, PaymentType


@dataclass
class ValidationResult:
    check_id: str
    name: str
    passed: bool
    severity: str  # critical, warning
    details: str = ""


@dataclass
class ValidationReport:
    subject: str
    all_passed: bool = True
    results: list[ValidationResult] = field(default_factory=list)
    critical_failures: int = 0
    warnings: int = 0

    def add(self, result: ValidationResult) -> None:
        self.results.append(result)
        if not result.passed:
            self.all_passed = False
            if result.severity == "critical":
                self.critical_failures += 1
            else:
                self.warnings += 1

    @property
    def failures(self) -> list[ValidationResult]:
        return [r for r in self.results if not r.passed]

    @property
    def first_failure(self) -> str:
        failed = self.failures
        return failed[0].details if failed else ""


def as_number(value: Any) -> float | None:
    """Finite float from a number or numeric string, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def commission_amount(amount: Any, commission_percent: Any, currency: str | None,
                      uf_value: Any = None) -> int | None:
    """Commission in CLP, or None when it cannot be computed.

    UF amounts are converted with the contract's UF reference value.
    """
    amount_n = as_number(amount)
    percent = as_number(commission_percent)
    if amount_n is None or percent is None or percent < 0:
        return None

    base = amount_n
    if currency == Currency.UF.value:
        uf = as_number(uf_value)
        if not uf or uf <= 0:
            return None
        base = amount_n * uf

    if base <= 0:
        return None
    return round(base * (percent / 100))


def validate_financial_update(contract: Contract, amount: Any,
                              commission_percent: Any) -> ValidationReport:
    report = ValidationReport(subject=f"Financial update {contract.code or contract.id or ''}".strip())

    amount_n = as_number(amount)
    report.add(ValidationResult(
        check_id="FIN-001",
        name="Positive amount",
        passed=amount_n is not None and amount_n > 0,
        severity="critical",
        details="Enter a valid amount greater than 0",
    ))

    if contract.currency == Currency.UF.value:
        uf = as_number(contract.uf_value)
        report.add(ValidationResult(
            check_id="FIN-002",
            name="UF reference value",
            passed=uf is not None and uf > 0,
            severity="critical",
            details="The UF value must be recorded to recalculate the commission",
        ))

    percent = as_number(commission_percent)
    report.add(ValidationResult(
        check_id="FIN-003",
        name="Positive commission percent",
        passed=percent is not None and percent > 0,
        severity="critical",
        details="Enter a valid commission percent",
    ))
    return report


def validate_new_payment(amount: Any, date: Any, payment_type: Any,
                         allowed_types: list[str] | None = None) -> ValidationReport:
    report = ValidationReport(subject="New payment")

    amount_n = as_number(amount)
    report.add(ValidationResult(
        check_id="PAY-001",
        name="Positive amount",
        passed=amount_n is not None and amount_n > 0,
        severity="critical",
        details="The amount must be greater than 0",
    ))
    report.add(ValidationResult(
        check_id="PAY-002",
        name="Payment date",
        passed=bool(str(date).strip()) if date is not None else False,
        severity="critical",
        details="The payment date is required",
    ))

    known = {t.value for t in PaymentType}
    allowed = set(allowed_types) if allowed_types else known
    report.add(ValidationResult(
        check_id="PAY-003",
        name="Payment type",
        passed=payment_type in known and payment_type in allowed,
        severity="critical",
        details=f"Payment type {payment_type!r} is not available for this contract",
    ))
    return report


def validate_new_document(document_type_id: Any, title: Any) -> ValidationReport:
    report = ValidationReport(subject="New document")
    report.add(ValidationResult(
        check_id="DOC-001",
        name="Document type",
        passed=isinstance(document_type_id, str) and bool(document_type_id.strip()),
        severity="critical",
        details="Select a document type",
    ))
    report.add(ValidationResult(
        check_id="DOC-002",
        name="Title",
        passed=isinstance(title, str) and bool(title.strip()),
        severity="critical",
        details="The document title is required",
    ))
    return report
