"""Contract status guard: terminal-state lock and transition checks.

A contract that reached CLOSED or FAILED is locked: no payments, payment
statuses, documents, required flags, financial amounts or status changes may
be written, except re-confirming the same terminal status. Every function
here is a pure decision over already-fetched state.
"""

from __future__ import annotations

from enum import Enum

from brokerage.models import ContractStatus

TERMINAL_STATUSES = frozenset({ContractStatus.CLOSED.value, ContractStatus.FAILED.value})

# Statuses an operator may request. ON_HOLD only exists as a display alias.
SELECTABLE_STATUSES = frozenset({
    ContractStatus.IN_PROCESS.value,
    ContractStatus.CLOSED.value,
    ContractStatus.FAILED.value,
})


class Mutation(str, Enum):
    ADD_PAYMENT = "add_payment"
    UPDATE_PAYMENT = "update_payment"
    ADD_DOCUMENT = "add_document"
    DELETE_DOCUMENT = "delete_document"
    EDIT_DOCUMENT = "edit_document"
    TOGGLE_REQUIRED = "toggle_required"
    EDIT_FINANCIALS = "edit_financials"
    CHANGE_STATUS = "change_status"


_LOCKED_MESSAGES = {
    Mutation.ADD_PAYMENT: "New payments cannot be added to a closed or failed contract",
    Mutation.UPDATE_PAYMENT: "Payments of a closed or failed contract cannot be modified",
    Mutation.ADD_DOCUMENT: "New documents cannot be registered on a closed or failed contract",
    Mutation.DELETE_DOCUMENT: "Documents cannot be deleted from a closed or failed contract",
    Mutation.EDIT_DOCUMENT: "Documents of a closed or failed contract cannot be modified",
    Mutation.TOGGLE_REQUIRED: "Document requirements of a closed or failed contract cannot be changed",
    Mutation.EDIT_FINANCIALS: "The amounts of a closed or failed contract cannot be modified",
    Mutation.CHANGE_STATUS: "The status of a closed or failed contract cannot be modified",
}


class StatusGuardError(RuntimeError):
    """Base class for rejected status decisions."""


class ContractLockedError(StatusGuardError):
    """Raised when a mutation is attempted on a terminal contract."""

    def __init__(self, status: str, mutation: Mutation, message: str = ""):
        super().__init__(message or _LOCKED_MESSAGES[mutation])
        self.status = status
        self.mutation = mutation


class InvalidStatusError(StatusGuardError):
    """Raised when the requested status is not one an operator may select."""

    def __init__(self, requested: object):
        super().__init__("The selected status is not valid")
        self.requested = requested


def normalize_status(status: object) -> str:
    """Trim and uppercase a status; anything that is not a string becomes ''."""
    if not isinstance(status, str):
        return ""
    return status.strip().upper()


def display_status(status: object) -> str:
    """Status key used for display: ON_HOLD is shown as IN_PROCESS."""
    key = normalize_status(status)
    if key == ContractStatus.ON_HOLD.value:
        return ContractStatus.IN_PROCESS.value
    return key


def is_terminal(status: object) -> bool:
    key = normalize_status(status)
    if not key or key == ContractStatus.ON_HOLD.value:
        return False
    return key in TERMINAL_STATUSES


def check_transition(current: object, requested: object) -> str:
    """Validate a status change and return the normalized target status.

    Raises InvalidStatusError for unknown targets and ContractLockedError when
    a terminal contract is asked to move anywhere but its own status.
    """
    target = normalize_status(requested)
    if target not in SELECTABLE_STATUSES:
        raise InvalidStatusError(requested)
    if is_terminal(current) and normalize_status(current) != target:
        raise ContractLockedError(normalize_status(current), Mutation.CHANGE_STATUS)
    return target


def can_transition(current: object, requested: object) -> bool:
    try:
        check_transition(current, requested)
    except StatusGuardError:
        return False
    return True


def ensure_mutable(status: object, mutation: Mutation) -> None:
    """Raise ContractLockedError if the contract may not be mutated."""
    if is_terminal(status):
        raise ContractLockedError(normalize_status(status), mutation)


def can_mutate(status: object) -> bool:
    return not is_terminal(status)
