"""Core data models for contracts, payments, documents, and change history."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ContractStatus(str, Enum):
    IN_PROCESS = "IN_PROCESS"
    ON_HOLD = "ON_HOLD"  # displayed as IN_PROCESS
    CLOSED = "CLOSED"
    FAILED = "FAILED"


class ContractOperation(str, Enum):
    COMPRAVENTA = "COMPRAVENTA"  # sale
    ARRIENDO = "ARRIENDO"        # rent


class Currency(str, Enum):
    CLP = "CLP"
    UF = "UF"


class ContractRole(str, Enum):
    SELLER = "SELLER"
    BUYER = "BUYER"
    LANDLORD = "LANDLORD"
    TENANT = "TENANT"
    NOTARY = "NOTARY"
    REGISTRAR = "REGISTRAR"
    WITNESS = "WITNESS"
    GUARANTOR = "GUARANTOR"
    REPRESENTATIVE = "REPRESENTATIVE"
    PROMISSOR = "PROMISSOR"
    THIRD_PARTY = "THIRD_PARTY"
    AGENT = "AGENT"


class PaymentType(str, Enum):
    COMMISSION_INCOME = "COMMISSION_INCOME"
    RENT_PAYMENT = "RENT_PAYMENT"
    SALE_DOWN_PAYMENT = "SALE_DOWN_PAYMENT"
    SALE_INSTALLMENT = "SALE_INSTALLMENT"
    SALE_FINAL_PAYMENT = "SALE_FINAL_PAYMENT"
    DEPOSIT = "DEPOSIT"
    MAINTENANCE_FEE = "MAINTENANCE_FEE"
    UTILITIES = "UTILITIES"
    OTHER = "OTHER"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    PAID = "PAID"
    CANCELLED = "CANCELLED"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    UPLOADED = "UPLOADED"
    RECIBIDO = "RECIBIDO"  # received and checked by the office
    REJECTED = "REJECTED"


# Wire format is camelCase; unknown upstream keys are carried through.
_WIRE = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    extra="allow",
)


# ---------------------------------------------------------------------------
# Participants
# ---------------------------------------------------------------------------

class Participant(BaseModel):
    model_config = _WIRE

    person_id: str | None = None
    role: str = ""
    person: dict[str, Any] | None = None


class AssignedUser(BaseModel):
    """The agent or administrator responsible for a contract."""

    model_config = _WIRE

    id: str | None = None
    email: str | None = None
    username: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    role: str | None = None
    personal_info: dict[str, Any] | None = None
    display_name: str = ""


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

class PaymentIdentity(BaseModel):
    """Stable identity of a payment, assigned before the server knows it.

    Two identities are equal when their effective keys match: the server id
    when present, otherwise the local token. The local token never leaves
    the client.
    """

    model_config = ConfigDict(frozen=True)

    server_id: str | None = None
    local_token: str

    @property
    def key(self) -> str:
        return self.server_id or self.local_token

    @property
    def is_draft(self) -> bool:
        return not self.server_id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PaymentIdentity):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)


class Payment(BaseModel):
    model_config = _WIRE

    id: str | None = None
    # Amount and date are passed through untouched; formatting catches bad values.
    amount: Any = None
    date: Any = None
    type: str | None = None
    description: str | None = None
    is_agency_revenue: bool | None = None
    status: str = PaymentStatus.PENDING.value
    paid_at: Any = None

    identity: PaymentIdentity = Field(exclude=True)

    @property
    def is_draft(self) -> bool:
        return self.identity.is_draft


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

class FileReference(BaseModel):
    model_config = _WIRE

    id: str | None = None
    url: str | None = None
    filename: str | None = None


class ContractDocument(BaseModel):
    """A document requirement attached to a contract, with or without a file."""

    model_config = _WIRE

    id: str | None = None
    document_id: str | None = None

    document_type_id: str | None = None
    document_type_name: str | None = None
    document_type: dict[str, Any] | None = None

    person_id: str | None = None
    person_name: str | None = None
    person_dni: str | None = None
    person: dict[str, Any] | None = None

    title: str | None = None
    notes: str | None = None
    required: bool = False
    status: str | None = None
    uploaded: bool | None = None

    multimedia_id: str | None = None
    multimedia: FileReference | None = None
    url: str | None = None
    file_url: str | None = None
    multimedia_url: str | None = None

    uploaded_by_name: str | None = None
    contract_code: str | None = None
    payment_id: str | None = None

    created_at: Any = None
    updated_at: Any = None

    # True when status was filled in by normalization rather than sent by a source
    _status_defaulted: bool = PrivateAttr(default=False)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Change history
# ---------------------------------------------------------------------------

class FieldChange(BaseModel):
    model_config = _WIRE

    field: str = ""
    previous_value: Any = None
    new_value: Any = None


class ChangeHistoryEntry(BaseModel):
    """Append-only audit record; entries are never edited once received."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True,
                              extra="allow", frozen=True)

    id: str | None = None
    timestamp: str | None = None
    user_id: str | None = None
    action: str = ""
    changes: tuple[FieldChange, ...] = ()
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Contract (the aggregate)
# ---------------------------------------------------------------------------

class Contract(BaseModel):
    model_config = _WIRE

    id: str | None = None
    code: str | None = None
    operation: str | None = None
    status: str | None = None

    amount: Any = None
    currency: str = Currency.CLP.value
    uf_value: float | None = None
    commission_percent: float | None = None
    commission_amount: float | None = None

    description: str | None = None
    property_info: dict[str, Any] | None = Field(default=None, alias="property")
    user_id: str | None = None
    user: AssignedUser | None = None

    payments: list[Payment] = Field(default_factory=list)
    documents: list[ContractDocument] = Field(default_factory=list)
    people: list[Participant] = Field(default_factory=list)
    change_history: list[ChangeHistoryEntry] = Field(default_factory=list)

    created_at: Any = None
    updated_at: Any = None


# ---------------------------------------------------------------------------
# Notification
# ---------------------------------------------------------------------------

class NotificationLevel(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class Notification(BaseModel):
    message: str
    level: NotificationLevel = NotificationLevel.INFO
    title: str = ""
    contract_id: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
