"""Contract workspace: the operator's view of one contract.

Loads the aggregate, runs every mutation through the status guard and input
validation before calling the backend, refreshes the aggregate afterwards and
reports the outcome through a notification port.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from brokerage.config import Settings, get_settings
from brokerage.engine.history import ActorNameResolver, HistoryLine, describe_history
from brokerage.engine.identity import document_type_name, resolve_document_id
from brokerage.engine.mapper import map_contract, map_user
from brokerage.engine.payments import PaidAtTracker, normalize_payments, payment_key, sanitize_for_persist
from brokerage.engine.status_guard import (
    ContractLockedError,
    InvalidStatusError,
    Mutation,
    check_transition,
    ensure_mutable,
)
from brokerage.engine.validation import (
    ValidationReport,
    as_number,
    commission_amount,
    validate_financial_update,
    validate_new_document,
    validate_new_payment,
)
from brokerage.integrations.backend import BackendClient
from brokerage.integrations.notifications import NotificationPort
from brokerage.labels import Labels, load_label_tables
from brokerage.models import (
    AssignedUser,
    Contract,
    ContractDocument,
    Currency,
    DocumentStatus,
    Notification,
    NotificationLevel,
    Payment,
    PaymentStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class OperationOutcome:
    ok: bool
    message: str = ""


class ContractWorkspace:
    def __init__(
        self,
        contract_id: str,
        client: BackendClient,
        notifier: NotificationPort,
        actor_id: str | None = None,
        settings: Settings | None = None,
        labels: Labels | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self.contract_id = contract_id
        self.client = client
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.actor_id = actor_id if actor_id is not None else self.settings.actor_id
        self.labels = labels or Labels(load_label_tables(self.settings.labels_file or None))
        self.paid_at = PaidAtTracker(now=now) if now else PaidAtTracker()
        self.contract: Contract | None = None
        self.agents: list[AssignedUser] = []

    # ------------------------------------------------------------------
    # Notification helpers
    # ------------------------------------------------------------------

    def _report(self, level: NotificationLevel, message: str) -> OperationOutcome:
        self.notifier.notify(Notification(
            message=message, level=level, contract_id=self.contract_id,
        ))
        ok = level in (NotificationLevel.SUCCESS, NotificationLevel.INFO)
        return OperationOutcome(ok=ok, message=message)

    def _success(self, message: str) -> OperationOutcome:
        return self._report(NotificationLevel.SUCCESS, message)

    def _warning(self, message: str) -> OperationOutcome:
        return self._report(NotificationLevel.WARNING, message)

    def _error(self, message: str) -> OperationOutcome:
        return self._report(NotificationLevel.ERROR, message)

    def _guard(self, mutation: Mutation) -> OperationOutcome | None:
        if self.contract is None:
            return self._error("Contract not found")
        try:
            ensure_mutable(self.contract.status, mutation)
        except ContractLockedError as e:
            logger.info("Blocked %s on %s contract %s", mutation.value, e.status, self.contract_id)
            return self._warning(str(e))
        return None

    def _check(self, report: ValidationReport) -> OperationOutcome | None:
        if report.all_passed:
            return None
        return self._warning(report.first_failure)

    def _require_actor(self) -> OperationOutcome | None:
        if not self.actor_id:
            return self._error("Could not identify the acting user")
        return None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _set_contract(self, contract: Contract) -> None:
        self.contract = contract
        self.paid_at.observe(contract.payments)

    def _map(self, raw: Any, service_documents: Any, fallback: Any) -> Contract | None:
        return map_contract(
            raw,
            service_documents,
            fallback,
            enrich_embedded=self.settings.merge_embedded_documents,
            labels=self.labels,
        )

    def load(self) -> OperationOutcome:
        """Fetch the contract and its document-service records."""
        contract_result = self.client.get_contract(self.contract_id)
        documents_result = self.client.get_contract_documents(self.contract_id)

        if not contract_result.success:
            return self._error(contract_result.error or "Error loading contract")

        if not documents_result.success and documents_result.error:
            self._warning(documents_result.error)

        previous = self.contract.documents if self.contract else None
        service_documents = documents_result.data if documents_result.success else None
        fallback = None if documents_result.success else previous

        contract = self._map(contract_result.data, service_documents, fallback)
        if contract is None:
            return self._error("Contract not found")
        self._set_contract(contract)
        return OperationOutcome(ok=True)

    def load_agents(self) -> list[AssignedUser]:
        result = self.client.list_agents()
        if not result.success:
            logger.warning("Could not load agents: %s", result.error)
            self.agents = []
            return self.agents
        self.agents = [u for u in (map_user(raw, self.labels) for raw in result.data) if u is not None]
        return self.agents

    def _refresh_from(self, raw: Any) -> None:
        """Use a contract returned by a mutation, or reload when there is none."""
        fallback = self.contract.documents if self.contract else None
        contract = self._map(raw, None, fallback) if isinstance(raw, Mapping) else None
        if contract is not None:
            self._set_contract(contract)
        else:
            self.load()

    # ------------------------------------------------------------------
    # Contract status and agent
    # ------------------------------------------------------------------

    def update_status(self, new_status: str) -> OperationOutcome:
        if self.contract is None:
            return self._error("Contract not found")
        try:
            target = check_transition(self.contract.status, new_status)
        except InvalidStatusError as e:
            return self._error(str(e))
        except ContractLockedError as e:
            return self._warning(str(e))

        result = self.client.update_status(self.contract_id, target)
        if not result.success:
            return self._error(result.error or "Error updating status")

        self._refresh_from(result.data)
        return self._success("Contract status updated")

    def assign_agent(self, user_id: str) -> OperationOutcome:
        if self.contract is None:
            return self._error("Contract not found")
        if not user_id:
            return self._warning("Select an agent")

        result = self.client.update_contract_agent(self.contract_id, user_id)
        if not result.success:
            return self._error(result.error or "Error updating agent")

        self.load()
        return self._success("Assigned agent updated")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def payment_type_options(self) -> list[str]:
        return self.labels.payment_types_for(self.contract.operation if self.contract else None)

    def find_payment(self, key: str) -> tuple[int, Payment] | None:
        """Locate a payment by its view key (``id:``, ``client:`` or ``index:``)."""
        if self.contract is None:
            return None
        for index, payment in enumerate(self.contract.payments):
            if payment_key(payment, index) == key:
                return index, payment
        return None

    def add_payment(self, amount: Any, date: Any, payment_type: str,
                    description: str | None = None,
                    is_agency_revenue: bool = False) -> OperationOutcome:
        blocked = self._guard(Mutation.ADD_PAYMENT)
        if blocked:
            return blocked
        invalid = self._check(validate_new_payment(
            amount, date, payment_type, self.payment_type_options(),
        ))
        if invalid:
            return invalid

        payload: dict[str, Any] = {
            "amount": as_number(amount),
            "date": str(date).strip(),
            "type": payment_type,
            "isAgencyRevenue": bool(is_agency_revenue),
        }
        if description:
            payload["description"] = description

        result = self.client.add_payment(self.contract_id, payload)
        if not result.success:
            return self._error(result.error or "Error adding payment")

        self.load()
        return self._success("Payment added")

    def update_payment_status(self, key: str, new_status: str) -> OperationOutcome:
        found = self.find_payment(key)
        if found is None:
            return self._error("Payment not found")
        index, payment = found

        if payment.status == new_status:
            return OperationOutcome(ok=True)
        blocked = self._guard(Mutation.UPDATE_PAYMENT)
        if blocked:
            return blocked
        if new_status not in {s.value for s in PaymentStatus}:
            return self._warning("The selected payment status is not valid")

        if payment.id:
            result = self.client.update_payment_status(self.contract_id, payment.id, new_status)
            if not result.success:
                return self._error(result.error or "Error updating payment status")

            confirmed = new_status
            if isinstance(result.data, Mapping) and result.data.get("status"):
                confirmed = result.data["status"]
            payments = [
                p.model_copy(update={"status": confirmed}) if p.id == payment.id else p
                for p in self.contract.payments
            ]
            self._set_contract(self.contract.model_copy(
                update={"payments": normalize_payments(payments)},
            ))
        else:
            payments = [
                p.model_copy(update={"status": new_status}) if i == index else p
                for i, p in enumerate(self.contract.payments)
            ]
            result = self.client.update_contract(
                self.contract_id, {"payments": sanitize_for_persist(payments)},
            )
            if not result.success:
                return self._error(result.error or "Error updating payment status")
            self._refresh_from(result.data)

        return self._success("Payment status updated")

    def display_paid_at(self, key: str) -> Any:
        found = self.find_payment(key)
        if found is None:
            return None
        index, payment = found
        return self.paid_at.display_paid_at(payment, index)

    def upload_payment_document(self, key: str, file: Path, document_type_id: str,
                                title: str, notes: str | None = None,
                                person_id: str | None = None) -> OperationOutcome:
        found = self.find_payment(key)
        if found is None:
            return self._error("Payment not found")
        _, payment = found
        if not payment.id:
            return self._warning("Save the payment before attaching a document")

        blocked = self._guard(Mutation.ADD_DOCUMENT) or self._require_actor()
        if blocked:
            return blocked
        invalid = self._check(validate_new_document(document_type_id, title))
        if invalid:
            return invalid

        result = self.client.upload_payment_document(self.contract_id, payment.id, file, {
            "title": title,
            "documentTypeId": document_type_id,
            "uploadedById": self.actor_id,
            "notes": notes or "",
            "personId": person_id or "",
        })
        if not result.success:
            return self._error(result.error or "Error attaching document")

        self.load()
        return self._success("Document attached")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def find_document(self, ref: str) -> ContractDocument | None:
        """Document whose resolved id, id or documentId equals ``ref``."""
        if self.contract is None or not ref:
            return None
        for doc in self.contract.documents:
            if ref in (resolve_document_id(doc), doc.id, doc.document_id):
                return doc
        return None

    def create_document(self, document_type_id: str, title: str,
                        notes: str | None = None,
                        person_id: str | None = None) -> OperationOutcome:
        if self.contract is None:
            return self._error("Contract not found")
        blocked = self._require_actor() or self._guard(Mutation.ADD_DOCUMENT)
        if blocked:
            return blocked
        invalid = self._check(validate_new_document(document_type_id, title))
        if invalid:
            return invalid

        payload: dict[str, Any] = {
            "documentTypeId": document_type_id,
            "title": title.strip(),
            "contractId": self.contract_id,
            "uploadedById": self.actor_id,
            "status": DocumentStatus.PENDING.value,
            "required": True,
        }
        if notes:
            payload["notes"] = notes
        if person_id:
            payload["personId"] = person_id

        result = self.client.create_document(payload)
        if not result.success:
            return self._error(result.error or "Error registering document")

        self.load()
        return self._success("Document registered")

    def upload_document(self, file: Path, document_type_id: str, title: str,
                        notes: str | None = None,
                        document_id: str | None = None) -> OperationOutcome:
        """Attach a file to the contract, optionally to an existing requirement."""
        if self.contract is None:
            return self._error("Contract not found")
        blocked = self._require_actor() or self._guard(Mutation.EDIT_DOCUMENT)
        if blocked:
            return blocked
        invalid = self._check(validate_new_document(document_type_id, title))
        if invalid:
            return invalid

        result = self.client.upload_contract_document(self.contract_id, file, {
            "title": title,
            "documentTypeId": document_type_id,
            "uploadedById": self.actor_id,
            "notes": notes or "",
            "seoTitle": title,
            "documentId": document_id or "",
        })
        if not result.success:
            return self._error(result.error or "Error attaching document")

        self.load()
        return self._success("Document attached")

    def delete_document(self, doc: ContractDocument | Mapping | None) -> OperationOutcome:
        if doc is None:
            return self._error("Could not identify the document to delete")
        blocked = self._guard(Mutation.DELETE_DOCUMENT)
        if blocked:
            return blocked
        document_id = resolve_document_id(doc)
        if not document_id:
            return self._error("Could not determine the document identifier")

        label = document_type_name(doc)
        result = self.client.delete_document(document_id)
        if not result.success:
            return self._error(result.error or "Error deleting document")

        self.load()
        return self._success(f'Document "{label}" deleted')

    def toggle_document_required(self, doc: ContractDocument | Mapping | None) -> OperationOutcome:
        if doc is None:
            return self._error("Could not identify the document to update")
        blocked = self._guard(Mutation.TOGGLE_REQUIRED)
        if blocked:
            return blocked
        document_id = resolve_document_id(doc)
        if not document_id:
            return self._error("Could not determine the document identifier")

        current = doc.required if isinstance(doc, ContractDocument) else doc.get("required")
        required = not bool(current)
        label = document_type_name(doc)

        result = self.client.update_document_required(document_id, required)
        if not result.success:
            return self._error(result.error or "Error updating document requirement")

        self.load()
        state = "required" if required else "optional"
        return self._success(f'Document "{label}" marked as {state}')

    # ------------------------------------------------------------------
    # Financials
    # ------------------------------------------------------------------

    def commission_preview(self, amount: Any = None, commission_percent: Any = None) -> int | None:
        """Commission for the given values, defaulting to the contract's own."""
        if self.contract is None:
            return None
        return commission_amount(
            self.contract.amount if amount is None else amount,
            self.contract.commission_percent if commission_percent is None else commission_percent,
            self.contract.currency,
            self.contract.uf_value,
        )

    def update_financials(self, amount: Any, commission_percent: Any) -> OperationOutcome:
        blocked = self._guard(Mutation.EDIT_FINANCIALS)
        if blocked:
            return blocked
        invalid = self._check(validate_financial_update(self.contract, amount, commission_percent))
        if invalid:
            return invalid

        payload: dict[str, Any] = {
            "amount": as_number(amount),
            "commissionPercent": as_number(commission_percent),
        }
        if self.contract.currency == Currency.UF.value:
            payload["ufValue"] = self.contract.uf_value

        result = self.client.update_contract(self.contract_id, payload)
        if not result.success:
            return self._error(result.error or "Error updating contract amounts")

        self.load()
        return self._success("Financial amounts updated")

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def actor_names(self) -> ActorNameResolver:
        contract = self.contract
        return ActorNameResolver(
            user=contract.user if contract else None,
            agents=self.agents,
            people=contract.people if contract else (),
            labels=self.labels,
        )

    def history(self) -> list[HistoryLine]:
        if self.contract is None:
            return []
        return describe_history(self.contract.change_history, self.actor_names(), self.labels)
