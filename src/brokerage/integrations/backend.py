"""Backend API client for contracts, payments, and documents.

Every call returns a BackendResult instead of raising, so callers can turn
collaborator failures into operator notifications.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx

from brokerage.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass
class BackendResult:
    success: bool
    data: Any = None
    error: str = ""


def _error_message(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, Mapping):
        return None
    message = body.get("message")
    if isinstance(message, list):
        message = "; ".join(str(m) for m in message)
    return message or None


def _file_part(path: Path) -> tuple[str, bytes]:
    return path.name, path.read_bytes()


class BackendClient:
    """Thin wrapper over the brokerage REST API."""

    def __init__(self, settings: Settings | None = None,
                 transport: httpx.BaseTransport | None = None):
        self.settings = settings or get_settings()
        headers = {}
        if self.settings.has_token():
            headers["Authorization"] = f"Bearer {self.settings.api_token}"
        self._client = httpx.Client(
            base_url=self.settings.backend_api_url.rstrip("/"),
            headers=headers,
            timeout=self.settings.request_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> BackendClient:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _request(self, action: str, method: str, path: str, **kwargs) -> BackendResult:
        if not self.settings.has_token():
            return BackendResult(success=False, error="Not authenticated")

        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s: %s %s failed: %s", action, method, path, e)
            return BackendResult(success=False, error=str(e) or f"{action} failed")

        if not response.is_success:
            logger.warning("%s: %s %s returned %d", action, method, path, response.status_code)
            return BackendResult(
                success=False,
                error=_error_message(response) or f"{action} failed: {response.status_code}",
            )

        if not response.content:
            return BackendResult(success=True)
        try:
            return BackendResult(success=True, data=response.json())
        except ValueError:
            return BackendResult(success=True, data=response.text)

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def get_contract(self, contract_id: str) -> BackendResult:
        return self._request("Load contract", "GET", f"/contracts/{contract_id}")

    def update_contract(self, contract_id: str, data: dict[str, Any]) -> BackendResult:
        return self._request("Update contract", "PATCH", f"/contracts/{contract_id}", json=data)

    def update_status(self, contract_id: str, status: str) -> BackendResult:
        return self._request(
            "Update contract status", "PATCH", f"/contracts/{contract_id}/status",
            json={"status": status},
        )

    def update_contract_agent(self, contract_id: str, user_id: str) -> BackendResult:
        return self._request(
            "Update agent", "PATCH", f"/contracts/{contract_id}/agent",
            json={"userId": user_id},
        )

    def list_agents(self, limit: int = 100) -> BackendResult:
        """Administrators and agents; data is the list of raw users."""
        result = self._request(
            "List agents", "GET", "/users/admins-agents", params={"limit": limit},
        )
        if result.success:
            payload = result.data
            if isinstance(payload, Mapping):
                payload = payload.get("data")
            result.data = payload if isinstance(payload, list) else []
        return result

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def add_payment(self, contract_id: str, payment: dict[str, Any]) -> BackendResult:
        return self._request(
            "Add payment", "POST", f"/contracts/{contract_id}/payments", json=payment,
        )

    def update_payment_status(self, contract_id: str, payment_id: str,
                              status: str) -> BackendResult:
        return self._request(
            "Update payment status", "PATCH",
            f"/contracts/{contract_id}/payments/{payment_id}/status",
            json={"status": status},
        )

    def upload_payment_document(self, contract_id: str, payment_id: str, file: Path,
                                fields: dict[str, str]) -> BackendResult:
        try:
            part = _file_part(file)
        except OSError as e:
            return BackendResult(success=False, error=f"Cannot read {file}: {e.strerror}")
        form = {k: v for k, v in fields.items() if v}
        form["paymentId"] = payment_id
        return self._request(
            "Upload payment document", "POST",
            f"/contracts/{contract_id}/payments/{payment_id}/documents",
            data=form, files={"file": part},
        )

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def get_contract_documents(self, contract_id: str) -> BackendResult:
        """Document-service records scoped to one contract."""
        result = self._request(
            "Load documents", "GET", "/document", params={"contractId": contract_id},
        )
        if not result.success:
            return result

        payload = result.data
        if isinstance(payload, Mapping):
            payload = payload.get("data")
        items = payload if isinstance(payload, list) else []

        def belongs(doc: Any) -> bool:
            if not isinstance(doc, Mapping):
                return False
            if isinstance(doc.get("contractId"), str):
                return doc["contractId"] == contract_id
            contract = doc.get("contract")
            if isinstance(contract, Mapping) and contract.get("id"):
                return contract["id"] == contract_id
            return False

        result.data = [doc for doc in items if belongs(doc)]
        return result

    def create_document(self, data: dict[str, Any]) -> BackendResult:
        return self._request("Create document", "POST", "/document", json=data)

    def upload_contract_document(self, contract_id: str, file: Path,
                                 fields: dict[str, str]) -> BackendResult:
        try:
            part = _file_part(file)
        except OSError as e:
            return BackendResult(success=False, error=f"Cannot read {file}: {e.strerror}")
        form = {k: v for k, v in fields.items() if v}
        form["contractId"] = contract_id
        result = self._request(
            "Attach document", "POST", "/contracts/upload-document",
            data=form, files={"file": part},
        )
        if result.success and isinstance(result.data, Mapping) and "document" in result.data:
            result.data = result.data["document"]
        return result

    def delete_document(self, document_id: str) -> BackendResult:
        return self._request("Delete document", "DELETE", f"/document/{document_id}")

    def update_document_required(self, document_id: str, required: bool) -> BackendResult:
        return self._request(
            "Update document requirement", "PATCH", f"/document/{document_id}",
            json={"required": required},
        )
