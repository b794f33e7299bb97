from __future__ import annotations

import copy
import json
from datetime import datetime, timezone

import httpx
import pytest

from brokerage.config import Settings
from brokerage.integrations.backend import BackendClient
from brokerage.integrations.notifications import MemoryNotifier
from brokerage.labels import Labels
from brokerage.workspace import ContractWorkspace

CONTRACT_ID = "c-100"
ACTOR_ID = "u-actor"


@pytest.fixture
def raw_contract():
    return {
        "id": CONTRACT_ID,
        "code": "CT-2025-001",
        "operation": "ARRIENDO",
        "status": "IN_PROCESS",
        "amount": 650000,
        "currency": "CLP",
        "commissionPercent": 50,
        "description": "Apartment lease, 12 months",
        "userId": "u-agent",
        "propertyId": "prop-9",
        "property": {"id": "prop-9", "title": "Apartment in Providencia"},
        "user": {
            "id": "u-agent",
            "email": "ana@example.com",
            "role": "ADMINISTRATOR",
            "personalInfo": {"firstName": "Ana", "lastName": "Rojas"},
        },
        "people": [
            {"personId": "person-landlord-0001", "role": "LANDLORD", "person": {"name": "Luis Soto"}},
            {"personId": "person-tenant-0002", "role": "TENANT"},
        ],
        "payments": [
            {"id": "pay-1", "amount": 650000, "date": "2025-03-01", "type": "RENT_PAYMENT", "status": "PENDING"},
            {"amount": 650000, "date": "2025-03-01", "type": "DEPOSIT"},
        ],
        "documents": [
            {"documentId": "doc-1", "documentTypeId": "dt-lease", "required": True},
            {"documentTypeId": "dt-id", "required": "false", "title": "Tenant ID"},
        ],
        "changeHistory": [
            {
                "id": "h1",
                "timestamp": "2025-03-01T10:00:00.000Z",
                "userId": "u-agent",
                "action": "CONTRACT_CREATED",
                "changes": [],
            },
            {
                "id": "h2",
                "timestamp": "2025-03-02T11:30:00.000Z",
                "userId": None,
                "action": "CONTRACT_UPDATED",
                "changes": [{"field": "amount", "previousValue": 600000, "newValue": 650000}],
            },
        ],
    }


@pytest.fixture
def service_documents():
    return [
        {
            "id": "doc-1",
            "contractId": CONTRACT_ID,
            "documentTypeId": "dt-lease",
            "documentType": {"id": "dt-lease", "name": "Lease agreement"},
            "title": "Signed lease",
            "required": True,
            "multimediaId": "m-1",
            "multimedia": {"id": "m-1", "url": "/uploads/lease.pdf", "filename": "lease.pdf"},
            "uploadedBy": {"name": "Ana Rojas"},
        },
        {
            "id": "doc-2",
            "contractId": CONTRACT_ID,
            "documentTypeId": "dt-guarantee",
            "documentType": {"id": "dt-guarantee", "name": "Guarantee"},
            "required": "true",
            "status": "PENDING",
        },
    ]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        backend_api_url="http://backend.test",
        api_token="test-token",
        actor_id=ACTOR_ID,
    )


@pytest.fixture
def labels():
    return Labels()


@pytest.fixture
def notifier():
    return MemoryNotifier()


class FakeBackend:
    """In-memory stand-in for the brokerage API behind an httpx.MockTransport."""

    def __init__(self, contract: dict, documents: list):
        self.contract = copy.deepcopy(contract)
        self.documents = copy.deepcopy(documents)
        self.agents = [
            {"id": "u-other", "role": "AGENT", "personalInfo": {"firstName": "Pablo", "lastName": "Vera"}},
        ]
        self.requests: list[httpx.Request] = []
        self.failures: dict[tuple[str, str], httpx.Response] = {}
        self._seq = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def fail(self, method: str, path: str, status: int = 500, body: dict | None = None) -> None:
        self.failures[(method, path)] = httpx.Response(status, json=body or {})

    def calls(self, method: str, path: str | None = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.method == method and (path is None or r.url.path == path)
        ]

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-new-{self._seq}"

    def handle(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        method, path = request.method, request.url.path
        if (method, path) in self.failures:
            return self.failures[(method, path)]

        base = f"/contracts/{self.contract['id']}"
        body = {}
        if request.headers.get("content-type", "").startswith("application/json"):
            body = json.loads(request.content)

        if method == "GET" and path == base:
            return httpx.Response(200, json=self.contract)
        if method == "GET" and path == "/document":
            return httpx.Response(200, json={"data": self.documents})
        if method == "GET" and path == "/users/admins-agents":
            return httpx.Response(200, json={"data": self.agents, "total": len(self.agents)})
        if method == "PATCH" and path == f"{base}/status":
            self.contract["status"] = body["status"]
            return httpx.Response(200, json=self.contract)
        if method == "PATCH" and path == f"{base}/agent":
            self.contract["userId"] = body["userId"]
            return httpx.Response(200, json=self.contract)
        if method == "POST" and path == f"{base}/payments":
            self.contract["payments"].append({**body, "id": self._next_id("pay"), "status": "PENDING"})
            return httpx.Response(201, json=self.contract)
        if method == "PATCH" and path.startswith(f"{base}/payments/") and path.endswith("/status"):
            payment_id = path.split("/")[-2]
            for payment in self.contract["payments"]:
                if payment.get("id") == payment_id:
                    payment["status"] = body["status"]
                    return httpx.Response(200, json=payment)
            return httpx.Response(404, json={"message": "Payment not found"})
        if method == "POST" and path.startswith(f"{base}/payments/") and path.endswith("/documents"):
            return httpx.Response(201, json={"id": self._next_id("doc")})
        if method == "PATCH" and path == base:
            self.contract.update(body)
            return httpx.Response(200, json=self.contract)
        if method == "POST" and path == "/document":
            doc = {**body, "id": self._next_id("doc")}
            self.documents.append(doc)
            return httpx.Response(201, json=doc)
        if method == "POST" and path == "/contracts/upload-document":
            return httpx.Response(201, json={"document": {"id": self._next_id("doc")}})
        if path.startswith("/document/"):
            doc_id = path.rsplit("/", 1)[-1]
            doc = next((d for d in self.documents if d.get("id") == doc_id), None)
            if doc is None:
                return httpx.Response(404, json={"message": "Document not found"})
            if method == "DELETE":
                self.documents.remove(doc)
                return httpx.Response(200)
            if method == "PATCH":
                doc.update(body)
                return httpx.Response(200, json=doc)

        return httpx.Response(404, json={"message": f"No route for {method} {path}"})


@pytest.fixture
def backend(raw_contract, service_documents):
    return FakeBackend(raw_contract, service_documents)


@pytest.fixture
def client(settings, backend):
    with BackendClient(settings, transport=backend.transport) as c:
        yield c


class Clock:
    def __init__(self):
        self.current = datetime(2025, 3, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def workspace(client, notifier, settings, labels, clock):
    return ContractWorkspace(
        CONTRACT_ID, client, notifier, actor_id=ACTOR_ID,
        settings=settings, labels=labels, now=clock,
    )


@pytest.fixture
def loaded(workspace):
    assert workspace.load().ok
    return workspace
