from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from brokerage.cli import app
from brokerage.integrations.backend import BackendClient

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("BRK_BACKEND_API_URL", "http://backend.test")
    monkeypatch.setenv("BRK_API_TOKEN", "test-token")
    monkeypatch.setenv("BRK_ACTOR_ID", "u-actor")
    monkeypatch.delenv("BRK_NTFY_TOPIC", raising=False)
    monkeypatch.delenv("BRK_PUSHOVER_USER_KEY", raising=False)


@pytest.fixture
def fake_backend(backend, monkeypatch):
    monkeypatch.setattr(
        "brokerage.integrations.backend.BackendClient",
        lambda settings: BackendClient(settings, transport=backend.transport),
    )
    return backend


def _write(path, payload):
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_guard_allows_transition():
    result = runner.invoke(app, ["guard", "IN_PROCESS", "--to", "closed"])
    assert result.exit_code == 0
    assert "allowed" in result.stdout


def test_guard_rejects_leaving_terminal_status():
    result = runner.invoke(app, ["guard", "CLOSED", "--to", "IN_PROCESS"])
    assert result.exit_code == 1
    assert "rejected" in result.stdout


def test_reconcile_json(tmp_path, raw_contract, service_documents):
    contract_file = _write(tmp_path / "contract.json", raw_contract)
    documents_file = _write(tmp_path / "documents.json", {"data": service_documents})

    result = runner.invoke(app, ["reconcile", str(contract_file), "--documents", str(documents_file), "--json"])

    assert result.exit_code == 0
    docs = json.loads(result.stdout)
    assert [d["id"] for d in docs] == ["doc-1", "doc-2"]
    assert docs[0]["multimediaId"] == "m-1"


def test_reconcile_enrich_keeps_embedded_documents(tmp_path, raw_contract, service_documents):
    contract_file = _write(tmp_path / "contract.json", raw_contract)
    documents_file = _write(tmp_path / "documents.json", service_documents)

    result = runner.invoke(
        app, ["reconcile", str(contract_file), "--documents", str(documents_file), "--enrich", "--json"],
    )

    assert result.exit_code == 0
    docs = json.loads(result.stdout)
    assert len(docs) == 3
    assert "Tenant ID" in [d.get("title") for d in docs]


def test_reconcile_without_contract_object(tmp_path):
    contract_file = _write(tmp_path / "contract.json", [1, 2, 3])
    result = runner.invoke(app, ["reconcile", str(contract_file)])
    assert result.exit_code == 1


def test_reconcile_unreadable_file(tmp_path):
    result = runner.invoke(app, ["reconcile", str(tmp_path / "missing.json")])
    assert result.exit_code == 1
    assert "Cannot read" in result.stdout


def test_documents_command(fake_backend):
    result = runner.invoke(app, ["documents", "c-100"])
    assert result.exit_code == 0
    assert "Documents" in result.stdout
    assert fake_backend.calls("GET", "/document")


def test_status_command(fake_backend):
    result = runner.invoke(app, ["status", "c-100", "CLOSED"])
    assert result.exit_code == 0
    assert json.loads(fake_backend.calls("PATCH", "/contracts/c-100/status")[0].content) == {"status": "CLOSED"}


def test_status_command_on_closed_contract(fake_backend):
    fake_backend.contract["status"] = "CLOSED"
    result = runner.invoke(app, ["status", "c-100", "IN_PROCESS"])
    assert result.exit_code == 1
    assert fake_backend.calls("PATCH") == []


def test_unknown_contract_exits(fake_backend):
    fake_backend.fail("GET", "/contracts/c-100", 404, {"message": "Contract not found"})
    result = runner.invoke(app, ["show", "c-100"])
    assert result.exit_code == 1
