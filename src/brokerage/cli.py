"""Brokerage back-office CLI.

Usage:
    brk show <contract_id>
    brk payments <contract_id>
    brk documents <contract_id>
    brk history <contract_id>
    brk status <contract_id> CLOSED
    brk agent <contract_id> <user_id>
    brk pay add <contract_id> 500000 2025-03-01 RENT_PAYMENT
    brk pay status <contract_id> id:<payment_id> PAID
    brk pay attach <contract_id> id:<payment_id> receipt.pdf --type <type_id> --title "Receipt"
    brk doc add <contract_id> --type <type_id> --title "Signed deed"
    brk doc upload <contract_id> deed.pdf --type <type_id> --title "Signed deed"
    brk doc delete <contract_id> <document_id>
    brk doc require <contract_id> <document_id>
    brk financial <contract_id> --amount 1200 --commission 2
    brk reconcile contract.json --documents documents.json
    brk guard CLOSED --to IN_PROCESS
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from brokerage.config import get_settings

app = typer.Typer(name="brk", help="Contract lifecycle and document reconciliation for the brokerage back office")
console = Console()

# Sub-command groups
pay_app = typer.Typer(help="Payment ledger operations")
doc_app = typer.Typer(help="Contract document operations")
app.add_typer(pay_app, name="pay")
app.add_typer(doc_app, name="doc")


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output")):
    """Configure logging once for every command."""
    settings = get_settings()
    logging.basicConfig(
        level=logging.DEBUG if verbose else settings.log_level.upper(),
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _labels():
    from brokerage.labels import Labels, load_label_tables
    settings = get_settings()
    return Labels(load_label_tables(settings.labels_file or None))


def _open_workspace(contract_id: str):
    """Build a workspace for the contract and load it, or exit."""
    from brokerage.integrations.backend import BackendClient
    from brokerage.integrations.notifications import ConsoleNotifier, FanoutNotifier, PushNotifier
    from brokerage.workspace import ContractWorkspace

    settings = get_settings()
    notifier = ConsoleNotifier(console)
    if settings.has_ntfy() or settings.has_pushover():
        notifier = FanoutNotifier(notifier, PushNotifier(settings))

    ws = ContractWorkspace(contract_id, BackendClient(settings), notifier, settings=settings)
    if not ws.load().ok:
        raise typer.Exit(1)
    return ws


def _finish(outcome) -> None:
    if not outcome.ok:
        raise typer.Exit(1)


def _amount(value) -> str:
    from brokerage.engine.validation import as_number
    number = as_number(value)
    if number is None:
        return "—" if value in (None, "") else str(value)
    return f"{number:,.0f}" if number == int(number) else f"{number:,.2f}"


def _yes_no(value: bool) -> str:
    return "[green]yes[/green]" if value else "[dim]no[/dim]"


def _documents_table(documents, base_url: str, labels) -> Table:
    from brokerage.engine.identity import (
        document_title,
        document_type_name,
        resolve_document_id,
        resolve_document_url,
        status_badge,
    )

    table = Table(title="Documents")
    table.add_column("#", style="dim")
    table.add_column("ID", style="cyan")
    table.add_column("Type")
    table.add_column("Title")
    table.add_column("Person")
    table.add_column("Required")
    table.add_column("Status")
    table.add_column("File")

    status_colors = {"PENDING": "yellow", "UPLOADED": "blue", "RECIBIDO": "green", "REJECTED": "red"}
    for i, doc in enumerate(documents, start=1):
        badge = status_badge(doc)
        color = status_colors.get(badge, "white")
        table.add_row(
            str(i),
            resolve_document_id(doc) or "—",
            document_type_name(doc),
            document_title(doc, i),
            doc.person_name or "—",
            _yes_no(doc.required),
            f"[{color}]{labels.document_status(badge)}[/{color}]",
            resolve_document_url(doc, base_url) or "—",
        )
    return table


# ---------------------------------------------------------------------------
# brk show
# ---------------------------------------------------------------------------

@app.command()
def show(contract_id: str = typer.Argument(..., help="Contract ID")):
    """Show contract header, financial summary and participants."""
    ws = _open_workspace(contract_id)
    contract, labels = ws.contract, ws.labels

    console.print(f"\n[bold]Contract {contract.code or contract.id}[/bold]")
    console.print(f"  Operation: {contract.operation or '—'}")
    console.print(f"  Status: {labels.contract_status(contract.status)}")
    if contract.user:
        console.print(f"  Agent: {contract.user.display_name}")
    if contract.description:
        console.print(f"  Description: {contract.description}")

    console.print("\n[bold]Financials[/bold]")
    console.print(f"  Amount: {_amount(contract.amount)} {contract.currency}")
    if contract.uf_value:
        console.print(f"  UF value: {_amount(contract.uf_value)} CLP")
    percent = contract.commission_percent
    console.print(f"  Commission: {percent if percent is not None else '—'}%")
    preview = ws.commission_preview()
    stored = contract.commission_amount
    console.print(f"  Commission amount: {_amount(stored if stored is not None else preview)} CLP")

    if contract.people:
        table = Table(title="Participants")
        table.add_column("Role")
        table.add_column("Person ID", style="cyan")
        table.add_column("Name")
        for participant in contract.people:
            person = participant.person or {}
            name = person.get("name") or " ".join(
                p for p in (person.get("firstName"), person.get("lastName")) if p
            )
            table.add_row(labels.role(participant.role), participant.person_id or "—", name or "—")
        console.print(table)

    pending = sum(1 for d in contract.documents if d.required and not d.uploaded)
    console.print(
        f"\n{len(contract.payments)} payment(s), {len(contract.documents)} document(s)"
        f" ({pending} required pending)"
    )


# ---------------------------------------------------------------------------
# brk payments / documents / history
# ---------------------------------------------------------------------------

@app.command()
def payments(contract_id: str = typer.Argument(..., help="Contract ID")):
    """List the contract's payment ledger."""
    from brokerage.engine.payments import payment_key

    ws = _open_workspace(contract_id)
    labels = ws.labels

    if not ws.contract.payments:
        console.print("[dim]No payments registered.[/dim]")
        return

    table = Table(title=f"Payments: {ws.contract.code or contract_id}")
    table.add_column("Key", style="cyan")
    table.add_column("Type")
    table.add_column("Amount", justify="right")
    table.add_column("Date")
    table.add_column("Status")
    table.add_column("Agency revenue")
    table.add_column("Paid at")

    status_colors = {"PAID": "green", "CANCELLED": "red", "PENDING_VERIFICATION": "blue"}
    for i, payment in enumerate(ws.contract.payments):
        key = payment_key(payment, i)
        color = status_colors.get(payment.status, "yellow")
        paid_at = ws.display_paid_at(key)
        table.add_row(
            key,
            labels.payment_type(payment.type),
            _amount(payment.amount),
            str(payment.date or "—"),
            f"[{color}]{labels.payment_status(payment.status)}[/{color}]",
            _yes_no(bool(payment.is_agency_revenue)),
            str(paid_at) if paid_at else "—",
        )
    console.print(table)


@app.command()
def documents(contract_id: str = typer.Argument(..., help="Contract ID")):
    """List reconciled contract documents."""
    ws = _open_workspace(contract_id)
    if not ws.contract.documents:
        console.print("[dim]No documents registered.[/dim]")
        return
    console.print(_documents_table(ws.contract.documents, ws.settings.backend_api_url, ws.labels))


@app.command()
def history(contract_id: str = typer.Argument(..., help="Contract ID")):
    """Show the contract change history, most recent first."""
    ws = _open_workspace(contract_id)
    ws.load_agents()
    lines = ws.history()

    if not lines:
        console.print("[dim]No changes recorded.[/dim]")
        return

    table = Table(title="Change history")
    table.add_column("When")
    table.add_column("Who", style="cyan")
    table.add_column("Action")
    table.add_column("Changes")
    for line in lines:
        changes = "\n".join(f"{name}: {old} → {new}" for name, old, new in line.changes)
        table.add_row(line.when, line.actor, line.action, changes or "—")
    console.print(table)


# ---------------------------------------------------------------------------
# brk status / agent / financial
# ---------------------------------------------------------------------------

@app.command()
def status(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    new_status: str = typer.Argument(..., help="IN_PROCESS, CLOSED or FAILED"),
):
    """Change the contract status."""
    ws = _open_workspace(contract_id)
    _finish(ws.update_status(new_status))


@app.command()
def agent(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    user_id: str = typer.Argument(..., help="Agent or administrator user ID"),
):
    """Assign the contract to another agent."""
    ws = _open_workspace(contract_id)
    _finish(ws.assign_agent(user_id))


@app.command()
def financial(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    amount: float = typer.Option(..., "--amount", help="Contract amount in its currency"),
    commission: float = typer.Option(..., "--commission", help="Commission percent"),
):
    """Update the contract amount and commission percent."""
    ws = _open_workspace(contract_id)
    preview = ws.commission_preview(amount, commission)
    if preview is not None:
        console.print(f"Commission amount: {_amount(preview)} CLP")
    _finish(ws.update_financials(amount, commission))


# ---------------------------------------------------------------------------
# brk pay
# ---------------------------------------------------------------------------

@pay_app.command("add")
def pay_add(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    amount: float = typer.Argument(..., help="Payment amount"),
    date: str = typer.Argument(..., help="Payment date (YYYY-MM-DD)"),
    payment_type: str = typer.Argument(..., help="Payment type, e.g. RENT_PAYMENT"),
    description: str = typer.Option("", "--description", "-d"),
    agency_revenue: bool = typer.Option(False, "--agency-revenue", help="Count as agency revenue"),
):
    """Register a new payment."""
    ws = _open_workspace(contract_id)
    _finish(ws.add_payment(amount, date, payment_type.upper(), description or None, agency_revenue))


@pay_app.command("status")
def pay_status(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    key: str = typer.Argument(..., help="Payment key as listed by 'brk payments'"),
    new_status: str = typer.Argument(..., help="PENDING, PAID or CANCELLED"),
):
    """Change a payment's status."""
    ws = _open_workspace(contract_id)
    _finish(ws.update_payment_status(key, new_status.upper()))


@pay_app.command("attach")
def pay_attach(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    key: str = typer.Argument(..., help="Payment key as listed by 'brk payments'"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    document_type_id: str = typer.Option(..., "--type", help="Document type ID"),
    title: str = typer.Option(..., "--title"),
    notes: str = typer.Option("", "--notes"),
    person_id: str = typer.Option("", "--person"),
):
    """Attach a receipt or proof to a saved payment."""
    ws = _open_workspace(contract_id)
    _finish(ws.upload_payment_document(key, file, document_type_id, title, notes or None, person_id or None))


# ---------------------------------------------------------------------------
# brk doc
# ---------------------------------------------------------------------------

@doc_app.command("add")
def doc_add(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    document_type_id: str = typer.Option(..., "--type", help="Document type ID"),
    title: str = typer.Option(..., "--title"),
    notes: str = typer.Option("", "--notes"),
    person_id: str = typer.Option("", "--person"),
):
    """Register a required document (no file yet)."""
    ws = _open_workspace(contract_id)
    _finish(ws.create_document(document_type_id, title, notes or None, person_id or None))


@doc_app.command("upload")
def doc_upload(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="File to upload"),
    document_type_id: str = typer.Option(..., "--type", help="Document type ID"),
    title: str = typer.Option(..., "--title"),
    notes: str = typer.Option("", "--notes"),
    document_id: str = typer.Option("", "--document", help="Existing document requirement to fulfil"),
):
    """Attach a file to the contract."""
    ws = _open_workspace(contract_id)
    _finish(ws.upload_document(file, document_type_id, title, notes or None, document_id or None))


@doc_app.command("delete")
def doc_delete(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    document_id: str = typer.Argument(..., help="Document ID"),
):
    """Delete a contract document."""
    ws = _open_workspace(contract_id)
    doc = ws.find_document(document_id)
    if doc is None:
        console.print(f"[red]Document {document_id} not found on this contract[/red]")
        raise typer.Exit(1)
    _finish(ws.delete_document(doc))


@doc_app.command("require")
def doc_require(
    contract_id: str = typer.Argument(..., help="Contract ID"),
    document_id: str = typer.Argument(..., help="Document ID"),
):
    """Toggle whether a document is required."""
    ws = _open_workspace(contract_id)
    doc = ws.find_document(document_id)
    if doc is None:
        console.print(f"[red]Document {document_id} not found on this contract[/red]")
        raise typer.Exit(1)
    _finish(ws.toggle_document_required(doc))


# ---------------------------------------------------------------------------
# Offline tools
# ---------------------------------------------------------------------------

def _read_json(path: Path):
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Cannot read {path}: {e}[/red]")
        raise typer.Exit(1)


@app.command()
def reconcile(
    contract_file: Path = typer.Argument(..., help="Raw contract JSON"),
    documents_file: Path | None = typer.Option(None, "--documents", help="Document-service JSON (list or {data: [...]})"),
    enrich: bool = typer.Option(False, "--enrich", help="Always enrich the contract's own documents"),
    as_json: bool = typer.Option(False, "--json", help="Print merged documents as JSON"),
):
    """Reconcile a contract's documents offline from JSON files."""
    from brokerage.engine.mapper import map_contract

    settings = get_settings()
    raw_contract = _read_json(contract_file)
    service = None
    if documents_file:
        service = _read_json(documents_file)
        if isinstance(service, dict):
            service = service.get("data")

    labels = _labels()
    contract = map_contract(
        raw_contract, service,
        enrich_embedded=enrich or settings.merge_embedded_documents,
        labels=labels,
    )
    if contract is None:
        console.print("[red]The contract file does not contain a contract object[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(json.dumps([d.to_wire() for d in contract.documents], indent=2, default=str))
        return
    console.print(_documents_table(contract.documents, settings.backend_api_url, labels))


@app.command()
def guard(
    current: str = typer.Argument(..., help="Current contract status"),
    to: str = typer.Option("", "--to", help="Requested status"),
):
    """Explain what the status guard allows for a contract status."""
    from brokerage.engine.status_guard import StatusGuardError, can_mutate, check_transition, is_terminal

    labels = _labels()
    console.print(f"Status: {labels.contract_status(current)}")
    console.print(f"  Terminal: {_yes_no(is_terminal(current))}")
    console.print(f"  Mutable: {_yes_no(can_mutate(current))}")

    if to:
        try:
            target = check_transition(current, to)
        except StatusGuardError as e:
            console.print(f"  Transition to {to}: [red]rejected[/red] ({e})")
            raise typer.Exit(1)
        console.print(f"  Transition to {labels.contract_status(target)}: [green]allowed[/green]")


if __name__ == "__main__":
    app()
