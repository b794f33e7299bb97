"""Display label tables loaded from YAML.

The bundled table lives in ``brokerage/data/labels.yaml``; an override file
(``Settings.labels_file``) is merged over it section by section.
"""

from __future__ import annotations

import logging
from importlib import resources
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


def load_label_tables(override: str | Path | None = None) -> dict[str, dict]:
    """Load the bundled label tables, merging an optional override file."""
    text = resources.files("brokerage").joinpath("data/labels.yaml").read_text(encoding="utf-8")
    tables: dict[str, dict] = yaml.safe_load(text) or {}

    if override:
        path = Path(override)
        if path.exists():
            with open(path, encoding="utf-8") as f:
                extra = yaml.safe_load(f) or {}
            for section, values in extra.items():
                if isinstance(values, dict):
                    tables.setdefault(section, {}).update(values)
                else:
                    tables[section] = values
        else:
            logger.warning("Labels override %s not found, using bundled labels", path)

    return tables


class Labels:
    """Lookup helpers over the label tables. Unknown keys render as-is."""

    def __init__(self, tables: dict[str, dict] | None = None):
        self.tables = tables if tables is not None else load_label_tables()

    def _lookup(self, section: str, key: str | None, default: str | None = None) -> str:
        table = self.tables.get(section) or {}
        if key and key in table:
            return str(table[key])
        if default is not None:
            return default
        return key or ""

    def contract_status(self, status: str | None) -> str:
        key = status.strip().upper() if isinstance(status, str) else ""
        key = (self.tables.get("contract_status_aliases") or {}).get(key, key)
        if not key:
            return "No status"
        return self._lookup("contract_status", key, status)

    def payment_type(self, payment_type: str | None) -> str:
        return self._lookup("payment_type", payment_type)

    def payment_status(self, status: str | None) -> str:
        return self._lookup("payment_status", status)

    def document_status(self, status: str | None) -> str:
        return self._lookup("document_status", status)

    def role(self, role: str | None) -> str:
        return self._lookup("role", role)

    def user_role(self, role: str | None) -> str:
        table = self.tables.get("user_role") or {}
        if role and role in table:
            return str(table[role])
        return str(table.get("default", role or ""))

    def history_action(self, action: str | None) -> str:
        return self._lookup("history_action", action, action or "Change recorded")

    def history_field(self, field: str | None) -> str:
        return self._lookup("history_field", field)

    def payment_types_for(self, operation: str | None) -> list[str]:
        """Payment types that can be registered for a contract operation."""
        by_operation = self.tables.get("payment_types_by_operation") or {}
        if not operation:
            return ["OTHER"]
        if operation in by_operation:
            return list(by_operation[operation])
        # Anything that is not a sale is treated as a rental.
        return list(by_operation.get("ARRIENDO", ["OTHER"]))
