"""Change history normalization and display helpers."""

from __future__ import annotations

import json
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from brokerage.engine.identity import clean_text
from brokerage.labels import Labels
from brokerage.models import AssignedUser, ChangeHistoryEntry, FieldChange, Participant

_ISO_TIMESTAMP = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{3})?Z$")


def normalize_history(raw: Any) -> list[ChangeHistoryEntry]:
    if not isinstance(raw, (list, tuple)):
        return []
    entries = []
    for item in raw:
        if isinstance(item, ChangeHistoryEntry):
            entries.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        changes = []
        raw_changes = item.get("changes")
        for change in raw_changes if isinstance(raw_changes, (list, tuple)) else []:
            if isinstance(change, Mapping):
                changes.append(FieldChange(
                    field=clean_text(change.get("field")) or "",
                    previous_value=change.get("previousValue"),
                    new_value=change.get("newValue"),
                ))
        metadata = item.get("metadata")
        entries.append(ChangeHistoryEntry(
            id=clean_text(item.get("id")),
            timestamp=clean_text(item.get("timestamp")),
            user_id=clean_text(item.get("userId")),
            action=clean_text(item.get("action")) or "",
            changes=tuple(changes),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
        ))
    return entries


def short_id(value: str) -> str:
    return f"{value[:8]}…" if len(value) > 10 else value


class ActorNameResolver:
    """Maps actor ids in the history to readable names.

    Sources, later ones winning: the assigned user, known agents, and the
    contract's participants (shown by role).
    """

    def __init__(self, user: AssignedUser | None = None,
                 agents: Iterable[AssignedUser] = (),
                 people: Iterable[Participant] = (),
                 labels: Labels | None = None):
        self.labels = labels or Labels()
        self.names: dict[str, str] = {}

        if user is not None and user.id:
            self.names[user.id] = (
                user.display_name
                or _full_name(user)
                or user.email
                or user.username
                or user.id
            )
        for agent in agents:
            if agent.id:
                self.names[agent.id] = agent.display_name or _full_name(agent) or agent.email or agent.id
        for participant in people:
            if not participant.person_id:
                continue
            role = self.labels.role(participant.role) if participant.role else ""
            sid = short_id(participant.person_id)
            self.names[participant.person_id] = f"{role} ({sid})" if role else sid

    def __call__(self, user_id: str | None) -> str:
        if not user_id:
            return "System"
        if user_id in self.names:
            return self.names[user_id]
        return f"User {short_id(user_id)}"


def _full_name(user: AssignedUser) -> str:
    info = user.personal_info or {}
    first = info.get("firstName") or user.first_name or ""
    last = info.get("lastName") or user.last_name or ""
    return f"{first} {last}".strip()


def format_timestamp(value: str | None) -> str:
    if not value:
        return "Unknown date"
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return value
    return parsed.strftime("%Y-%m-%d %H:%M")


def format_value(value: Any) -> str:
    if value is None:
        return "—"
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (int, float)):
        return f"{value:,}"
    if isinstance(value, str):
        return format_timestamp(value) if _ISO_TIMESTAMP.match(value) else value
    if isinstance(value, (list, tuple)):
        if not value:
            return "—"
        return "\n".join(
            json.dumps(item, indent=2, default=str) if isinstance(item, (dict, list)) else format_value(item)
            for item in value
        )
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    return json.dumps(value, indent=2, default=str)


@dataclass
class HistoryLine:
    when: str
    actor: str
    action: str
    changes: list[tuple[str, str, str]] = field(default_factory=list)


def describe_history(entries: Iterable[ChangeHistoryEntry], resolve_actor: ActorNameResolver,
                     labels: Labels | None = None) -> list[HistoryLine]:
    """Readable lines for history entries, most recent first."""
    labels = labels or Labels()
    ordered = sorted(entries, key=lambda e: e.timestamp or "", reverse=True)
    return [
        HistoryLine(
            when=format_timestamp(entry.timestamp),
            actor=resolve_actor(entry.user_id),
            action=labels.history_action(entry.action),
            changes=[
                (labels.history_field(c.field), format_value(c.previous_value), format_value(c.new_value))
                for c in entry.changes
            ],
        )
        for entry in ordered
    ]
