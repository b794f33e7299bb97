"""Operator notifications: console, Pushover and ntfy support.

The workspace reports every outcome through a NotificationPort that is
passed in by the caller. Ports are plain objects; nothing here is global.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx
from rich.console import Console

from brokerage.config import Settings, get_settings
from brokerage.models import Notification, NotificationLevel

logger = logging.getLogger(__name__)


class NotificationPort(Protocol):
    def notify(self, notification: Notification) -> None: ...


_STYLES = {
    NotificationLevel.SUCCESS: "green",
    NotificationLevel.INFO: "cyan",
    NotificationLevel.WARNING: "yellow",
    NotificationLevel.ERROR: "red",
}


class ConsoleNotifier:
    """Prints notifications with rich markup."""

    def __init__(self, console: Console | None = None):
        self.console = console or Console()

    def notify(self, notification: Notification) -> None:
        style = _STYLES.get(notification.level, "white")
        prefix = f"{notification.title}: " if notification.title else ""
        self.console.print(f"[{style}]{prefix}{notification.message}[/{style}]")


class MemoryNotifier:
    """Collects notifications in order; used by tests and batch callers."""

    def __init__(self):
        self.notifications: list[Notification] = []

    def notify(self, notification: Notification) -> None:
        self.notifications.append(notification)

    @property
    def messages(self) -> list[str]:
        return [n.message for n in self.notifications]

    def levels(self) -> list[NotificationLevel]:
        return [n.level for n in self.notifications]

    def clear(self) -> None:
        self.notifications.clear()


class FanoutNotifier:
    """Delivers each notification to several ports."""

    def __init__(self, *ports: NotificationPort):
        self.ports = list(ports)

    def notify(self, notification: Notification) -> None:
        for port in self.ports:
            port.notify(notification)


class PushNotifier:
    """Sends notifications to a phone via all configured providers.

    Only warnings and errors are pushed unless ``min_level`` says otherwise.
    """

    _ORDER = [
        NotificationLevel.INFO,
        NotificationLevel.SUCCESS,
        NotificationLevel.WARNING,
        NotificationLevel.ERROR,
    ]

    def __init__(self, settings: Settings | None = None,
                 min_level: NotificationLevel = NotificationLevel.WARNING):
        self.settings = settings or get_settings()
        self.min_level = min_level

    def notify(self, notification: Notification) -> None:
        if self._ORDER.index(notification.level) < self._ORDER.index(self.min_level):
            return
        self.send(notification)

    def send(self, notification: Notification) -> bool:
        """Returns True if at least one provider succeeded."""
        sent = False
        if self.settings.has_pushover():
            sent = _send_pushover(notification, self.settings) or sent
        if self.settings.has_ntfy():
            sent = _send_ntfy(notification, self.settings) or sent
        if not sent:
            logger.debug("Push notification not delivered: %s", notification.message)
        return sent


def _title(notification: Notification) -> str:
    if notification.title:
        return notification.title
    if notification.contract_id:
        return f"Contract {notification.contract_id}"
    return "Brokerage"


def _send_pushover(notification: Notification, settings: Settings) -> bool:
    """Send via Pushover (https://pushover.net)."""
    priority_map = {
        NotificationLevel.INFO: -1,
        NotificationLevel.SUCCESS: 0,
        NotificationLevel.WARNING: 0,
        NotificationLevel.ERROR: 1,
    }
    payload: dict = {
        "token": settings.pushover_api_token,
        "user": settings.pushover_user_key,
        "title": _title(notification),
        "message": notification.message,
        "priority": priority_map.get(notification.level, 0),
    }
    try:
        resp = httpx.post("https://api.pushover.net/1/messages.json", data=payload)
        return resp.status_code == 200
    except httpx.HTTPError:
        return False


def _send_ntfy(notification: Notification, settings: Settings) -> bool:
    """Send via ntfy (https://ntfy.sh)."""
    priority_map = {
        NotificationLevel.INFO: "2",
        NotificationLevel.SUCCESS: "3",
        NotificationLevel.WARNING: "4",
        NotificationLevel.ERROR: "5",
    }
    headers: dict = {
        "Title": _title(notification),
        "Priority": priority_map.get(notification.level, "3"),
        "Tags": "house,page_facing_up",
    }
    url = f"{settings.ntfy_server}/{settings.ntfy_topic}"
    try:
        resp = httpx.post(url, content=notification.message, headers=headers)
        return resp.status_code == 200
    except httpx.HTTPError:
        return False
