# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/service/notifications.py

"""Outbound events for the notification fan-out."""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import humanize
from loguru import logger

CLEANUP_SUMMARY = "cleanup-summary"
MANUAL_INTERVENTION = "manual-intervention-required"
QUEUE_SYNC_FAILED = "queue-sync-failed"


@dataclass
class Event:
    """One notification event."""
    kind: str
    message: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)


def cleanup_summary(deleted: int, blocked: int) -> Event:
    message = (
        f"Directory cleanup: {humanize.intcomma(deleted)} deleted, "
        f"{humanize.intcomma(blocked)} blocked"
    )
    return Event(CLEANUP_SUMMARY, message, {"deleted": deleted, "blocked": blocked})


def manual_intervention(paths: Sequence[str]) -> Event:
    paths = list(paths)
    noun = "path needs" if len(paths) == 1 else "paths need"
    message = f"{humanize.apnumber(len(paths)).capitalize()} locked {noun} manual removal: {', '.join(paths)}"
    return Event(MANUAL_INTERVENTION, message, {"paths": paths})


def queue_sync_failed(machine_id, error: str) -> Event:
    return Event(
        QUEUE_SYNC_FAILED,
        f"Queue sync failed for machine {machine_id}: {error}",
        {"machine_id": machine_id, "error": error},
    )


class Notifier(ABC):
    """Sink for events consumed by the notification fan-out."""

    @abstractmethod
    def notify(self, event: Event) -> None:
        pass


class LoggingNotifier(Notifier):
    """Writes every event to the log."""

    def notify(self, event: Event) -> None:
        if event.kind == CLEANUP_SUMMARY:
            logger.info(f"[{event.kind}] {event.message}")
        else:
            logger.warning(f"[{event.kind}] {event.message}")


class RecordingNotifier(Notifier):
    """Keeps events in memory, optionally forwarding them."""

    def __init__(self, forward: Optional[Notifier] = None):
        self.events: List[Event] = []
        self.forward = forward
        self._lock = threading.Lock()

    def notify(self, event: Event) -> None:
        with self._lock:
            self.events.append(event)
        if self.forward is not None:
            self.forward.notify(event)

    def of_kind(self, kind: str) -> List[Event]:
        with self._lock:
            return [e for e in self.events if e.kind == kind]
