"""Request journal: a bounded record of serve events.

Keeps recent serve events in memory for the admin API, with JSON Lines
logging as a secondary output.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from pathlib import Path

from bramble.models import ServeEvent, SubEventType

logger = logging.getLogger(__name__)


class RequestJournal:
    """Thread-safe, bounded journal of served requests.

    The oldest events are discarded once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int | None = 1000, log_path: str | Path | None = None) -> None:
        """Initialize the journal.

        Args:
            max_entries: Number of events kept in memory; None keeps all.
            log_path: Optional path for a JSON Lines event log.
        """
        self._events: deque[ServeEvent] = deque(maxlen=max_entries)
        self._lock = threading.Lock()
        self.log_path = Path(log_path) if log_path else None
        if self.log_path:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)

    def record(self, event: ServeEvent) -> None:
        """Store a serve event and append it to the event log."""
        with self._lock:
            self._events.append(event)
        self._write_log(event)

    def events(self, limit: int | None = None) -> list[ServeEvent]:
        """Return recorded events, newest first."""
        with self._lock:
            events = list(reversed(self._events))
        return events if limit is None else events[:limit]

    def events_with_errors(self) -> list[ServeEvent]:
        return [
            event
            for event in self.events()
            if any(sub.type == SubEventType.ERROR for sub in event.sub_events)
        ]

    def reset(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def _write_log(self, event: ServeEvent) -> None:
        if self.log_path is None:
            return
        try:
            with open(self.log_path, "a") as f:
                f.write(event.model_dump_json(by_alias=True) + "\n")
        except OSError as exc:
            logger.warning("Failed to write event log: %s", exc)
