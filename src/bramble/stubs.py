"""In-memory stub registry with lifecycle notifications."""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import ValidationError

from bramble.errors import ConfigError
from bramble.models import Request, StubMapping

logger = logging.getLogger(__name__)

MAPPING_SUFFIXES = (".json", ".yaml", ".yml")


class StubLifecycleListener(Protocol):
    """Receives notifications when stubs leave the registry."""

    def after_stub_removed(self, stub: StubMapping) -> None: ...

    def after_stubs_reset(self) -> None: ...


class StubRegistry:
    """Thread-safe store of stub mappings.

    Lookup prefers the most recently added stub when several match.
    Listeners are notified after the registry has changed, outside the lock.
    """

    def __init__(self, listeners: list[StubLifecycleListener] | None = None) -> None:
        self._stubs: list[StubMapping] = []
        self._listeners: list[StubLifecycleListener] = list(listeners or [])
        self._lock = threading.Lock()

    def add_listener(self, listener: StubLifecycleListener) -> None:
        self._listeners.append(listener)

    def add(self, stub: StubMapping) -> StubMapping:
        with self._lock:
            self._stubs = [s for s in self._stubs if s.id != stub.id]
            self._stubs.append(stub)
        logger.info("Added stub %s (%s)", stub.id, stub.name or stub.request.method)
        return stub

    def get(self, stub_id: str) -> StubMapping | None:
        with self._lock:
            return next((s for s in self._stubs if s.id == stub_id), None)

    def all(self) -> list[StubMapping]:
        with self._lock:
            return list(reversed(self._stubs))

    def remove(self, stub_id: str) -> StubMapping | None:
        """Remove a stub by ID.

        Returns:
            The removed stub, or None if no stub had that ID.
        """
        with self._lock:
            stub = next((s for s in self._stubs if s.id == stub_id), None)
            if stub is None:
                return None
            self._stubs.remove(stub)

        logger.info("Removed stub %s", stub_id)
        for listener in self._listeners:
            listener.after_stub_removed(stub)
        return stub

    def reset(self) -> None:
        with self._lock:
            count = len(self._stubs)
            self._stubs = []

        logger.info("Reset stub registry (%d stubs removed)", count)
        for listener in self._listeners:
            listener.after_stubs_reset()

    def find_match(self, request: Request) -> StubMapping | None:
        with self._lock:
            candidates = list(reversed(self._stubs))
        return next((s for s in candidates if s.request.matches(request)), None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._stubs)


def load_mappings(directory: str | Path) -> list[StubMapping]:
    """Load stub mappings from JSON and YAML files in a directory.

    Each file holds either a single mapping or ``{"mappings": [...]}``.
    Files are read in name order. A missing directory yields no mappings.

    Args:
        directory: Directory to scan (not recursive).

    Returns:
        The parsed stub mappings.

    Raises:
        ConfigError: If a file cannot be parsed or fails validation.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    stubs: list[StubMapping] = []
    for path in sorted(directory.iterdir()):
        if path.suffix not in MAPPING_SUFFIXES or not path.is_file():
            continue
        try:
            with open(path) as f:
                raw: Any = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
            items = raw.get("mappings", [raw]) if isinstance(raw, dict) else []
            stubs.extend(StubMapping.model_validate(item) for item in items)
        except (json.JSONDecodeError, yaml.YAMLError, ValidationError) as exc:
            raise ConfigError(f"invalid mapping file {path}: {exc}") from exc

    logger.info("Loaded %d stub mappings from %s", len(stubs), directory)
    return stubs
