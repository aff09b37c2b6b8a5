"""Opt-in snapshot lifecycle notifications."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Any, Callable, Literal

from logger import get_logger

EventName = Literal["snapshot_started", "snapshot_completed", "snapshot_failed"]
SnapshotOperation = Literal["setup", "refresh"]
Listener = Callable[..., Any]

EVENT_NAMES: frozenset[str] = frozenset(
    ("snapshot_started", "snapshot_completed", "snapshot_failed")
)

_logger = get_logger("protocache.events")


class RepositoryEvents:
    """Small listener registry for repository snapshot events.

    ``snapshot_started`` receives the operation name (``"setup"`` or
    ``"refresh"``), ``snapshot_completed`` the new :class:`SnapshotStats` and
    ``snapshot_failed`` the :class:`SnapshotFailure`. A listener that raises is
    logged and skipped; the remaining listeners still run.
    """

    def __init__(self, *, logger: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._logger = logger or _logger

    @staticmethod
    def _check_name(name: str) -> None:
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown repository event: {name}")

    def on(self, name: EventName, listener: Listener) -> Listener:
        self._check_name(name)
        self._listeners[name].append(listener)
        return listener

    def off(self, name: EventName, listener: Listener) -> None:
        self._check_name(name)
        listeners = self._listeners.get(name)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def listener_count(self, name: EventName) -> int:
        return len(self._listeners.get(name, ()))

    def emit(self, name: EventName, *args: Any) -> None:
        """Call every listener for ``name``; never raises."""

        for listener in list(self._listeners.get(name, ())):
            try:
                listener(*args)
            except Exception as exc:  # noqa: BLE001 - listeners must not break snapshots
                self._logger.error(
                    "Repository event listener failed event=%s listener=%s: %s",
                    name,
                    getattr(listener, "__qualname__", repr(listener)),
                    exc,
                    exc_info=True,
                )


__all__ = ["EVENT_NAMES", "EventName", "RepositoryEvents", "SnapshotOperation"]
