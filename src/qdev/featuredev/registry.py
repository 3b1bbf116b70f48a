"""Registry of live sessions keyed by chat tab id."""

from __future__ import annotations

import threading
from dataclasses import dataclass

from qdev.featuredev.messages import InMemoryMessagePublisher
from qdev.featuredev.session import Session


@dataclass(slots=True)
class SessionEntry:
    session: Session
    messenger: InMemoryMessagePublisher


class SessionRegistry:
    """Stores one session (and its message sink) per tab."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, SessionEntry] = {}

    def register(
        self, session: Session, messenger: InMemoryMessagePublisher | None = None
    ) -> SessionEntry:
        entry = SessionEntry(session=session, messenger=messenger or InMemoryMessagePublisher())
        with self._lock:
            if session.tab_id in self._entries:
                raise ValueError(f"Session already registered: {session.tab_id}")
            self._entries[session.tab_id] = entry
        return entry

    def get(self, tab_id: str) -> SessionEntry:
        with self._lock:
            entry = self._entries.get(tab_id)
        if entry is None:
            raise KeyError(f"Unknown session: {tab_id}")
        return entry

    def remove(self, tab_id: str) -> None:
        with self._lock:
            self._entries.pop(tab_id, None)

    def tab_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)
