"""Outbound UI events and the code reference log."""

from __future__ import annotations

import threading
from dataclasses import asdict
from typing import Any, Protocol

from qdev.types import CodeReference, DeletedFileInfo, NewFileZipInfo


class MessagePublisher(Protocol):
    """Sink for messages rendered by the host UI."""

    def publish(self, message: dict[str, Any]) -> None:
        """Deliver one message."""


class InMemoryMessagePublisher:
    """Collects published messages; used by the HTTP layer and tests."""

    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    def publish(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [message for message in self.messages if message.get("type") == message_type]


def send_async_event_progress(
    messenger: MessagePublisher, tab_id: str, *, in_progress: bool, message: str | None = None
) -> None:
    messenger.publish(
        {
            "type": "asyncEventProgressMessage",
            "tabID": tab_id,
            "inProgress": in_progress,
            "message": message,
        }
    )


def update_file_component(
    messenger: MessagePublisher,
    tab_id: str,
    file_paths: list[NewFileZipInfo],
    deleted_files: list[DeletedFileInfo],
) -> None:
    messenger.publish(
        {
            "type": "updateFileComponent",
            "tabID": tab_id,
            "filePaths": [asdict(item) for item in file_paths],
            "deletedFiles": [asdict(item) for item in deleted_files],
        }
    )


class ReferenceLog:
    """Append-only log of code attributions for accepted changes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: list[str] = []

    def add_references(self, references: list[CodeReference]) -> None:
        lines = [_format_reference(reference) for reference in references]
        with self._lock:
            self._entries.extend(lines)

    def entries(self) -> list[str]:
        with self._lock:
            return list(self._entries)


def _format_reference(reference: CodeReference) -> str:
    parts = [reference.information.strip() or "Accepted generated code"]
    if reference.license_name:
        parts.append(f"license: {reference.license_name}")
    if reference.repository:
        parts.append(f"repository: {reference.repository}")
    if reference.url:
        parts.append(f"url: {reference.url}")
    return " | ".join(parts)
