"""Feature-dev chat session: one per conversation tab."""

from __future__ import annotations

import logging
import time
from pathlib import Path

from qdev.config import SessionConfig
from qdev.errors import ConversationIdNotFoundError, SessionStateNotInitializedError
from qdev.featuredev.client import FeatureDevClient
from qdev.featuredev.context import FeatureDevSessionContext
from qdev.featuredev.messages import (
    MessagePublisher,
    ReferenceLog,
    send_async_event_progress,
    update_file_component,
)
from qdev.featuredev.states import (
    ConversationNotStartedState,
    PrepareCodeGenerationState,
    PrepareRefinementState,
    SessionState,
    SessionStateConfig,
)
from qdev.types import (
    CodeReference,
    DeletedFileInfo,
    InsertResult,
    Interaction,
    NewFileZipInfo,
    SessionStateAction,
    SessionStatePhase,
)

LOGGER = logging.getLogger(__name__)


class Session:
    """Holds the current conversation state and the session's retry budget.

    The conversation id is assigned once by `preloader`; reading it earlier
    is a programming error. Retry counters are a lifetime budget: they only
    go down, and leaving a phase does not restore them.
    """

    def __init__(
        self,
        tab_id: str,
        context: FeatureDevSessionContext,
        proxy_client: FeatureDevClient,
        *,
        config: SessionConfig | None = None,
        reference_log: ReferenceLog | None = None,
    ) -> None:
        self.tab_id = tab_id
        self.context = context
        self.config = config or context.config
        self.reference_log = reference_log or ReferenceLog()
        self.session_start_time = time.time()

        self._state: SessionState | None = ConversationNotStartedState("", tab_id)
        self._preloader_finished = False
        self._conversation_id: str | None = None
        self._latest_message = ""
        self._task = ""
        self._proxy_client = proxy_client

        self._approach_retries = self.config.approach_retry_limit
        self._codegen_retries = self.config.code_generation_retry_limit

    def preloader(self, msg: str, messenger: MessagePublisher) -> None:
        """Run the one-time setup that must finish before a message is sent."""
        if not self._preloader_finished:
            self._setup_conversation(msg)
            self._preloader_finished = True
            send_async_event_progress(messenger, self.tab_id, in_progress=True)

    def _setup_conversation(self, msg: str) -> None:
        # Kept so a failed first message can be retried.
        self._latest_message = msg

        if self._conversation_id is not None:
            raise RuntimeError("Conversation ID is already assigned")
        self._conversation_id = self._proxy_client.create_conversation()
        LOGGER.info("Started conversation %s for tab %s", self._conversation_id, self.tab_id)
        self._state = PrepareRefinementState("", self.tab_id, self._state_config())

    def init_codegen(self, messenger: MessagePublisher) -> None:
        """Move to code generation; triggered by the user accepting the approach."""
        self._state = PrepareCodeGenerationState(
            tab_id=self.session_state.tab_id,
            approach=self.session_state.approach,
            config=self._state_config(),
            file_paths=[],
            deleted_files=[],
            references=[],
            current_iteration=0,
            upload_id="",
            messenger=messenger,
        )
        self._latest_message = ""
        LOGGER.info("Approach accepted for conversation %s", self.conversation_id)

    def update_files_paths(
        self,
        messenger: MessagePublisher,
        tab_id: str,
        file_paths: list[NewFileZipInfo],
        deleted_files: list[DeletedFileInfo],
    ) -> None:
        update_file_component(messenger, tab_id, file_paths, deleted_files)

    def insert_changes(
        self,
        file_paths: list[NewFileZipInfo],
        deleted_files: list[DeletedFileInfo],
        references: list[CodeReference],
    ) -> InsertResult:
        """Apply accepted changes to the project, one file at a time.

        Rejected entries are skipped. A failing entry is recorded in
        `InsertResult.failed` and does not stop the rest of the batch.
        """

        root = self.context.project_root
        result = InsertResult()

        for new_file in file_paths:
            if new_file.rejected:
                continue
            try:
                target = _resolve_inside(root, new_file.zip_file_path)
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(new_file.file_content.encode("utf-8"))
            except (OSError, ValueError) as exc:
                LOGGER.warning("Failed to write %s: %s", new_file.zip_file_path, exc)
                result.failed[new_file.zip_file_path] = str(exc)
                continue
            result.written.append(new_file.zip_file_path)

        for deleted in deleted_files:
            if deleted.rejected:
                continue
            try:
                _resolve_inside(root, deleted.zip_file_path).unlink(missing_ok=True)
            except (OSError, ValueError) as exc:
                LOGGER.warning("Failed to delete %s: %s", deleted.zip_file_path, exc)
                result.failed[deleted.zip_file_path] = str(exc)
                continue
            result.deleted.append(deleted.zip_file_path)

        self.reference_log.add_references(references)
        self.context.refresh()
        return result

    def send(self, msg: str) -> Interaction:
        # The first non-empty message becomes the task for the whole session.
        if not self._task and msg:
            self._task = msg

        self._latest_message = msg
        return self._next_interaction(msg)

    def _next_interaction(self, msg: str) -> Interaction:
        action = SessionStateAction(task=self._task, msg=msg)
        resp = self.session_state.interact(action)
        if resp.next_state is not None:
            # The approach may have changed during the interaction.
            new_approach = self.session_state.approach
            self._state = resp.next_state
            self.session_state.approach = new_approach
        return resp.interaction

    def _state_config(self) -> SessionStateConfig:
        return SessionStateConfig(
            conversation_id=self.conversation_id,
            proxy_client=self._proxy_client,
            repo_context=self.context,
        )

    @property
    def conversation_id(self) -> str:
        if self._conversation_id is None:
            raise ConversationIdNotFoundError()
        return self._conversation_id

    @property
    def has_conversation(self) -> bool:
        return self._conversation_id is not None

    @property
    def session_state(self) -> SessionState:
        if self._state is None:
            raise SessionStateNotInitializedError()
        return self._state

    @property
    def latest_message(self) -> str:
        return self._latest_message

    @property
    def task(self) -> str:
        return self._task

    @property
    def retries(self) -> int:
        if self.session_state.phase == SessionStatePhase.CODEGEN:
            return self._codegen_retries
        return self._approach_retries

    def decrease_retries(self) -> None:
        if self.session_state.phase == SessionStatePhase.CODEGEN:
            self._codegen_retries -= 1
        else:
            self._approach_retries -= 1


def _resolve_inside(root: Path, relative: str) -> Path:
    target = (root / relative).resolve()
    if root not in target.parents:
        raise ValueError(f"Path escapes the project root: {relative}")
    return target
