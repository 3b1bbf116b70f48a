"""Feature-dev conversation states.

Typical order: ConversationNotStarted -> PrepareRefinement -> Refinement
(repeated) -> PrepareCodeGeneration -> CodeGeneration -> PrepareCodeGeneration
(repeated). The move into code generation is triggered by the user through
`Session.init_codegen`, never returned by `interact`.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from qdev.errors import IllegalStateTransitionError
from qdev.featuredev.client import FeatureDevClient
from qdev.featuredev.context import FeatureDevSessionContext
from qdev.featuredev.messages import (
    MessagePublisher,
    send_async_event_progress,
    update_file_component,
)
from qdev.types import (
    CodeReference,
    DeletedFileInfo,
    Interaction,
    NewFileZipInfo,
    SessionStateAction,
    SessionStatePhase,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionStateConfig:
    conversation_id: str
    proxy_client: FeatureDevClient
    repo_context: FeatureDevSessionContext


@dataclass(slots=True)
class SessionStateInteraction:
    interaction: Interaction
    next_state: SessionState | None = None


class SessionState(ABC):
    """One variant of the conversation; exactly one is current per session."""

    phase: SessionStatePhase

    def __init__(self, approach: str, tab_id: str) -> None:
        self.approach = approach
        self.tab_id = tab_id

    @abstractmethod
    def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        """Handle one user message, optionally naming the next state."""


class ConversationNotStartedState(SessionState):
    phase = SessionStatePhase.INIT

    def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        raise IllegalStateTransitionError(
            "Illegal transition between states, restart the conversation"
        )


def _upload(config: SessionStateConfig) -> str:
    archive = config.repo_context.get_project_zip()
    upload_id = config.proxy_client.upload_repository(config.conversation_id, archive)
    LOGGER.debug(
        "Uploaded %d files for conversation %s (upload %s)",
        len(archive.file_paths),
        config.conversation_id,
        upload_id,
    )
    return upload_id


class PrepareRefinementState(SessionState):
    phase = SessionStatePhase.APPROACH

    def __init__(self, approach: str, tab_id: str, config: SessionStateConfig) -> None:
        super().__init__(approach, tab_id)
        self.config = config

    def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        upload_id = _upload(self.config)
        next_state = RefinementState(
            approach=self.approach,
            tab_id=self.tab_id,
            config=self.config,
            upload_id=upload_id,
            current_iteration=0,
        )
        response = next_state.interact(action)
        self.approach = next_state.approach
        return response


class RefinementState(SessionState):
    phase = SessionStatePhase.APPROACH

    def __init__(
        self,
        approach: str,
        tab_id: str,
        config: SessionStateConfig,
        upload_id: str,
        current_iteration: int,
    ) -> None:
        super().__init__(approach, tab_id)
        self.config = config
        self.upload_id = upload_id
        self.current_iteration = current_iteration

    def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        self.approach = self.config.proxy_client.generate_plan(
            self.config.conversation_id, self.upload_id, action.msg
        )
        return SessionStateInteraction(
            next_state=RefinementState(
                approach=self.approach,
                tab_id=self.tab_id,
                config=self.config,
                upload_id=self.upload_id,
                current_iteration=self.current_iteration + 1,
            ),
            interaction=Interaction(content=self.approach),
        )


class PrepareCodeGenerationState(SessionState):
    phase = SessionStatePhase.CODEGEN

    def __init__(
        self,
        tab_id: str,
        approach: str,
        config: SessionStateConfig,
        file_paths: list[NewFileZipInfo],
        deleted_files: list[DeletedFileInfo],
        references: list[CodeReference],
        current_iteration: int,
        upload_id: str,
        messenger: MessagePublisher,
    ) -> None:
        super().__init__(approach, tab_id)
        self.config = config
        self.file_paths = file_paths
        self.deleted_files = deleted_files
        self.references = references
        self.current_iteration = current_iteration
        self.upload_id = upload_id
        self.messenger = messenger

    def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        send_async_event_progress(
            self.messenger, self.tab_id, in_progress=True, message="Uploading code..."
        )
        upload_id = _upload(self.config)
        next_state = CodeGenerationState(
            tab_id=self.tab_id,
            approach=self.approach,
            config=self.config,
            upload_id=upload_id,
            current_iteration=self.current_iteration,
            messenger=self.messenger,
        )
        response = next_state.interact(action)
        self.approach = next_state.approach
        return response


class CodeGenerationState(SessionState):
    phase = SessionStatePhase.CODEGEN

    def __init__(
        self,
        tab_id: str,
        approach: str,
        config: SessionStateConfig,
        upload_id: str,
        current_iteration: int,
        messenger: MessagePublisher,
    ) -> None:
        super().__init__(approach, tab_id)
        self.config = config
        self.upload_id = upload_id
        self.current_iteration = current_iteration
        self.messenger = messenger

    def interact(self, action: SessionStateAction) -> SessionStateInteraction:
        send_async_event_progress(
            self.messenger, self.tab_id, in_progress=True, message="Generating code..."
        )
        try:
            result = self.config.proxy_client.generate_code(
                self.config.conversation_id, self.upload_id, self._request(action)
            )
        finally:
            send_async_event_progress(self.messenger, self.tab_id, in_progress=False)

        update_file_component(self.messenger, self.tab_id, result.new_files, result.deleted_files)
        return SessionStateInteraction(
            next_state=PrepareCodeGenerationState(
                tab_id=self.tab_id,
                approach=self.approach,
                config=self.config,
                file_paths=result.new_files,
                deleted_files=result.deleted_files,
                references=result.references,
                current_iteration=self.current_iteration + 1,
                upload_id=self.upload_id,
                messenger=self.messenger,
            ),
            interaction=Interaction(content="", interaction_succeeded=True),
        )

    def _request(self, action: SessionStateAction) -> str:
        parts = [action.task, f"Approach:\n{self.approach}"]
        # Later iterations carry the user's feedback on the previous result.
        if self.current_iteration > 0 and action.msg and action.msg != action.task:
            parts.append(f"Feedback:\n{action.msg}")
        return "\n\n".join(part for part in parts if part.strip())
