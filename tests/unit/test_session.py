import pytest

from qdev.config import SessionConfig
from qdev.errors import (
    ConversationIdNotFoundError,
    FeatureDevServiceError,
    IllegalStateTransitionError,
)
from qdev.featuredev.client import CodeGenerationResult, FeatureDevClient
from qdev.featuredev.context import FeatureDevSessionContext
from qdev.featuredev.messages import InMemoryMessagePublisher
from qdev.featuredev.session import Session
from qdev.featuredev.states import (
    CodeGenerationState,
    ConversationNotStartedState,
    PrepareCodeGenerationState,
    RefinementState,
)
from qdev.types import (
    CodeReference,
    DeletedFileInfo,
    NewFileZipInfo,
    SessionStateAction,
    SessionStatePhase,
)


class ScriptedClient(FeatureDevClient):
    def __init__(self) -> None:
        super().__init__()
        self.conversations = 0
        self.plan_requests: list[str] = []
        self.code_requests: list[str] = []
        self.fail_next = False

    def create_conversation(self) -> str:
        self.conversations += 1
        return super().create_conversation()

    def generate_plan(self, conversation_id: str, upload_id: str, message: str) -> str:
        self._archive(conversation_id, upload_id)
        if self.fail_next:
            self.fail_next = False
            raise FeatureDevServiceError("service unavailable")
        self.plan_requests.append(message)
        return f"plan #{len(self.plan_requests)} for: {message}"

    def generate_code(
        self, conversation_id: str, upload_id: str, message: str
    ) -> CodeGenerationResult:
        self._archive(conversation_id, upload_id)
        self.code_requests.append(message)
        return CodeGenerationResult(
            new_files=[NewFileZipInfo(zip_file_path="src/new.py", file_content="x = 1\n")],
            deleted_files=[DeletedFileInfo(zip_file_path="old.py")],
            references=[CodeReference(license_name="MIT", repository="acme/lib")],
        )


@pytest.fixture()
def session(tmp_path) -> Session:
    (tmp_path / "old.py").write_text("y = 2\n", encoding="utf-8")
    context = FeatureDevSessionContext(tmp_path)
    return Session("tab-1", context, ScriptedClient())


def test_conversation_id_is_fatal_before_preloader(session: Session) -> None:
    assert isinstance(session.session_state, ConversationNotStartedState)
    with pytest.raises(ConversationIdNotFoundError):
        _ = session.conversation_id
    with pytest.raises(IllegalStateTransitionError):
        session.send("add a feature")


def test_preloader_runs_once_and_fixes_conversation_id(session: Session) -> None:
    messenger = InMemoryMessagePublisher()

    session.preloader("add login", messenger)
    conversation_id = session.conversation_id
    session.preloader("again", messenger)

    assert conversation_id
    assert session.conversation_id == conversation_id
    assert session._proxy_client.conversations == 1
    assert session.session_state.phase == SessionStatePhase.APPROACH
    assert session.latest_message == "add login"
    assert len(messenger.of_type("asyncEventProgressMessage")) == 1


def test_send_sets_task_once_and_moves_through_refinement(session: Session) -> None:
    session.preloader("add login", InMemoryMessagePublisher())

    first = session.send("add login")
    second = session.send("use OAuth instead")

    assert session.task == "add login"
    assert first.content == "plan #1 for: add login"
    assert second.content == "plan #2 for: use OAuth instead"
    state = session.session_state
    assert isinstance(state, RefinementState)
    assert state.current_iteration == 2
    assert state.approach == "plan #2 for: use OAuth instead"


def test_send_ignores_empty_message_for_task(session: Session) -> None:
    session.preloader("", InMemoryMessagePublisher())
    session.send("")
    session.send("real task")

    assert session.task == "real task"


def test_init_codegen_resets_phase_fields_and_keeps_approach(session: Session) -> None:
    messenger = InMemoryMessagePublisher()
    session.preloader("add login", messenger)
    session.send("add login")

    session.init_codegen(messenger)

    state = session.session_state
    assert isinstance(state, PrepareCodeGenerationState)
    assert state.approach == "plan #1 for: add login"
    assert state.file_paths == []
    assert state.deleted_files == []
    assert state.current_iteration == 0
    assert state.upload_id == ""
    assert session.latest_message == ""


def test_codegen_interaction_publishes_files_and_advances_iteration(session: Session) -> None:
    messenger = InMemoryMessagePublisher()
    session.preloader("add login", messenger)
    session.send("add login")
    session.init_codegen(messenger)

    interaction = session.send("go")

    assert interaction.interaction_succeeded
    state = session.session_state
    assert isinstance(state, PrepareCodeGenerationState)
    assert state.current_iteration == 1
    assert [item.zip_file_path for item in state.file_paths] == ["src/new.py"]
    assert "plan #1 for: add login" in session._proxy_client.code_requests[0]
    updates = messenger.of_type("updateFileComponent")
    assert updates[-1]["filePaths"][0]["zip_file_path"] == "src/new.py"


def test_codegen_state_publishes_progress_even_on_failure(tmp_path) -> None:
    class _Failing(ScriptedClient):
        def generate_code(self, conversation_id, upload_id, message):
            raise FeatureDevServiceError("boom")

    client = _Failing()
    context = FeatureDevSessionContext(tmp_path)
    session = Session("tab-2", context, client)
    session.preloader("task", InMemoryMessagePublisher())
    messenger = InMemoryMessagePublisher()
    session.init_codegen(messenger)
    state = session.session_state
    upload_id = client.upload_repository(session.conversation_id, context.get_project_zip())
    codegen = CodeGenerationState(
        tab_id="tab-2",
        approach=state.approach,
        config=state.config,
        upload_id=upload_id,
        current_iteration=0,
        messenger=messenger,
    )

    with pytest.raises(FeatureDevServiceError):
        codegen.interact(SessionStateAction(task="task", msg="go"))

    progress = messenger.of_type("asyncEventProgressMessage")
    assert progress[-1]["inProgress"] is False


def test_retries_are_tracked_per_phase_and_never_reset(tmp_path) -> None:
    context = FeatureDevSessionContext(tmp_path)
    session = Session(
        "tab-3",
        context,
        ScriptedClient(),
        config=SessionConfig(approach_retry_limit=3, code_generation_retry_limit=4),
    )
    messenger = InMemoryMessagePublisher()
    session.preloader("task", messenger)

    session.decrease_retries()
    session.decrease_retries()
    assert session.retries == 1

    session.init_codegen(messenger)
    assert session.retries == 4
    session.decrease_retries()
    assert session.retries == 3

    session.preloader("ignored", messenger)
    session.init_codegen(messenger)
    assert session.retries == 3
    assert session._approach_retries == 1


def test_failed_interaction_keeps_current_state(session: Session) -> None:
    session.preloader("add login", InMemoryMessagePublisher())
    session.send("add login")
    before = session.session_state
    session._proxy_client.fail_next = True

    with pytest.raises(FeatureDevServiceError):
        session.send("change it")

    assert session.session_state is before


def test_insert_changes_writes_deletes_and_logs_references(session: Session, tmp_path) -> None:
    refreshed = []
    session.context._on_refresh = refreshed.append

    result = session.insert_changes(
        [
            NewFileZipInfo(zip_file_path="src/new.py", file_content="naïve = True\n"),
            NewFileZipInfo(zip_file_path="skip.py", file_content="", rejected=True),
        ],
        [DeletedFileInfo(zip_file_path="old.py"), DeletedFileInfo(zip_file_path="missing.py")],
        [CodeReference(license_name="MIT", repository="acme/lib", information="snippet")],
    )

    assert (tmp_path / "src" / "new.py").read_bytes() == "naïve = True\n".encode("utf-8")
    assert not (tmp_path / "skip.py").exists()
    assert not (tmp_path / "old.py").exists()
    assert result.written == ["src/new.py"]
    assert result.deleted == ["old.py", "missing.py"]
    assert result.succeeded
    assert session.reference_log.entries() == ["snippet | license: MIT | repository: acme/lib"]
    assert refreshed == [tmp_path.resolve()]


def test_insert_changes_isolates_failing_entries(session: Session, tmp_path) -> None:
    (tmp_path / "blocker").write_text("not a directory", encoding="utf-8")

    result = session.insert_changes(
        [
            NewFileZipInfo(zip_file_path="../escape.py", file_content="x"),
            NewFileZipInfo(zip_file_path="blocker/inner.py", file_content="x"),
            NewFileZipInfo(zip_file_path="ok.py", file_content="ok"),
        ],
        [],
        [],
    )

    assert result.written == ["ok.py"]
    assert set(result.failed) == {"../escape.py", "blocker/inner.py"}
    assert not result.succeeded
    assert (tmp_path / "ok.py").read_text(encoding="utf-8") == "ok"
    assert not (tmp_path.parent / "escape.py").exists()


def test_update_files_paths_publishes_file_component(session: Session) -> None:
    messenger = InMemoryMessagePublisher()

    session.update_files_paths(
        messenger,
        "tab-1",
        [NewFileZipInfo(zip_file_path="a.py", file_content="a")],
        [DeletedFileInfo(zip_file_path="b.py", rejected=True)],
    )

    assert messenger.messages == [
        {
            "type": "updateFileComponent",
            "tabID": "tab-1",
            "filePaths": [{"zip_file_path": "a.py", "file_content": "a", "rejected": False}],
            "deletedFiles": [{"zip_file_path": "b.py", "rejected": True}],
        }
    ]
