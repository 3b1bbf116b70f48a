import pytest
from fastapi.testclient import TestClient

from qdev.api.main import create_app
from qdev.errors import FeatureDevServiceError
from qdev.featuredev.context import RepositoryArchive
from qdev.featuredev.fallback import DeterministicFeatureDevClient

_FILES = {
    "src/main/java/com/acme/Main.java": (
        "package com.acme;\n\nimport com.acme.util.Invoice;\n\npublic class Main {\n"
        "    // export invoice\n"
    ),
    "src/main/java/com/acme/util/Invoice.java": "\n".join(
        ["package com.acme.util;"] + [f"// export invoice line {i}" for i in range(79)]
    ),
    "notes.txt": "release notes\n",
}


def test_api_feature_dev_flow_context_traces_metrics(make_project) -> None:
    project = make_project(_FILES)
    client = TestClient(create_app(project.root, client=DeterministicFeatureDevClient()))

    assert client.get("/health").json()["client"] == "DeterministicFeatureDevClient"

    create_resp = client.post("/sessions", json={"tab_id": "tab-1"})
    assert create_resp.status_code == 200
    assert create_resp.json()["phase"] == "Init"
    assert create_resp.json()["conversation_id"] is None
    assert client.post("/sessions", json={"tab_id": "tab-1"}).status_code == 409

    plan_resp = client.post("/sessions/tab-1/messages", json={"message": "add invoice export"})
    assert plan_resp.status_code == 200
    plan_payload = plan_resp.json()
    assert plan_payload["interaction"]["content"].startswith("1. Clarify the change: add invoice export")
    assert "src/main/java/com/acme/util/Invoice.java" in plan_payload["interaction"]["content"]
    assert plan_payload["session"]["phase"] == "Approach"
    assert plan_payload["session"]["state"] == "RefinementState"
    assert plan_payload["session"]["task"] == "add invoice export"
    assert plan_payload["session"]["conversation_id"]

    assert client.post("/sessions/tab-1/insert", json={}).status_code == 409

    codegen_resp = client.post("/sessions/tab-1/codegen")
    assert codegen_resp.status_code == 200
    assert codegen_resp.json()["phase"] == "Codegen"
    assert codegen_resp.json()["retries"] == 4
    assert codegen_resp.json()["approach"] == plan_payload["interaction"]["content"]

    code_resp = client.post("/sessions/tab-1/messages", json={"message": "go ahead"})
    assert code_resp.status_code == 200
    assert code_resp.json()["session"]["state"] == "PrepareCodeGenerationState"

    insert_resp = client.post("/sessions/tab-1/insert", json={"rejected_paths": []})
    assert insert_resp.status_code == 200
    insert_payload = insert_resp.json()
    assert insert_payload["succeeded"]
    assert len(insert_payload["written"]) == 1
    assert insert_payload["written"][0].startswith("docs/feature-dev/")
    assert (project.root / insert_payload["written"][0]).is_file()

    messages = client.get("/sessions/tab-1/messages").json()
    kinds = {item["type"] for item in messages["items"]}
    assert kinds == {"asyncEventProgressMessage", "updateFileComponent"}
    assert messages["items"][-1] == {
        "type": "asyncEventProgressMessage",
        "tabID": "tab-1",
        "inProgress": False,
        "message": None,
    }

    context_resp = client.post(
        "/context/supplemental", json={"path": "src/main/java/com/acme/Main.java"}
    )
    assert context_resp.status_code == 200
    context_payload = context_resp.json()
    assert context_payload["is_utg"] is False
    assert context_payload["target_file_name"] == "Main.java"
    assert context_payload["contents"][0]["path"] == "src/main/java/com/acme/util/Invoice.java"

    skipped_resp = client.post("/context/supplemental", json={"path": "notes.txt"})
    assert skipped_resp.status_code == 200
    assert skipped_resp.json() == {"contents": None, "target_file_name": "notes.txt"}

    assert client.post("/context/supplemental", json={"path": "missing.java"}).status_code == 404

    traces = client.get("/traces").json()["items"]
    assert [trace["strategy"] for trace in traces] == ["crossfile", "skipped"]
    assert client.get(f"/traces/{traces[0]['trace_id']}").status_code == 200
    assert client.get("/traces/unknown").status_code == 404

    metrics = client.get("/metrics").json()
    assert metrics["total_requests"] == 2
    assert metrics["failed_requests"] == 0


def test_api_service_failures_consume_retries(make_project) -> None:
    class _Unavailable(DeterministicFeatureDevClient):
        def generate_plan(self, conversation_id, upload_id, message):
            raise FeatureDevServiceError("service unavailable")

    project = make_project({"app.py": "x = 1\n"})
    client = TestClient(create_app(project.root, client=_Unavailable()))
    client.post("/sessions", json={"tab_id": "tab-2"})

    retries = []
    for _ in range(3):
        resp = client.post("/sessions/tab-2/messages", json={"message": "add caching"})
        assert resp.status_code == 502
        retries.append(resp.json()["detail"]["retries"])

    assert retries == [2, 1, 0]
    exhausted = client.post("/sessions/tab-2/messages", json={"message": "add caching"})
    assert exhausted.status_code == 429
    assert client.post("/sessions/unknown/messages", json={"message": "hi"}).status_code == 404

    assert client.delete("/sessions/tab-2").json() == {"tab_id": "tab-2", "closed": True}
    assert client.get("/sessions/tab-2").status_code == 404
    assert client.delete("/sessions/tab-2").status_code == 404


def test_api_rejects_context_requests_outside_project_root(tmp_path) -> None:
    root = tmp_path / "proj"
    secret = tmp_path / "secret"
    root.mkdir()
    secret.mkdir()
    (root / "main.py").write_text("import os\n", encoding="utf-8")
    (secret / "a.py").write_text("import b\n", encoding="utf-8")
    (secret / "b.py").write_text("\n" * 50 + "TOP_SECRET = 'hunter2'\n", encoding="utf-8")
    client = TestClient(create_app(root, client=DeterministicFeatureDevClient()))

    for path in (str(secret / "a.py"), "../secret/a.py"):
        resp = client.post("/context/supplemental", json={"path": path})
        assert resp.status_code == 404
        assert "hunter2" not in resp.text

    assert client.get("/traces").json()["items"] == []


def test_api_close_session_releases_conversation(make_project) -> None:
    project = make_project({"app.py": "x = 1\n"})
    feature_client = DeterministicFeatureDevClient()
    client = TestClient(create_app(project.root, client=feature_client))
    client.post("/sessions", json={"tab_id": "tab-3"})
    payload = client.post("/sessions/tab-3/messages", json={"message": "add caching"}).json()
    conversation_id = payload["session"]["conversation_id"]
    archive = RepositoryArchive(payload=b"", checksum="", file_paths=[])

    feature_client.upload_repository(conversation_id, archive)
    assert client.delete("/sessions/tab-3").status_code == 200

    with pytest.raises(FeatureDevServiceError):
        feature_client.upload_repository(conversation_id, archive)
