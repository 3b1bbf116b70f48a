from qdev.ingest.pipeline import ChunkExtractor
from qdev.ingest.project import LocalProject


def test_test_sources_are_recognised_by_test_roots_only(make_project) -> None:
    project = make_project(
        {
            "src/test/java/com/acme/MainTest.java": "",
            "service/src/test/java/com/acme/ServiceTest.java": "",
            "tests/test_app.py": "",
            "src/main/java/com/acme/test/Fixture.java": "",
            "app/tests/helpers.py": "",
            "src/main/java/com/acme/Main.java": "",
        }
    )

    def is_test(relative: str) -> bool:
        return project.is_test_source(project.source_file(relative))

    assert is_test("src/test/java/com/acme/MainTest.java")
    assert is_test("service/src/test/java/com/acme/ServiceTest.java")
    assert is_test("tests/test_app.py")
    assert not is_test("src/main/java/com/acme/test/Fixture.java")
    assert not is_test("app/tests/helpers.py")
    assert not is_test("src/main/java/com/acme/Main.java")


def test_files_outside_root_are_not_contained_or_chunked(tmp_path) -> None:
    (tmp_path / "proj").mkdir()
    (tmp_path / "proj" / "a.py").write_text("x = 1\n", encoding="utf-8")
    (tmp_path / "secret").mkdir()
    (tmp_path / "secret" / "b.py").write_text("TOP_SECRET = 'hunter2'\n", encoding="utf-8")
    project = LocalProject(tmp_path / "proj")
    outside = project.source_file("../secret/b.py")

    assert project.contains(project.source_file("a.py"))
    assert not project.contains(outside)
    assert not project.contains(project.source_file(tmp_path / "secret" / "b.py"))
    assert not project.is_test_source(outside)
    assert ChunkExtractor(project).extract(project.source_file("a.py"), [lambda _: [outside]]) == []
