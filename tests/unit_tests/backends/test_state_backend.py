"""Unit tests for StateBackend."""

import pytest

from agentvfs.backends.state import StateBackend
from agentvfs.backends.utils import create_file_data
from tests.utils import make_runtime


def _backend(files: dict | None = None) -> StateBackend:
    return StateBackend(make_runtime(state={"messages": [], "files": files or {}}))


def test_write_returns_update_without_mutating_state() -> None:
    runtime = make_runtime()
    backend = StateBackend(runtime)

    result = backend.write("/notes.md", "hello\nworld")

    assert result.error is None
    assert result.path == "/notes.md"
    assert result.files_update is not None
    assert result.files_update["/notes.md"]["content"] == ["hello", "world"]
    assert runtime.state["files"] == {}


def test_overwrite_keeps_created_at() -> None:
    existing = create_file_data("old", created_at="2024-01-01T00:00:00+00:00")
    backend = _backend({"/a.txt": existing})

    result = backend.write("/a.txt", "new")

    assert result.files_update is not None
    assert result.files_update["/a.txt"]["created_at"] == "2024-01-01T00:00:00+00:00"
    assert result.files_update["/a.txt"]["content"] == ["new"]


def test_read_window_and_missing_file() -> None:
    backend = _backend({"/a.txt": create_file_data("l1\nl2\nl3")})

    assert backend.read("/a.txt") == "l1\nl2\nl3"
    assert backend.read("/a.txt", offset=1, limit=1) == "l2"
    assert backend.read("/a.txt", offset=5) == ""
    assert backend.read("/missing.txt") == "Error: File '/missing.txt' not found"


def test_edit_replaces_and_reports_occurrences() -> None:
    backend = _backend({"/a.py": create_file_data("x = 1\ny = 1")})

    result = backend.edit("/a.py", "1", "2", replace_all=True)

    assert result.error is None
    assert result.occurrences == 2
    assert result.files_update is not None
    assert result.files_update["/a.py"]["content"] == ["x = 2", "y = 2"]


def test_edit_errors() -> None:
    backend = _backend({"/a.py": create_file_data("x = 1\ny = 1")})

    assert backend.edit("/missing.py", "a", "b").error == "Error: File '/missing.py' not found"
    ambiguous = backend.edit("/a.py", "1", "2")
    assert ambiguous.error is not None
    assert "appears 2 times" in ambiguous.error
    assert ambiguous.files_update is None


def test_ls_glob_grep() -> None:
    backend = _backend(
        {
            "/a.txt": create_file_data("alpha"),
            "/dir/b.py": create_file_data("beta\nalpha beta"),
        }
    )

    assert [i["path"] for i in backend.ls_info("/")] == ["/a.txt", "/dir/"]
    assert [i["path"] for i in backend.glob_info("**/*.py")] == ["/dir/b.py"]
    assert backend.grep_raw("alpha", path="/dir") == [{"path": "/dir/b.py", "line": 2, "text": "alpha beta"}]


def test_download_and_upload() -> None:
    backend = _backend({"/a.txt": create_file_data("hi")})

    responses = backend.download_files(["/a.txt", "/missing.txt"])

    assert responses[0].content == b"hi"
    assert responses[0].error is None
    assert responses[1].error == "file_not_found"
    with pytest.raises(NotImplementedError):
        backend.upload_files([("/b.txt", b"x")])


def test_runtime_without_files_key() -> None:
    backend = StateBackend(make_runtime(state={"messages": []}))
    assert backend.ls_info("/") == []
