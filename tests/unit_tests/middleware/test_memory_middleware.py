"""Unit tests for memory loading and MemoryMiddleware."""

from pathlib import Path

import pytest
from langchain.agents import create_agent
from langchain_core.messages import AIMessage, HumanMessage
from langgraph.store.memory import InMemoryStore

from agentvfs.backends.filesystem import FilesystemBackend
from agentvfs.backends.protocol import BackendProtocol, FactoryBackendProvider, FileDownloadResponse, ReadResult
from agentvfs.backends.state import StateBackend
from agentvfs.backends.store import StoreBackend
from agentvfs.backends.utils import create_file_data
from agentvfs.middleware.memory import (
    NO_MEMORY_LOADED,
    MemoryLoadError,
    MemoryMiddleware,
    aload_memory,
    format_memory_contents,
    load_memory,
)
from tests.utils import FixedGenericFakeChatModel, SystemMessageCapturingMiddleware, make_agent_runtime, system_text


def make_memory_content(title: str, content: str) -> str:
    return f"""# {title}

{content}
"""


class DeniedBackend(BackendProtocol):
    """Backend whose downloads always fail with permission_denied."""

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        return [FileDownloadResponse(path=p, error="permission_denied") for p in paths]


class ReadOnlyBackend(BackendProtocol):
    """Backend that supports read_raw but not download_files."""

    def __init__(self, files: dict[str, str]) -> None:
        self.files = files

    def read_raw(self, file_path: str, offset: int = 0, limit: int = 100) -> ReadResult:
        if file_path not in self.files:
            return ReadResult(error=f"Error: File '{file_path}' not found", error_code="file_not_found")
        return ReadResult(content="\n".join(self.files[file_path].split("\n")[offset : offset + limit]))


def test_format_memory_locations_empty() -> None:
    middleware = MemoryMiddleware(backend=DeniedBackend(), sources=[])
    assert middleware._format_memory_locations() == "    **Memory Sources:** None configured"


def test_format_memory_locations_multiple() -> None:
    middleware = MemoryMiddleware(backend=DeniedBackend(), sources=["/user/AGENTS.md", "/project/AGENTS.md"])

    result = middleware._format_memory_locations()

    assert result == "    **Memory Sources:**\n    - `/user/AGENTS.md`\n    - `/project/AGENTS.md`"


def test_format_memory_contents_keeps_source_order() -> None:
    contents = {"/b.md": "B", "/a.md": "A"}

    assert format_memory_contents(contents, ["/a.md", "/missing.md", "/b.md"]) == "/a.md\nA\n\n/b.md\nB"
    assert format_memory_contents({}, ["/a.md"]) == NO_MEMORY_LOADED


def test_load_memory_from_filesystem(tmp_path: Path) -> None:
    (tmp_path / "user").mkdir()
    (tmp_path / "user" / "AGENTS.md").write_text(make_memory_content("User", "Prefers tabs."))
    (tmp_path / "project").mkdir()
    (tmp_path / "project" / "AGENTS.md").write_text(make_memory_content("Project", "Uses pytest."))
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    contents = load_memory(backend, ["/user/AGENTS.md", "/missing/AGENTS.md", "/project/AGENTS.md"])

    assert list(contents) == ["/user/AGENTS.md", "/project/AGENTS.md"]
    assert "Prefers tabs." in contents["/user/AGENTS.md"]
    assert "Uses pytest." in contents["/project/AGENTS.md"]


def test_empty_memory_file_is_skipped(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("")
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)
    assert load_memory(backend, ["/AGENTS.md"]) == {}


def test_non_missing_errors_are_logged_by_default(caplog: pytest.LogCaptureFixture) -> None:
    contents = load_memory(DeniedBackend(), ["/AGENTS.md"])

    assert contents == {}
    assert "permission_denied" in caplog.text


def test_strict_mode_raises_memory_load_error() -> None:
    with pytest.raises(MemoryLoadError) as exc_info:
        load_memory(DeniedBackend(), ["/AGENTS.md"], strict=True)

    assert exc_info.value.path == "/AGENTS.md"
    assert exc_info.value.error == "permission_denied"
    assert str(exc_info.value) == "Failed to load memory from /AGENTS.md: permission_denied"


def test_strict_mode_still_skips_missing_files(tmp_path: Path) -> None:
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)
    assert load_memory(backend, ["/missing.md"], strict=True) == {}


def test_invalid_utf8_is_reported(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_bytes(b"\xff\xfe")
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    with pytest.raises(MemoryLoadError, match="invalid utf-8"):
        load_memory(backend, ["/AGENTS.md"], strict=True)


def test_read_fallback_when_download_is_unsupported() -> None:
    long_doc = "\n".join(f"rule {i}" for i in range(500))
    backend = ReadOnlyBackend({"/AGENTS.md": long_doc})

    contents = load_memory(backend, ["/AGENTS.md", "/missing.md"], strict=True)

    assert contents == {"/AGENTS.md": long_doc}


def test_read_fallback_keeps_content_that_looks_like_an_error() -> None:
    backend = ReadOnlyBackend({"/AGENTS.md": "Error handling: always retry twice."})

    assert load_memory(backend, ["/AGENTS.md"], strict=True) == {"/AGENTS.md": "Error handling: always retry twice."}


def test_backend_exception_skips_only_that_source(caplog: pytest.LogCaptureFixture) -> None:
    store = InMemoryStore()
    store.put(("filesystem",), "/AGENTS.md", {"content": 42})
    store.put(("filesystem",), "/other.md", dict(create_file_data("second source")))
    middleware = MemoryMiddleware(backend=lambda rt: StoreBackend(rt), sources=["/AGENTS.md", "/other.md"])

    update = middleware.before_agent({}, make_agent_runtime(store=store), {})  # type: ignore[arg-type]

    assert update == {"memory_contents": {"/other.md": "second source"}}
    assert "Skipping memory source /AGENTS.md" in caplog.text


def test_strict_mode_wraps_backend_exception() -> None:
    store = InMemoryStore()
    store.put(("filesystem",), "/AGENTS.md", {"content": 42})
    backend = StoreBackend(make_agent_runtime(store=store))  # type: ignore[arg-type]

    with pytest.raises(MemoryLoadError, match="ValueError") as exc_info:
        load_memory(backend, ["/AGENTS.md"], strict=True)

    assert exc_info.value.path == "/AGENTS.md"
    assert isinstance(exc_info.value.__cause__, ValueError)


async def test_async_backend_exception_skips_only_that_source() -> None:
    store = InMemoryStore()
    await store.aput(("filesystem",), "/AGENTS.md", {"content": 42})
    await store.aput(("filesystem",), "/other.md", dict(create_file_data("second source")))
    backend = StoreBackend(make_agent_runtime(store=store))  # type: ignore[arg-type]

    assert await aload_memory(backend, ["/AGENTS.md", "/other.md"]) == {"/other.md": "second source"}


def test_store_backend_memory() -> None:
    store = InMemoryStore()
    store.put(("filesystem",), "/memories/AGENTS.md", dict(create_file_data("Remember the user's name is Sam.")))
    runtime = make_agent_runtime(store=store)
    middleware = MemoryMiddleware(backend=lambda rt: StoreBackend(rt), sources=["/memories/AGENTS.md"])

    update = middleware.before_agent({}, runtime, {})  # type: ignore[arg-type]

    assert update == {"memory_contents": {"/memories/AGENTS.md": "Remember the user's name is Sam."}}


def test_before_agent_skips_when_already_loaded() -> None:
    middleware = MemoryMiddleware(backend=DeniedBackend(), sources=["/AGENTS.md"], strict=True)
    assert middleware.before_agent({"memory_contents": {}}, make_agent_runtime(), {}) is None  # type: ignore[arg-type]


def test_state_backend_memory_from_agent_input() -> None:
    middleware = MemoryMiddleware(backend=FactoryBackendProvider(StateBackend), sources=["/AGENTS.md"])
    state = {"messages": [], "files": {"/AGENTS.md": create_file_data("state memory")}}

    update = middleware.before_agent(state, make_agent_runtime(), {})  # type: ignore[arg-type]

    assert update == {"memory_contents": {"/AGENTS.md": "state memory"}}


async def test_async_loading(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("async memory")
    backend = FilesystemBackend(root_dir=tmp_path, virtual_mode=True)

    assert await aload_memory(backend, ["/AGENTS.md"]) == {"/AGENTS.md": "async memory"}

    middleware = MemoryMiddleware(backend=backend, sources=["/AGENTS.md"])
    update = await middleware.abefore_agent({}, make_agent_runtime(), {})  # type: ignore[arg-type]
    assert update == {"memory_contents": {"/AGENTS.md": "async memory"}}


def test_memory_is_prepended_to_system_prompt(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("Always answer in haiku.")
    capture = SystemMessageCapturingMiddleware()
    middleware = MemoryMiddleware(backend=FilesystemBackend(root_dir=tmp_path, virtual_mode=True), sources=["/AGENTS.md"])
    model = FixedGenericFakeChatModel(messages=iter([AIMessage(content="Hi.")]))
    agent = create_agent(model, system_prompt="You are helpful.", middleware=[middleware, capture])

    result = agent.invoke({"messages": [HumanMessage(content="Hello")]})

    text = system_text(capture.captured_system_messages[0])
    assert text.startswith("<agent_memory>\n/AGENTS.md\nAlways answer in haiku.\n</agent_memory>")
    assert "    - `/AGENTS.md`" in text
    assert text.endswith("</memory_guidelines>\n\nYou are helpful.")
    assert "memory_contents" not in result


def test_no_memory_placeholder(tmp_path: Path) -> None:
    capture = SystemMessageCapturingMiddleware()
    middleware = MemoryMiddleware(backend=FilesystemBackend(root_dir=tmp_path, virtual_mode=True), sources=["/AGENTS.md"])
    model = FixedGenericFakeChatModel(messages=iter([AIMessage(content="Hi.")]))
    agent = create_agent(model, middleware=[middleware, capture])

    agent.invoke({"messages": [HumanMessage(content="Hello")]})

    assert f"<agent_memory>\n{NO_MEMORY_LOADED}\n</agent_memory>" in system_text(capture.captured_system_messages[0])
