"""
모듈명: memory.py
설명: 영구 메모리 문서(AGENTS.md 등)를 로드해 시스템 프롬프트 앞에 주입하는 미들웨어

메모리 소스는 디렉토리가 아니라 개별 문서 경로입니다. 모든 소스의 내용이
설정 순서대로 유지되며 (서로 덮어쓰지 않음), 각 내용은 소스 경로를 머리글로 붙여
`<agent_memory>` 섹션에 담깁니다.

오류 처리:
    - file_not_found: 선택적 소스로 보고 조용히 건너뜀
    - 그 밖의 오류: 기본적으로 경고 로그를 남기고 건너뜀,
      `strict=True`이면 MemoryLoadError 발생
    - 백엔드가 던진 예외도 소스 단위로 같은 규칙을 따르므로 한 소스의 실패가
      나머지 소스의 로드를 막지 않음

사용 예시:
    ```python
    from agentvfs.backends import FilesystemBackend
    from agentvfs.middleware.memory import MemoryMiddleware

    middleware = MemoryMiddleware(
        backend=FilesystemBackend(root_dir="/srv/agent", virtual_mode=True),
        sources=["/memories/AGENTS.md", "/project/AGENTS.md"],
    )
    ```
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Annotated, NotRequired, TypedDict

from langchain.agents.middleware.types import (
    AgentMiddleware,
    AgentState,
    ModelRequest,
    ModelResponse,
    PrivateStateAttr,
)
from langchain.tools import ToolRuntime

from agentvfs.backends.protocol import as_backend_provider
from agentvfs.middleware._utils import prepend_to_system_message

if TYPE_CHECKING:
    from langchain_core.runnables import RunnableConfig
    from langgraph.runtime import Runtime

    from agentvfs.backends.protocol import BackendFactory, BackendProtocol, BackendProvider, FileDownloadResponse, ReadResult
    from agentvfs.state import StateSchemaRegistry

logger = logging.getLogger(__name__)

FILE_NOT_FOUND = "file_not_found"

NO_MEMORY_LOADED = "(No memory loaded)"

# read 대체 경로에서 문서 전체를 읽기 위한 라인 한도
_FULL_READ_LIMIT = sys.maxsize


class MemoryLoadError(RuntimeError):
    """strict 모드에서 메모리 소스를 읽지 못했을 때 발생합니다."""

    def __init__(self, path: str, error: str) -> None:
        super().__init__(f"Failed to load memory from {path}: {error}")
        self.path = path
        self.error = error


class MemoryState(AgentState):
    """메모리 미들웨어 상태. 경로 -> 내용 매핑은 에이전트 입출력에 드러나지 않습니다."""

    memory_contents: NotRequired[Annotated[dict[str, str] | None, PrivateStateAttr]]


class MemoryStateUpdate(TypedDict):
    memory_contents: dict[str, str]


# =============================================================================
# 로더
# =============================================================================


def _from_read(result: ReadResult) -> tuple[str | None, str | None]:
    """read_raw 결과를 (내용, 오류) 쌍으로 바꿉니다."""
    if result.error is not None:
        return None, result.error_code or result.error
    return result.content, None


def _from_download(path: str, responses: list[FileDownloadResponse]) -> tuple[str | None, str | None]:
    if len(responses) != 1:
        return None, f"expected 1 response for {path}, got {len(responses)}"
    response = responses[0]
    if response.error:
        return None, response.error
    if response.content is None:
        return None, None
    try:
        return response.content.decode("utf-8"), None
    except UnicodeDecodeError as e:
        return None, f"invalid utf-8 content ({e})"


def _fetch(backend: BackendProtocol, path: str) -> tuple[str | None, str | None]:
    try:
        return _from_download(path, backend.download_files([path]))
    except NotImplementedError:
        # 다운로드를 지원하지 않는 백엔드는 전체 read로 대체
        return _from_read(backend.read_raw(path, offset=0, limit=_FULL_READ_LIMIT))


async def _afetch(backend: BackendProtocol, path: str) -> tuple[str | None, str | None]:
    try:
        return _from_download(path, await backend.adownload_files([path]))
    except NotImplementedError:
        return _from_read(await backend.aread_raw(path, offset=0, limit=_FULL_READ_LIMIT))


def _fetch_failed(path: str, error: Exception, *, strict: bool) -> None:
    if strict:
        raise MemoryLoadError(path, f"{type(error).__name__}: {error}") from error
    logger.warning("Skipping memory source %s: %s", path, error, exc_info=error)


def _collect(contents: dict[str, str], path: str, content: str | None, error: str | None, *, strict: bool) -> None:
    if error == FILE_NOT_FOUND:
        return
    if error is not None:
        if strict:
            raise MemoryLoadError(path, error)
        logger.warning("Skipping memory source %s: %s", path, error)
        return
    if content:
        contents[path] = content


def load_memory(backend: BackendProtocol, sources: list[str], *, strict: bool = False) -> dict[str, str]:
    """설정된 순서대로 메모리 문서를 로드합니다.

    Args:
        backend: 해석된 백엔드.
        sources: 문서 경로 목록.
        strict: True이면 file_not_found 이외의 오류에서 MemoryLoadError를 발생시킵니다.

    Returns:
        경로 -> 내용 매핑 (소스 순서 유지, 없는 소스는 제외).
    """
    contents: dict[str, str] = {}
    for path in sources:
        try:
            content, error = _fetch(backend, path)
        except Exception as e:  # noqa: BLE001
            _fetch_failed(path, e, strict=strict)
            continue
        _collect(contents, path, content, error, strict=strict)
    return contents


async def aload_memory(backend: BackendProtocol, sources: list[str], *, strict: bool = False) -> dict[str, str]:
    """load_memory의 비동기 버전."""
    contents: dict[str, str] = {}
    for path in sources:
        try:
            content, error = await _afetch(backend, path)
        except Exception as e:  # noqa: BLE001
            _fetch_failed(path, e, strict=strict)
            continue
        _collect(contents, path, content, error, strict=strict)
    return contents


def format_memory_contents(contents: dict[str, str], sources: list[str]) -> str:
    """소스 순서대로 "경로\\n내용" 블록을 빈 줄로 이어 붙입니다."""
    sections = [f"{path}\n{contents[path]}" for path in sources if contents.get(path)]
    if not sections:
        return NO_MEMORY_LOADED
    return "\n\n".join(sections)


# =============================================================================
# 시스템 프롬프트 템플릿
# =============================================================================

MEMORY_SYSTEM_PROMPT = """<agent_memory>
{memory_contents}
</agent_memory>

<memory_guidelines>
    ## Agent Memory

    The above <agent_memory> was loaded in from files in your filesystem.

{memory_locations}

    As you learn from your interactions with the user, you can save new knowledge by calling the `edit_file` tool on one of these files.

    **Learning from feedback:**
    - When you need to remember something, updating memory should be your first action, before responding to the user.
    - When the user says something is better or worse, capture the underlying pattern, not just the specific mistake.
    - A great opportunity to update your memories is when the user interrupts a tool call and provides feedback.

    **When to update memories:**
    - When the user explicitly asks you to remember something
    - When the user describes your role or how you should behave
    - When the user gives feedback on your work
    - When you discover new preferences or conventions

    **When to NOT update memories:**
    - When the information is temporary or a one-time task request
    - When the information is small talk or an acknowledgment
    - Never store API keys, access tokens, passwords, or any other credentials in any file or memory.
</memory_guidelines>"""


class MemoryMiddleware(AgentMiddleware):
    """메모리 문서를 로드하고 시스템 메시지 앞에 주입하는 미들웨어.

    Args:
        backend: 백엔드 프로바이더, 백엔드 인스턴스 또는 팩토리 함수.
        sources: 메모리 문서 경로 목록.
        registry: 에이전트 조립 시 공유하는 상태 스키마 레지스트리.
        strict: True이면 file_not_found 이외의 로드 오류를 예외로 전파.
    """

    state_schema = MemoryState

    def __init__(
        self,
        *,
        backend: BackendProvider | BackendFactory,
        sources: list[str],
        registry: StateSchemaRegistry | None = None,
        strict: bool = False,
    ) -> None:
        self.backend = as_backend_provider(backend)
        self.sources = list(sources)
        self.strict = strict
        self.system_prompt_template = MEMORY_SYSTEM_PROMPT
        if registry is not None:
            self.state_schema = registry.schema_for("memory", MemoryState)

    def _get_backend(self, state: MemoryState, runtime: Runtime, config: RunnableConfig) -> BackendProtocol:
        tool_runtime = ToolRuntime(
            state=state,
            context=runtime.context,
            stream_writer=runtime.stream_writer,
            store=runtime.store,
            config=config,
            tool_call_id=None,
        )
        return self.backend.resolve(tool_runtime)

    def _format_memory_locations(self) -> str:
        if not self.sources:
            return "    **Memory Sources:** None configured"
        lines = ["    **Memory Sources:**"]
        lines.extend(f"    - `{path}`" for path in self.sources)
        return "\n".join(lines)

    def modify_request(self, request: ModelRequest) -> ModelRequest:
        """시스템 메시지 앞에 메모리 섹션을 추가합니다."""
        contents = request.state.get("memory_contents") or {}
        memory_section = self.system_prompt_template.format(
            memory_contents=format_memory_contents(contents, self.sources),
            memory_locations=self._format_memory_locations(),
        )
        return request.override(system_message=prepend_to_system_message(request.system_message, memory_section))

    def before_agent(self, state: MemoryState, runtime: Runtime, config: RunnableConfig) -> MemoryStateUpdate | None:
        """아직 로드되지 않았으면 메모리 문서를 로드합니다."""
        if state.get("memory_contents") is not None:
            return None
        backend = self._get_backend(state, runtime, config)
        return MemoryStateUpdate(memory_contents=load_memory(backend, self.sources, strict=self.strict))

    async def abefore_agent(self, state: MemoryState, runtime: Runtime, config: RunnableConfig) -> MemoryStateUpdate | None:
        if state.get("memory_contents") is not None:
            return None
        backend = self._get_backend(state, runtime, config)
        return MemoryStateUpdate(memory_contents=await aload_memory(backend, self.sources, strict=self.strict))

    def wrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], ModelResponse],
    ) -> ModelResponse:
        return handler(self.modify_request(request))

    async def awrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], Awaitable[ModelResponse]],
    ) -> ModelResponse:
        return await handler(self.modify_request(request))


__all__ = [
    "MEMORY_SYSTEM_PROMPT",
    "MemoryLoadError",
    "MemoryMiddleware",
    "MemoryState",
    "aload_memory",
    "format_memory_contents",
    "load_memory",
]
