"""
모듈명: filesystem.py
설명: 에이전트에 파일시스템 도구를 제공하는 미들웨어

이 미들웨어는 에이전트에 파일시스템 조작 도구들을 추가합니다:
    - ls: 디렉토리 내용 목록 조회
    - read_file: 파일 읽기 (페이지네이션 지원)
    - write_file: 파일 생성 및 교체
    - edit_file: 기존 파일의 문자열 교체 편집 (먼저 읽은 파일만)
    - glob: 패턴 매칭으로 파일 검색
    - grep: 정규식으로 파일 내용 검색

해석된 백엔드가 SandboxBackendProtocol을 구현하면 execute 도구도 모델에 노출됩니다.

또한 큰 도구 결과가 토큰 임계값을 넘으면 ToolResultEvictor로 저장소에
옮겨 컨텍스트 윈도우 포화를 막습니다.

사용 예시:
    ```python
    from agentvfs.middleware.filesystem import FilesystemMiddleware
    from agentvfs.backends import CompositeBackend, FactoryBackendProvider, StateBackend, StoreBackend

    # 기본 사용 (에이전트 상태에 파일 저장)
    agent = create_agent(model, middleware=[FilesystemMiddleware()])

    # 하이브리드 저장 (임시 + /memories/에 영구 저장)
    provider = FactoryBackendProvider(
        lambda rt: CompositeBackend(default=StateBackend(rt), routes={"/memories/": StoreBackend(rt)})
    )
    agent = create_agent(model, middleware=[FilesystemMiddleware(backend=provider)])
    ```
"""
# ruff: noqa: E501

from collections.abc import Awaitable, Callable
from typing import Annotated

from langchain.agents.middleware.types import (
    AgentMiddleware,
    ModelRequest,
    ModelResponse,
)
from langchain.tools import ToolRuntime
from langchain.tools.tool_node import ToolCallRequest
from langchain_core.messages import ToolMessage
from langchain_core.tools import BaseTool, StructuredTool
from langgraph.types import Command

from agentvfs.backends.protocol import BackendFactory, BackendProtocol, BackendProvider, FactoryBackendProvider, as_backend_provider
from agentvfs.backends.state import StateBackend
from agentvfs.middleware._utils import append_to_system_message
from agentvfs.middleware.eviction import ToolResultEvictor
from agentvfs.state import FilesystemState, StateSchemaRegistry
from agentvfs.tools import (
    DEFAULT_READ_LIMIT,
    DEFAULT_READ_OFFSET,
    GrepOutputMode,
    ToolResult,
    arun_edit_file,
    arun_execute,
    arun_glob,
    arun_grep,
    arun_ls,
    arun_read_file,
    arun_write_file,
    run_edit_file,
    run_execute,
    run_glob,
    run_grep,
    run_ls,
    run_read_file,
    run_write_file,
    supports_execution,
)

LIST_FILES_TOOL_DESCRIPTION = """Lists all files in a directory.

This is useful for exploring the filesystem and finding the right file to read or edit.
Each entry shows the absolute path followed by "(directory)" or its size in bytes.
You should almost ALWAYS use this tool before using the read_file or edit_file tools."""

READ_FILE_TOOL_DESCRIPTION = """Reads a file from the filesystem.

Assume this tool is able to read all files. If the User provides a path to a file assume that path is valid. It is okay to read a file that does not exist; an error will be returned.

Usage:
- By default, it reads up to 100 lines starting from the beginning of the file
- **IMPORTANT for large files and codebase exploration**: Use pagination with offset and limit parameters to avoid context overflow
  - First scan: read_file(path, limit=100) to see file structure
  - Read more sections: read_file(path, offset=100, limit=200) for next 200 lines
- Results are returned using cat -n format, with line numbers starting at offset + 1
- You have the capability to call multiple tools in a single response. It is always better to speculatively read multiple files as a batch that are potentially useful.
- If you read a file that exists but has empty contents you will receive a system reminder warning in place of file contents.
- You must read a file before editing it."""

EDIT_FILE_TOOL_DESCRIPTION = """Performs exact string replacements in files.

Usage:
- You must read the file before editing. This tool will error if you attempt an edit without reading the file first.
- When editing, preserve the exact indentation (tabs/spaces) from the read output. Never include line number prefixes in old_string or new_string.
- The edit will fail if old_string is not unique in the file. Provide more surrounding context or use replace_all=True.
- ALWAYS prefer editing existing files over creating new ones."""

WRITE_FILE_TOOL_DESCRIPTION = """Writes a file to the filesystem.

Usage:
- The write_file tool creates a new file or replaces the content of an existing one.
- Prefer to edit existing files (with the edit_file tool) over rewriting them when possible.
"""

GLOB_TOOL_DESCRIPTION = """Find files matching a glob pattern.

Supports `*` (any characters within a path segment), `**` (any directories), `?` (single character), `[abc]` and `{a,b}`.
Returns the absolute paths of matching files, one per line.

Examples:
- `**/*.py` - Find all Python files
- `*.txt` - Find all text files in root
- `/subdir/**/*.md` - Find all markdown files under /subdir"""

GREP_TOOL_DESCRIPTION = """Search for a regular expression across files.

Uses Python regular expression syntax. Escape special characters (e.g. `\\(`) to search for them literally.
By default matching lines are grouped per file as "<path>:" followed by "  <line>: <text>" rows.

Examples:
- Search all files: `grep(pattern="TODO")`
- Search Python files only: `grep(pattern="import", glob="*.py")`
- List matching files only: `grep(pattern="error", output_mode="files_with_matches")`
- Search for code with special chars: `grep(pattern="def __init__\\(self\\):")`"""

EXECUTE_TOOL_DESCRIPTION = """Executes a shell command in the sandbox environment.

Usage:
- Always quote file paths that contain spaces with double quotes (e.g., cd "path with spaces/file.txt")
- Returns combined stdout/stderr output with the exit code
- If the output is very large, it may be truncated
- Use the grep and glob tools instead of find and grep commands, and read_file instead of cat, head or tail.
- When issuing multiple commands, use '&&' when commands depend on each other and ';' otherwise. DO NOT use newlines.
- Prefer absolute paths over changing directories with cd.

Examples:
  Good examples:
    - execute(command="pytest /foo/bar/tests")
    - execute(command="npm install && npm test")

  Bad examples (avoid these):
    - execute(command="cat file.txt")  # Use read_file tool instead
    - execute(command="find . -name '*.py'")  # Use glob tool instead

Note: This tool is only available if the backend supports execution (SandboxBackendProtocol).
If execution is not supported, the tool will return an error message."""

FILESYSTEM_SYSTEM_PROMPT = """## Filesystem Tools `ls`, `read_file`, `write_file`, `edit_file`, `glob`, `grep`

You have access to a filesystem which you can interact with using these tools.
All file paths must start with a /.

- ls: list files in a directory (requires absolute path)
- read_file: read a file from the filesystem
- write_file: write to a file in the filesystem
- edit_file: edit a file in the filesystem (read it first)
- glob: find files matching a pattern (e.g., "**/*.py")
- grep: search for a regular expression within files"""

EXECUTION_SYSTEM_PROMPT = """## Execute Tool `execute`

You have access to an `execute` tool for running shell commands in a sandboxed environment.
Use this tool to run commands, scripts, tests, builds, and other shell operations.

- execute: run a shell command in the sandbox (returns output and exit code)"""


def _tool_name(tool: BaseTool | dict) -> str | None:
    return tool.name if hasattr(tool, "name") else tool.get("name")


class FilesystemMiddleware(AgentMiddleware):
    """에이전트에 파일시스템 및 선택적 실행 도구를 제공하는 미들웨어.

    Args:
        backend: 백엔드 프로바이더 (백엔드 인스턴스 또는 팩토리 함수도 허용).
            제공되지 않으면 런타임마다 `StateBackend`를 만드는 프로바이더.
        registry: 에이전트 조립 시 공유하는 상태 스키마 레지스트리.
        system_prompt: 사용자 정의 시스템 프롬프트 오버라이드 (선택사항).
        custom_tool_descriptions: 도구 이름별 설명 오버라이드 (선택사항).
        tool_token_limit_before_evict: 도구 결과를 저장소로 옮기기 전 토큰 한도.
            None이면 옮기지 않습니다.
        require_read_before_edit: True이면 이번 세션에 읽거나 쓴 적 없는 파일의
            edit_file 호출을 오류로 돌려줍니다.
    """

    state_schema = FilesystemState

    def __init__(
        self,
        *,
        backend: BackendProvider | BackendFactory | None = None,
        registry: StateSchemaRegistry | None = None,
        system_prompt: str | None = None,
        custom_tool_descriptions: dict[str, str] | None = None,
        tool_token_limit_before_evict: int | None = 20000,
        require_read_before_edit: bool = True,
    ) -> None:
        self.backend: BackendProvider = as_backend_provider(backend) if backend is not None else FactoryBackendProvider(StateBackend)

        if registry is not None:
            self.state_schema = registry.schema_for("files", FilesystemState)

        self._custom_system_prompt = system_prompt
        self._custom_tool_descriptions = custom_tool_descriptions or {}
        self._tool_token_limit_before_evict = tool_token_limit_before_evict
        self._require_read_before_edit = require_read_before_edit
        self._evictor = ToolResultEvictor(self.backend, tool_token_limit_before_evict=tool_token_limit_before_evict)

        self.tools = [
            self._create_ls_tool(),
            self._create_read_file_tool(),
            self._create_write_file_tool(),
            self._create_edit_file_tool(),
            self._create_glob_tool(),
            self._create_grep_tool(),
            self._create_execute_tool(),  # 샌드박스 백엔드에서만 모델에 노출
        ]

    def _get_backend(self, runtime: ToolRuntime) -> BackendProtocol:
        return self.backend.resolve(runtime)

    def _description(self, name: str, default: str) -> str:
        return self._custom_tool_descriptions.get(name) or default

    def _read_paths(self, runtime: ToolRuntime) -> list[str] | None:
        if not self._require_read_before_edit:
            return None
        return list((runtime.state or {}).get("read_paths") or [])

    @staticmethod
    def _output(result: ToolResult, runtime: ToolRuntime, name: str) -> Command | str:
        return result.to_tool_output(runtime.tool_call_id, name=name)

    def _create_ls_tool(self) -> BaseTool:
        def sync_ls(
            runtime: ToolRuntime[None, FilesystemState],
            path: Annotated[str, "Absolute path to the directory to list. Must be absolute, not relative."],
        ) -> str:
            return run_ls(self._get_backend(runtime), path).message

        async def async_ls(
            runtime: ToolRuntime[None, FilesystemState],
            path: Annotated[str, "Absolute path to the directory to list. Must be absolute, not relative."],
        ) -> str:
            return (await arun_ls(self._get_backend(runtime), path)).message

        return StructuredTool.from_function(
            name="ls",
            description=self._description("ls", LIST_FILES_TOOL_DESCRIPTION),
            func=sync_ls,
            coroutine=async_ls,
        )

    def _create_read_file_tool(self) -> BaseTool:
        token_limit = self._tool_token_limit_before_evict

        def sync_read_file(
            file_path: Annotated[str, "Absolute path to the file to read. Must be absolute, not relative."],
            runtime: ToolRuntime[None, FilesystemState],
            offset: Annotated[int, "Line number to start reading from (0-indexed). Use for pagination of large files."] = DEFAULT_READ_OFFSET,
            limit: Annotated[int, "Maximum number of lines to read. Use for pagination of large files."] = DEFAULT_READ_LIMIT,
        ) -> Command | str:
            result = run_read_file(self._get_backend(runtime), file_path, offset, limit, token_limit=token_limit)
            return self._output(result, runtime, "read_file")

        async def async_read_file(
            file_path: Annotated[str, "Absolute path to the file to read. Must be absolute, not relative."],
            runtime: ToolRuntime[None, FilesystemState],
            offset: Annotated[int, "Line number to start reading from (0-indexed). Use for pagination of large files."] = DEFAULT_READ_OFFSET,
            limit: Annotated[int, "Maximum number of lines to read. Use for pagination of large files."] = DEFAULT_READ_LIMIT,
        ) -> Command | str:
            result = await arun_read_file(self._get_backend(runtime), file_path, offset, limit, token_limit=token_limit)
            return self._output(result, runtime, "read_file")

        return StructuredTool.from_function(
            name="read_file",
            description=self._description("read_file", READ_FILE_TOOL_DESCRIPTION),
            func=sync_read_file,
            coroutine=async_read_file,
        )

    def _create_write_file_tool(self) -> BaseTool:
        def sync_write_file(
            file_path: Annotated[str, "Absolute path where the file should be written. Must be absolute, not relative."],
            content: Annotated[str, "The text content to write to the file. This parameter is required."],
            runtime: ToolRuntime[None, FilesystemState],
        ) -> Command | str:
            return self._output(run_write_file(self._get_backend(runtime), file_path, content), runtime, "write_file")

        async def async_write_file(
            file_path: Annotated[str, "Absolute path where the file should be written. Must be absolute, not relative."],
            content: Annotated[str, "The text content to write to the file. This parameter is required."],
            runtime: ToolRuntime[None, FilesystemState],
        ) -> Command | str:
            result = await arun_write_file(self._get_backend(runtime), file_path, content)
            return self._output(result, runtime, "write_file")

        return StructuredTool.from_function(
            name="write_file",
            description=self._description("write_file", WRITE_FILE_TOOL_DESCRIPTION),
            func=sync_write_file,
            coroutine=async_write_file,
        )

    def _create_edit_file_tool(self) -> BaseTool:
        def sync_edit_file(
            file_path: Annotated[str, "Absolute path to the file to edit. Must be absolute, not relative."],
            old_string: Annotated[str, "The exact text to find and replace. Must be unique in the file unless replace_all is True."],
            new_string: Annotated[str, "The text to replace old_string with. Must be different from old_string."],
            runtime: ToolRuntime[None, FilesystemState],
            *,
            replace_all: Annotated[bool, "If True, replace all occurrences of old_string. If False (default), old_string must be unique."] = False,
        ) -> Command | str:
            result = run_edit_file(
                self._get_backend(runtime),
                file_path,
                old_string,
                new_string,
                replace_all,
                read_paths=self._read_paths(runtime),
            )
            return self._output(result, runtime, "edit_file")

        async def async_edit_file(
            file_path: Annotated[str, "Absolute path to the file to edit. Must be absolute, not relative."],
            old_string: Annotated[str, "The exact text to find and replace. Must be unique in the file unless replace_all is True."],
            new_string: Annotated[str, "The text to replace old_string with. Must be different from old_string."],
            runtime: ToolRuntime[None, FilesystemState],
            *,
            replace_all: Annotated[bool, "If True, replace all occurrences of old_string. If False (default), old_string must be unique."] = False,
        ) -> Command | str:
            result = await arun_edit_file(
                self._get_backend(runtime),
                file_path,
                old_string,
                new_string,
                replace_all,
                read_paths=self._read_paths(runtime),
            )
            return self._output(result, runtime, "edit_file")

        return StructuredTool.from_function(
            name="edit_file",
            description=self._description("edit_file", EDIT_FILE_TOOL_DESCRIPTION),
            func=sync_edit_file,
            coroutine=async_edit_file,
        )

    def _create_glob_tool(self) -> BaseTool:
        def sync_glob(
            pattern: Annotated[str, "Glob pattern to match files (e.g., '**/*.py', '*.txt', '/subdir/**/*.md')."],
            runtime: ToolRuntime[None, FilesystemState],
            path: Annotated[str, "Base directory to search from. Defaults to root '/'."] = "/",
        ) -> str:
            return run_glob(self._get_backend(runtime), pattern, path).message

        async def async_glob(
            pattern: Annotated[str, "Glob pattern to match files (e.g., '**/*.py', '*.txt', '/subdir/**/*.md')."],
            runtime: ToolRuntime[None, FilesystemState],
            path: Annotated[str, "Base directory to search from. Defaults to root '/'."] = "/",
        ) -> str:
            return (await arun_glob(self._get_backend(runtime), pattern, path)).message

        return StructuredTool.from_function(
            name="glob",
            description=self._description("glob", GLOB_TOOL_DESCRIPTION),
            func=sync_glob,
            coroutine=async_glob,
        )

    def _create_grep_tool(self) -> BaseTool:
        def sync_grep(
            pattern: Annotated[str, "Regular expression to search for (Python syntax)."],
            runtime: ToolRuntime[None, FilesystemState],
            path: Annotated[str | None, "Directory or file to search in. Defaults to the root '/'."] = None,
            glob: Annotated[str | None, "Glob pattern to filter which files to search (e.g., '*.py')."] = None,
            output_mode: Annotated[
                GrepOutputMode,
                "Output format: 'content' (matching lines grouped by file, default), 'files_with_matches' (file paths only), 'count' (match counts per file).",
            ] = "content",
        ) -> str:
            return run_grep(self._get_backend(runtime), pattern, path, glob, output_mode).message

        async def async_grep(
            pattern: Annotated[str, "Regular expression to search for (Python syntax)."],
            runtime: ToolRuntime[None, FilesystemState],
            path: Annotated[str | None, "Directory or file to search in. Defaults to the root '/'."] = None,
            glob: Annotated[str | None, "Glob pattern to filter which files to search (e.g., '*.py')."] = None,
            output_mode: Annotated[
                GrepOutputMode,
                "Output format: 'content' (matching lines grouped by file, default), 'files_with_matches' (file paths only), 'count' (match counts per file).",
            ] = "content",
        ) -> str:
            return (await arun_grep(self._get_backend(runtime), pattern, path, glob, output_mode)).message

        return StructuredTool.from_function(
            name="grep",
            description=self._description("grep", GREP_TOOL_DESCRIPTION),
            func=sync_grep,
            coroutine=async_grep,
        )

    def _create_execute_tool(self) -> BaseTool:
        def sync_execute(
            command: Annotated[str, "Shell command to execute in the sandbox environment."],
            runtime: ToolRuntime[None, FilesystemState],
        ) -> str:
            return run_execute(self._get_backend(runtime), command).message

        async def async_execute(
            command: Annotated[str, "Shell command to execute in the sandbox environment."],
            runtime: ToolRuntime[None, FilesystemState],
        ) -> str:
            return (await arun_execute(self._get_backend(runtime), command)).message

        return StructuredTool.from_function(
            name="execute",
            description=self._description("execute", EXECUTE_TOOL_DESCRIPTION),
            func=sync_execute,
            coroutine=async_execute,
        )

    def _prepare_request(self, request: ModelRequest) -> ModelRequest:
        """백엔드가 실행을 지원하지 않으면 execute 도구를 빼고 시스템 프롬프트를 추가합니다."""
        has_execute_tool = any(_tool_name(tool) == "execute" for tool in request.tools)

        if has_execute_tool and not supports_execution(self._get_backend(request.runtime)):
            request = request.override(tools=[tool for tool in request.tools if _tool_name(tool) != "execute"])
            has_execute_tool = False

        if self._custom_system_prompt is not None:
            system_prompt = self._custom_system_prompt
        else:
            prompt_parts = [FILESYSTEM_SYSTEM_PROMPT]
            if has_execute_tool:
                prompt_parts.append(EXECUTION_SYSTEM_PROMPT)
            system_prompt = "\n\n".join(prompt_parts)

        if system_prompt:
            request = request.override(system_message=append_to_system_message(request.system_message, system_prompt))
        return request

    def wrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], ModelResponse],
    ) -> ModelResponse:
        """Update the system prompt and filter tools based on backend capabilities."""
        return handler(self._prepare_request(request))

    async def awrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], Awaitable[ModelResponse]],
    ) -> ModelResponse:
        """(async) Update the system prompt and filter tools based on backend capabilities."""
        return await handler(self._prepare_request(request))

    def wrap_tool_call(
        self,
        request: ToolCallRequest,
        handler: Callable[[ToolCallRequest], ToolMessage | Command],
    ) -> ToolMessage | Command:
        """Check the size of the tool call result and evict it to the backend if too large."""
        if not self._evictor.applies_to(request.tool_call["name"]):
            return handler(request)
        return self._evictor.intercept(handler(request), request.runtime)

    async def awrap_tool_call(
        self,
        request: ToolCallRequest,
        handler: Callable[[ToolCallRequest], Awaitable[ToolMessage | Command]],
    ) -> ToolMessage | Command:
        """(async) Check the size of the tool call result and evict it to the backend if too large."""
        if not self._evictor.applies_to(request.tool_call["name"]):
            return await handler(request)
        return await self._evictor.aintercept(await handler(request), request.runtime)


__all__ = [
    "EXECUTION_SYSTEM_PROMPT",
    "FILESYSTEM_SYSTEM_PROMPT",
    "FilesystemMiddleware",
    "FilesystemState",
]
