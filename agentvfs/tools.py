"""
모듈명: tools.py
설명: 파일시스템 도구(ls, read_file, write_file, edit_file, glob, grep, execute)의 순수 구현

각 도구 동작은 해석이 끝난 백엔드를 받아 `ToolResult`를 반환하는 함수입니다.
LangGraph와의 경계(str 또는 Command로의 변환)는 `ToolResult.to_tool_output`이
담당하므로, 이 모듈의 함수들은 에이전트 없이도 바로 테스트할 수 있습니다.

오류 처리 규칙:
    - 에이전트가 스스로 고칠 수 있는 문제(없는 파일, 잘못된 경로, 루트 밖 경로,
      모호한 편집 등)는 "Error"로 시작하는 메시지로 돌려줍니다.
    - 그 밖의 예외는 그대로 전파됩니다.

사용 예시:
    ```python
    backend = StateBackend(runtime)
    result = run_write_file(backend, "/notes.md", "hello")
    result.message        # "Updated file /notes.md"
    result.state_update   # {"files": {...}, "read_paths": ["/notes.md"]}
    ```
"""

import os
import re
from collections.abc import Collection
from dataclasses import dataclass
from typing import Any, Literal

from langchain_core.messages import ToolMessage
from langgraph.types import Command

from agentvfs.backends.composite import CompositeBackend
from agentvfs.backends.protocol import (
    BackendProtocol,
    EditResult,
    ExecuteResponse,
    FileInfo,
    GrepMatch,
    ReadResult,
    SandboxBackendProtocol,
    WriteResult,
)
from agentvfs.backends.utils import (
    EMPTY_CONTENT_WARNING,
    NUM_CHARS_PER_TOKEN,
    format_content_with_line_numbers,
    format_grep_matches,
    truncate_if_too_long,
)

# read_file 도구의 기본 오프셋과 라인 수
DEFAULT_READ_OFFSET = 0
DEFAULT_READ_LIMIT = 100

# 도구 결과를 저장소로 옮기기 전 토큰 한도 (기본값)
DEFAULT_TOOL_TOKEN_LIMIT = 20000

# {file_path}는 런타임에 실제 경로로 치환됨
READ_FILE_TRUNCATION_MSG = (
    "\n\n[Output was truncated due to size limits. "
    "The file content is very large. "
    "Read the file '{file_path}' in smaller chunks using offset and limit, "
    "or reformat it with shorter lines.]"
)

EXECUTION_UNAVAILABLE_MSG = (
    "Error: Execution not available. This agent's backend "
    "does not support command execution (SandboxBackendProtocol). "
    "To use the execute tool, provide a backend that implements SandboxBackendProtocol."
)

GrepOutputMode = Literal["content", "files_with_matches", "count"]


@dataclass
class ToolResult:
    """도구 실행 결과.

    Attributes:
        message: 에이전트에게 보여줄 텍스트.
        state_update: 에이전트 상태에 병합할 부분 업데이트 (예: {"files": ..., "read_paths": [...]}).
    """

    message: str
    state_update: dict[str, Any] | None = None

    @property
    def is_error(self) -> bool:
        return self.message.startswith("Error")

    def to_tool_output(self, tool_call_id: str | None, name: str | None = None) -> str | Command:
        """LangGraph 도구 노드가 받을 수 있는 형태로 변환합니다.

        상태 업데이트가 없으면 문자열을, 있으면 ToolMessage를 포함한 Command를 반환합니다.
        """
        if not self.state_update:
            return self.message
        return Command(
            update={
                **self.state_update,
                "messages": [ToolMessage(content=self.message, tool_call_id=tool_call_id, name=name)],
            }
        )


def validate_path(path: str) -> str:
    r"""가상 파일시스템 경로를 검증하고 정규화합니다.

    모든 경로는 슬래시(/)를 사용하고 선행 슬래시로 시작하도록 정규화됩니다.

    Raises:
        ValueError: 경로에 `..` 또는 `~`가 포함되었거나 Windows 절대 경로인 경우.

    사용 예시:
        ```python
        validate_path("foo/bar")  # "/foo/bar"
        validate_path("/./foo//bar")  # "/foo/bar"
        validate_path("../etc/passwd")  # ValueError
        validate_path(r"C:\\Users\\file.txt")  # ValueError
        ```
    """
    if ".." in path or path.startswith("~"):
        msg = f"Path traversal not allowed: {path}"
        raise ValueError(msg)

    if re.match(r"^[a-zA-Z]:", path):
        msg = f"Windows absolute paths are not supported: {path}. Please use virtual paths starting with / (e.g., /workspace/file.txt)"
        raise ValueError(msg)

    normalized = os.path.normpath(path).replace("\\", "/")
    # normpath는 선행 "//"를 유지하므로 한 번 더 정리
    normalized = "/" + normalized.lstrip("/")
    return "/" if normalized == "/." else normalized


def supports_execution(backend: BackendProtocol) -> bool:
    """백엔드가 명령 실행을 지원하는지 확인합니다.

    CompositeBackend의 경우 기본 백엔드를 기준으로 판단합니다.
    """
    if isinstance(backend, CompositeBackend):
        return isinstance(backend.default, SandboxBackendProtocol)
    return isinstance(backend, SandboxBackendProtocol)


def _permission_denied(path: str, error: PermissionError) -> ToolResult:
    return ToolResult(f"Error: Permission denied: {path} ({error})")


def _join_truncated(items: list[str]) -> str:
    result = truncate_if_too_long(items)
    return "\n".join(result) if isinstance(result, list) else result


# ---------------------------------------------------------------------------
# ls
# ---------------------------------------------------------------------------


def _format_ls(infos: list[FileInfo], path: str) -> ToolResult:
    if not infos:
        return ToolResult(f"No files found in {path}")
    lines = []
    for fi in infos:
        if fi.get("is_dir"):
            lines.append(f"{fi['path']} (directory)")
        else:
            lines.append(f"{fi['path']} ({fi.get('size', 0)} bytes)")
    return ToolResult(_join_truncated(lines))


def run_ls(backend: BackendProtocol, path: str) -> ToolResult:
    """디렉토리의 직계 자식을 나열합니다."""
    try:
        validated = validate_path(path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    try:
        infos = backend.ls_info(validated)
    except PermissionError as e:
        return _permission_denied(validated, e)
    return _format_ls(infos, validated)


async def arun_ls(backend: BackendProtocol, path: str) -> ToolResult:
    try:
        validated = validate_path(path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    try:
        infos = await backend.als_info(validated)
    except PermissionError as e:
        return _permission_denied(validated, e)
    return _format_ls(infos, validated)


# ---------------------------------------------------------------------------
# read_file
# ---------------------------------------------------------------------------


def _format_read(res: ReadResult, file_path: str, offset: int, limit: int, token_limit: int | None) -> ToolResult:
    if res.error is not None:
        return ToolResult(res.error)

    raw = res.content or ""
    read_update = {"read_paths": [file_path]}
    if not raw:
        # 오프셋이 파일 끝을 넘은 경우는 빈 문자열 그대로
        message = EMPTY_CONTENT_WARNING if offset == 0 else ""
        return ToolResult(message, read_update)

    lines = raw.split("\n")[:limit]
    result = format_content_with_line_numbers(lines, start_line=offset + 1)

    if token_limit and len(result) >= NUM_CHARS_PER_TOKEN * token_limit:
        # 잘림 안내를 포함해도 한도 안에 들도록 내용을 자름
        truncation_msg = READ_FILE_TRUNCATION_MSG.format(file_path=file_path)
        max_content_length = NUM_CHARS_PER_TOKEN * token_limit - len(truncation_msg)
        result = result[:max_content_length] + truncation_msg

    return ToolResult(result, read_update)


def run_read_file(
    backend: BackendProtocol,
    file_path: str,
    offset: int = DEFAULT_READ_OFFSET,
    limit: int = DEFAULT_READ_LIMIT,
    *,
    token_limit: int | None = DEFAULT_TOOL_TOKEN_LIMIT,
) -> ToolResult:
    """파일의 라인 구간을 라인 번호와 함께 읽습니다.

    성공하면 읽은 경로를 `read_paths` 상태에 기록합니다.
    """
    try:
        validated = validate_path(file_path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    offset = max(offset, 0)
    res = backend.read_raw(validated, offset=offset, limit=limit)
    return _format_read(res, validated, offset, limit, token_limit)


async def arun_read_file(
    backend: BackendProtocol,
    file_path: str,
    offset: int = DEFAULT_READ_OFFSET,
    limit: int = DEFAULT_READ_LIMIT,
    *,
    token_limit: int | None = DEFAULT_TOOL_TOKEN_LIMIT,
) -> ToolResult:
    try:
        validated = validate_path(file_path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    offset = max(offset, 0)
    res = await backend.aread_raw(validated, offset=offset, limit=limit)
    return _format_read(res, validated, offset, limit, token_limit)


# ---------------------------------------------------------------------------
# write_file / edit_file
# ---------------------------------------------------------------------------


def _state_update(path: str, files_update: dict | None) -> dict[str, Any]:
    update: dict[str, Any] = {"read_paths": [path]}
    if files_update is not None:
        update["files"] = files_update
    return update


def _format_write(res: WriteResult, path: str) -> ToolResult:
    if res.error:
        return ToolResult(res.error)
    written = res.path or path
    return ToolResult(f"Updated file {written}", _state_update(written, res.files_update))


def run_write_file(backend: BackendProtocol, file_path: str, content: str) -> ToolResult:
    """파일을 생성하거나 내용을 교체합니다."""
    try:
        validated = validate_path(file_path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    return _format_write(backend.write(validated, content), validated)


async def arun_write_file(backend: BackendProtocol, file_path: str, content: str) -> ToolResult:
    try:
        validated = validate_path(file_path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    return _format_write(await backend.awrite(validated, content), validated)


def _check_read_before_edit(path: str, read_paths: Collection[str] | None) -> ToolResult | None:
    if read_paths is None or path in read_paths:
        return None
    return ToolResult(f"Error: File '{path}' has not been read in this session. Read it with read_file before editing it.")


def _format_edit(res: EditResult, path: str) -> ToolResult:
    if res.error:
        return ToolResult(res.error)
    edited = res.path or path
    return ToolResult(
        f"Successfully replaced {res.occurrences} instance(s) of the string in '{edited}'",
        _state_update(edited, res.files_update),
    )


def run_edit_file(
    backend: BackendProtocol,
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
    *,
    read_paths: Collection[str] | None = None,
) -> ToolResult:
    """정확한 문자열 교체로 파일을 편집합니다.

    Args:
        read_paths: 현재 세션에서 읽은 경로. None이면 사전 읽기 검사를 하지 않습니다.
    """
    try:
        validated = validate_path(file_path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    unread = _check_read_before_edit(validated, read_paths)
    if unread is not None:
        return unread
    return _format_edit(backend.edit(validated, old_string, new_string, replace_all=replace_all), validated)


async def arun_edit_file(
    backend: BackendProtocol,
    file_path: str,
    old_string: str,
    new_string: str,
    replace_all: bool = False,
    *,
    read_paths: Collection[str] | None = None,
) -> ToolResult:
    try:
        validated = validate_path(file_path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    unread = _check_read_before_edit(validated, read_paths)
    if unread is not None:
        return unread
    return _format_edit(await backend.aedit(validated, old_string, new_string, replace_all=replace_all), validated)


# ---------------------------------------------------------------------------
# glob / grep
# ---------------------------------------------------------------------------


def _format_glob(infos: list[FileInfo], pattern: str) -> ToolResult:
    if not infos:
        return ToolResult(f"No files found matching pattern '{pattern}'")
    return ToolResult(_join_truncated([fi["path"] for fi in infos]))


def run_glob(backend: BackendProtocol, pattern: str, path: str = "/") -> ToolResult:
    """글롭 패턴과 매칭되는 파일의 절대 경로를 반환합니다."""
    try:
        validated = validate_path(path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    try:
        infos = backend.glob_info(pattern, path=validated)
    except PermissionError as e:
        return _permission_denied(validated, e)
    return _format_glob(infos, pattern)


async def arun_glob(backend: BackendProtocol, pattern: str, path: str = "/") -> ToolResult:
    try:
        validated = validate_path(path)
    except ValueError as e:
        return ToolResult(f"Error: {e}")
    try:
        infos = await backend.aglob_info(pattern, path=validated)
    except PermissionError as e:
        return _permission_denied(validated, e)
    return _format_glob(infos, pattern)


def _format_grep(raw: list[GrepMatch] | str, pattern: str, output_mode: GrepOutputMode) -> ToolResult:
    if isinstance(raw, str):
        return ToolResult(raw)
    if not raw:
        return ToolResult(f"No matches found for pattern '{pattern}'")
    formatted = format_grep_matches(raw, output_mode)
    result = truncate_if_too_long(formatted)
    return ToolResult(result if isinstance(result, str) else "\n".join(result))


def run_grep(
    backend: BackendProtocol,
    pattern: str,
    path: str | None = None,
    glob: str | None = None,
    output_mode: GrepOutputMode = "content",
) -> ToolResult:
    """파일 내용에서 정규식 패턴을 검색하고 파일별로 묶어 보여줍니다."""
    validated: str | None = None
    if path is not None:
        try:
            validated = validate_path(path)
        except ValueError as e:
            return ToolResult(f"Error: {e}")
    return _format_grep(backend.grep_raw(pattern, path=validated, glob=glob), pattern, output_mode)


async def arun_grep(
    backend: BackendProtocol,
    pattern: str,
    path: str | None = None,
    glob: str | None = None,
    output_mode: GrepOutputMode = "content",
) -> ToolResult:
    validated: str | None = None
    if path is not None:
        try:
            validated = validate_path(path)
        except ValueError as e:
            return ToolResult(f"Error: {e}")
    return _format_grep(await backend.agrep_raw(pattern, path=validated, glob=glob), pattern, output_mode)


# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


def _format_execute(result: ExecuteResponse) -> ToolResult:
    parts = [result.output]
    if result.exit_code is not None:
        status = "succeeded" if result.exit_code == 0 else "failed"
        parts.append(f"\n[Command {status} with exit code {result.exit_code}]")
    if result.truncated:
        parts.append("\n[Output was truncated due to size limits]")
    return ToolResult("".join(parts))


def run_execute(backend: BackendProtocol, command: str) -> ToolResult:
    """샌드박스 백엔드에서 셸 명령을 실행합니다."""
    if not supports_execution(backend):
        return ToolResult(EXECUTION_UNAVAILABLE_MSG)
    try:
        result = backend.execute(command)  # type: ignore[attr-defined]
    except NotImplementedError as e:
        return ToolResult(f"Error: Execution not available. {e}")
    return _format_execute(result)


async def arun_execute(backend: BackendProtocol, command: str) -> ToolResult:
    if not supports_execution(backend):
        return ToolResult(EXECUTION_UNAVAILABLE_MSG)
    try:
        result = await backend.aexecute(command)  # type: ignore[attr-defined]
    except NotImplementedError as e:
        return ToolResult(f"Error: Execution not available. {e}")
    return _format_execute(result)


__all__ = [
    "DEFAULT_READ_LIMIT",
    "DEFAULT_READ_OFFSET",
    "READ_FILE_TRUNCATION_MSG",
    "ToolResult",
    "arun_edit_file",
    "arun_execute",
    "arun_glob",
    "arun_grep",
    "arun_ls",
    "arun_read_file",
    "arun_write_file",
    "run_edit_file",
    "run_execute",
    "run_glob",
    "run_grep",
    "run_ls",
    "run_read_file",
    "run_write_file",
    "supports_execution",
    "validate_path",
]
