"""
모듈명: state.py
설명: LangGraph 에이전트 상태에 파일을 저장하는 백엔드 (임시 저장소)

이 모듈은 LangGraph의 상태 관리 및 체크포인팅 기능을 활용하여
에이전트 상태의 `files` 키에 파일을 저장합니다. 파일은 대화 스레드 내에서만
유지되며 스레드 간에는 공유되지 않습니다.

주요 특징:
- 읽기는 `runtime.state["files"]`에서 직접 수행
- 쓰기/편집은 상태를 변경하지 않고 `files_update` 부분 업데이트만 반환
- 업데이트는 도구 결과(Command)를 통해 리듀서가 병합

사용 예시:
    ```python
    from agentvfs.backends.state import StateBackend

    backend = StateBackend(runtime)
    content = backend.read("/path/to/file.txt")
    result = backend.write("/path/to/new_file.txt", "content")
    # result.files_update -> {"/path/to/new_file.txt": {...}}
    ```
"""

from typing import TYPE_CHECKING

from agentvfs.backends.protocol import (
    BackendProtocol,
    EditResult,
    FileDownloadResponse,
    FileInfo,
    FileUploadResponse,
    GrepMatch,
    ReadResult,
    WriteResult,
)
from agentvfs.backends.utils import (
    create_file_data,
    file_data_to_string,
    glob_search,
    grep_search,
    list_directory,
    perform_string_replacement,
    read_window,
    update_file_data,
)
from agentvfs.state import FileData

if TYPE_CHECKING:
    from langchain.tools import ToolRuntime


class StateBackend(BackendProtocol):
    """Backend that stores files in agent state (ephemeral).

    Uses LangGraph's state management and checkpointing. Files persist within
    a conversation thread but not across threads.

    State is never mutated here: `write` and `edit` return a `files_update`
    holding only the touched path, which the tool layer forwards as a
    `Command` so the `files` reducer can merge it.
    """

    def __init__(self, runtime: "ToolRuntime"):
        """Initialize StateBackend with runtime."""
        self.runtime = runtime

    @property
    def _files(self) -> dict[str, FileData]:
        state = getattr(self.runtime, "state", None) or {}
        return state.get("files") or {}

    def ls_info(self, path: str) -> list[FileInfo]:
        """List files and directories directly under `path`.

        Directories have a trailing / in their path and is_dir=True.
        """
        return list_directory(self._files, path)

    def read_raw(
        self,
        file_path: str,
        offset: int = 0,
        limit: int = 100,
    ) -> ReadResult:
        """Return the raw line window `[offset, offset + limit)` of a file."""
        file_data = self._files.get(file_path)
        if file_data is None:
            return ReadResult(error=f"Error: File '{file_path}' not found", error_code="file_not_found")
        return ReadResult(content=read_window(file_data_to_string(file_data), offset, limit))

    def write(
        self,
        file_path: str,
        content: str,
    ) -> WriteResult:
        """Create or replace a file.

        A replaced file keeps its original `created_at`.
        """
        existing = self._files.get(file_path)
        if existing is not None:
            new_file_data = update_file_data(existing, content)
        else:
            new_file_data = create_file_data(content)
        return WriteResult(path=file_path, files_update={file_path: new_file_data})

    def edit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        """Edit a file by replacing string occurrences.

        Returns EditResult with files_update and occurrences.
        """
        file_data = self._files.get(file_path)
        if file_data is None:
            return EditResult(error=f"Error: File '{file_path}' not found")

        result = perform_string_replacement(file_data_to_string(file_data), old_string, new_string, replace_all)
        if isinstance(result, str):
            return EditResult(error=result)

        new_content, occurrences = result
        new_file_data = update_file_data(file_data, new_content)
        return EditResult(path=file_path, files_update={file_path: new_file_data}, occurrences=int(occurrences))

    def grep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        return grep_search(self._files, pattern, path, glob)

    def glob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        """Get FileInfo for files matching glob pattern."""
        return glob_search(self._files, pattern, path)

    def upload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        """State can only change through tool results, so uploads are rejected."""
        raise NotImplementedError(
            "StateBackend does not support upload_files. Pass initial files in the agent input under the 'files' key instead."
        )

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        """Download multiple files from state as UTF-8 bytes."""
        state_files = self._files
        responses: list[FileDownloadResponse] = []

        for path in paths:
            file_data = state_files.get(path)
            if file_data is None:
                responses.append(FileDownloadResponse(path=path, content=None, error="file_not_found"))
                continue
            responses.append(FileDownloadResponse(path=path, content=file_data_to_string(file_data).encode("utf-8")))

        return responses
