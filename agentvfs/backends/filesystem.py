"""
모듈명: filesystem.py
설명: 로컬 디스크의 루트 디렉토리에 파일을 읽고 쓰는 백엔드

주요 특징:
- 모든 경로는 root_dir 아래로 해석되며, 심볼릭 링크를 따라간 결과가
  루트 밖이면 PermissionError (조용히 잘라내지 않음)
- virtual_mode=True이면 "/a/b"가 "<root>/a/b"로 매핑되고 에이전트에게는
  "/"로 시작하는 가상 경로가 보임
- 쓰기는 상태를 건드리지 않으므로 files_update=None 반환

사용 예시:
    ```python
    backend = FilesystemBackend(root_dir="/workspace", virtual_mode=True)
    backend.write("/notes/todo.md", "- item")
    backend.read("/notes/todo.md")
    ```
"""

import logging
import os
from datetime import UTC, datetime
from pathlib import Path

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
    compile_grep_pattern,
    glob_filter_matches,
    glob_match,
    grep_lines,
    perform_string_replacement,
    read_window,
)

logger = logging.getLogger(__name__)


def _permission_error(path: str) -> str:
    return f"Error: Permission denied: '{path}' is outside the root directory"


class FilesystemBackend(BackendProtocol):
    """Backend that reads and writes files directly from the filesystem.

    Args:
        root_dir: 모든 파일 작업이 갇히는 루트 디렉토리. 기본값은 현재 작업 디렉토리.
        virtual_mode: True이면 에이전트 경로를 root_dir 기준 가상 경로로 취급.
        max_file_size_mb: grep 대상 파일의 최대 크기 (MB). 더 큰 파일은 건너뜀.
    """

    def __init__(
        self,
        root_dir: str | Path | None = None,
        *,
        virtual_mode: bool = False,
        max_file_size_mb: int = 10,
    ) -> None:
        self.cwd = Path(root_dir).resolve() if root_dir else Path.cwd().resolve()
        self.virtual_mode = virtual_mode
        self.max_file_size_bytes = max_file_size_mb * 1024 * 1024

    def _resolve_path(self, key: str) -> Path:
        """에이전트 경로를 실제 경로로 해석합니다.

        Raises:
            PermissionError: 해석된 경로가 root_dir 밖인 경우.
        """
        if self.virtual_mode:
            candidate = self.cwd / key.lstrip("/")
        else:
            path = Path(key).expanduser()
            candidate = path if path.is_absolute() else self.cwd / path

        resolved = candidate.resolve()
        if resolved != self.cwd and not resolved.is_relative_to(self.cwd):
            raise PermissionError(f"Path '{key}' resolves outside root directory {self.cwd}")
        return resolved

    def _to_agent_path(self, path: Path) -> str:
        """실제 경로를 에이전트에게 보여줄 경로로 바꿉니다."""
        if not self.virtual_mode:
            return str(path)
        relative = path.relative_to(self.cwd).as_posix()
        return "/" if relative == "." else "/" + relative

    def _file_info(self, path: Path) -> FileInfo:
        stat = path.stat()
        is_dir = path.is_dir()
        agent_path = self._to_agent_path(path)
        if is_dir and not agent_path.endswith("/"):
            agent_path += "/"
        return {
            "path": agent_path,
            "is_dir": is_dir,
            "size": 0 if is_dir else stat.st_size,
            "modified_at": datetime.fromtimestamp(stat.st_mtime, tz=UTC).isoformat(),
        }

    def ls_info(self, path: str) -> list[FileInfo]:
        dir_path = self._resolve_path(path)
        if not dir_path.is_dir():
            return []

        infos: list[FileInfo] = []
        for child in dir_path.iterdir():
            # 심볼릭 링크가 루트 밖을 가리키면 목록에서 제외
            if not self._is_confined(child):
                continue
            infos.append(self._file_info(child))

        infos.sort(key=lambda x: x["path"])
        return infos

    def read_raw(
        self,
        file_path: str,
        offset: int = 0,
        limit: int = 100,
    ) -> ReadResult:
        try:
            resolved = self._resolve_path(file_path)
        except PermissionError:
            return ReadResult(error=_permission_error(file_path), error_code="permission_denied")

        if not resolved.is_file():
            return ReadResult(error=f"Error: File '{file_path}' not found", error_code="file_not_found")

        try:
            content = resolved.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return ReadResult(error=f"Error reading file '{file_path}': {e}")
        return ReadResult(content=read_window(content, offset, limit))

    def write(
        self,
        file_path: str,
        content: str,
    ) -> WriteResult:
        try:
            resolved = self._resolve_path(file_path)
        except PermissionError:
            return WriteResult(error=_permission_error(file_path))

        if resolved.is_dir():
            return WriteResult(error=f"Error: '{file_path}' is a directory")

        try:
            resolved.parent.mkdir(parents=True, exist_ok=True)
            data = content.encode("utf-8")
            resolved.write_bytes(data)
        except OSError as e:
            return WriteResult(error=f"Error writing file '{file_path}': {e}")

        return WriteResult(path=file_path, files_update=None, metadata={"size": len(data)})

    def edit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        try:
            resolved = self._resolve_path(file_path)
        except PermissionError:
            return EditResult(error=_permission_error(file_path))

        if not resolved.is_file():
            return EditResult(error=f"Error: File '{file_path}' not found")

        try:
            content = resolved.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return EditResult(error=f"Error reading file '{file_path}': {e}")

        result = perform_string_replacement(content, old_string, new_string, replace_all)
        if isinstance(result, str):
            return EditResult(error=result)

        new_content, occurrences = result
        try:
            resolved.write_text(new_content, encoding="utf-8")
        except OSError as e:
            return EditResult(error=f"Error writing file '{file_path}': {e}")

        return EditResult(path=file_path, files_update=None, occurrences=int(occurrences))

    def _is_confined(self, path: Path) -> bool:
        resolved = path.resolve()
        if resolved != self.cwd and not resolved.is_relative_to(self.cwd):
            logger.debug("Skipping %s: link target outside root", path)
            return False
        return resolved.exists()

    def _iter_files(self, root: Path):
        if root.is_file():
            yield root
            return
        for dirpath, _dirnames, filenames in os.walk(root):
            for name in filenames:
                file = Path(dirpath) / name
                if self._is_confined(file):
                    yield file

    def grep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        regex = compile_grep_pattern(pattern)
        if isinstance(regex, str):
            return regex

        target = path or "/"
        try:
            root = self._resolve_path(target) if (self.virtual_mode or path) else self.cwd
        except PermissionError:
            return _permission_error(target)
        if not root.exists():
            return []

        matches: list[GrepMatch] = []
        for file in sorted(self._iter_files(root)):
            agent_path = self._to_agent_path(file)
            if not glob_filter_matches(glob, agent_path):
                continue
            try:
                if file.stat().st_size > self.max_file_size_bytes:
                    logger.debug("Skipping %s during grep: larger than %d bytes", file, self.max_file_size_bytes)
                    continue
                lines = file.read_text(encoding="utf-8").split("\n")
            except (OSError, UnicodeDecodeError) as e:
                logger.debug("Skipping unreadable file %s during grep: %s", file, e)
                continue
            matches.extend(grep_lines(regex, agent_path, lines))
        return matches

    def glob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        root = self._resolve_path(path) if (self.virtual_mode or path != "/") else self.cwd
        if not root.is_dir():
            return []

        pattern = pattern.lstrip("/")
        infos: list[FileInfo] = []
        for file in self._iter_files(root):
            relative = file.relative_to(root).as_posix()
            if not glob_match(pattern, relative):
                continue
            try:
                infos.append(self._file_info(file))
            except OSError as e:
                logger.debug("Skipping %s during glob: %s", file, e)
        infos.sort(key=lambda x: x["path"])
        return infos

    def upload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        responses: list[FileUploadResponse] = []
        for path, content in files:
            try:
                resolved = self._resolve_path(path)
            except PermissionError:
                responses.append(FileUploadResponse(path=path, error="permission_denied"))
                continue

            if resolved.is_dir():
                responses.append(FileUploadResponse(path=path, error="is_directory"))
                continue

            try:
                resolved.parent.mkdir(parents=True, exist_ok=True)
                resolved.write_bytes(content)
            except PermissionError:
                responses.append(FileUploadResponse(path=path, error="permission_denied"))
            except OSError:
                responses.append(FileUploadResponse(path=path, error="invalid_path"))
            else:
                responses.append(FileUploadResponse(path=path))
        return responses

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        responses: list[FileDownloadResponse] = []
        for path in paths:
            try:
                resolved = self._resolve_path(path)
            except PermissionError:
                responses.append(FileDownloadResponse(path=path, error="permission_denied"))
                continue

            if resolved.is_dir():
                responses.append(FileDownloadResponse(path=path, error="is_directory"))
                continue
            if not resolved.exists():
                responses.append(FileDownloadResponse(path=path, error="file_not_found"))
                continue

            try:
                responses.append(FileDownloadResponse(path=path, content=resolved.read_bytes()))
            except PermissionError:
                responses.append(FileDownloadResponse(path=path, error="permission_denied"))
            except OSError:
                responses.append(FileDownloadResponse(path=path, error="invalid_path"))
        return responses


__all__ = ["FilesystemBackend"]
