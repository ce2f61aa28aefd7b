"""
모듈명: store.py
설명: LangGraph BaseStore에 파일을 영구 저장하는 백엔드

파일은 FileData 형태({"content": [...], "created_at", "modified_at"})로
네임스페이스 아래 경로 키에 저장됩니다. 스레드를 넘어 유지되므로
장기 메모리나 스킬 디렉토리에 적합합니다.

네임스페이스 기본값:
    - config["metadata"]["assistant_id"]가 있으면 (assistant_id, "filesystem")
    - 없으면 ("filesystem",)
"""

from typing import TYPE_CHECKING, Any

from langgraph.store.base import BaseStore, Item

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

# 한 번의 store.search 호출로 가져올 항목 수
SEARCH_PAGE_SIZE = 100


class StoreBackend(BackendProtocol):
    """Backend that stores files in a LangGraph `BaseStore` (persistent).

    Args:
        runtime: 도구 런타임. `store`와 `config`를 읽습니다.
        namespace: 파일을 저장할 네임스페이스. 생략하면 assistant_id 기반 기본값.
        store: 사용할 저장소. 생략하면 `runtime.store`.

    Raises:
        ValueError: 사용할 수 있는 저장소가 없는 경우.
    """

    def __init__(
        self,
        runtime: "ToolRuntime | None",
        *,
        namespace: tuple[str, ...] | None = None,
        store: BaseStore | None = None,
    ) -> None:
        self.runtime = runtime
        resolved_store = store if store is not None else getattr(runtime, "store", None)
        if resolved_store is None:
            msg = "StoreBackend requires a store: pass store= or run the agent with a store configured"
            raise ValueError(msg)
        self.store: BaseStore = resolved_store
        self.namespace = namespace if namespace is not None else self._default_namespace()

    def _default_namespace(self) -> tuple[str, ...]:
        config = getattr(self.runtime, "config", None) or {}
        assistant_id = (config.get("metadata") or {}).get("assistant_id")
        if assistant_id:
            return (str(assistant_id), "filesystem")
        return ("filesystem",)

    @staticmethod
    def _convert_item(item: Item) -> FileData:
        value: dict[str, Any] = item.value
        content = value.get("content")
        if not isinstance(content, list) or not all(isinstance(line, str) for line in content):
            msg = f"Store item '{item.key}' is not a valid file: 'content' must be a list of strings"
            raise ValueError(msg)
        return {
            "content": content,
            "created_at": str(value.get("created_at", "")),
            "modified_at": str(value.get("modified_at", "")),
        }

    def _get(self, path: str) -> FileData | None:
        item = self.store.get(self.namespace, path)
        return self._convert_item(item) if item is not None else None

    async def _aget(self, path: str) -> FileData | None:
        item = await self.store.aget(self.namespace, path)
        return self._convert_item(item) if item is not None else None

    def _all_files(self) -> dict[str, FileData]:
        """네임스페이스의 모든 파일을 페이지 단위로 가져옵니다."""
        files: dict[str, FileData] = {}
        offset = 0
        while True:
            page = self.store.search(self.namespace, limit=SEARCH_PAGE_SIZE, offset=offset)
            for item in page:
                files[item.key] = self._convert_item(item)
            if len(page) < SEARCH_PAGE_SIZE:
                return files
            offset += SEARCH_PAGE_SIZE

    async def _aall_files(self) -> dict[str, FileData]:
        files: dict[str, FileData] = {}
        offset = 0
        while True:
            page = await self.store.asearch(self.namespace, limit=SEARCH_PAGE_SIZE, offset=offset)
            for item in page:
                files[item.key] = self._convert_item(item)
            if len(page) < SEARCH_PAGE_SIZE:
                return files
            offset += SEARCH_PAGE_SIZE

    def ls_info(self, path: str) -> list[FileInfo]:
        return list_directory(self._all_files(), path)

    async def als_info(self, path: str) -> list[FileInfo]:
        return list_directory(await self._aall_files(), path)

    @staticmethod
    def _window(file_path: str, file_data: FileData | None, offset: int, limit: int) -> ReadResult:
        if file_data is None:
            return ReadResult(error=f"Error: File '{file_path}' not found", error_code="file_not_found")
        return ReadResult(content=read_window(file_data_to_string(file_data), offset, limit))

    def read_raw(self, file_path: str, offset: int = 0, limit: int = 100) -> ReadResult:
        return self._window(file_path, self._get(file_path), offset, limit)

    async def aread_raw(self, file_path: str, offset: int = 0, limit: int = 100) -> ReadResult:
        return self._window(file_path, await self._aget(file_path), offset, limit)

    @staticmethod
    def _next_file_data(existing: FileData | None, content: str) -> FileData:
        return update_file_data(existing, content) if existing is not None else create_file_data(content)

    def write(self, file_path: str, content: str) -> WriteResult:
        file_data = self._next_file_data(self._get(file_path), content)
        self.store.put(self.namespace, file_path, dict(file_data))
        return WriteResult(path=file_path, files_update=None)

    async def awrite(self, file_path: str, content: str) -> WriteResult:
        file_data = self._next_file_data(await self._aget(file_path), content)
        await self.store.aput(self.namespace, file_path, dict(file_data))
        return WriteResult(path=file_path, files_update=None)

    def _apply_edit(
        self,
        file_path: str,
        file_data: FileData | None,
        old_string: str,
        new_string: str,
        replace_all: bool,
    ) -> tuple[EditResult, FileData | None]:
        if file_data is None:
            return EditResult(error=f"Error: File '{file_path}' not found"), None
        result = perform_string_replacement(file_data_to_string(file_data), old_string, new_string, replace_all)
        if isinstance(result, str):
            return EditResult(error=result), None
        new_content, occurrences = result
        edited = update_file_data(file_data, new_content)
        return EditResult(path=file_path, files_update=None, occurrences=int(occurrences)), edited

    def edit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        result, edited = self._apply_edit(file_path, self._get(file_path), old_string, new_string, replace_all)
        if edited is not None:
            self.store.put(self.namespace, file_path, dict(edited))
        return result

    async def aedit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        result, edited = self._apply_edit(file_path, await self._aget(file_path), old_string, new_string, replace_all)
        if edited is not None:
            await self.store.aput(self.namespace, file_path, dict(edited))
        return result

    def grep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        return grep_search(self._all_files(), pattern, path, glob)

    async def agrep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        return grep_search(await self._aall_files(), pattern, path, glob)

    def glob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        return glob_search(self._all_files(), pattern, path)

    async def aglob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        return glob_search(await self._aall_files(), pattern, path)

    def upload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        responses: list[FileUploadResponse] = []
        for path, content in files:
            try:
                text = content.decode("utf-8")
            except UnicodeDecodeError:
                responses.append(FileUploadResponse(path=path, error="invalid_path"))
                continue
            self.store.put(self.namespace, path, dict(self._next_file_data(self._get(path), text)))
            responses.append(FileUploadResponse(path=path))
        return responses

    async def aupload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        responses: list[FileUploadResponse] = []
        for path, content in files:
            try:
                text = content.decode("utf-8")
            except UnicodeDecodeError:
                responses.append(FileUploadResponse(path=path, error="invalid_path"))
                continue
            await self.store.aput(self.namespace, path, dict(self._next_file_data(await self._aget(path), text)))
            responses.append(FileUploadResponse(path=path))
        return responses

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        responses: list[FileDownloadResponse] = []
        for path in paths:
            file_data = self._get(path)
            if file_data is None:
                responses.append(FileDownloadResponse(path=path, error="file_not_found"))
            else:
                responses.append(FileDownloadResponse(path=path, content=file_data_to_string(file_data).encode("utf-8")))
        return responses

    async def adownload_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        responses: list[FileDownloadResponse] = []
        for path in paths:
            file_data = await self._aget(path)
            if file_data is None:
                responses.append(FileDownloadResponse(path=path, error="file_not_found"))
            else:
                responses.append(FileDownloadResponse(path=path, content=file_data_to_string(file_data).encode("utf-8")))
        return responses


__all__ = ["StoreBackend"]
