"""
모듈명: composite.py
설명: 경로 접두사 기반으로 파일 작업을 라우팅하는 복합 백엔드

경로 접두사에 따라 서로 다른 백엔드로 작업을 라우팅합니다.
다른 경로에 대해 다른 저장소 전략이 필요할 때 사용합니다
(예: 임시 파일은 상태에, 메모리는 영구 저장소에).

주요 클래스:
    - CompositeBackend: 경로 접두사로 여러 백엔드에 파일 작업을 라우팅

사용 예시:
    ```python
    composite = CompositeBackend(
        default=StateBackend(runtime),
        routes={"/memories/": StoreBackend(runtime)},
    )

    # 기본 백엔드(StateBackend)로 라우팅
    composite.write("/temp.txt", "ephemeral")

    # /memories/ 접두사로 StoreBackend로 라우팅 (StoreBackend에는 "/note.md"로 전달)
    composite.write("/memories/note.md", "persistent")
    ```
"""

from collections import defaultdict

from agentvfs.backends.protocol import (
    BackendProtocol,
    EditResult,
    ExecuteResponse,
    FileDownloadResponse,
    FileInfo,
    FileUploadResponse,
    GrepMatch,
    ReadResult,
    SandboxBackendProtocol,
    WriteResult,
)
from agentvfs.state import FileUpdate

_NO_SANDBOX_MSG = (
    "The default backend does not support command execution (SandboxBackendProtocol). "
    "Provide a sandbox-capable default backend to enable execution."
)


class CompositeBackend(BackendProtocol):
    """
    경로 접두사에 따라 서로 다른 백엔드로 파일 작업을 라우팅하는 백엔드입니다.

    경로를 라우트 접두사와 매칭하고(가장 긴 것부터) 접두사를 제거한 경로로
    해당 백엔드에 위임합니다. 매칭되지 않는 경로는 기본 백엔드를 사용합니다.
    결과로 나오는 경로와 `files_update` 키에는 접두사가 다시 붙습니다.

    Attributes:
        default: 어떤 라우트와도 매칭되지 않는 경로를 위한 백엔드.
        routes: 경로 접두사와 백엔드의 매핑 (예: {"/memories/": store_backend}).
        sorted_routes: 길이순으로 정렬된 라우트 (가장 긴 것부터).
    """

    def __init__(
        self,
        default: BackendProtocol,
        routes: dict[str, BackendProtocol],
    ) -> None:
        """
        Args:
            default: 어떤 라우트와도 매칭되지 않는 경로를 위한 백엔드.
            routes: 경로 접두사와 백엔드의 매핑. 접두사는 "/"로 시작하고 끝나야 합니다.

        Raises:
            ValueError: 접두사 형식이 잘못된 경우.
        """
        for prefix in routes:
            if not (prefix.startswith("/") and prefix.endswith("/")) or prefix == "/":
                msg = f"Route prefix must start and end with '/' (got {prefix!r})"
                raise ValueError(msg)

        self.default = default
        self.routes = routes
        # "/memories/notes/"가 "/memories/"보다 먼저 매칭되도록 길이 내림차순
        self.sorted_routes = sorted(routes.items(), key=lambda x: len(x[0]), reverse=True)

    def _match_route(self, path: str) -> tuple[str, BackendProtocol, str] | None:
        """경로가 속한 라우트를 찾아 (접두사, 백엔드, 제거된 경로)를 반환합니다.

        "/memories/notes.txt" -> ("/memories/", store, "/notes.txt")
        "/memories" -> ("/memories/", store, "/")
        """
        for prefix, backend in self.sorted_routes:
            if path == prefix.rstrip("/") or path.startswith(prefix):
                suffix = path[len(prefix) :]
                return prefix, backend, f"/{suffix}" if suffix else "/"
        return None

    def _get_backend_and_key(self, key: str) -> tuple[BackendProtocol, str, str]:
        """(백엔드, 제거된 경로, 복원용 접두사)를 반환합니다. 기본 백엔드는 빈 접두사."""
        match = self._match_route(key)
        if match is None:
            return self.default, key, ""
        prefix, backend, stripped = match
        return backend, stripped, prefix[:-1]

    @staticmethod
    def _prefix_infos(prefix: str, infos: list[FileInfo]) -> list[FileInfo]:
        return [{**fi, "path": f"{prefix}{fi['path']}"} for fi in infos]

    @staticmethod
    def _prefix_matches(prefix: str, matches: list[GrepMatch]) -> list[GrepMatch]:
        return [{**m, "path": f"{prefix}{m['path']}"} for m in matches]

    @staticmethod
    def _prefix_update(prefix: str, update: FileUpdate | None) -> FileUpdate | None:
        if not update or not prefix:
            return update
        return {f"{prefix}{k}": v for k, v in update.items()}

    def _route_dirs(self) -> list[FileInfo]:
        return [{"path": prefix, "is_dir": True, "size": 0, "modified_at": ""} for prefix, _ in self.sorted_routes]

    def ls_info(self, path: str) -> list[FileInfo]:
        """디렉토리 내용을 나열합니다 (비재귀적).

        루트("/")에서는 기본 백엔드 결과에 라우트 디렉토리를 더합니다.
        """
        match = self._match_route(path)
        if match is not None:
            prefix, backend, stripped = match
            return self._prefix_infos(prefix[:-1], backend.ls_info(stripped))

        if path == "/":
            results = [*self.default.ls_info(path), *self._route_dirs()]
            results.sort(key=lambda x: x["path"])
            return results
        return self.default.ls_info(path)

    async def als_info(self, path: str) -> list[FileInfo]:
        """ls_info의 비동기 버전입니다."""
        match = self._match_route(path)
        if match is not None:
            prefix, backend, stripped = match
            return self._prefix_infos(prefix[:-1], await backend.als_info(stripped))

        if path == "/":
            results = [*(await self.default.als_info(path)), *self._route_dirs()]
            results.sort(key=lambda x: x["path"])
            return results
        return await self.default.als_info(path)

    def read_raw(self, file_path: str, offset: int = 0, limit: int = 100) -> ReadResult:
        backend, stripped, _ = self._get_backend_and_key(file_path)
        return backend.read_raw(stripped, offset=offset, limit=limit)

    async def aread_raw(self, file_path: str, offset: int = 0, limit: int = 100) -> ReadResult:
        backend, stripped, _ = self._get_backend_and_key(file_path)
        return await backend.aread_raw(stripped, offset=offset, limit=limit)

    def grep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        """
        파일 내용에서 정규식 패턴을 검색합니다.

        라우팅 로직:
            1. 특정 라우트와 매칭되는 경로 -> 해당 백엔드만 검색
            2. None 또는 "/" -> 기본 백엔드 + 모든 라우트 백엔드 검색 후 병합
            3. 기타 -> 기본 백엔드만 검색
        """
        match = self._match_route(path) if path is not None else None
        if match is not None:
            prefix, backend, stripped = match
            raw = backend.grep_raw(pattern, stripped, glob)
            return raw if isinstance(raw, str) else self._prefix_matches(prefix[:-1], raw)

        if path is not None and path != "/":
            return self.default.grep_raw(pattern, path, glob)

        raw_default = self.default.grep_raw(pattern, path, glob)
        if isinstance(raw_default, str):
            return raw_default
        all_matches = list(raw_default)
        for prefix, backend in self.sorted_routes:
            raw = backend.grep_raw(pattern, "/", glob)
            if isinstance(raw, str):
                return raw
            all_matches.extend(self._prefix_matches(prefix[:-1], raw))
        return all_matches

    async def agrep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        """grep_raw의 비동기 버전입니다."""
        match = self._match_route(path) if path is not None else None
        if match is not None:
            prefix, backend, stripped = match
            raw = await backend.agrep_raw(pattern, stripped, glob)
            return raw if isinstance(raw, str) else self._prefix_matches(prefix[:-1], raw)

        if path is not None and path != "/":
            return await self.default.agrep_raw(pattern, path, glob)

        raw_default = await self.default.agrep_raw(pattern, path, glob)
        if isinstance(raw_default, str):
            return raw_default
        all_matches = list(raw_default)
        for prefix, backend in self.sorted_routes:
            raw = await backend.agrep_raw(pattern, "/", glob)
            if isinstance(raw, str):
                return raw
            all_matches.extend(self._prefix_matches(prefix[:-1], raw))
        return all_matches

    def glob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        match = self._match_route(path)
        if match is not None:
            prefix, backend, stripped = match
            return self._prefix_infos(prefix[:-1], backend.glob_info(pattern, stripped))

        results = list(self.default.glob_info(pattern, path))
        if path == "/":
            for prefix, backend in self.sorted_routes:
                results.extend(self._prefix_infos(prefix[:-1], backend.glob_info(pattern, "/")))
        results.sort(key=lambda x: x["path"])
        return results

    async def aglob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        """glob_info의 비동기 버전입니다."""
        match = self._match_route(path)
        if match is not None:
            prefix, backend, stripped = match
            return self._prefix_infos(prefix[:-1], await backend.aglob_info(pattern, stripped))

        results = list(await self.default.aglob_info(pattern, path))
        if path == "/":
            for prefix, backend in self.sorted_routes:
                results.extend(self._prefix_infos(prefix[:-1], await backend.aglob_info(pattern, "/")))
        results.sort(key=lambda x: x["path"])
        return results

    def _restore_write(self, res: WriteResult, file_path: str, prefix: str) -> WriteResult:
        if res.error:
            return res
        return WriteResult(path=file_path, files_update=self._prefix_update(prefix, res.files_update), metadata=res.metadata)

    def _restore_edit(self, res: EditResult, file_path: str, prefix: str) -> EditResult:
        if res.error:
            return res
        return EditResult(
            path=file_path,
            files_update=self._prefix_update(prefix, res.files_update),
            occurrences=res.occurrences,
            metadata=res.metadata,
        )

    def write(self, file_path: str, content: str) -> WriteResult:
        """파일을 생성하거나 교체합니다. 적절한 백엔드로 라우팅됩니다."""
        backend, stripped, prefix = self._get_backend_and_key(file_path)
        return self._restore_write(backend.write(stripped, content), file_path, prefix)

    async def awrite(self, file_path: str, content: str) -> WriteResult:
        """write의 비동기 버전입니다."""
        backend, stripped, prefix = self._get_backend_and_key(file_path)
        return self._restore_write(await backend.awrite(stripped, content), file_path, prefix)

    def edit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        backend, stripped, prefix = self._get_backend_and_key(file_path)
        res = backend.edit(stripped, old_string, new_string, replace_all=replace_all)
        return self._restore_edit(res, file_path, prefix)

    async def aedit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        """edit의 비동기 버전입니다."""
        backend, stripped, prefix = self._get_backend_and_key(file_path)
        res = await backend.aedit(stripped, old_string, new_string, replace_all=replace_all)
        return self._restore_edit(res, file_path, prefix)

    def execute(self, command: str) -> ExecuteResponse:
        """
        기본 백엔드를 통해 셸 명령을 실행합니다.

        Raises:
            NotImplementedError: 기본 백엔드가 SandboxBackendProtocol을 구현하지 않는 경우.
        """
        if isinstance(self.default, SandboxBackendProtocol):
            return self.default.execute(command)
        raise NotImplementedError(_NO_SANDBOX_MSG)

    async def aexecute(self, command: str) -> ExecuteResponse:
        """execute의 비동기 버전입니다."""
        if isinstance(self.default, SandboxBackendProtocol):
            return await self.default.aexecute(command)
        raise NotImplementedError(_NO_SANDBOX_MSG)

    def _group_by_backend(self, paths: list[str]) -> list[tuple[BackendProtocol, list[tuple[int, str]]]]:
        """경로를 대상 백엔드별로 묶습니다 (원래 인덱스 유지)."""
        backends: dict[int, BackendProtocol] = {}
        entries: dict[int, list[tuple[int, str]]] = defaultdict(list)
        for idx, path in enumerate(paths):
            backend, stripped, _ = self._get_backend_and_key(path)
            backends[id(backend)] = backend
            entries[id(backend)].append((idx, stripped))
        return [(backends[key], entries[key]) for key in backends]

    def upload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        """
        여러 파일을 업로드합니다. 백엔드별로 한 번씩 호출한 뒤
        응답을 입력 순서대로 되돌립니다.
        """
        results: list[FileUploadResponse | None] = [None] * len(files)
        for backend, entries in self._group_by_backend([p for p, _ in files]):
            batch = [(stripped, files[idx][1]) for idx, stripped in entries]
            for (idx, _), resp in zip(entries, backend.upload_files(batch), strict=True):
                results[idx] = FileUploadResponse(path=files[idx][0], error=resp.error)
        return results  # type: ignore[return-value]

    async def aupload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        """upload_files의 비동기 버전입니다."""
        results: list[FileUploadResponse | None] = [None] * len(files)
        for backend, entries in self._group_by_backend([p for p, _ in files]):
            batch = [(stripped, files[idx][1]) for idx, stripped in entries]
            for (idx, _), resp in zip(entries, await backend.aupload_files(batch), strict=True):
                results[idx] = FileUploadResponse(path=files[idx][0], error=resp.error)
        return results  # type: ignore[return-value]

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        """여러 파일을 다운로드합니다. 백엔드별로 배칭하고 입력 순서를 유지합니다."""
        results: list[FileDownloadResponse | None] = [None] * len(paths)
        for backend, entries in self._group_by_backend(paths):
            batch = [stripped for _, stripped in entries]
            for (idx, _), resp in zip(entries, backend.download_files(batch), strict=True):
                results[idx] = FileDownloadResponse(path=paths[idx], content=resp.content, error=resp.error)
        return results  # type: ignore[return-value]

    async def adownload_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        """download_files의 비동기 버전입니다."""
        results: list[FileDownloadResponse | None] = [None] * len(paths)
        for backend, entries in self._group_by_backend(paths):
            batch = [stripped for _, stripped in entries]
            for (idx, _), resp in zip(entries, await backend.adownload_files(batch), strict=True):
                results[idx] = FileDownloadResponse(path=paths[idx], content=resp.content, error=resp.error)
        return results  # type: ignore[return-value]


__all__ = ["CompositeBackend"]
