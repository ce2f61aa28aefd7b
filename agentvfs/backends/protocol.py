"""
모듈명: protocol.py
설명: 플러그형 저장소 백엔드를 위한 프로토콜 정의

이 모듈은 모든 백엔드 구현체가 따라야 하는 BackendProtocol과
실행 컨텍스트로부터 백엔드를 얻는 BackendProvider를 정의합니다.
백엔드는 파일을 다양한 위치(상태, 파일시스템, 키-값 저장소 등)에 저장하고
파일 작업을 위한 통일된 인터페이스를 제공합니다.

주요 클래스:
    - FileDownloadResponse: 파일 다운로드 작업의 결과를 담는 데이터클래스
    - FileUploadResponse: 파일 업로드 작업의 결과를 담는 데이터클래스
    - FileInfo: 파일 메타데이터를 담는 TypedDict
    - GrepMatch: grep 검색 결과 항목을 담는 TypedDict
    - WriteResult: 파일 쓰기 작업의 결과를 담는 데이터클래스
    - EditResult: 파일 편집 작업의 결과를 담는 데이터클래스
    - ReadResult: 파일 읽기 작업의 결과 (내용과 오류를 분리)를 담는 데이터클래스
    - ExecuteResponse: 명령 실행 결과를 담는 데이터클래스
    - BackendProvider: 실행 컨텍스트로 백엔드를 해석하는 추상 클래스
    - FactoryBackendProvider: 팩토리 함수로 백엔드를 만드는 프로바이더
    - BackendProtocol: 기본 백엔드 프로토콜 (자기 자신을 반환하는 프로바이더)
    - SandboxBackendProtocol: 명령 실행을 지원하는 프로토콜

타입 별칭:
    - FileOperationError: 파일 작업 오류 코드 리터럴 타입
    - BackendFactory: 런타임을 받아 백엔드를 반환하는 팩토리 함수 타입
"""

import abc
import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal, NotRequired, TypeAlias

from langchain.tools import ToolRuntime
from typing_extensions import TypedDict

from agentvfs.state import FileUpdate

FileOperationError = Literal[
    "file_not_found",  # 다운로드: 파일이 존재하지 않음
    "permission_denied",  # 업로드/다운로드: 접근 거부 또는 루트 밖 경로
    "is_directory",  # 업로드/다운로드: 디렉토리를 파일로 다룸
    "invalid_path",  # 업로드/다운로드: 경로 문법 오류 또는 쓸 수 없는 위치
]
"""
파일 업로드/다운로드 작업을 위한 표준화된 오류 코드입니다.

LLM이 이해하고 스스로 복구할 수 있는 일반적인 오류만 표현합니다.
"""


class BackendResolutionError(RuntimeError):
    """프로바이더가 사용 가능한 백엔드를 반환하지 못했을 때 발생합니다."""


@dataclass
class FileDownloadResponse:
    """
    단일 파일 다운로드 작업의 결과를 담는 데이터클래스입니다.

    배치 작업에서 부분 성공을 허용하도록 경로별로 결과를 돌려줍니다.

    Attributes:
        path: 요청된 파일 경로. 배치 결과와 요청을 대응시키기 위해 포함됩니다.
        content: 성공 시 바이트 형태의 파일 내용, 실패 시 None.
        error: 실패 시 표준화된 오류 코드, 성공 시 None.

    Examples:
        >>> FileDownloadResponse(path="/app/config.json", content=b"{...}", error=None)
        >>> FileDownloadResponse(path="/wrong/path.txt", content=None, error="file_not_found")
    """

    path: str  # 요청된 파일의 경로
    content: bytes | None = None  # 파일 내용 (바이트), 실패 시 None
    error: FileOperationError | None = None  # 오류 코드, 성공 시 None


@dataclass
class FileUploadResponse:
    """
    단일 파일 업로드 작업의 결과를 담는 데이터클래스입니다.

    Examples:
        >>> FileUploadResponse(path="/app/data.txt", error=None)
        >>> FileUploadResponse(path="/readonly/file.txt", error="permission_denied")
    """

    path: str  # 업로드 대상 파일의 경로
    error: FileOperationError | None = None  # 오류 코드, 성공 시 None


class FileInfo(TypedDict):
    """
    구조화된 파일 목록 정보를 담는 TypedDict입니다.

    "path" 필드만 필수이며, 다른 필드는 백엔드에 따라 제공되지 않을 수 있습니다.
    디렉토리 경로는 후행 "/"를 가집니다.
    """

    path: str  # 파일의 절대 경로 (필수 필드)
    is_dir: NotRequired[bool]  # 디렉토리 여부 (선택)
    size: NotRequired[int]  # 파일 크기(바이트) (선택)
    modified_at: NotRequired[str]  # ISO 타임스탬프 (선택)


class GrepMatch(TypedDict):
    """구조화된 grep 검색 결과 항목입니다."""

    path: str  # 매칭 파일의 절대 경로
    line: int  # 라인 번호 (1-indexed)
    text: str  # 매칭된 라인의 전체 텍스트


@dataclass
class WriteResult:
    """
    백엔드 쓰기 작업의 결과를 담는 데이터클래스입니다.

    Attributes:
        error: 실패 시 오류 메시지, 성공 시 None.
        path: 작성된 파일의 절대 경로, 실패 시 None.
        files_update: 공유 상태에 적용할 부분 업데이트.
            상태 기반 백엔드는 {file_path: file_data}로 채우고,
            외부 저장소(디스크, 키-값 저장소 등)를 쓰는 백엔드는 None으로 둡니다.
        metadata: 백엔드별 부가 정보 (예: 기록한 바이트 수).

    Examples:
        >>> WriteResult(path="/f.txt", files_update={"/f.txt": {...}})
        >>> WriteResult(path="/f.txt", files_update=None, metadata={"size": 12})
        >>> WriteResult(error="Error: Permission denied ...")
    """

    error: str | None = None  # 오류 메시지, 성공 시 None
    path: str | None = None  # 작성된 파일의 절대 경로
    files_update: FileUpdate | None = None  # 상태 업데이트 딕셔너리
    metadata: dict[str, Any] | None = None  # 백엔드별 부가 정보


@dataclass
class EditResult:
    """
    백엔드 편집 작업의 결과를 담는 데이터클래스입니다.

    Attributes:
        error: 실패 시 오류 메시지, 성공 시 None.
        path: 편집된 파일의 절대 경로, 실패 시 None.
        files_update: 공유 상태에 적용할 부분 업데이트, 외부 저장소는 None.
        occurrences: 수행된 교체 횟수, 실패 시 None.
        metadata: 백엔드별 부가 정보.
    """

    error: str | None = None  # 오류 메시지, 성공 시 None
    path: str | None = None  # 편집된 파일의 절대 경로
    files_update: FileUpdate | None = None  # 상태 업데이트 딕셔너리
    occurrences: int | None = None  # 교체 횟수
    metadata: dict[str, Any] | None = None  # 백엔드별 부가 정보


@dataclass
class ReadResult:
    """
    백엔드 읽기 작업의 결과를 담는 데이터클래스입니다.

    내용과 오류를 서로 다른 필드로 돌려주므로 "Error"로 시작하는 파일 내용도
    그대로 내용으로 다룰 수 있습니다.

    Attributes:
        content: 읽은 라인 구간 (`\\n`으로 연결), 실패 시 None.
        error: 실패 시 에이전트에게 보여줄 오류 메시지, 성공 시 None.
        error_code: 실패 원인 코드 (예: "file_not_found"), 성공 시 None.
    """

    content: str | None = None  # 라인 구간, 실패 시 None
    error: str | None = None  # 오류 메시지, 성공 시 None
    error_code: FileOperationError | None = None  # 오류 코드, 성공 시 None


class BackendProvider(abc.ABC):
    """
    실행 컨텍스트(ToolRuntime)로부터 구체적인 백엔드를 해석하는 추상 클래스입니다.

    미들웨어와 도구는 백엔드가 고정 인스턴스인지, 런타임마다 새로 만들어지는지
    구분하지 않고 항상 `resolve(runtime)`만 호출합니다.
    """

    @abc.abstractmethod
    def resolve(self, runtime: ToolRuntime | None) -> "BackendProtocol":
        """현재 실행 컨텍스트에 맞는 백엔드를 반환합니다."""


# 타입 별칭: ToolRuntime을 받아 BackendProtocol을 반환하는 팩토리 함수
BackendFactory: TypeAlias = Callable[[ToolRuntime], "BackendProtocol"]


class FactoryBackendProvider(BackendProvider):
    """
    런타임마다 팩토리 함수를 호출해 백엔드를 만드는 프로바이더입니다.

    상태 기반 백엔드처럼 현재 런타임에 묶여야 하는 백엔드에 사용합니다.

    사용 예시:
        ```python
        provider = FactoryBackendProvider(StateBackend)
        provider = FactoryBackendProvider(lambda rt: StoreBackend(rt, namespace=("memories",)))
        ```
    """

    def __init__(self, factory: BackendFactory) -> None:
        self.factory = factory

    def resolve(self, runtime: ToolRuntime | None) -> "BackendProtocol":
        backend = self.factory(runtime)
        if not isinstance(backend, BackendProtocol):
            msg = f"Backend factory {self.factory!r} returned {type(backend).__name__}, expected a BackendProtocol instance"
            raise BackendResolutionError(msg)
        return backend


def as_backend_provider(backend: "BackendProvider | BackendFactory") -> BackendProvider:
    """백엔드 인스턴스, 프로바이더, 팩토리 함수를 모두 BackendProvider로 맞춥니다.

    Raises:
        TypeError: 프로바이더도 호출 가능한 객체도 아닌 경우.
    """
    if isinstance(backend, BackendProvider):
        return backend
    if callable(backend):
        return FactoryBackendProvider(backend)
    msg = f"Expected a BackendProvider or a backend factory, got {type(backend).__name__}"
    raise TypeError(msg)


def _read_text(result: ReadResult) -> str:
    return result.error if result.error is not None else (result.content or "")


class BackendProtocol(BackendProvider):
    """
    플러그형 저장소 백엔드를 위한 프로토콜 기본 클래스입니다.

    백엔드 인스턴스는 그 자체로 컨텍스트를 무시하고 자신을 반환하는
    프로바이더이기도 합니다.

    모든 파일 데이터는 다음 구조의 딕셔너리로 표현됩니다:
        {
            "content": list[str],  # 텍스트 콘텐츠 라인들
            "created_at": str,     # ISO 형식 타임스탬프
            "modified_at": str,    # ISO 형식 타임스탬프
        }

    구현하지 않은 작업은 NotImplementedError를 발생시킵니다.
    비동기 메서드는 기본적으로 동기 메서드를 스레드에서 실행합니다.
    """

    def resolve(self, runtime: ToolRuntime | None) -> "BackendProtocol":  # noqa: ARG002
        """정적 백엔드는 런타임과 무관하게 자기 자신을 반환합니다."""
        return self

    def ls_info(self, path: str) -> list[FileInfo]:
        """
        디렉토리의 직계 자식 목록을 메타데이터와 함께 반환합니다 (비재귀).

        Args:
            path: 목록을 조회할 디렉토리의 절대 경로.

        Returns:
            FileInfo 목록. 빈 디렉토리나 존재하지 않는 경로는 빈 목록.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support ls_info")

    async def als_info(self, path: str) -> list[FileInfo]:
        """ls_info의 비동기 버전입니다."""
        return await asyncio.to_thread(self.ls_info, path)

    def read_raw(
        self,
        file_path: str,
        offset: int = 0,
        limit: int = 100,
    ) -> ReadResult:
        """
        파일의 라인 구간을 읽어 내용과 오류를 구분해 반환합니다.

        Args:
            file_path: 읽을 파일의 절대 경로.
            offset: 읽기 시작할 라인 (0-indexed).
            limit: 읽을 최대 라인 수.

        Returns:
            성공 시 `content`에 `\\n`으로 연결된 라인 구간 (오프셋이 파일 끝을
            넘으면 빈 문자열), 실패 시 `error`와 `error_code`가 채워진 ReadResult.
            라인 번호 표시는 도구 계층의 몫입니다.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support read")

    async def aread_raw(
        self,
        file_path: str,
        offset: int = 0,
        limit: int = 100,
    ) -> ReadResult:
        """read_raw의 비동기 버전입니다."""
        return await asyncio.to_thread(self.read_raw, file_path, offset, limit)

    def read(
        self,
        file_path: str,
        offset: int = 0,
        limit: int = 100,
    ) -> str:
        """
        파일의 라인 구간을 문자열로 읽습니다.

        Returns:
            `\\n`으로 연결된 라인 구간. 오프셋이 파일 끝을 넘으면 빈 문자열.
            파일이 없거나 읽을 수 없으면 "Error"로 시작하는 설명 문자열.
        """
        return _read_text(self.read_raw(file_path, offset, limit))

    async def aread(
        self,
        file_path: str,
        offset: int = 0,
        limit: int = 100,
    ) -> str:
        """read의 비동기 버전입니다."""
        return _read_text(await self.aread_raw(file_path, offset, limit))

    def grep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        """
        파일 내용에서 정규식 패턴을 검색합니다.

        Args:
            pattern: Python 정규식 패턴.
            path: 검색할 디렉토리 또는 파일 경로. None이면 "/".
            glob: 검색 대상 파일을 이름으로 거르는 글롭 패턴 (예: "*.py").

        Returns:
            성공 시 GrepMatch 목록, 잘못된 패턴 등은 "Error:"로 시작하는 문자열.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support grep_raw")

    async def agrep_raw(
        self,
        pattern: str,
        path: str | None = None,
        glob: str | None = None,
    ) -> list[GrepMatch] | str:
        """grep_raw의 비동기 버전입니다."""
        return await asyncio.to_thread(self.grep_raw, pattern, path, glob)

    def glob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        """
        글롭 패턴과 매칭되는 파일을 찾습니다.

        `*`(세그먼트 내 임의 문자), `**`(임의 깊이 디렉토리), `?`(단일 문자),
        `[abc]`, `{a,b}`를 지원합니다. 패턴은 `path` 기준 상대 경로에 적용됩니다.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support glob_info")

    async def aglob_info(self, pattern: str, path: str = "/") -> list[FileInfo]:
        """glob_info의 비동기 버전입니다."""
        return await asyncio.to_thread(self.glob_info, pattern, path)

    def write(
        self,
        file_path: str,
        content: str,
    ) -> WriteResult:
        """
        파일을 생성하거나 내용을 교체합니다.

        Args:
            file_path: 파일의 절대 경로.
            content: 파일에 쓸 문자열 내용.

        Returns:
            WriteResult: 경로, 오류, 상태 업데이트 정보.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support write")

    async def awrite(
        self,
        file_path: str,
        content: str,
    ) -> WriteResult:
        """write의 비동기 버전입니다."""
        return await asyncio.to_thread(self.write, file_path, content)

    def edit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        """
        기존 파일에서 정확한 문자열 교체를 수행합니다.

        old_string이 없으면 오류, replace_all=False인데 여러 번 나타나면
        모호함 오류를 반환합니다.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support edit")

    async def aedit(
        self,
        file_path: str,
        old_string: str,
        new_string: str,
        replace_all: bool = False,
    ) -> EditResult:
        """edit의 비동기 버전입니다."""
        return await asyncio.to_thread(self.edit, file_path, old_string, new_string, replace_all)

    def upload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        """
        여러 파일을 업로드합니다.

        Returns:
            입력 순서와 같은 순서의 FileUploadResponse 목록.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support upload_files")

    async def aupload_files(self, files: list[tuple[str, bytes]]) -> list[FileUploadResponse]:
        """upload_files의 비동기 버전입니다."""
        return await asyncio.to_thread(self.upload_files, files)

    def download_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        """
        여러 파일의 바이트 내용을 가져옵니다.

        Returns:
            입력 순서와 같은 순서의 FileDownloadResponse 목록.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support download_files")

    async def adownload_files(self, paths: list[str]) -> list[FileDownloadResponse]:
        """download_files의 비동기 버전입니다."""
        return await asyncio.to_thread(self.download_files, paths)


@dataclass
class ExecuteResponse:
    """
    명령 실행 결과를 담는 데이터클래스입니다.

    Attributes:
        output: 실행된 명령의 stdout과 stderr을 결합한 출력.
        exit_code: 프로세스 종료 코드. 0은 성공.
        truncated: 백엔드 제한으로 출력이 잘렸는지 여부.
    """

    output: str
    exit_code: int | None = None
    truncated: bool = False


class SandboxBackendProtocol(BackendProtocol):
    """
    명령 실행을 지원하는 샌드박스 백엔드를 위한 프로토콜입니다.

    추가 메서드:
        - execute: 셸 명령 실행
        - aexecute: execute의 비동기 버전

    추가 속성:
        - id: 샌드박스 인스턴스의 고유 식별자
    """

    def execute(
        self,
        command: str,
    ) -> ExecuteResponse:
        """셸 명령을 실행하고 결합된 출력, 종료 코드, 잘림 여부를 반환합니다."""
        raise NotImplementedError(f"{type(self).__name__} does not support execute")

    async def aexecute(
        self,
        command: str,
    ) -> ExecuteResponse:
        """execute의 비동기 버전입니다."""
        return await asyncio.to_thread(self.execute, command)

    @property
    def id(self) -> str:
        """샌드박스 백엔드 인스턴스의 고유 식별자입니다."""
        raise NotImplementedError(f"{type(self).__name__} does not define an id")


__all__ = [
    "BackendFactory",
    "BackendProtocol",
    "BackendProvider",
    "BackendResolutionError",
    "EditResult",
    "ExecuteResponse",
    "FactoryBackendProvider",
    "FileDownloadResponse",
    "FileInfo",
    "FileOperationError",
    "FileUploadResponse",
    "GrepMatch",
    "SandboxBackendProtocol",
    "WriteResult",
    "as_backend_provider",
]
