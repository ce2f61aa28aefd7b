"""
모듈명: __init__.py
설명: 플러그형 파일 저장소 백엔드 패키지

이 패키지는 다양한 저장소 위치(에이전트 상태, 로컬 디스크, LangGraph 저장소)에
파일을 저장하고 통일된 인터페이스를 제공하는 백엔드 구현체들을 포함합니다.

주요 클래스:
    - BackendProtocol: 모든 백엔드가 따라야 하는 기본 프로토콜 인터페이스
    - BackendProvider / FactoryBackendProvider: 런타임으로 백엔드를 해석하는 프로바이더
    - CompositeBackend: 경로 접두사 기반으로 여러 백엔드에 작업을 라우팅
    - FilesystemBackend: 루트 디렉토리에 갇힌 실제 파일시스템 읽기/쓰기
    - LocalShellBackend: 로컬 셸 명령 실행 지원 백엔드
    - StateBackend: LangGraph 상태에 파일을 저장하는 백엔드
    - StoreBackend: LangGraph BaseStore에 파일을 저장하는 백엔드

사용 예시:
    >>> from agentvfs.backends import FilesystemBackend, CompositeBackend
    >>> fs_backend = FilesystemBackend(root_dir="/workspace", virtual_mode=True)
    >>> content = fs_backend.read("/config.json")
"""

from agentvfs.backends.composite import CompositeBackend
from agentvfs.backends.filesystem import FilesystemBackend
from agentvfs.backends.local_shell import LocalShellBackend
from agentvfs.backends.protocol import (
    BackendFactory,
    BackendProtocol,
    BackendProvider,
    BackendResolutionError,
    EditResult,
    ExecuteResponse,
    FactoryBackendProvider,
    FileDownloadResponse,
    FileInfo,
    FileUploadResponse,
    GrepMatch,
    ReadResult,
    SandboxBackendProtocol,
    WriteResult,
    as_backend_provider,
)
from agentvfs.backends.state import StateBackend
from agentvfs.backends.store import StoreBackend

__all__ = [
    "BackendFactory",
    "BackendProtocol",
    "BackendProvider",
    "BackendResolutionError",
    "CompositeBackend",
    "EditResult",
    "ExecuteResponse",
    "FactoryBackendProvider",
    "FileDownloadResponse",
    "FileInfo",
    "FileUploadResponse",
    "FilesystemBackend",
    "GrepMatch",
    "LocalShellBackend",
    "ReadResult",
    "SandboxBackendProtocol",
    "StateBackend",
    "StoreBackend",
    "WriteResult",
    "as_backend_provider",
]
