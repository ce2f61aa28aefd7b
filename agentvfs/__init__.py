"""
모듈명: __init__.py
설명: agentvfs 패키지의 진입점 및 공개 API 정의

에이전트 런타임 아래의 저장소 및 도구 안전 계층을 제공합니다.

공개 API:
    - create_storage_agent / build_storage_middleware: 에이전트 조립 헬퍼
    - FilesystemMiddleware, MemoryMiddleware, SkillsMiddleware: 미들웨어
    - FilesystemState, StateSchemaRegistry, merge_file_updates: 파일 상태
    - ToolResult: 도구 실행 결과 타입
    - __version__: 패키지 버전 문자열

사용 예시:
    >>> from agentvfs import create_storage_agent, __version__
    >>> agent = create_storage_agent("openai:gpt-4o")
"""

from agentvfs._version import __version__
from agentvfs.graph import build_storage_middleware, create_storage_agent
from agentvfs.middleware.filesystem import FilesystemMiddleware
from agentvfs.middleware.memory import MemoryMiddleware
from agentvfs.middleware.skills import SkillsMiddleware
from agentvfs.state import FilesystemState, StateSchemaRegistry, merge_file_updates
from agentvfs.tools import ToolResult

__all__ = [
    "FilesystemMiddleware",  # 파일 시스템 미들웨어
    "FilesystemState",  # 파일 상태 스키마
    "MemoryMiddleware",  # 메모리 로딩 미들웨어
    "SkillsMiddleware",  # 스킬 미들웨어
    "StateSchemaRegistry",  # 상태 스키마 레지스트리
    "ToolResult",  # 도구 실행 결과
    "__version__",  # 패키지 버전
    "build_storage_middleware",  # 미들웨어 스택 구성
    "create_storage_agent",  # 에이전트 생성 함수
    "merge_file_updates",  # files 리듀서
]
