"""
모듈명: middleware/__init__.py
설명: 에이전트 미들웨어 패키지의 진입점

주요 미들웨어:
    - FilesystemMiddleware: 파일시스템 도구 제공 (ls, read_file, write_file 등) 및 큰 결과 이동
    - MemoryMiddleware: 메모리 문서(AGENTS.md 등)를 시스템 프롬프트에 로드
    - SkillsMiddleware: 온디맨드 스킬 기능 제공

사용 예시:
    ```python
    from agentvfs.middleware import FilesystemMiddleware, MemoryMiddleware

    agent = create_agent(
        model,
        middleware=[
            MemoryMiddleware(backend=backend, sources=["/memories/AGENTS.md"]),
            FilesystemMiddleware(backend=backend),
        ],
    )
    ```
"""

from agentvfs.middleware.eviction import ToolResultEvictor
from agentvfs.middleware.filesystem import FilesystemMiddleware
from agentvfs.middleware.memory import MemoryLoadError, MemoryMiddleware
from agentvfs.middleware.skills import SkillMetadata, SkillsMiddleware, invalidate_skills

__all__ = [
    "FilesystemMiddleware",  # 파일시스템 도구 미들웨어
    "MemoryLoadError",  # strict 메모리 로드 오류
    "MemoryMiddleware",  # 메모리 로딩 미들웨어
    "SkillMetadata",  # 스킬 메타데이터 타입
    "SkillsMiddleware",  # 스킬 미들웨어
    "ToolResultEvictor",  # 큰 도구 결과 이동 인터셉터
    "invalidate_skills",  # 스킬 재로드 상태 업데이트
]
