"""
모듈명: state.py
설명: 파일 상태 데이터 구조, 상태 리듀서, 상태 스키마 레지스트리

에이전트 실행 상태의 `files` 키는 경로 -> FileData 매핑(FilesMap)이며,
도구 호출이 만들어낸 부분 업데이트(FileUpdate)를 리듀서가 병합하는 방식으로만
변경됩니다. 병렬 브랜치가 같은 경로를 갱신하면 마지막으로 적용된 업데이트가
남습니다 (last-applied-wins).

주요 구성요소:
    - FileData: 파일 내용(라인 목록)과 생성/수정 시각
    - merge_file_updates: FilesMap에 FileUpdate를 병합하는 순수 함수
    - merge_read_paths: 세션 내 읽은 경로 목록을 합치는 리듀서
    - FilesystemState: 파일시스템 미들웨어 상태 스키마
    - StateSchemaRegistry: 한 번의 에이전트 조립에서 공유되는 상태 스키마 레지스트리

사용 예시:
    >>> current = {"/a.txt": create_file_data("a")}
    >>> merge_file_updates(current, {"/a.txt": None, "/b.txt": create_file_data("b")})
    {'/b.txt': {...}}
"""

from typing import Annotated, NotRequired, TypeAlias

from langchain.agents.middleware.types import AgentState
from typing_extensions import TypedDict


class FileData(TypedDict):
    """파일 내용과 메타데이터를 저장하는 데이터 구조.

    Attributes:
        content: 파일의 각 라인을 담은 문자열 리스트.
        created_at: 파일 생성 시각 (ISO 8601 형식).
        modified_at: 마지막 수정 시각 (ISO 8601 형식).
    """

    content: list[str]
    """파일의 각 라인 목록."""

    created_at: str
    """파일 생성 시각 (ISO 8601 타임스탬프)."""

    modified_at: str
    """마지막 수정 시각 (ISO 8601 타임스탬프)."""


# 경로 -> 파일 데이터 (에이전트에게 보이는 파일 상태)
FilesMap: TypeAlias = dict[str, FileData]

# 경로 -> 파일 데이터 또는 None (None은 삭제 표시)
FileUpdate: TypeAlias = dict[str, FileData | None]


def merge_file_updates(current: FilesMap | None, update: FileUpdate | None) -> FilesMap:
    """파일 업데이트를 병합하며 삭제도 지원하는 리듀서.

    LangGraph가 `files` 채널에 업데이트가 도착할 때마다 호출합니다.
    인자를 변경하지 않고 항상 새 딕셔너리를 반환합니다.

    Args:
        current: 기존 파일 맵. 초기화 전에는 `None`일 수 있음.
        update: 병합할 부분 업데이트. `None` 값은 해당 경로의 삭제를 의미.

    Returns:
        병합된 파일 맵.

    사용 예시:
        ```python
        existing = {"/file1.txt": FileData(...), "/file2.txt": FileData(...)}
        updates = {"/file2.txt": None, "/file3.txt": FileData(...)}
        result = merge_file_updates(existing, updates)
        # 결과: {"/file1.txt": FileData(...), "/file3.txt": FileData(...)}
        ```
    """
    # 업데이트가 없으면 현재 상태를 그대로 유지
    if update is None:
        return current if current is not None else {}

    # 현재 상태가 없으면 업데이트에서 None이 아닌 값만 사용
    if current is None:
        return {k: v for k, v in update.items() if v is not None}

    result = {**current}
    for key, value in update.items():
        if value is None:
            # None 값은 삭제 마커로 처리
            result.pop(key, None)
        else:
            result[key] = value
    return result


def merge_read_paths(current: list[str] | None, update: list[str] | None) -> list[str]:
    """세션 내에서 읽었거나 작성한 경로 목록을 순서를 유지하며 합칩니다."""
    merged = dict.fromkeys(current or [])
    merged.update(dict.fromkeys(update or []))
    return list(merged)


class FilesystemState(AgentState):
    """파일시스템 미들웨어의 상태 스키마.

    `files`는 merge_file_updates 리듀서로, `read_paths`는 merge_read_paths
    리듀서로 병합되므로 병렬 도구 호출의 업데이트가 서로를 덮어쓰지 않습니다.
    """

    files: Annotated[NotRequired[dict[str, FileData]], merge_file_updates]
    """파일시스템 내의 파일 목록 (경로 -> FileData 매핑)."""

    read_paths: Annotated[NotRequired[list[str]], merge_read_paths]
    """현재 세션에서 읽었거나 작성한 경로. edit_file 사전 조건 확인에 사용."""


class StateSchemaRegistry:
    """한 번의 에이전트 조립 동안 공유되는 상태 스키마 레지스트리.

    조립 시점에 하나를 만들어 모든 미들웨어에 같은 인스턴스를 전달합니다.
    같은 이름으로 요청한 컴포넌트들은 동일한 스키마 클래스를 받으므로
    여러 에이전트 인스턴스가 서로 충돌하는 상태 형태를 정의하지 않습니다.

    사용 예시:
        ```python
        registry = StateSchemaRegistry()
        fs = FilesystemMiddleware(registry=registry)
        skills = SkillsMiddleware(backend=backend, sources=[...], registry=registry)
        assert registry.get("files") is fs.state_schema
        ```
    """

    def __init__(self) -> None:
        self._schemas: dict[str, type[AgentState]] = {}

    def register(self, name: str, schema: type[AgentState]) -> type[AgentState]:
        """스키마를 명시적으로 등록합니다.

        Raises:
            ValueError: 같은 이름으로 다른 스키마가 이미 등록된 경우.
        """
        existing = self._schemas.get(name)
        if existing is not None and existing is not schema:
            msg = f"State schema '{name}' is already registered as {existing.__name__}, cannot register {schema.__name__}"
            raise ValueError(msg)
        self._schemas[name] = schema
        return schema

    def schema_for(self, name: str, default: type[AgentState]) -> type[AgentState]:
        """등록된 스키마를 반환하고, 없으면 `default`를 등록한 뒤 반환합니다."""
        if name not in self._schemas:
            self._schemas[name] = default
        return self._schemas[name]

    def get(self, name: str) -> type[AgentState]:
        """등록된 스키마를 조회합니다. 없으면 KeyError."""
        return self._schemas[name]

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    @property
    def names(self) -> list[str]:
        """등록된 스키마 이름 목록 (등록 순서)."""
        return list(self._schemas)


__all__ = [
    "FileData",
    "FileUpdate",
    "FilesMap",
    "FilesystemState",
    "StateSchemaRegistry",
    "merge_file_updates",
    "merge_read_paths",
]
