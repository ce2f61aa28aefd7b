"""
모듈명: skills.py
설명: 에이전트 스킬을 로드하고 시스템 프롬프트에 노출하는 미들웨어

이 모듈은 에이전트 스킬 패턴을 점진적 공개(progressive disclosure) 방식으로
구현하며, 설정 가능한 소스를 통해 백엔드 저장소에서 스킬을 로드합니다.

## 아키텍처

스킬은 하나 이상의 **소스**에서 로드됩니다. 소스는 백엔드에서 스킬이 구성된 경로입니다.
소스는 순서대로 로드되며, 동일한 이름의 스킬이 있을 경우 나중에 로드된 것이
이전 것을 덮어씁니다 (마지막 승리). 이를 통해 계층화가 가능합니다:
기본(base) -> 사용자(user) -> 프로젝트(project).

로더 함수(list_skills, load_skills)는 상태가 없는 순수 함수이며, 로드 결과는
에이전트 상태의 `skills_metadata`에만 보관됩니다. 미들웨어 인스턴스에는 캐시가 없습니다.

로드 실패는 항상 소프트하게 처리됩니다. 소스 하나를 읽다 예외가 나면 경고 로그를 남기고
그 소스만 건너뛰며, `download_files`를 지원하지 않는 백엔드는 `read_raw`로 대체합니다.

## 스킬 구조

각 스킬은 YAML 프론트매터가 포함된 SKILL.md 파일을 담은 디렉토리입니다:

```
/skills/user/web-research/
├── SKILL.md          # 필수: YAML 프론트매터 + 마크다운 지시사항
└── helper.py         # 선택: 지원 파일
```

SKILL.md 형식:
```markdown
---
name: web-research
description: 철저한 웹 리서치를 수행하는 구조화된 접근 방식
license: MIT
allowed-tools: read_file grep
---

# 웹 리서치 스킬
...
```

## 무효화

스킬 메타데이터는 한 번의 실행 동안 한 번만 로드됩니다. 저장소의 스킬이 바뀐 뒤
다시 읽게 하려면 `invalidate_skills()`가 돌려주는 업데이트를 상태에 적용합니다:

```python
agent.update_state(config, invalidate_skills())
```

## 사용법

```python
from agentvfs.backends import FilesystemBackend
from agentvfs.middleware.skills import SkillsMiddleware

middleware = SkillsMiddleware(
    backend=FilesystemBackend(root_dir="/srv/agent", virtual_mode=True),
    sources=["/skills/base/", "/skills/user/", "/skills/project/"],
)
```
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Awaitable, Callable
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Annotated, Any, NotRequired, TypedDict

import yaml
from langchain.agents.middleware.types import (
    AgentMiddleware,
    AgentState,
    ModelRequest,
    ModelResponse,
    PrivateStateAttr,
)
from langchain.tools import ToolRuntime

from agentvfs.backends.protocol import as_backend_provider
from agentvfs.middleware._utils import append_to_system_message

if TYPE_CHECKING:
    from langchain_core.runnables import RunnableConfig
    from langgraph.runtime import Runtime

    from agentvfs.backends.protocol import BackendFactory, BackendProtocol, BackendProvider, FileDownloadResponse, ReadResult
    from agentvfs.state import StateSchemaRegistry

logger = logging.getLogger(__name__)

# =============================================================================
# 상수 정의
# =============================================================================

# 디코딩 전에 검사하는 SKILL.md 파일 최대 크기 (10MB)
MAX_SKILL_FILE_SIZE = 10 * 1024 * 1024

MAX_SKILL_NAME_LENGTH = 64  # 스킬 이름 최대 길이
MAX_SKILL_DESCRIPTION_LENGTH = 1024  # 스킬 설명 최대 길이

SKILL_FILE_NAME = "SKILL.md"

# read 대체 경로에서 SKILL.md 전체를 읽기 위한 라인 한도
_FULL_READ_LIMIT = sys.maxsize

_SKILL_NAME_PATTERN = re.compile(r"^[a-z0-9]+(-[a-z0-9]+)*$")
_FRONTMATTER_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL)


# =============================================================================
# 타입 정의
# =============================================================================


class SkillMetadata(TypedDict):
    """SKILL.md 파일의 YAML 프론트매터에서 파싱된 스킬 메타데이터.

    필드:
        name: 스킬 식별자 (최대 64자, 소문자 영숫자와 단일 하이픈)
        description: 스킬의 기능 설명 (최대 1024자)
        path: SKILL.md 파일의 백엔드 경로
        license: 라이선스 이름 또는 번들된 라이선스 파일 참조
        compatibility: 환경 요구사항
        metadata: 추가 메타데이터를 위한 문자열 키-값 매핑
        allowed_tools: 사전 승인된 도구 목록
    """

    name: str
    description: str
    path: str
    license: str | None
    compatibility: str | None
    metadata: dict[str, str]
    allowed_tools: list[str]


def merge_skills_metadata(
    current: list[SkillMetadata] | None,
    update: list[SkillMetadata] | None,
) -> list[SkillMetadata] | None:
    """`skills_metadata` 채널 리듀서.

    `None` 업데이트는 로드된 메타데이터를 무효화하고, 그 외에는 이름 기준으로
    병합합니다 (같은 이름은 업데이트 쪽이 이김, 기존 순서 유지).
    """
    if update is None:
        return None
    if current is None:
        return list(update)

    merged = {skill["name"]: skill for skill in current}
    for skill in update:
        merged[skill["name"]] = skill
    return list(merged.values())


class SkillsState(AgentState):
    """스킬 미들웨어 상태.

    skills_metadata는 PrivateStateAttr로 표시되어 에이전트 입출력 스키마에 드러나지 않습니다.
    키가 없거나 None이면 다음 실행의 before_agent에서 다시 로드합니다.
    """

    skills_metadata: Annotated[NotRequired[list[SkillMetadata] | None], PrivateStateAttr, merge_skills_metadata]


class SkillsStateUpdate(TypedDict):
    """before_agent 훅에서 반환하는 상태 업데이트."""

    skills_metadata: list[SkillMetadata] | None


def invalidate_skills() -> SkillsStateUpdate:
    """다음 실행에서 스킬을 다시 로드하도록 만드는 상태 업데이트를 반환합니다."""
    return SkillsStateUpdate(skills_metadata=None)


# =============================================================================
# 파싱
# =============================================================================


def _validate_skill_name(name: str, directory_name: str) -> tuple[bool, str]:
    """스킬 이름을 검증합니다.

    요구사항:
    - 최대 64자
    - 소문자 영숫자와 하이픈만 허용, 하이픈으로 시작/끝 불가, 연속 하이픈 불가
    - 부모 디렉토리 이름과 일치

    반환값:
        (is_valid, error_message) 튜플. 유효하면 에러 메시지는 빈 문자열.
    """
    if not name:
        return False, "name is required"
    if len(name) > MAX_SKILL_NAME_LENGTH:
        return False, f"name exceeds {MAX_SKILL_NAME_LENGTH} characters"
    if not _SKILL_NAME_PATTERN.match(name):
        return False, "name must be lowercase alphanumeric with single hyphens only"
    if name != directory_name:
        return False, f"name '{name}' must match directory name '{directory_name}'"
    return True, ""


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip() or None


def _parse_metadata_map(value: Any, skill_path: str) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        logger.warning("Ignoring non-mapping 'metadata' in %s", skill_path)
        return {}
    return {str(k): str(v) for k, v in value.items()}


def _parse_allowed_tools(value: Any) -> list[str]:
    if not value:
        return []
    if isinstance(value, list):
        return [str(tool) for tool in value]
    return str(value).split()


def parse_skill_metadata(content: str, skill_path: str, directory_name: str) -> SkillMetadata | None:
    """SKILL.md 콘텐츠에서 YAML 프론트매터를 파싱합니다.

    인자:
        content: SKILL.md 파일의 콘텐츠
        skill_path: SKILL.md 파일의 경로 (로그 및 메타데이터용)
        directory_name: 스킬을 포함한 부모 디렉토리의 이름

    반환값:
        파싱이 성공하면 SkillMetadata, 프론트매터가 없거나 필수 필드가 빠지면 None
    """
    match = _FRONTMATTER_PATTERN.match(content)
    if not match:
        logger.warning("Skipping %s: no valid YAML frontmatter found", skill_path)
        return None

    try:
        frontmatter_data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        logger.warning("Invalid YAML in %s: %s", skill_path, e)
        return None

    if not isinstance(frontmatter_data, dict):
        logger.warning("Skipping %s: frontmatter is not a mapping", skill_path)
        return None

    name = frontmatter_data.get("name")
    description = frontmatter_data.get("description")
    if not name or not description:
        logger.warning("Skipping %s: missing required 'name' or 'description'", skill_path)
        return None

    # 형식이 어긋나도 호환성을 위해 경고만 하고 등록
    is_valid, error = _validate_skill_name(str(name), directory_name)
    if not is_valid:
        logger.warning("Skill '%s' in %s has a non-compliant name: %s", name, skill_path, error)

    description_str = str(description).strip()
    if len(description_str) > MAX_SKILL_DESCRIPTION_LENGTH:
        logger.warning("Description exceeds %d characters in %s, truncating", MAX_SKILL_DESCRIPTION_LENGTH, skill_path)
        description_str = description_str[:MAX_SKILL_DESCRIPTION_LENGTH]

    return SkillMetadata(
        name=str(name),
        description=description_str,
        path=skill_path,
        license=_optional_str(frontmatter_data.get("license")),
        compatibility=_optional_str(frontmatter_data.get("compatibility")),
        metadata=_parse_metadata_map(frontmatter_data.get("metadata"), skill_path),
        allowed_tools=_parse_allowed_tools(frontmatter_data.get("allowed-tools")),
    )


def _skill_candidates(items: list[dict]) -> list[tuple[str, str]]:
    """ls 결과에서 (스킬 디렉토리, SKILL.md 경로) 쌍을 만듭니다."""
    candidates = []
    for item in items:
        if not item.get("is_dir"):
            continue
        skill_dir = PurePosixPath(item["path"])
        candidates.append((skill_dir.name, str(skill_dir / SKILL_FILE_NAME)))
    return candidates


def _parse_downloaded(directory_name: str, skill_md_path: str, response: FileDownloadResponse) -> SkillMetadata | None:
    if response.error:
        # SKILL.md가 없는 디렉토리는 스킬이 아님
        logger.debug("No %s in %s: %s", SKILL_FILE_NAME, skill_md_path, response.error)
        return None
    if response.content is None:
        logger.warning("Downloaded skill file %s has no content", skill_md_path)
        return None
    if len(response.content) > MAX_SKILL_FILE_SIZE:
        logger.warning("Skipping %s: content too large (%d bytes)", skill_md_path, len(response.content))
        return None
    try:
        content = response.content.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning("Error decoding %s: %s", skill_md_path, e)
        return None
    return parse_skill_metadata(content, skill_md_path, directory_name)


def _parse_read(directory_name: str, skill_md_path: str, result: ReadResult) -> SkillMetadata | None:
    if result.error is not None:
        if result.error_code == "file_not_found":
            logger.debug("No %s in %s", SKILL_FILE_NAME, skill_md_path)
        else:
            logger.warning("Error reading %s: %s", skill_md_path, result.error)
        return None
    content = result.content or ""
    size = len(content.encode("utf-8"))
    if size > MAX_SKILL_FILE_SIZE:
        logger.warning("Skipping %s: content too large (%d bytes)", skill_md_path, size)
        return None
    return parse_skill_metadata(content, skill_md_path, directory_name)


def _parse_all(candidates: list[tuple[str, str]], results: list[Any], parse: Callable[[str, str, Any], SkillMetadata | None]) -> list[SkillMetadata]:
    skills = []
    for (directory_name, skill_md_path), result in zip(candidates, results, strict=True):
        skill = parse(directory_name, skill_md_path, result)
        if skill is not None:
            skills.append(skill)
    return skills


def _list_source(backend: BackendProtocol, source_path: str) -> list[SkillMetadata]:
    candidates = _skill_candidates(backend.ls_info(source_path))
    if not candidates:
        return []

    paths = [skill_md_path for _, skill_md_path in candidates]
    try:
        responses = backend.download_files(paths)
    except NotImplementedError:
        # 다운로드를 지원하지 않는 백엔드는 read로 대체
        results = [backend.read_raw(path, offset=0, limit=_FULL_READ_LIMIT) for path in paths]
        return _parse_all(candidates, results, _parse_read)
    return _parse_all(candidates, responses, _parse_downloaded)


async def _alist_source(backend: BackendProtocol, source_path: str) -> list[SkillMetadata]:
    candidates = _skill_candidates(await backend.als_info(source_path))
    if not candidates:
        return []

    paths = [skill_md_path for _, skill_md_path in candidates]
    try:
        responses = await backend.adownload_files(paths)
    except NotImplementedError:
        results = [await backend.aread_raw(path, offset=0, limit=_FULL_READ_LIMIT) for path in paths]
        return _parse_all(candidates, results, _parse_read)
    return _parse_all(candidates, responses, _parse_downloaded)


def list_skills(backend: BackendProtocol, source_path: str) -> list[SkillMetadata]:
    """백엔드 소스 디렉토리 하나에서 스킬을 나열합니다.

    예상 구조:
        source_path/
        ├── skill-name/
        │   ├── SKILL.md        # 필수
        │   └── helper.py       # 선택

    소스를 읽는 중 발생한 오류는 경고 로그를 남기고 빈 목록으로 처리합니다.
    """
    try:
        return _list_source(backend, source_path)
    except Exception as e:  # noqa: BLE001
        logger.warning("Skipping skill source %s: %s", source_path, e, exc_info=e)
        return []


async def alist_skills(backend: BackendProtocol, source_path: str) -> list[SkillMetadata]:
    """list_skills의 비동기 버전."""
    try:
        return await _alist_source(backend, source_path)
    except Exception as e:  # noqa: BLE001
        logger.warning("Skipping skill source %s: %s", source_path, e, exc_info=e)
        return []


def load_skills(backend: BackendProtocol, sources: list[str]) -> list[SkillMetadata]:
    """모든 소스에서 스킬을 순서대로 로드하고 이름 기준으로 병합합니다.

    나중 소스가 이전 소스의 같은 이름 스킬을 덮어씁니다.
    """
    all_skills: dict[str, SkillMetadata] = {}
    for source_path in sources:
        for skill in list_skills(backend, source_path):
            all_skills[skill["name"]] = skill
    return list(all_skills.values())


async def aload_skills(backend: BackendProtocol, sources: list[str]) -> list[SkillMetadata]:
    """load_skills의 비동기 버전."""
    all_skills: dict[str, SkillMetadata] = {}
    for source_path in sources:
        for skill in await alist_skills(backend, source_path):
            all_skills[skill["name"]] = skill
    return list(all_skills.values())


# =============================================================================
# 시스템 프롬프트 템플릿
# =============================================================================

# {skills_locations}와 {skills_list}는 런타임에 실제 값으로 치환됨
SKILLS_SYSTEM_PROMPT = """## Skills System

You have access to a skills library that provides specialized capabilities and domain knowledge.

{skills_locations}

**Available Skills:**

{skills_list}

**How to Use Skills (Progressive Disclosure):**

You only see each skill's name and description above. Full instructions live in storage at `<skills location>/<skill name>/SKILL.md`.

1. **Recognize when a skill applies**: Check if the user's task matches a skill's description
2. **Read the skill's full instructions**: Use read_file on its SKILL.md in the highest-priority location that has it
3. **Follow the skill's instructions**: SKILL.md contains step-by-step workflows and examples
4. **Access supporting files**: Skills may include helper scripts or reference docs next to SKILL.md; use absolute paths

Remember: when in doubt, check if a skill exists for the task!"""


# =============================================================================
# 메인 미들웨어 클래스
# =============================================================================


class SkillsMiddleware(AgentMiddleware):
    """에이전트 스킬을 로드하고 시스템 프롬프트에 노출하는 미들웨어.

    before_agent에서 `skills_metadata`가 없거나 None일 때만 로드하고,
    wrap_model_call에서 스킬 이름, 설명, 허용 도구만 시스템 메시지 끝에 추가합니다.

    인자:
        backend: 백엔드 프로바이더, 백엔드 인스턴스 또는 런타임을 받는 팩토리 함수.
        sources: 스킬 소스 경로 목록 (예: ["/skills/user/", "/skills/project/"]).
        registry: 에이전트 조립 시 공유하는 상태 스키마 레지스트리.
    """

    state_schema = SkillsState

    def __init__(
        self,
        *,
        backend: BackendProvider | BackendFactory,
        sources: list[str],
        registry: StateSchemaRegistry | None = None,
    ) -> None:
        self.backend = as_backend_provider(backend)
        self.sources = list(sources)
        self.system_prompt_template = SKILLS_SYSTEM_PROMPT
        if registry is not None:
            self.state_schema = registry.schema_for("skills", SkillsState)

    def _get_backend(self, state: SkillsState, runtime: Runtime, config: RunnableConfig) -> BackendProtocol:
        # 팩토리 해석을 위한 인위적인 도구 런타임 생성
        tool_runtime = ToolRuntime(
            state=state,
            context=runtime.context,
            stream_writer=runtime.stream_writer,
            store=runtime.store,
            config=config,
            tool_call_id=None,
        )
        return self.backend.resolve(tool_runtime)

    def _format_skills_locations(self) -> str:
        locations = []
        for i, source_path in enumerate(self.sources):
            name = PurePosixPath(source_path.rstrip("/")).name.capitalize()
            # 마지막 소스가 가장 높은 우선순위
            suffix = " (higher priority)" if i == len(self.sources) - 1 else ""
            locations.append(f"**{name} Skills**: `{source_path}`{suffix}")
        return "\n".join(locations)

    def _format_skills_list(self, skills: list[SkillMetadata]) -> str:
        if not skills:
            return f"(No skills available yet. You can create skills in {' or '.join(self.sources)})"

        lines = []
        for skill in skills:
            lines.append(f"- **{skill['name']}**: {skill['description']}")
            if skill["allowed_tools"]:
                lines.append(f"  -> Allowed tools: {', '.join(skill['allowed_tools'])}")
        return "\n".join(lines)

    def modify_request(self, request: ModelRequest) -> ModelRequest:
        """모델 요청의 시스템 메시지에 스킬 섹션을 추가합니다."""
        skills_metadata = request.state.get("skills_metadata") or []
        skills_section = self.system_prompt_template.format(
            skills_locations=self._format_skills_locations(),
            skills_list=self._format_skills_list(skills_metadata),
        )
        return request.override(system_message=append_to_system_message(request.system_message, skills_section))

    def before_agent(self, state: SkillsState, runtime: Runtime, config: RunnableConfig) -> SkillsStateUpdate | None:
        """에이전트 실행 전에 스킬 메타데이터를 로드합니다.

        이미 로드되어 있으면 (빈 목록 포함) 아무것도 하지 않습니다.
        """
        if state.get("skills_metadata") is not None:
            return None

        backend = self._get_backend(state, runtime, config)
        skills = load_skills(backend, self.sources)
        logger.debug("Loaded %d skills from %d sources", len(skills), len(self.sources))
        return SkillsStateUpdate(skills_metadata=skills)

    async def abefore_agent(self, state: SkillsState, runtime: Runtime, config: RunnableConfig) -> SkillsStateUpdate | None:
        """before_agent의 비동기 버전."""
        if state.get("skills_metadata") is not None:
            return None

        backend = self._get_backend(state, runtime, config)
        skills = await aload_skills(backend, self.sources)
        logger.debug("Loaded %d skills from %d sources", len(skills), len(self.sources))
        return SkillsStateUpdate(skills_metadata=skills)

    def wrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], ModelResponse],
    ) -> ModelResponse:
        """시스템 프롬프트에 스킬 섹션을 주입합니다."""
        return handler(self.modify_request(request))

    async def awrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], Awaitable[ModelResponse]],
    ) -> ModelResponse:
        """시스템 프롬프트에 스킬 섹션을 주입합니다 (비동기 버전)."""
        return await handler(self.modify_request(request))


__all__ = [
    "MAX_SKILL_FILE_SIZE",
    "SKILLS_SYSTEM_PROMPT",
    "SkillMetadata",
    "SkillsMiddleware",
    "SkillsState",
    "alist_skills",
    "aload_skills",
    "invalidate_skills",
    "list_skills",
    "load_skills",
    "merge_skills_metadata",
    "parse_skill_metadata",
]
