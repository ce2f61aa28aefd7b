"""
모듈명: graph.py
설명: 저장소 계층 미들웨어를 조립하고 에이전트를 생성하는 헬퍼

하나의 백엔드 프로바이더와 하나의 StateSchemaRegistry 위에서
메모리, 스킬, 파일시스템 미들웨어를 순서대로 구성합니다.

주요 기능:
    - build_storage_middleware(): 미들웨어 스택만 구성
    - create_storage_agent(): LangChain create_agent로 에이전트까지 생성

의존성:
    - langchain: 에이전트 생성 및 Human-in-the-Loop 미들웨어
    - langgraph: 체크포인터, 저장소, 컴파일된 그래프
    - agentvfs.backends / agentvfs.middleware: 저장소 백엔드와 미들웨어

사용 예시:
    >>> from agentvfs import create_storage_agent
    >>> agent = create_storage_agent("openai:gpt-4o", memory=["/memories/AGENTS.md"], skills=["/skills/"])
"""

from collections.abc import Callable, Sequence
from typing import Any

from langchain.agents import create_agent
from langchain.agents.middleware import HumanInTheLoopMiddleware, InterruptOnConfig
from langchain.agents.middleware.types import AgentMiddleware
from langchain.agents.structured_output import ResponseFormat
from langchain.chat_models import init_chat_model
from langchain_core.language_models import BaseChatModel
from langchain_core.messages import SystemMessage
from langchain_core.tools import BaseTool
from langgraph.graph.state import CompiledStateGraph
from langgraph.store.base import BaseStore
from langgraph.types import Checkpointer

from agentvfs.backends.protocol import BackendFactory, BackendProvider, FactoryBackendProvider, as_backend_provider
from agentvfs.backends.state import StateBackend
from agentvfs.middleware.filesystem import FilesystemMiddleware
from agentvfs.middleware.memory import MemoryMiddleware
from agentvfs.middleware.skills import SkillsMiddleware
from agentvfs.state import StateSchemaRegistry

BASE_AGENT_PROMPT = "In order to complete the objective that the user asks of you, you have access to a number of standard tools."


def build_storage_middleware(
    *,
    backend: BackendProvider | BackendFactory | None = None,
    memory: list[str] | None = None,
    skills: list[str] | None = None,
    registry: StateSchemaRegistry | None = None,
    tool_token_limit_before_evict: int | None = 20000,
    require_read_before_edit: bool = True,
    strict_memory: bool = False,
) -> list[AgentMiddleware]:
    """메모리, 스킬, 파일시스템 미들웨어를 하나의 프로바이더 위에 구성합니다.

    순서: MemoryMiddleware (지정 시) -> SkillsMiddleware (지정 시) -> FilesystemMiddleware.
    모든 미들웨어는 같은 레지스트리를 공유합니다.
    """
    provider = as_backend_provider(backend) if backend is not None else FactoryBackendProvider(StateBackend)
    registry = registry if registry is not None else StateSchemaRegistry()

    stack: list[AgentMiddleware] = []
    if memory is not None:
        stack.append(MemoryMiddleware(backend=provider, sources=memory, registry=registry, strict=strict_memory))
    if skills is not None:
        stack.append(SkillsMiddleware(backend=provider, sources=skills, registry=registry))
    stack.append(
        FilesystemMiddleware(
            backend=provider,
            registry=registry,
            tool_token_limit_before_evict=tool_token_limit_before_evict,
            require_read_before_edit=require_read_before_edit,
        )
    )
    return stack


def create_storage_agent(
    model: str | BaseChatModel,
    tools: Sequence[BaseTool | Callable | dict[str, Any]] | None = None,
    *,
    system_prompt: str | SystemMessage | None = None,
    middleware: Sequence[AgentMiddleware] = (),
    backend: BackendProvider | BackendFactory | None = None,
    memory: list[str] | None = None,
    skills: list[str] | None = None,
    response_format: ResponseFormat | None = None,
    context_schema: type[Any] | None = None,
    checkpointer: Checkpointer | None = None,
    store: BaseStore | None = None,
    interrupt_on: dict[str, bool | InterruptOnConfig] | None = None,
    tool_token_limit_before_evict: int | None = 20000,
    debug: bool = False,
    name: str | None = None,
) -> CompiledStateGraph:
    """저장소 도구를 갖춘 에이전트를 생성합니다.

    !!! warning "도구 호출(tool calling)을 지원하는 LLM이 필요합니다!"

    Args:
        model: 사용할 LLM 모델. 문자열이면 init_chat_model로 초기화 (예: "openai:gpt-4o").
        tools: 저장소 도구 외에 추가할 도구 목록.
        system_prompt: 기본 프롬프트 앞에 붙일 시스템 지시사항.
        middleware: 저장소 미들웨어 다음에 적용할 추가 미들웨어.
        backend: 백엔드 프로바이더, 백엔드 인스턴스 또는 팩토리. 기본값은 StateBackend.
        memory: 메모리 문서 경로 목록.
        skills: 스킬 소스 경로 목록 (나중 소스가 우선).
        store: 영구 저장소 (StoreBackend 사용 시 필수).
        interrupt_on: 도구별 인터럽트 설정 (예: {"edit_file": True}).
        tool_token_limit_before_evict: 큰 도구 결과를 옮기기 전 토큰 한도.

    Returns:
        CompiledStateGraph: 구성된 에이전트.
    """
    if isinstance(model, str):
        model = init_chat_model(model)

    agent_middleware = build_storage_middleware(
        backend=backend,
        memory=memory,
        skills=skills,
        tool_token_limit_before_evict=tool_token_limit_before_evict,
    )
    agent_middleware.extend(middleware)
    # Human-in-the-Loop은 마지막에 추가
    if interrupt_on is not None:
        agent_middleware.append(HumanInTheLoopMiddleware(interrupt_on=interrupt_on))

    if system_prompt is None:
        final_system_prompt: str | SystemMessage = BASE_AGENT_PROMPT
    elif isinstance(system_prompt, SystemMessage):
        final_system_prompt = SystemMessage(
            content=[*system_prompt.content_blocks, {"type": "text", "text": f"\n\n{BASE_AGENT_PROMPT}"}]
        )
    else:
        final_system_prompt = system_prompt + "\n\n" + BASE_AGENT_PROMPT

    return create_agent(
        model,
        system_prompt=final_system_prompt,
        tools=tools,
        middleware=agent_middleware,
        response_format=response_format,
        context_schema=context_schema,
        checkpointer=checkpointer,
        store=store,
        debug=debug,
        name=name,
    ).with_config({"recursion_limit": 1000})


__all__ = ["BASE_AGENT_PROMPT", "build_storage_middleware", "create_storage_agent"]
