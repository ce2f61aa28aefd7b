"""Shared helpers for the agentvfs test suite."""

from collections.abc import Awaitable, Callable, Sequence
from types import SimpleNamespace
from typing import Any

from langchain.agents.middleware import AgentMiddleware
from langchain.agents.middleware.types import ModelRequest, ModelResponse
from langchain.tools import ToolRuntime
from langchain_core.language_models import LanguageModelInput
from langchain_core.language_models.fake_chat_models import GenericFakeChatModel
from langchain_core.messages import AIMessage
from langchain_core.runnables import Runnable
from langchain_core.tools import BaseTool
from langgraph.store.base import BaseStore
from langgraph.store.memory import InMemoryStore


class FixedGenericFakeChatModel(GenericFakeChatModel):
    """Fixed version of GenericFakeChatModel that properly handles bind_tools."""

    def bind_tools(
        self,
        tools: Sequence[dict[str, Any] | type | Callable | BaseTool],
        *,
        tool_choice: str | None = None,
        **kwargs: Any,
    ) -> Runnable[LanguageModelInput, AIMessage]:
        """Override bind_tools to return self."""
        return self


class SystemMessageCapturingMiddleware(AgentMiddleware):
    """Middleware that captures the system message for testing purposes."""

    def __init__(self) -> None:
        self.captured_system_messages: list = []
        self.captured_tool_names: list[list[str]] = []

    def _capture(self, request: ModelRequest) -> None:
        if request.system_message is not None:
            self.captured_system_messages.append(request.system_message)
        self.captured_tool_names.append([t.name if hasattr(t, "name") else t["name"] for t in request.tools])

    def wrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], ModelResponse],
    ) -> ModelResponse:
        self._capture(request)
        return handler(request)

    async def awrap_model_call(
        self,
        request: ModelRequest,
        handler: Callable[[ModelRequest], Awaitable[ModelResponse]],
    ) -> ModelResponse:
        self._capture(request)
        return await handler(request)


def make_runtime(tid: str = "tc", *, state: dict | None = None, store: BaseStore | None = None, config: dict | None = None) -> ToolRuntime:
    """Create a ToolRuntime for testing."""
    return ToolRuntime(
        state=state if state is not None else {"messages": [], "files": {}},
        context=None,
        tool_call_id=tid,
        store=store if store is not None else InMemoryStore(),
        stream_writer=lambda _: None,
        config=config if config is not None else {},
    )


def make_agent_runtime(store: BaseStore | None = None) -> SimpleNamespace:
    """Create the minimal graph runtime that `before_agent` hooks read from."""
    return SimpleNamespace(context=None, store=store, stream_writer=lambda _: None)


def system_text(message: Any) -> str:
    """Flatten a SystemMessage's content blocks into plain text."""
    return "".join(block.get("text", "") for block in message.content_blocks if block.get("type") == "text")


def tool_calls_message(*calls: tuple[str, dict[str, Any], str]) -> AIMessage:
    """Build an AIMessage that issues the given (name, args, id) tool calls."""
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": args, "id": call_id, "type": "tool_call"} for name, args, call_id in calls],
    )
