"""End-to-end unit tests for the assembled storage agent with a fake LLM."""

from pathlib import Path

from langchain.agents.middleware import AgentMiddleware
from langchain_core.messages import AIMessage, HumanMessage
from langchain_core.tools import tool
from langgraph.checkpoint.memory import InMemorySaver
from langgraph.store.memory import InMemoryStore

from agentvfs import __version__
from agentvfs.backends import CompositeBackend, FilesystemBackend, StateBackend, StoreBackend
from agentvfs.graph import BASE_AGENT_PROMPT, build_storage_middleware, create_storage_agent
from agentvfs.middleware import FilesystemMiddleware, MemoryMiddleware, SkillsMiddleware
from agentvfs.state import StateSchemaRegistry
from tests.utils import FixedGenericFakeChatModel, SystemMessageCapturingMiddleware, system_text, tool_calls_message


@tool(description="Sample tool")
def sample_tool(sample_input: str) -> str:
    """A sample tool that returns the input string."""
    return sample_input


def test_version_is_exposed() -> None:
    assert __version__ == "0.1.0"


def test_build_storage_middleware_order_and_shared_registry() -> None:
    registry = StateSchemaRegistry()

    stack = build_storage_middleware(memory=["/AGENTS.md"], skills=["/skills/"], registry=registry)

    assert [type(m) for m in stack] == [MemoryMiddleware, SkillsMiddleware, FilesystemMiddleware]
    assert registry.names == ["memory", "skills", "files"]
    assert stack[0].backend is stack[1].backend is stack[2].backend


def test_build_storage_middleware_defaults_to_filesystem_only() -> None:
    stack = build_storage_middleware()
    assert [type(m) for m in stack] == [FilesystemMiddleware]


def test_basic_invocation() -> None:
    model = FixedGenericFakeChatModel(messages=iter([AIMessage(content="Task completed successfully!")]))
    agent = create_storage_agent(model)

    result = agent.invoke({"messages": [HumanMessage(content="Hello, agent!")]})

    ai_messages = [msg for msg in result["messages"] if msg.type == "ai"]
    assert ai_messages[-1].content == "Task completed successfully!"


def test_custom_tools_and_middleware_are_added() -> None:
    capture = SystemMessageCapturingMiddleware()
    model = FixedGenericFakeChatModel(
        messages=iter(
            [
                tool_calls_message(("sample_tool", {"sample_input": "test input"}, "call_1")),
                AIMessage(content="Done."),
            ]
        )
    )
    agent = create_storage_agent(model, tools=[sample_tool], middleware=[capture], system_prompt="Be brief.")

    result = agent.invoke({"messages": [HumanMessage(content="Use the sample tool")]})

    assert any(msg.type == "tool" and msg.content == "test input" for msg in result["messages"])
    text = system_text(capture.captured_system_messages[0])
    assert text.startswith(f"Be brief.\n\n{BASE_AGENT_PROMPT}")
    assert "## Filesystem Tools" in text
    assert {"sample_tool", "read_file", "write_file"} <= set(capture.captured_tool_names[0])


def test_hybrid_storage_with_composite_backend() -> None:
    store = InMemoryStore()
    model = FixedGenericFakeChatModel(
        messages=iter(
            [
                tool_calls_message(
                    ("write_file", {"file_path": "/scratch.txt", "content": "temporary"}, "call_a"),
                    ("write_file", {"file_path": "/memories/prefs.md", "content": "likes tea"}, "call_b"),
                ),
                AIMessage(content="Saved both."),
            ]
        )
    )
    agent = create_storage_agent(
        model,
        backend=lambda rt: CompositeBackend(default=StateBackend(rt), routes={"/memories/": StoreBackend(rt)}),
        store=store,
    )

    result = agent.invoke({"messages": [HumanMessage(content="Save")]})

    assert result["files"]["/scratch.txt"]["content"] == ["temporary"]
    assert "/memories/prefs.md" not in result["files"]
    item = store.get(("filesystem",), "/prefs.md")
    assert item is not None
    assert item.value["content"] == ["likes tea"]


def test_memory_and_skills_from_disk(tmp_path: Path) -> None:
    (tmp_path / "AGENTS.md").write_text("User prefers short answers.")
    skill_dir = tmp_path / "skills" / "summarize"
    skill_dir.mkdir(parents=True)
    (skill_dir / "SKILL.md").write_text("---\nname: summarize\ndescription: Summarize long text\n---\n\nSteps.\n")
    capture = SystemMessageCapturingMiddleware()
    model = FixedGenericFakeChatModel(
        messages=iter(
            [
                tool_calls_message(("read_file", {"file_path": "/skills/summarize/SKILL.md"}, "call_r")),
                AIMessage(content="Summary."),
            ]
        )
    )
    agent = create_storage_agent(
        model,
        backend=FilesystemBackend(root_dir=tmp_path, virtual_mode=True),
        memory=["/AGENTS.md"],
        skills=["/skills/"],
        middleware=[capture],
    )

    result = agent.invoke({"messages": [HumanMessage(content="Summarize this")]})

    text = system_text(capture.captured_system_messages[0])
    assert text.startswith("<agent_memory>\n/AGENTS.md\nUser prefers short answers.")
    assert "- **summarize**: Summarize long text" in text
    tool_message = next(msg for msg in result["messages"] if msg.type == "tool")
    assert "name: summarize" in tool_message.content


def test_interrupt_on_pauses_before_tool() -> None:
    model = FixedGenericFakeChatModel(
        messages=iter(
            [
                tool_calls_message(("write_file", {"file_path": "/guarded.txt", "content": "x"}, "call_w")),
                AIMessage(content="Done."),
            ]
        )
    )
    agent = create_storage_agent(model, interrupt_on={"write_file": True}, checkpointer=InMemorySaver())
    config = {"configurable": {"thread_id": "hitl"}}

    result = agent.invoke({"messages": [HumanMessage(content="Write")]}, config)

    assert "__interrupt__" in result
    assert "/guarded.txt" not in (result.get("files") or {})


def test_user_middleware_runs_after_storage_middleware() -> None:
    seen: list[list[str]] = []

    class ToolNameRecorder(AgentMiddleware):
        def wrap_model_call(self, request, handler):
            seen.append([t.name for t in request.tools])
            return handler(request)

    model = FixedGenericFakeChatModel(messages=iter([AIMessage(content="Hi.")]))
    agent = create_storage_agent(model, middleware=[ToolNameRecorder()])

    agent.invoke({"messages": [HumanMessage(content="Hello")]})

    # 실행을 지원하지 않는 기본 백엔드이므로 execute는 이미 걸러진 상태
    assert "execute" not in seen[0]
    assert "ls" in seen[0]
