"""Unit tests for the file state reducers and the state schema registry."""

import pytest
from langchain.agents.middleware.types import AgentState

from agentvfs.backends.utils import create_file_data
from agentvfs.state import FilesystemState, StateSchemaRegistry, merge_file_updates, merge_read_paths


class TestMergeFileUpdates:
    def test_none_update_keeps_current(self) -> None:
        current = {"/a.txt": create_file_data("a")}
        assert merge_file_updates(current, None) == current

    def test_none_current_and_none_update_gives_empty_map(self) -> None:
        assert merge_file_updates(None, None) == {}

    def test_none_current_drops_deletion_markers(self) -> None:
        b = create_file_data("b")
        result = merge_file_updates(None, {"/a.txt": None, "/b.txt": b})
        assert result == {"/b.txt": b}

    def test_update_adds_replaces_and_deletes(self) -> None:
        a = create_file_data("a")
        b = create_file_data("b")
        b2 = create_file_data("b2")
        c = create_file_data("c")
        current = {"/a.txt": a, "/b.txt": b}

        result = merge_file_updates(current, {"/a.txt": None, "/b.txt": b2, "/c.txt": c})

        assert result == {"/b.txt": b2, "/c.txt": c}

    def test_does_not_mutate_arguments(self) -> None:
        a = create_file_data("a")
        current = {"/a.txt": a}
        update = {"/a.txt": None}

        merge_file_updates(current, update)

        assert current == {"/a.txt": a}
        assert update == {"/a.txt": None}

    def test_deleting_missing_path_is_a_noop(self) -> None:
        a = create_file_data("a")
        assert merge_file_updates({"/a.txt": a}, {"/missing.txt": None}) == {"/a.txt": a}

    def test_sequential_updates_last_applied_wins(self) -> None:
        first = create_file_data("first")
        second = create_file_data("second")
        state = merge_file_updates({}, {"/f.txt": first})
        state = merge_file_updates(state, {"/f.txt": second})
        assert state["/f.txt"]["content"] == ["second"]

    def test_reapplying_an_update_is_idempotent(self) -> None:
        current = {"/a.txt": create_file_data("a"), "/b.txt": create_file_data("b")}
        update = {"/a.txt": None, "/b.txt": create_file_data("b2"), "/c.txt": create_file_data("c"), "/gone.txt": None}

        once = merge_file_updates(current, update)
        twice = merge_file_updates(once, update)

        assert twice == once
        assert set(twice) == {"/b.txt", "/c.txt"}


class TestMergeReadPaths:
    def test_merges_in_order_without_duplicates(self) -> None:
        assert merge_read_paths(["/a", "/b"], ["/b", "/c"]) == ["/a", "/b", "/c"]

    def test_handles_missing_sides(self) -> None:
        assert merge_read_paths(None, ["/a"]) == ["/a"]
        assert merge_read_paths(["/a"], None) == ["/a"]
        assert merge_read_paths(None, None) == []


class TestStateSchemaRegistry:
    def test_schema_for_registers_default_once(self) -> None:
        registry = StateSchemaRegistry()

        class OtherState(AgentState):
            pass

        assert registry.schema_for("files", FilesystemState) is FilesystemState
        # 이미 등록된 이름은 기본값을 무시
        assert registry.schema_for("files", OtherState) is FilesystemState
        assert "files" in registry
        assert registry.names == ["files"]

    def test_register_same_schema_twice_is_allowed(self) -> None:
        registry = StateSchemaRegistry()
        registry.register("files", FilesystemState)
        assert registry.register("files", FilesystemState) is FilesystemState

    def test_register_conflicting_schema_raises(self) -> None:
        registry = StateSchemaRegistry()

        class OtherState(AgentState):
            pass

        registry.register("files", FilesystemState)
        with pytest.raises(ValueError, match="already registered"):
            registry.register("files", OtherState)

    def test_get_unknown_name_raises_key_error(self) -> None:
        with pytest.raises(KeyError):
            StateSchemaRegistry().get("missing")
