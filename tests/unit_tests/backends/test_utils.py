"""Unit tests for shared backend helpers."""

import pytest

from agentvfs.backends.utils import (
    TRUNCATION_GUIDANCE,
    create_file_data,
    format_content_with_line_numbers,
    format_grep_matches,
    glob_match,
    glob_search,
    grep_search,
    list_directory,
    perform_string_replacement,
    read_window,
    sanitize_tool_call_id,
    truncate_if_too_long,
    update_file_data,
)


def test_create_and_update_file_data_keeps_created_at() -> None:
    original = create_file_data("one\ntwo", created_at="2024-01-01T00:00:00+00:00")
    assert original["content"] == ["one", "two"]

    updated = update_file_data(original, "three")
    assert updated["content"] == ["three"]
    assert updated["created_at"] == "2024-01-01T00:00:00+00:00"


def test_format_content_with_line_numbers() -> None:
    assert format_content_with_line_numbers("a\nb", start_line=3) == "     3\ta\n     4\tb"
    assert format_content_with_line_numbers(["x"]) == "     1\tx"


@pytest.mark.parametrize(
    ("offset", "limit", "expected"),
    [
        (0, 2, "l1\nl2"),
        (1, 10, "l2\nl3"),
        (3, 5, ""),
        (10, 5, ""),
    ],
)
def test_read_window(offset: int, limit: int, expected: str) -> None:
    assert read_window("l1\nl2\nl3", offset, limit) == expected


def test_read_window_of_empty_content() -> None:
    assert read_window("", 0, 10) == ""


def test_perform_string_replacement_single() -> None:
    assert perform_string_replacement("hello world", "world", "there", replace_all=False) == ("hello there", 1)


def test_perform_string_replacement_missing() -> None:
    result = perform_string_replacement("hello", "bye", "x", replace_all=False)
    assert isinstance(result, str)
    assert result.startswith("Error: String not found")


def test_perform_string_replacement_ambiguous() -> None:
    result = perform_string_replacement("a a a", "a", "b", replace_all=False)
    assert isinstance(result, str)
    assert "appears 3 times" in result


def test_perform_string_replacement_all() -> None:
    assert perform_string_replacement("a a a", "a", "b", replace_all=True) == ("b b b", 3)


def test_sanitize_tool_call_id() -> None:
    assert sanitize_tool_call_id("call/../x y") == "call____x_y"
    assert sanitize_tool_call_id("call_ok-1") == "call_ok-1"


@pytest.mark.parametrize(
    ("pattern", "path", "expected"),
    [
        ("*.py", "a.py", True),
        ("*.py", "dir/a.py", False),
        ("**/*.py", "a.py", True),
        ("**/*.py", "dir/sub/a.py", True),
        ("src/**", "src/a/b.txt", True),
        ("?.txt", "a.txt", True),
        ("?.txt", "ab.txt", False),
        ("[ab].md", "b.md", True),
        ("[!ab].md", "b.md", False),
        ("*.{js,ts}", "app.ts", True),
        ("*.{js,ts}", "app.py", False),
    ],
)
def test_glob_match(pattern: str, path: str, expected: bool) -> None:
    assert glob_match(pattern, path) is expected


def _files() -> dict:
    return {
        "/README.md": create_file_data("# readme\nTODO: docs"),
        "/src/main.py": create_file_data("import os\n# TODO fix"),
        "/src/lib/util.py": create_file_data("def util():\n    pass"),
    }


def test_list_directory_root() -> None:
    infos = list_directory(_files(), "/")
    assert [(i["path"], i["is_dir"]) for i in infos] == [("/README.md", False), ("/src/", True)]


def test_list_directory_subdir_without_trailing_slash() -> None:
    infos = list_directory(_files(), "/src")
    assert [i["path"] for i in infos] == ["/src/lib/", "/src/main.py"]


def test_glob_search_relative_to_path() -> None:
    assert [i["path"] for i in glob_search(_files(), "**/*.py")] == ["/src/lib/util.py", "/src/main.py"]
    assert [i["path"] for i in glob_search(_files(), "*.py", "/src")] == ["/src/main.py"]


def test_grep_search_with_glob_filter() -> None:
    matches = grep_search(_files(), "TODO", glob="*.py")
    assert matches == [{"path": "/src/main.py", "line": 2, "text": "# TODO fix"}]


def test_grep_search_invalid_regex() -> None:
    result = grep_search(_files(), "(unclosed")
    assert isinstance(result, str)
    assert result.startswith("Error: Invalid regex pattern")


def test_format_grep_matches_modes() -> None:
    matches = grep_search(_files(), "TODO")
    assert isinstance(matches, list)
    assert format_grep_matches(matches, "files_with_matches") == "/README.md\n/src/main.py"
    assert format_grep_matches(matches, "count") == "/README.md: 1\n/src/main.py: 1"
    assert format_grep_matches(matches) == "/README.md:\n  2: TODO: docs\n\n/src/main.py:\n  2: # TODO fix"


def test_truncate_if_too_long() -> None:
    assert truncate_if_too_long("short") == "short"
    long_text = "x" * 100_000
    truncated = truncate_if_too_long(long_text)
    assert isinstance(truncated, str)
    assert truncated.endswith(TRUNCATION_GUIDANCE)
    assert len(truncated) < len(long_text)
