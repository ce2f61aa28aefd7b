"""
모듈명: utils.py
설명: 백엔드 구현체와 도구 계층이 공유하는 유틸리티 함수

주요 기능:
- FileData 생성/갱신/문자열 변환
- 라인 번호 포맷팅과 문자열 교체
- 글롭 패턴 -> 정규식 변환, 글롭/grep 검색
- 도구 출력 길이 제한과 tool_call_id 정제
"""

import re
from datetime import UTC, datetime
from functools import lru_cache
from typing import Literal

from agentvfs.backends.protocol import FileInfo, GrepMatch
from agentvfs.state import FileData

EMPTY_CONTENT_WARNING = "System reminder: File exists but has empty contents"
MAX_LINE_LENGTH = 10000
LINE_NUMBER_WIDTH = 6
NUM_CHARS_PER_TOKEN = 4
TOOL_RESULT_TOKEN_LIMIT = 20000
TRUNCATION_GUIDANCE = "... [results truncated, try being more specific with your parameters]"

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_\-]")


def _now() -> str:
    return datetime.now(UTC).isoformat()


def create_file_data(content: str, created_at: str | None = None) -> FileData:
    """문자열 내용으로 새 FileData를 만듭니다."""
    now = _now()
    return {
        "content": content.split("\n"),
        "created_at": created_at or now,
        "modified_at": now,
    }


def update_file_data(file_data: FileData, content: str) -> FileData:
    """기존 FileData의 생성 시각을 유지한 채 내용만 교체합니다."""
    return create_file_data(content, created_at=file_data.get("created_at"))


def file_data_to_string(file_data: FileData) -> str:
    return "\n".join(file_data.get("content", []))


def file_data_size(file_data: FileData) -> int:
    """UTF-8 기준 바이트 크기."""
    return len(file_data_to_string(file_data).encode("utf-8"))


def read_window(content: str, offset: int, limit: int) -> str:
    """내용에서 [offset, offset + limit) 라인 구간을 잘라 반환합니다.

    오프셋이 파일 끝을 넘으면 빈 문자열을 반환합니다.
    """
    if not content:
        return ""
    lines = content.split("\n")
    if offset >= len(lines):
        return ""
    return "\n".join(lines[max(offset, 0) : offset + limit])


def format_content_with_line_numbers(content: str | list[str], start_line: int = 1) -> str:
    """cat -n 스타일로 라인 번호를 붙입니다.

    Args:
        content: 문자열 또는 라인 리스트.
        start_line: 첫 라인의 번호 (1-indexed).
    """
    lines = content.split("\n") if isinstance(content, str) else content
    numbered = []
    for i, line in enumerate(lines, start=start_line):
        if len(line) > MAX_LINE_LENGTH:
            line = line[:MAX_LINE_LENGTH]
        numbered.append(f"{i:{LINE_NUMBER_WIDTH}d}\t{line}")
    return "\n".join(numbered)


def perform_string_replacement(
    content: str,
    old_string: str,
    new_string: str,
    replace_all: bool,
) -> tuple[str, int] | str:
    """정확한 문자열 교체를 수행합니다.

    Returns:
        성공 시 (새 내용, 교체 횟수), 실패 시 "Error:"로 시작하는 메시지.
    """
    if not old_string:
        return "Error: old_string must not be empty"

    occurrences = content.count(old_string)
    if occurrences == 0:
        return f"Error: String not found in file: '{old_string}'"

    if occurrences > 1 and not replace_all:
        return (
            f"Error: String '{old_string}' appears {occurrences} times in file. "
            "Use replace_all=True to replace all instances, or provide a more specific string with surrounding context."
        )

    if replace_all:
        return content.replace(old_string, new_string), occurrences
    return content.replace(old_string, new_string, 1), 1


def sanitize_tool_call_id(tool_call_id: str) -> str:
    """tool_call_id를 파일 이름으로 안전하게 쓸 수 있도록 정제합니다."""
    return _UNSAFE_ID_CHARS.sub("_", tool_call_id)


def truncate_if_too_long(result: list[str] | str) -> list[str] | str:
    """도구 출력이 토큰 한도를 넘으면 자르고 안내 문구를 덧붙입니다."""
    limit = TOOL_RESULT_TOKEN_LIMIT * NUM_CHARS_PER_TOKEN
    if isinstance(result, list):
        total = sum(len(item) for item in result)
        if total <= limit:
            return result
        kept: list[str] = []
        used = 0
        for item in result:
            if used + len(item) > limit:
                break
            kept.append(item)
            used += len(item)
        return [*kept, TRUNCATION_GUIDANCE]
    if len(result) <= limit:
        return result
    return result[:limit] + "\n" + TRUNCATION_GUIDANCE


def normalize_dir(path: str | None) -> str:
    """디렉토리 경로를 "/"로 시작하고 끝나도록 정규화합니다."""
    if not path or path == "/":
        return "/"
    path = path if path.startswith("/") else "/" + path
    return path if path.endswith("/") else path + "/"


def _translate_brackets(pattern: str, i: int) -> tuple[str, int] | None:
    j = i + 1
    if j < len(pattern) and pattern[j] in "!^":
        j += 1
    if j < len(pattern) and pattern[j] == "]":
        j += 1
    while j < len(pattern) and pattern[j] != "]":
        j += 1
    if j >= len(pattern):
        return None
    body = pattern[i + 1 : j]
    if body[:1] in ("!", "^"):
        body = "^" + body[1:].replace("\\", "\\\\")
    else:
        body = body.replace("\\", "\\\\")
    return f"[{body}]", j + 1


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """글롭 패턴을 전체 매칭 정규식으로 변환합니다.

    `**/`는 0개 이상의 디렉토리, `*`는 "/"를 제외한 임의 문자열,
    `?`는 "/"를 제외한 한 문자에 대응합니다.
    """
    out: list[str] = []
    i = 0
    n = len(pattern)
    while i < n:
        c = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif c == "*":
            out.append("[^/]*")
            i += 1
        elif c == "?":
            out.append("[^/]")
            i += 1
        elif c == "[":
            translated = _translate_brackets(pattern, i)
            if translated is None:
                out.append(re.escape(c))
                i += 1
            else:
                out.append(translated[0])
                i = translated[1]
        elif c == "{":
            close = pattern.find("}", i)
            if close == -1:
                out.append(re.escape(c))
                i += 1
            else:
                options = pattern[i + 1 : close].split(",")
                out.append("(?:" + "|".join(glob_to_regex(opt).pattern[4:-3] for opt in options) + ")")
                i = close + 1
        else:
            out.append(re.escape(c))
            i += 1
    return re.compile("(?s:" + "".join(out) + r")\Z")


def glob_match(pattern: str, relative_path: str) -> bool:
    return glob_to_regex(pattern).match(relative_path) is not None


def glob_search(files: dict[str, FileData], pattern: str, path: str = "/") -> list[FileInfo]:
    """FilesMap에서 `path` 기준 상대 경로가 패턴과 매칭되는 파일을 찾습니다."""
    base = normalize_dir(path)
    pattern = pattern.lstrip("/")
    infos: list[FileInfo] = []
    for file_path, fd in files.items():
        if not file_path.startswith(base):
            continue
        if glob_match(pattern, file_path[len(base) :]):
            infos.append(
                {
                    "path": file_path,
                    "is_dir": False,
                    "size": file_data_size(fd),
                    "modified_at": fd.get("modified_at", ""),
                }
            )
    infos.sort(key=lambda x: x["path"])
    return infos


def compile_grep_pattern(pattern: str) -> re.Pattern[str] | str:
    """정규식을 컴파일하고, 실패하면 오류 메시지를 반환합니다."""
    try:
        return re.compile(pattern)
    except re.error as e:
        return f"Error: Invalid regex pattern: {e}"


def glob_filter_matches(glob: str | None, file_path: str) -> bool:
    """grep의 glob 필터. "/"가 없는 패턴은 파일 이름에만 적용합니다."""
    if not glob:
        return True
    target = file_path.lstrip("/") if "/" in glob else file_path.rsplit("/", 1)[-1]
    return glob_match(glob.lstrip("/"), target)


def grep_lines(regex: re.Pattern[str], file_path: str, lines: list[str]) -> list[GrepMatch]:
    return [{"path": file_path, "line": i, "text": line} for i, line in enumerate(lines, start=1) if regex.search(line)]


def grep_search(
    files: dict[str, FileData],
    pattern: str,
    path: str | None = None,
    glob: str | None = None,
) -> list[GrepMatch] | str:
    """FilesMap의 파일 내용에서 정규식 패턴을 검색합니다."""
    regex = compile_grep_pattern(pattern)
    if isinstance(regex, str):
        return regex

    target = path or "/"
    base = normalize_dir(target)
    matches: list[GrepMatch] = []
    for file_path in sorted(files):
        # 디렉토리 아래이거나 파일 경로 자체와 일치해야 함
        if file_path != target and not file_path.startswith(base):
            continue
        if not glob_filter_matches(glob, file_path):
            continue
        matches.extend(grep_lines(regex, file_path, files[file_path].get("content", [])))
    return matches


def list_directory(files: dict[str, FileData], path: str) -> list[FileInfo]:
    """FilesMap에서 디렉토리의 직계 자식을 나열합니다 (비재귀)."""
    base = normalize_dir(path)
    infos: list[FileInfo] = []
    subdirs: set[str] = set()

    for file_path, fd in files.items():
        if not file_path.startswith(base):
            continue
        relative = file_path[len(base) :]
        if "/" in relative:
            # 하위 디렉토리의 파일이면 디렉토리 항목만 추가
            subdirs.add(base + relative.split("/")[0] + "/")
            continue
        infos.append(
            {
                "path": file_path,
                "is_dir": False,
                "size": file_data_size(fd),
                "modified_at": fd.get("modified_at", ""),
            }
        )

    for subdir in subdirs:
        infos.append({"path": subdir, "is_dir": True, "size": 0, "modified_at": ""})

    infos.sort(key=lambda x: x["path"])
    return infos


def format_grep_matches(matches: list[GrepMatch], output_mode: Literal["content", "files_with_matches", "count"] = "content") -> str:
    """grep 결과를 파일별로 묶어 사람이 읽기 쉬운 문자열로 만듭니다."""
    grouped: dict[str, list[GrepMatch]] = {}
    for m in matches:
        grouped.setdefault(m["path"], []).append(m)

    if output_mode == "files_with_matches":
        return "\n".join(grouped)
    if output_mode == "count":
        return "\n".join(f"{p}: {len(ms)}" for p, ms in grouped.items())

    blocks = []
    for file_path, file_matches in grouped.items():
        rows = [f"{file_path}:"]
        rows.extend(f"  {m['line']}: {m['text']}" for m in file_matches)
        blocks.append("\n".join(rows))
    return "\n\n".join(blocks)


__all__ = [
    "EMPTY_CONTENT_WARNING",
    "LINE_NUMBER_WIDTH",
    "NUM_CHARS_PER_TOKEN",
    "TOOL_RESULT_TOKEN_LIMIT",
    "TRUNCATION_GUIDANCE",
    "create_file_data",
    "file_data_size",
    "file_data_to_string",
    "format_content_with_line_numbers",
    "format_grep_matches",
    "glob_match",
    "glob_search",
    "glob_to_regex",
    "grep_search",
    "list_directory",
    "perform_string_replacement",
    "read_window",
    "sanitize_tool_call_id",
    "truncate_if_too_long",
    "update_file_data",
]
