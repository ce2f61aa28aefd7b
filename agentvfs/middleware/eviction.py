"""
모듈명: eviction.py
설명: 큰 도구 결과를 저장소로 옮기고 머리/꼬리 미리보기로 대체하는 인터셉터

도구 결과 텍스트가 `tool_token_limit_before_evict * NUM_CHARS_PER_TOKEN`자 이상이면
전체 내용을 `/large_tool_results/<정제된 tool_call_id>`에 기록하고,
에이전트에게는 파일 경로와 미리보기만 담은 메시지를 돌려줍니다.
같은 tool_call_id로 다시 기록해도 같은 경로를 덮어쓰므로 멱등입니다.
옮겨진 파일은 자동으로 삭제되지 않습니다.

주요 구성요소:
    - TOOLS_EXCLUDED_FROM_EVICTION: 옮기지 않는 도구 목록
    - create_content_preview: 머리/꼬리 미리보기 생성
    - ToolResultEvictor: ToolMessage/Command 결과를 검사하고 필요 시 옮김
"""

import logging
from typing import Any

from langchain.tools import ToolRuntime
from langchain_core.messages import ToolMessage
from langgraph.types import Command

from agentvfs.backends.protocol import BackendProtocol, BackendProvider
from agentvfs.backends.utils import (
    NUM_CHARS_PER_TOKEN,
    format_content_with_line_numbers,
    sanitize_tool_call_id,
)
from agentvfs.state import FileUpdate

logger = logging.getLogger(__name__)

LARGE_TOOL_RESULTS_DIR = "/large_tool_results"

# 미리보기 한 줄의 최대 길이
PREVIEW_LINE_LIMIT = 1000

# 자체 잘림이 있는 도구(ls, glob, grep, read_file)와 확인 메시지만 내는 도구(edit_file, write_file)
TOOLS_EXCLUDED_FROM_EVICTION = (
    "ls",
    "glob",
    "grep",
    "read_file",
    "edit_file",
    "write_file",
)

TOO_LARGE_TOOL_MSG = """Tool result too large, the result of this tool call {tool_call_id} was saved in the filesystem at this path: {file_path}

You can read the result from the filesystem by using the read_file tool, but make sure to only read part of the result at a time.

You can do this by specifying an offset and limit in the read_file tool call. For example, to read the first 100 lines, you can use the read_file tool with offset=0 and limit=100.

Here is a preview showing the head and tail of the result (lines of the form `... [N lines truncated] ...` indicate omitted lines in the middle of the content):

{content_sample}
"""


def create_content_preview(content_str: str, *, head_lines: int = 5, tail_lines: int = 5) -> str:
    """콘텐츠의 머리와 꼬리 부분을 잘림 마커와 함께 보여주는 미리보기를 생성합니다.

    줄 수가 `head_lines + tail_lines` 이하이면 전체를 보여주고, 그보다 많으면
    꼬리 부분의 라인 번호는 `len(lines) - tail_lines + 1`부터 시작합니다.
    각 줄은 1000자로 제한됩니다.
    """
    lines = content_str.split("\n")

    if len(lines) <= head_lines + tail_lines:
        return format_content_with_line_numbers([line[:PREVIEW_LINE_LIMIT] for line in lines], start_line=1)

    head = [line[:PREVIEW_LINE_LIMIT] for line in lines[:head_lines]]
    tail = [line[:PREVIEW_LINE_LIMIT] for line in lines[-tail_lines:]]

    head_sample = format_content_with_line_numbers(head, start_line=1)
    truncation_notice = f"\n... [{len(lines) - head_lines - tail_lines} lines truncated] ...\n"
    tail_sample = format_content_with_line_numbers(tail, start_line=len(lines) - tail_lines + 1)
    return head_sample + truncation_notice + tail_sample


def eviction_path(tool_call_id: str) -> str:
    return f"{LARGE_TOOL_RESULTS_DIR}/{sanitize_tool_call_id(tool_call_id)}"


def _message_text(message: ToolMessage) -> str:
    # 단일 텍스트 블록은 읽기 쉽도록 텍스트만 꺼냄
    content = message.content
    if (
        isinstance(content, list)
        and len(content) == 1
        and isinstance(content[0], dict)
        and content[0].get("type") == "text"
        and "text" in content[0]
    ):
        return str(content[0]["text"])
    if isinstance(content, str):
        return content
    return str(content)


class ToolResultEvictor:
    """큰 도구 결과를 백엔드로 옮기는 인터셉터.

    Args:
        backend: 결과를 기록할 백엔드 프로바이더.
        tool_token_limit_before_evict: 옮기기 전 토큰 한도. None이면 비활성화.
        excluded_tools: 검사하지 않을 도구 이름.
    """

    def __init__(
        self,
        backend: BackendProvider,
        *,
        tool_token_limit_before_evict: int | None = 20000,
        excluded_tools: tuple[str, ...] = TOOLS_EXCLUDED_FROM_EVICTION,
    ) -> None:
        self.backend = backend
        self.tool_token_limit_before_evict = tool_token_limit_before_evict
        self.excluded_tools = excluded_tools

    @property
    def enabled(self) -> bool:
        return bool(self.tool_token_limit_before_evict)

    def applies_to(self, tool_name: str) -> bool:
        return self.enabled and tool_name not in self.excluded_tools

    def _too_large(self, text: str) -> bool:
        return len(text) >= NUM_CHARS_PER_TOKEN * self.tool_token_limit_before_evict  # type: ignore[operator]

    def _replacement(self, message: ToolMessage, file_path: str, text: str) -> ToolMessage:
        replacement_text = TOO_LARGE_TOOL_MSG.format(
            tool_call_id=message.tool_call_id,
            file_path=file_path,
            content_sample=create_content_preview(text),
        )
        return ToolMessage(content=replacement_text, tool_call_id=message.tool_call_id, name=message.name)

    def process_message(self, message: ToolMessage, backend: BackendProtocol) -> tuple[ToolMessage, FileUpdate | None]:
        """메시지가 크면 백엔드에 기록하고 (대체 메시지, files 업데이트)를 반환합니다.

        기록에 실패하면 원래 메시지를 그대로 돌려줍니다.
        """
        if not self.enabled:
            return message, None
        text = _message_text(message)
        if not self._too_large(text):
            return message, None

        file_path = eviction_path(message.tool_call_id)
        result = backend.write(file_path, text)
        if result.error:
            logger.warning("Failed to evict tool result %s to %s: %s", message.tool_call_id, file_path, result.error)
            return message, None

        logger.debug("Evicted %d chars from tool call %s to %s", len(text), message.tool_call_id, file_path)
        return self._replacement(message, file_path, text), result.files_update

    async def aprocess_message(self, message: ToolMessage, backend: BackendProtocol) -> tuple[ToolMessage, FileUpdate | None]:
        """process_message의 비동기 버전입니다."""
        if not self.enabled:
            return message, None
        text = _message_text(message)
        if not self._too_large(text):
            return message, None

        file_path = eviction_path(message.tool_call_id)
        result = await backend.awrite(file_path, text)
        if result.error:
            logger.warning("Failed to evict tool result %s to %s: %s", message.tool_call_id, file_path, result.error)
            return message, None

        logger.debug("Evicted %d chars from tool call %s to %s", len(text), message.tool_call_id, file_path)
        return self._replacement(message, file_path, text), result.files_update

    @staticmethod
    def _wrap_single(message: ToolMessage, files_update: FileUpdate | None) -> ToolMessage | Command:
        if files_update is None:
            return message
        return Command(update={"files": files_update, "messages": [message]})

    @staticmethod
    def _rebuild_command(update: dict[str, Any], messages: list[Any], files_update: FileUpdate) -> Command:
        new_update = {**update, "messages": messages}
        if files_update or "files" in update:
            new_update["files"] = files_update
        return Command(update=new_update)

    def intercept(self, tool_result: ToolMessage | Command, runtime: ToolRuntime) -> ToolMessage | Command:
        """도구 결과(ToolMessage 또는 Command)를 검사하고 필요하면 옮깁니다.

        Command에 여러 메시지가 있으면 메시지별로 처리하고 files 업데이트를 누적합니다.
        """
        if isinstance(tool_result, ToolMessage):
            return self._wrap_single(*self.process_message(tool_result, self.backend.resolve(runtime)))

        update = tool_result.update
        if not isinstance(update, dict):
            return tool_result

        backend = self.backend.resolve(runtime)
        accumulated: FileUpdate = dict(update.get("files") or {})
        processed = []
        for message in update.get("messages", []):
            if not isinstance(message, ToolMessage):
                processed.append(message)
                continue
            new_message, files_update = self.process_message(message, backend)
            processed.append(new_message)
            if files_update:
                accumulated.update(files_update)
        return self._rebuild_command(update, processed, accumulated)

    async def aintercept(self, tool_result: ToolMessage | Command, runtime: ToolRuntime) -> ToolMessage | Command:
        """intercept의 비동기 버전입니다."""
        if isinstance(tool_result, ToolMessage):
            return self._wrap_single(*(await self.aprocess_message(tool_result, self.backend.resolve(runtime))))

        update = tool_result.update
        if not isinstance(update, dict):
            return tool_result

        backend = self.backend.resolve(runtime)
        accumulated: FileUpdate = dict(update.get("files") or {})
        processed = []
        for message in update.get("messages", []):
            if not isinstance(message, ToolMessage):
                processed.append(message)
                continue
            new_message, files_update = await self.aprocess_message(message, backend)
            processed.append(new_message)
            if files_update:
                accumulated.update(files_update)
        return self._rebuild_command(update, processed, accumulated)


__all__ = [
    "LARGE_TOOL_RESULTS_DIR",
    "TOOLS_EXCLUDED_FROM_EVICTION",
    "TOO_LARGE_TOOL_MSG",
    "ToolResultEvictor",
    "create_content_preview",
    "eviction_path",
]
