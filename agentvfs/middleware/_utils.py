"""
모듈명: _utils.py
설명: 미들웨어 모듈에서 공통으로 사용되는 시스템 메시지 헬퍼

주요 함수:
    - append_to_system_message: 시스템 메시지 끝에 섹션 추가 (파일시스템, 스킬)
    - prepend_to_system_message: 시스템 메시지 앞에 섹션 추가 (메모리)
"""

from langchain_core.messages import SystemMessage


def append_to_system_message(
    system_message: SystemMessage | None,
    text: str,
) -> SystemMessage:
    """시스템 메시지 끝에 텍스트를 추가합니다.

    기존 콘텐츠 블록을 유지하므로 멀티모달 시스템 메시지도 깨지지 않습니다.

    사용 예시:
        ```python
        updated = append_to_system_message(SystemMessage(content="기존 지시사항"), "추가 지시사항")
        # 결과: "기존 지시사항\n\n추가 지시사항"
        ```
    """
    new_content: list[str | dict[str, str]] = list(system_message.content_blocks) if system_message else []

    # 기존 콘텐츠와 빈 줄로 구분
    if new_content:
        text = f"\n\n{text}"
    new_content.append({"type": "text", "text": text})

    return SystemMessage(content=new_content)


def prepend_to_system_message(
    system_message: SystemMessage | None,
    text: str,
) -> SystemMessage:
    """시스템 메시지 앞에 텍스트를 추가합니다."""
    existing: list[str | dict[str, str]] = list(system_message.content_blocks) if system_message else []
    if existing:
        text = f"{text}\n\n"
    return SystemMessage(content=[{"type": "text", "text": text}, *existing])
