"""
모듈명: local_shell.py
설명: 무제한 로컬 셸 실행 기능을 갖춘 파일시스템 백엔드

FilesystemBackend에 호스트 셸 명령 실행을 더한 SandboxBackendProtocol 구현체입니다.
샌드박싱이나 격리가 전혀 없으므로 신뢰할 수 있는 개발 환경에서만 사용하고,
가능하면 execute 도구에 Human-in-the-Loop 승인을 함께 거세요.

⚠️ 보안 경고:
    root_dir과 virtual_mode는 파일 도구에만 적용됩니다.
    셸 명령은 사용자 권한으로 시스템의 모든 경로에 접근할 수 있습니다.
"""

from __future__ import annotations

import logging
import os
import subprocess
import uuid
from typing import TYPE_CHECKING

from agentvfs.backends.filesystem import FilesystemBackend
from agentvfs.backends.protocol import ExecuteResponse, SandboxBackendProtocol

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# 표준 타임아웃 종료 코드 (coreutils timeout과 동일)
TIMEOUT_EXIT_CODE = 124


class LocalShellBackend(FilesystemBackend, SandboxBackendProtocol):
    """무제한 로컬 셸 명령 실행 기능을 갖춘 파일시스템 백엔드.

    사용 예시:
        ```python
        backend = LocalShellBackend(root_dir="/home/user/project", env={"PATH": "/usr/bin:/bin"})
        result = backend.execute("ls -la")
        print(result.output, result.exit_code)

        # 모든 환경 변수 상속
        backend = LocalShellBackend(root_dir="/home/user/project", inherit_env=True)
        ```
    """

    def __init__(
        self,
        root_dir: str | Path | None = None,
        *,
        virtual_mode: bool = False,
        timeout: float = 120.0,
        max_output_bytes: int = 100_000,
        env: dict[str, str] | None = None,
        inherit_env: bool = False,
        max_file_size_mb: int = 10,
    ) -> None:
        """
        인자:
            root_dir: 파일 작업의 루트이자 셸 명령의 작업 디렉토리.
            virtual_mode: 파일 작업에 가상 경로 모드 적용 (셸 명령은 제한하지 않음).
            timeout: 명령 실행 최대 시간(초). 초과하면 종료 코드 124.
            max_output_bytes: 캡처할 최대 출력 크기. 초과분은 잘림.
            env: 셸 명령의 환경 변수.
            inherit_env: True이면 os.environ을 상속하고 env로 덮어씀.
            max_file_size_mb: grep 대상 파일의 최대 크기 (MB).
        """
        super().__init__(root_dir=root_dir, virtual_mode=virtual_mode, max_file_size_mb=max_file_size_mb)

        self._timeout = timeout
        self._max_output_bytes = max_output_bytes

        if inherit_env:
            self._env = os.environ.copy()
            if env is not None:
                self._env.update(env)
        else:
            self._env = dict(env) if env is not None else {}

        # local-{8자리 hex}
        self._sandbox_id = f"local-{uuid.uuid4().hex[:8]}"

    @property
    def id(self) -> str:
        """이 백엔드 인스턴스의 고유 식별자 ("local-{hex}")."""
        return self._sandbox_id

    def _combine_output(self, stdout: str, stderr: str) -> str:
        # stderr 라인은 [stderr] 접두사로 구분
        parts = []
        if stdout:
            parts.append(stdout.rstrip("\n"))
        if stderr:
            parts.extend(f"[stderr] {line}" for line in stderr.strip().split("\n"))
        return "\n".join(parts) if parts else "<no output>"

    def execute(
        self,
        command: str,
    ) -> ExecuteResponse:
        r"""호스트 시스템에서 셸 명령을 직접 실행합니다.

        명령은 root_dir을 작업 디렉토리로 하여 시스템 셸에서 실행되며,
        stdout과 stderr는 하나의 출력으로 결합됩니다.

        반환값:
            ExecuteResponse(output, exit_code, truncated).

        사용 예시:
            ```python
            result = backend.execute("echo hello")
            assert result.output == "hello"
            assert result.exit_code == 0

            result = backend.execute("cat nonexistent.txt")
            assert "[stderr]" in result.output
            ```
        """
        if not command or not isinstance(command, str):
            return ExecuteResponse(output="Error: Command must be a non-empty string.", exit_code=1)

        try:
            result = subprocess.run(  # noqa: S602
                command,
                check=False,
                shell=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=self._env,
                cwd=str(self.cwd),
            )
        except subprocess.TimeoutExpired:
            logger.warning("Command timed out after %.1f seconds: %s", self._timeout, command)
            return ExecuteResponse(
                output=f"Error: Command timed out after {self._timeout:.1f} seconds.",
                exit_code=TIMEOUT_EXIT_CODE,
            )
        except OSError as e:
            return ExecuteResponse(output=f"Error executing command: {e}", exit_code=1)

        output = self._combine_output(result.stdout, result.stderr)

        truncated = False
        if len(output.encode("utf-8")) > self._max_output_bytes:
            output = output.encode("utf-8")[: self._max_output_bytes].decode("utf-8", errors="ignore")
            truncated = True

        return ExecuteResponse(output=output, exit_code=result.returncode, truncated=truncated)


__all__ = ["LocalShellBackend"]
