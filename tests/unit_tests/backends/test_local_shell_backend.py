"""Unit tests for LocalShellBackend."""

import tempfile
from pathlib import Path

from agentvfs.backends.local_shell import TIMEOUT_EXIT_CODE, LocalShellBackend
from agentvfs.backends.protocol import ExecuteResponse, SandboxBackendProtocol


def test_local_shell_backend_initialization() -> None:
    """Test that LocalShellBackend initializes correctly."""
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir)

        assert isinstance(backend, SandboxBackendProtocol)
        assert backend.cwd == Path(tmpdir).resolve()
        assert backend.id.startswith("local-")
        assert len(backend.id) == 14  # "local-" + 8 hex chars


def test_execute_simple_command() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True)

        result = backend.execute("echo 'Hello World'")

        assert isinstance(result, ExecuteResponse)
        assert result.exit_code == 0
        assert result.output == "Hello World"
        assert result.truncated is False


def test_execute_marks_stderr_lines() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True)

        result = backend.execute("echo out; echo err1 >&2; echo err2 >&2; exit 3")

        assert result.exit_code == 3
        assert result.output == "out\n[stderr] err1\n[stderr] err2"


def test_execute_runs_in_root_dir() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        (Path(tmpdir) / "test.txt").write_text("test content")
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True)

        result = backend.execute("cat test.txt")

        assert result.exit_code == 0
        assert "test content" in result.output


def test_execute_empty_command() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir)

        result = backend.execute("")

        assert result.exit_code == 1
        assert result.output == "Error: Command must be a non-empty string."


def test_execute_no_output() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True)
        assert backend.execute("true").output == "<no output>"


def test_execute_timeout() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True, timeout=1.0)

        result = backend.execute("sleep 5")

        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.output == "Error: Command timed out after 1.0 seconds."


def test_execute_truncates_output() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True, max_output_bytes=100)

        result = backend.execute("seq 1 1000")

        assert result.truncated is True
        assert len(result.output.encode("utf-8")) <= 100


def test_env_is_not_inherited_by_default() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, env={"GREETING": "hi"})

        result = backend.execute('echo "$GREETING-$HOME"')

        assert result.output == "hi-"


def test_file_operations_still_work() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, virtual_mode=True, inherit_env=True)

        backend.write("/script.sh", "echo from-file")
        result = backend.execute("sh script.sh")

        assert result.output == "from-file"


async def test_aexecute() -> None:
    with tempfile.TemporaryDirectory() as tmpdir:
        backend = LocalShellBackend(root_dir=tmpdir, inherit_env=True)

        result = await backend.aexecute("echo async")

        assert result.exit_code == 0
        assert result.output == "async"
