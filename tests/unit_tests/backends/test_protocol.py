"""Unit tests for the backend protocol defaults and backend providers."""

import pytest

from agentvfs.backends.protocol import (
    BackendProtocol,
    BackendResolutionError,
    FactoryBackendProvider,
    ReadResult,
    SandboxBackendProtocol,
    as_backend_provider,
)
from agentvfs.backends.state import StateBackend
from tests.utils import make_runtime


class MinimalBackend(BackendProtocol):
    """Backend that implements only read_raw, to exercise the protocol defaults."""

    def read_raw(self, file_path: str, offset: int = 0, limit: int = 100) -> ReadResult:
        if file_path == "/missing.txt":
            return ReadResult(error="Error: File '/missing.txt' not found", error_code="file_not_found")
        return ReadResult(content=f"{file_path}:{offset}:{limit}")


def test_unimplemented_operations_raise_not_implemented() -> None:
    backend = MinimalBackend()
    with pytest.raises(NotImplementedError):
        backend.ls_info("/")
    with pytest.raises(NotImplementedError):
        backend.write("/a.txt", "x")
    with pytest.raises(NotImplementedError):
        backend.download_files(["/a.txt"])


async def test_async_defaults_delegate_to_sync() -> None:
    backend = MinimalBackend()
    assert await backend.aread("/a.txt", 2, 3) == "/a.txt:2:3"
    with pytest.raises(NotImplementedError):
        await backend.aglob_info("*")


def test_read_derives_text_from_read_raw() -> None:
    backend = MinimalBackend()
    assert backend.read("/a.txt", 1, 2) == "/a.txt:1:2"
    assert backend.read("/missing.txt") == "Error: File '/missing.txt' not found"


def test_backend_instance_resolves_to_itself() -> None:
    backend = MinimalBackend()
    assert backend.resolve(None) is backend
    assert as_backend_provider(backend) is backend


def test_factory_provider_builds_backend_per_runtime() -> None:
    provider = as_backend_provider(StateBackend)
    assert isinstance(provider, FactoryBackendProvider)

    runtime = make_runtime()
    backend = provider.resolve(runtime)
    assert isinstance(backend, StateBackend)
    assert backend.runtime is runtime
    assert provider.resolve(runtime) is not backend


def test_factory_provider_rejects_non_backend() -> None:
    provider = FactoryBackendProvider(lambda _rt: object())
    with pytest.raises(BackendResolutionError, match="expected a BackendProtocol"):
        provider.resolve(make_runtime())


def test_as_backend_provider_rejects_non_callable() -> None:
    with pytest.raises(TypeError):
        as_backend_provider("not a backend")  # type: ignore[arg-type]


def test_sandbox_protocol_defaults() -> None:
    class NoExec(SandboxBackendProtocol):
        pass

    backend = NoExec()
    with pytest.raises(NotImplementedError):
        backend.execute("echo hi")
    with pytest.raises(NotImplementedError):
        _ = backend.id
