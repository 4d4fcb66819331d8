"""Async runner for the worker CLI."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Sequence

from .utils import sanitize_environment

logger = logging.getLogger(__name__)

DEFAULT_WORKER_BINARY = "codex"

StartCallback = Callable[[int], Any]


class WorkerRunnerError(RuntimeError):
    """Base class for worker runner errors."""


class WorkerNotFoundError(WorkerRunnerError):
    """Raised when the worker executable cannot be located."""


@dataclass(slots=True)
class WorkerExecutionResult:
    """Holds the outcome of a worker invocation."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class WorkerRunner:
    """Execute worker CLI commands asynchronously."""

    def __init__(self, executable: Path | None = None) -> None:
        self._executable_path = self._resolve_executable(executable)

    @staticmethod
    def _resolve_executable(explicit: Path | None) -> Path:
        if explicit is not None:
            candidate = Path(explicit)
            if candidate.exists() and candidate.is_file():
                return candidate
            raise WorkerNotFoundError(f"Worker executable not found at {candidate}; check WORKER_PATH")

        binary = shutil.which(DEFAULT_WORKER_BINARY)
        if binary is None:
            raise WorkerNotFoundError(
                f"Worker executable '{DEFAULT_WORKER_BINARY}' not found on PATH; set WORKER_PATH"
            )
        return Path(binary)

    @property
    def executable(self) -> Path:
        return self._executable_path

    async def version(self) -> WorkerExecutionResult:
        return await self._invoke("--version")

    async def spawn(
        self,
        prompt: str,
        *,
        cwd: Path | None = None,
        flags: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        on_start: StartCallback | None = None,
    ) -> WorkerExecutionResult:
        args: list[str] = ["exec", prompt]
        prefix = list(flags or [])
        return await self._invoke(*prefix, *args, cwd=cwd, env=env, timeout=timeout, on_start=on_start)

    async def resume(
        self,
        session_id: str,
        *,
        cwd: Path | None = None,
        flags: Sequence[str] | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        on_start: StartCallback | None = None,
    ) -> WorkerExecutionResult:
        args: list[str] = ["resume", session_id]
        prefix = list(flags or [])
        return await self._invoke(*prefix, *args, cwd=cwd, env=env, timeout=timeout, on_start=on_start)

    async def _invoke(
        self,
        *args: str,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        on_start: StartCallback | None = None,
    ) -> WorkerExecutionResult:
        cmd = [str(self._executable_path), *args]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                cwd=str(cwd) if cwd is not None else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=sanitize_environment(env),
            )
        except OSError as exc:
            raise WorkerRunnerError(f"Cannot start worker {self._executable_path}: {exc}") from exc

        if on_start is not None:
            await _maybe_await(on_start(process.pid))

        timed_out = False
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            timed_out = True
            logger.warning("Worker timed out; killing it", extra={"pid": process.pid, "timeout": timeout})
            process.kill()
            stdout_bytes, stderr_bytes = await process.communicate()

        return WorkerExecutionResult(
            args=tuple(cmd),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            timed_out=timed_out,
        )


InvokeHook = Callable[[tuple[str, ...], Mapping[str, str]], Any]


class FakeWorkerRunner(WorkerRunner):
    """Test double that simulates worker responses.

    ``hook`` runs on every invocation with the arguments and the worker
    environment, which lets tests play the part of a worker that writes state.
    """

    def __init__(  # type: ignore[override]
        self,
        responses: Iterable[WorkerExecutionResult] | None = None,
        *,
        hook: InvokeHook | None = None,
        pid: int = 4242,
    ) -> None:
        self._responses = list(responses or [])
        self._invocations: list[tuple[str, ...]] = []
        self._environments: list[dict[str, str]] = []
        self._hook = hook
        self._pid = pid
        self._executable_path = Path("/tmp/fake-worker")

    async def _invoke(  # type: ignore[override]
        self,
        *args: str,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        on_start: StartCallback | None = None,
    ) -> WorkerExecutionResult:
        self._invocations.append(tuple(args))
        self._environments.append(dict(env or {}))
        if on_start is not None:
            await _maybe_await(on_start(self._pid))
        if self._hook is not None:
            await _maybe_await(self._hook(tuple(args), dict(env or {})))
        if self._responses:
            return self._responses.pop(0)
        return WorkerExecutionResult(args=tuple(args), returncode=0, stdout="", stderr="")

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def environments(self) -> list[dict[str, str]]:
        return self._environments


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


def serialize_result(result: WorkerExecutionResult, *, tail: int = 2000) -> str:
    """Serialize a worker result for the run event store, keeping only output tails."""

    return json.dumps(
        {
            "args": [arg if len(arg) <= 200 else arg[:200] + "..." for arg in result.args],
            "returncode": result.returncode,
            "timed_out": result.timed_out,
            "stdout": result.stdout[-tail:],
            "stderr": result.stderr[-tail:],
        }
    )


__all__ = [
    "DEFAULT_WORKER_BINARY",
    "FakeWorkerRunner",
    "WorkerExecutionResult",
    "WorkerNotFoundError",
    "WorkerRunner",
    "WorkerRunnerError",
    "serialize_result",
]
