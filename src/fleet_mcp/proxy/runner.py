"""Resilient async proxy for external commands."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

from .utils import sanitize_environment

PROXY_TAG = "fleet_proxy"

logger = logging.getLogger(__name__)


class ProxyError(RuntimeError):
    """Base class for errors surfaced by the command proxy.

    The message always starts with ``fleet_proxy: <operation>:`` so the
    origin of a failure can be recovered from the text alone.
    """

    def __init__(
        self,
        operation: str,
        detail: str,
        *,
        stderr: str = "",
        attempts: int = 0,
    ) -> None:
        super().__init__(f"{PROXY_TAG}: {operation}: {detail}")
        self.operation = operation
        self.detail = detail
        self.stderr = stderr
        self.attempts = attempts


class CommandFailedError(ProxyError):
    """Raised when a command exits non-zero on every attempt."""

    def __init__(
        self,
        operation: str,
        detail: str,
        *,
        stderr: str = "",
        attempts: int = 0,
        returncode: int | None = None,
    ) -> None:
        super().__init__(operation, detail, stderr=stderr, attempts=attempts)
        self.returncode = returncode


class CommandTimedOutError(ProxyError):
    """Raised when a command exceeds its timeout on every attempt."""


class CommandNotFoundError(ProxyError):
    """Raised when the executable cannot be launched at all."""


@dataclass(slots=True)
class ProxyConfig:
    """Timeout, retry and logging policy for the proxy."""

    timeout: float = 30.0
    retries: int = 2
    log_level: str = "info"
    retry_backoff: float = 0.5

    @property
    def attempts(self) -> int:
        return self.retries + 1


@dataclass(slots=True)
class CommandResult:
    """Holds the outcome of one subprocess attempt."""

    args: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def describe(name: str, args: Iterable[str]) -> str:
    return " ".join([name, *args])


def wrap_error(operation: str, exc: BaseException) -> ProxyError:
    """Tag ``exc`` with a higher level operation name."""

    return ProxyError(
        operation,
        str(exc),
        stderr=getattr(exc, "stderr", ""),
        attempts=getattr(exc, "attempts", 0),
    )


class CommandProxy:
    """Execute external commands with a timeout, bounded retries and logging."""

    def __init__(self, config: ProxyConfig | None = None) -> None:
        self._config = config or ProxyConfig()

    @property
    def config(self) -> ProxyConfig:
        return self._config

    async def execute(self, name: str, *args: str, cwd: Path | str | None = None) -> str:
        return await self.execute_with_timeout(self._config.timeout, name, *args, cwd=cwd)

    async def execute_with_timeout(
        self,
        timeout: float,
        name: str,
        *args: str,
        cwd: Path | str | None = None,
    ) -> str:
        """Run ``name args`` and return its stdout.

        Raises :class:`CommandFailedError` or :class:`CommandTimedOutError`
        once every attempt is used up.
        """

        operation = describe(name, args)
        total = self._config.attempts
        start = time.monotonic()
        last_error: ProxyError | None = None

        for attempt in range(total):
            try:
                result = await self._invoke(timeout, name, *args, cwd=cwd)
            except OSError as exc:
                error = CommandNotFoundError(
                    operation,
                    f"cannot launch {name}: {exc}",
                    attempts=attempt + 1,
                )
                self._log_operation(operation, time.monotonic() - start, error)
                raise error from exc

            if result.ok:
                self._log_operation(operation, time.monotonic() - start, None)
                return result.stdout

            if result.timed_out:
                last_error = CommandTimedOutError(
                    operation,
                    f"command timed out after {timeout}s (attempt {attempt + 1}/{total})"
                    f" - stderr: {result.stderr.strip()}",
                    stderr=result.stderr,
                    attempts=attempt + 1,
                )
            else:
                last_error = CommandFailedError(
                    operation,
                    f"command failed (attempt {attempt + 1}/{total}): exit status "
                    f"{result.returncode} - stderr: {result.stderr.strip()}",
                    stderr=result.stderr,
                    attempts=attempt + 1,
                    returncode=result.returncode,
                )
            self._log_operation(operation, time.monotonic() - start, last_error)

            if attempt == total - 1:
                break
            await asyncio.sleep(self._config.retry_backoff)

        assert last_error is not None
        raise last_error

    async def _invoke(
        self,
        timeout: float,
        name: str,
        *args: str,
        cwd: Path | str | None = None,
    ) -> CommandResult:
        process = await asyncio.create_subprocess_exec(
            name,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env=sanitize_environment(),
        )
        timed_out = False
        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout)
        except asyncio.TimeoutError:
            timed_out = True
            process.kill()
            stdout_bytes, stderr_bytes = await process.communicate()
        except BaseException:
            # Cancelled while waiting: the child must not outlive the call.
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        return CommandResult(
            args=(name, *args),
            returncode=process.returncode if process.returncode is not None else -1,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            timed_out=timed_out,
        )

    def _log_operation(self, operation: str, duration: float, error: ProxyError | None) -> None:
        payload = {"operation": operation, "duration": round(duration, 3)}
        if error is not None:
            logger.warning("%s failed in %.3fs: %s", operation, duration, error, extra=payload)
        elif self._config.log_level == "debug":
            logger.debug("%s completed in %.3fs", operation, duration, extra=payload)


class FakeCommandProxy(CommandProxy):
    """Test double that replays scripted command outcomes.

    Responses are matched on the longest registered argv prefix. Commands
    without a registered response succeed with empty output.
    """

    def __init__(
        self,
        responses: Mapping[tuple[str, ...], CommandResult | str] | None = None,
        *,
        missing: Iterable[str] = (),
        config: ProxyConfig | None = None,
    ) -> None:
        super().__init__(config or ProxyConfig(timeout=1.0, retries=0, retry_backoff=0.0))
        self._responses: dict[tuple[str, ...], CommandResult | str] = dict(responses or {})
        self._missing = set(missing)
        self._invocations: list[tuple[str, ...]] = []
        self._cwds: list[str | None] = []

    def add_response(
        self,
        prefix: tuple[str, ...],
        stdout: str = "",
        *,
        returncode: int = 0,
        stderr: str = "",
        timed_out: bool = False,
    ) -> None:
        self._responses[tuple(prefix)] = CommandResult(
            args=tuple(prefix),
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
        )

    async def _invoke(  # type: ignore[override]
        self,
        timeout: float,
        name: str,
        *args: str,
        cwd: Path | str | None = None,
    ) -> CommandResult:
        argv = (name, *args)
        self._invocations.append(argv)
        self._cwds.append(str(cwd) if cwd is not None else None)
        if name in self._missing:
            raise FileNotFoundError(2, "No such file or directory", name)

        match: CommandResult | str | None = None
        best = -1
        for prefix, response in self._responses.items():
            if argv[: len(prefix)] == prefix and len(prefix) > best:
                match, best = response, len(prefix)

        if match is None:
            return CommandResult(args=argv, returncode=0, stdout="", stderr="")
        if isinstance(match, str):
            return CommandResult(args=argv, returncode=0, stdout=match, stderr="")
        return CommandResult(
            args=argv,
            returncode=match.returncode,
            stdout=match.stdout,
            stderr=match.stderr,
            timed_out=match.timed_out,
        )

    @property
    def invocations(self) -> list[tuple[str, ...]]:
        return self._invocations

    @property
    def cwds(self) -> list[str | None]:
        return self._cwds

    def calls_to(self, *prefix: str) -> list[tuple[str, ...]]:
        return [argv for argv in self._invocations if argv[: len(prefix)] == prefix]
