"""External code runner.

User scripts never run inside the engine process. The runner writes a
script to a temporary file and hands it to an external, single-shot
runtime process (``node`` by default).
"""

import asyncio
import os
import tempfile
from dataclasses import dataclass
from typing import Protocol

import structlog

from flowhook.config import get_settings

logger = structlog.get_logger()


class CodeRunnerError(Exception):
    """The external runtime could not be started or did not finish."""

    def __init__(self, message: str, error_code: str = "CODE_RUNNER_ERROR") -> None:
        super().__init__(message)
        self.error_code = error_code


@dataclass(frozen=True)
class CodeRunResult:
    """Captured result of one script run."""

    stdout: str
    stderr: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def combined_output(self) -> str:
        """Stdout followed by stderr, as a shell ``2>&1`` would show it."""
        return (self.stdout + self.stderr).strip()


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Kill a still-running process and reap it."""
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()
    logger.debug("code_runner_killed", pid=proc.pid)


class CodeRunner(Protocol):
    """Runs a script out of process."""

    async def run(self, script: str) -> CodeRunResult:
        """Run a script to completion.

        Raises:
            CodeRunnerError: If the runtime cannot run the script
        """
        ...


class ExternalCodeRunner:
    """Run scripts with an external interpreter in a subprocess.

    Example usage:
        runner = ExternalCodeRunner(["node"], timeout=30)
        result = await runner.run("console.log(JSON.stringify({a: 1}))")
    """

    def __init__(
        self,
        command: list[str] | None = None,
        timeout: float | None = None,
        suffix: str = ".js",
    ) -> None:
        """Initialize the runner.

        Args:
            command: Interpreter argv; the script path is appended
            timeout: Seconds before the process is killed
            suffix: Temporary file suffix
        """
        settings = get_settings()
        self.command = list(command) if command else settings.code_runner_argv
        self.timeout = timeout if timeout is not None else settings.code_runner_timeout
        self.suffix = suffix

    async def run(self, script: str) -> CodeRunResult:
        """Write the script to a temp file and run it.

        The temporary file is always removed and the process never outlives
        the call, including when the caller is cancelled.

        Raises:
            CodeRunnerError: Missing executable or timeout
        """
        fd, path = tempfile.mkstemp(prefix="flowhook_code_", suffix=self.suffix)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(script)

            try:
                proc = await asyncio.create_subprocess_exec(
                    *self.command,
                    path,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as e:
                logger.error("code_runner_not_found", command=self.command[0])
                raise CodeRunnerError(
                    f"Script runtime '{self.command[0]}' is not available",
                    "RUNTIME_NOT_FOUND",
                ) from e

            try:
                stdout, stderr = await asyncio.wait_for(
                    proc.communicate(), timeout=self.timeout
                )
            except asyncio.TimeoutError as e:
                logger.warning("code_runner_timeout", timeout=self.timeout)
                raise CodeRunnerError(
                    f"Script timed out after {self.timeout}s", "RUNTIME_TIMEOUT"
                ) from e
            finally:
                # Timeouts and cancelled callers must not leave the process behind
                if proc.returncode is None:
                    await _kill(proc)

            result = CodeRunResult(
                stdout=stdout.decode("utf-8", errors="replace"),
                stderr=stderr.decode("utf-8", errors="replace"),
                returncode=proc.returncode if proc.returncode is not None else -1,
            )
            logger.debug(
                "code_runner_finished",
                returncode=result.returncode,
                stdout_bytes=len(stdout),
            )
            return result
        finally:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
