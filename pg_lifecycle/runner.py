"""External command execution with fail-fast and best-effort policies."""

import asyncio
import os
import shlex
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from ._utils import logger
from .errors import CommandFailedError, CommandTimeoutError

NOT_FOUND_EXIT_CODE = 127
TIMEOUT_EXIT_CODE = 124


class Outcome(BaseModel):
    """Result of one external command."""

    command: List[str] = Field(default_factory=list)
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    best_effort: bool = False
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out

    @property
    def fatal(self) -> bool:
        """Non-zero exit that must abort the enclosing operation."""
        return not self.ok and not self.best_effort

    @property
    def display(self) -> str:
        return shlex.join(self.command)

    def error_summary(self) -> str:
        detail = self.stderr.strip() or self.stdout.strip() or "no output"
        return f"'{self.display}' exited with {self.exit_code}: {detail}"


class CommandRunner:
    """Run external processes and capture their output.

    Non-zero exits raise CommandFailedError unless the call is marked
    best-effort, in which case the failure is logged and returned.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        self.default_timeout = default_timeout

    async def run(
        self,
        command: str,
        args: Sequence[str] = (),
        env: Optional[Dict[str, str]] = None,
        best_effort: bool = False,
        timeout: Optional[float] = None,
        input_data: Optional[bytes] = None,
    ) -> Outcome:
        argv = [command, *args]
        display = shlex.join(argv)
        timeout = timeout if timeout is not None else self.default_timeout
        logger.info(f"Running{' (best-effort)' if best_effort else ''}: {display}")

        child_env = {**os.environ, **env} if env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                env=child_env,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            outcome = Outcome(
                command=argv,
                exit_code=NOT_FOUND_EXIT_CODE,
                stderr=f"{command}: command not found",
                best_effort=best_effort,
            )
            return self._finish(outcome)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(input_data), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            outcome = Outcome(
                command=argv,
                exit_code=TIMEOUT_EXIT_CODE,
                stderr=f"timed out after {timeout}s",
                best_effort=best_effort,
                timed_out=True,
            )
            if best_effort:
                logger.warning(f"Best-effort command timed out after {timeout}s: {display}")
                return outcome
            logger.error(f"Command timed out after {timeout}s: {display}")
            raise CommandTimeoutError(f"'{display}' timed out after {timeout}s", timeout=timeout)

        outcome = Outcome(
            command=argv,
            exit_code=process.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            best_effort=best_effort,
        )
        return self._finish(outcome)

    def _finish(self, outcome: Outcome) -> Outcome:
        if outcome.ok:
            return outcome
        if outcome.best_effort:
            logger.warning(f"Ignoring failure: {outcome.error_summary()}")
            return outcome
        logger.error(outcome.error_summary())
        raise CommandFailedError(outcome.error_summary(), outcome=outcome)
