"""Local and SSH executors sharing one shell/transfer interface."""

import asyncio
import os
import shlex
import shutil
from pathlib import Path
from typing import List, Optional

from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from ._utils import logger
from .config import SSHConfig
from .errors import (
    CommandFailedError,
    CommandTimeoutError,
    RemoteCommandError,
    RemoteTimeoutError,
    TransferError,
)
from .models import RemoteEndpoint
from .runner import CommandRunner, Outcome


class LocalExecutor:
    """Run shell scripts on this machine."""

    name = "local"

    def __init__(self, runner: Optional[CommandRunner] = None):
        self.runner = runner or CommandRunner()

    async def shell(self, script: str, best_effort: bool = False, timeout: Optional[float] = None) -> Outcome:
        return await self.runner.run("bash", ["-c", script], best_effort=best_effort, timeout=timeout)

    async def download(self, remote_path: str, local_path: Path) -> Path:
        """Copy a file on this machine into the staging location."""
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            await asyncio.to_thread(shutil.copy2, remote_path, local_path)
        except OSError as e:
            raise TransferError(f"Failed to copy {remote_path} to {local_path}: {e}") from e
        return local_path

    async def upload(self, local_path: Path, remote_path: str) -> str:
        target = Path(remote_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(shutil.copy2, local_path, target)
        except OSError as e:
            raise TransferError(f"Failed to copy {local_path} to {remote_path}: {e}") from e
        return remote_path


class RemoteShell:
    """Run shell scripts and copy files on a host over SSH.

    Every call is bounded by ``SSHConfig.command_timeout``. Transfers retry
    on non-zero scp exits up to ``SSHConfig.transfer_attempts`` times.
    """

    def __init__(self, endpoint: RemoteEndpoint, ssh_config: SSHConfig, runner: Optional[CommandRunner] = None):
        self.endpoint = endpoint
        self.ssh_config = ssh_config
        self.runner = runner or CommandRunner()

    @property
    def name(self) -> str:
        return self.endpoint.host

    def _options(self) -> List[str]:
        options = []
        if self.endpoint.key_path:
            options += ["-i", os.path.expanduser(self.endpoint.key_path)]
        options += ["-o", "BatchMode=yes", "-o", f"ConnectTimeout={self.ssh_config.connect_timeout}"]
        if not self.ssh_config.strict_host_key_checking:
            options += ["-o", "StrictHostKeyChecking=no"]
        return options

    async def shell(self, script: str, best_effort: bool = False, timeout: Optional[float] = None) -> Outcome:
        timeout = timeout or self.ssh_config.command_timeout
        args = [*self._options(), self.endpoint.target, f"bash -c {shlex.quote(script)}"]
        try:
            return await self.runner.run("ssh", args, best_effort=best_effort, timeout=timeout)
        except CommandTimeoutError as e:
            raise RemoteTimeoutError(f"{self.endpoint.host}: {e}", timeout=e.timeout) from e
        except CommandFailedError as e:
            raise RemoteCommandError(f"{self.endpoint.host}: {e}", outcome=e.outcome) from e

    async def download(self, remote_path: str, local_path: Path) -> Path:
        """Copy a file from the host to a local path."""
        local_path.parent.mkdir(parents=True, exist_ok=True)
        await self._transfer(f"{self.endpoint.target}:{remote_path}", str(local_path))
        return local_path

    async def upload(self, local_path: Path, remote_path: str) -> str:
        """Copy a local file to a path on the host."""
        await self._transfer(str(local_path), f"{self.endpoint.target}:{remote_path}")
        return remote_path

    async def _transfer(self, source: str, destination: str) -> None:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.ssh_config.transfer_attempts),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(CommandFailedError),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(f"Retrying transfer {source} -> {destination} "
                                       f"(attempt {attempt.retry_state.attempt_number})")
                    await self.runner.run(
                        "scp",
                        [*self._options(), source, destination],
                        timeout=self.ssh_config.command_timeout,
                    )
        except (CommandFailedError, CommandTimeoutError) as e:
            raise TransferError(f"Transfer {source} -> {destination} failed: {e}") from e
