"""PostgreSQL operations expressed as shell commands on a local or remote host."""

import shlex
from pathlib import Path
from typing import Dict, Optional, Union

from ._utils import logger, quote_ident
from .config import DatabaseConfig, ServiceConfig
from .errors import CommandFailedError
from .remote import LocalExecutor, RemoteShell

Executor = Union[LocalExecutor, RemoteShell]

TABLE_COUNT_SQL = "SELECT count(*) FROM information_schema.tables WHERE table_schema = 'public'"


class PostgresHost:
    """Database and service control for one host.

    All operations go through the host's executor, so the same dump,
    verify and apply steps work identically on this machine and over SSH.
    """

    def __init__(
        self,
        executor: Executor,
        database: DatabaseConfig,
        services: Optional[ServiceConfig] = None,
    ):
        self.executor = executor
        self.database = database
        self.services = services or ServiceConfig()

    @property
    def name(self) -> str:
        return self.executor.name

    def _as_postgres(self, command: str) -> str:
        if self.database.os_user:
            return f"sudo -u {shlex.quote(self.database.os_user)} {command}"
        return command

    def _psql(self, sql: str) -> str:
        return self._as_postgres(
            f"psql -d {shlex.quote(self.database.name)} -t -A -F '|' -c {shlex.quote(sql)}"
        )

    async def dump_to(self, path: str) -> None:
        """Dump the database with clean/if-exists statements, gzip-compressed as it streams."""
        dump = self._as_postgres(
            f"pg_dump -U {shlex.quote(self.database.user)} -d {shlex.quote(self.database.name)} "
            "--clean --if-exists"
        )
        await self.executor.shell(f"set -o pipefail; {dump} | gzip > {shlex.quote(path)}")

    async def verify_archive(self, path: str) -> bool:
        outcome = await self.executor.shell(f"gunzip -t {shlex.quote(path)}", best_effort=True)
        return outcome.ok

    async def file_size(self, path: str) -> int:
        """Size of a file on the host, 0 when it does not exist."""
        outcome = await self.executor.shell(
            f"stat -c %s {shlex.quote(path)} 2>/dev/null || echo 0", best_effort=True
        )
        try:
            return int(outcome.stdout.strip().splitlines()[-1])
        except (ValueError, IndexError):
            return 0

    async def apply_dump(self, path: str) -> None:
        restore = self._as_postgres(
            f"psql -d {shlex.quote(self.database.name)} -q -v ON_ERROR_STOP=1"
        )
        await self.executor.shell(f"set -o pipefail; gunzip -c {shlex.quote(path)} | {restore}")

    async def count_tables(self) -> int:
        outcome = await self.executor.shell(self._psql(TABLE_COUNT_SQL))
        return _parse_count(outcome.stdout)

    async def count_rows(self, table: str) -> int:
        outcome = await self.executor.shell(self._psql(f"SELECT count(*) FROM public.{quote_ident(table)}"))
        return _parse_count(outcome.stdout)

    async def largest_tables(self, limit: int = 10) -> Dict[str, int]:
        """Live row estimates for the biggest user tables."""
        outcome = await self.executor.shell(self._psql(
            "SELECT relname, n_live_tup FROM pg_stat_user_tables "
            f"ORDER BY n_live_tup DESC LIMIT {int(limit)}"
        ))
        counts = {}
        for line in outcome.stdout.splitlines():
            name, _, value = line.strip().partition("|")
            if name and value.strip().isdigit():
                counts[name] = int(value)
        return counts

    async def is_running(self) -> bool:
        outcome = await self.executor.shell("systemctl is-active --quiet postgresql", best_effort=True)
        return outcome.ok

    async def _compose(self, action: str) -> bool:
        compose_file = shlex.quote(self.services.compose_file)
        services = " ".join(shlex.quote(s) for s in self.services.services)
        script = (
            f"cd {shlex.quote(self.services.app_dir)} 2>/dev/null || exit 0; "
            f"if [ -f {compose_file} ]; then docker compose -f {compose_file} {action} {services}; "
            "else echo 'compose file not found, skipping'; fi"
        )
        outcome = await self.executor.shell(script, best_effort=True)
        return outcome.ok

    async def stop_services(self) -> bool:
        """Stop dependent application services; absence is not an error."""
        logger.info(f"Stopping services on {self.name}: {', '.join(self.services.services)}")
        return await self._compose("stop")

    async def start_services(self) -> bool:
        logger.info(f"Starting services on {self.name}: {', '.join(self.services.services)}")
        return await self._compose("start")

    async def remove(self, path: str) -> bool:
        outcome = await self.executor.shell(f"rm -f {shlex.quote(path)}", best_effort=True)
        return outcome.ok

    async def download(self, remote_path: str, local_path: Path) -> Path:
        return await self.executor.download(remote_path, local_path)

    async def upload(self, local_path: Path, remote_path: str) -> str:
        return await self.executor.upload(local_path, remote_path)


def _parse_count(output: str) -> int:
    for line in output.splitlines():
        line = line.strip()
        if line.isdigit():
            return int(line)
    raise CommandFailedError(f"Unexpected count output: {output.strip()!r}")
