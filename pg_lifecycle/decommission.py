"""Shut down services on a host that has been migrated away from."""

import shlex
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

from ._utils import logger, format_timestamp, human_size
from .config import LifecycleConfig
from .confirm import BaseConfirmer, PromptConfirmer
from .errors import InvalidArgumentError, LifecycleError
from .models import RemoteEndpoint
from .postgres import PostgresHost
from .remote import RemoteShell
from .runner import CommandRunner


class CleanupOption(str, Enum):
    KEEP = "keep"
    REMOVE = "remove"
    DESTROY = "destroy"

    @classmethod
    def parse(cls, value: str) -> "CleanupOption":
        aliases = {"1": cls.KEEP, "2": cls.REMOVE, "3": cls.DESTROY}
        value = (value or "").strip().lower()
        if value in aliases:
            return aliases[value]
        try:
            return cls(value)
        except ValueError:
            raise InvalidArgumentError(f"Invalid cleanup option: {value!r}") from None


class DecommissionResult(BaseModel):
    host: str
    cancelled: bool = False
    final_backup: Optional[str] = None
    cleanup: Optional[CleanupOption] = None
    data_removed: bool = False
    steps: List[str] = Field(default_factory=list)


class Decommissioner:
    """Stop containers and PostgreSQL on an old host, keeping a final backup."""

    def __init__(
        self,
        config: LifecycleConfig,
        host: PostgresHost,
        confirmer: Optional[BaseConfirmer] = None,
    ):
        self.config = config
        self.host = host
        self.confirmer = confirmer or PromptConfirmer()
        self.backup_dir = Path(config.migration.decommission_backup_dir)

    @classmethod
    def for_host(
        cls,
        config: LifecycleConfig,
        address: str,
        confirmer: Optional[BaseConfirmer] = None,
        runner: Optional[CommandRunner] = None,
    ) -> "Decommissioner":
        endpoint = RemoteEndpoint(
            host=address,
            user=config.ssh.user,
            key_path=config.ssh.decommission_key or config.ssh.source_key,
            working_dir=config.services.app_dir,
        )
        shell = RemoteShell(endpoint, config.ssh, runner or CommandRunner())
        return cls(config, PostgresHost(shell, config.database, config.services), confirmer=confirmer)

    async def run(self, cleanup: Optional[str] = None) -> DecommissionResult:
        result = DecommissionResult(host=self.host.name)
        logger.warning(f"This will shut down all services on {self.host.name}")
        logger.warning("Before proceeding, ensure the migration is complete, the new deployment works, "
                       "and all traffic goes to the new system")

        if not await self.confirmer.confirm("Have you completed the migration and verified the new system?"):
            logger.warning("Decommissioning cancelled - please complete migration first")
            result.cancelled = True
            return result
        if not await self.confirmer.confirm(f"Are you SURE you want to decommission {self.host.name}?"):
            logger.warning("Decommissioning cancelled")
            result.cancelled = True
            return result

        logger.info("Step 1/4: Creating final safety backup...")
        result.final_backup = await self._final_backup()
        result.steps.append("final_backup")

        logger.info("Step 2/4: Stopping Docker containers...")
        compose = shlex.quote(self.config.services.compose_file)
        await self.host.executor.shell(
            f"cd {shlex.quote(self.config.services.app_dir)} 2>/dev/null || true; "
            f"if [ -f {compose} ]; then docker compose -f {compose} down; "
            "elif [ -f docker-compose.yml ]; then docker compose down; fi; "
            "docker ps -q | xargs -r docker stop",
            best_effort=True,
        )
        result.steps.append("stop_containers")

        logger.info("Step 3/4: Stopping PostgreSQL service...")
        await self.host.executor.shell(
            "systemctl stop postgresql; systemctl disable postgresql", best_effort=True
        )
        result.steps.append("stop_postgresql")

        logger.info("Step 4/4: Data cleanup options...")
        if cleanup is None:
            logger.info("  1. KEEP - Leave data on server (recommended until fully verified)")
            logger.info("  2. REMOVE - Delete application data and Docker volumes")
            logger.info("  3. DESTROY - Delete the droplet via the provider console")
            answer = await self.confirmer.ask("Choose an option (1/2/3): ")
            try:
                result.cleanup = CleanupOption.parse(answer or CleanupOption.KEEP.value)
            except InvalidArgumentError:
                logger.warning(f"Unknown option {answer!r} - keeping data on server")
                result.cleanup = CleanupOption.KEEP
        else:
            result.cleanup = CleanupOption.parse(cleanup)
        await self._cleanup(result)

        self._log_summary(result)
        return result

    async def _final_backup(self) -> Optional[str]:
        """Dump and fetch a last backup; every failure here is tolerated."""
        filename = f"final_backup_{format_timestamp()}.sql.gz"
        remote_path = f"{self.config.migration.remote_tmp.rstrip('/')}/{filename}"
        if not await self.host.is_running():
            logger.warning("PostgreSQL not running - skipping final backup")
            return None
        try:
            await self.host.dump_to(remote_path)
            local_path = await self.host.download(remote_path, self.backup_dir / filename)
        except LifecycleError as e:
            logger.warning(f"No final backup downloaded: {e}")
            return None
        if not local_path.exists() or local_path.stat().st_size == 0:
            logger.warning("Final backup is empty")
            return None
        logger.info(f"Final backup saved to: {local_path} ({human_size(local_path.stat().st_size)})")
        return str(local_path)

    async def _cleanup(self, result: DecommissionResult) -> None:
        if result.cleanup == CleanupOption.REMOVE:
            logger.warning("Removing application data and Docker volumes...")
            answer = await self.confirmer.ask("This is IRREVERSIBLE. Type 'DELETE' to confirm: ")
            if answer.strip() != "DELETE":
                logger.info("Cleanup cancelled - data preserved")
                return
            paths = " ".join(shlex.quote(p) for p in (
                self.config.services.app_dir,
                "/var/lib/postgresql",
                self.config.database.backup_dir,
            ))
            await self.host.executor.shell(f"docker volume prune -f || true; rm -rf {paths}")
            result.data_removed = True
            result.steps.append("remove_data")
            logger.info("Data removed from server")
        elif result.cleanup == CleanupOption.DESTROY:
            logger.info("To delete the droplet:")
            logger.info("  1. Open the DigitalOcean console: https://cloud.digitalocean.com/droplets")
            logger.info(f"  2. Find the droplet with IP {self.host.name}")
            logger.info("  3. Choose Destroy from its menu and confirm")
            logger.warning("Make sure you have verified the final backup before deleting!")
        else:
            logger.info("Keeping data on server; services are stopped but data remains intact")

    def _log_summary(self, result: DecommissionResult) -> None:
        logger.info("Decommissioning complete")
        logger.info("  Docker containers: STOPPED")
        logger.info("  PostgreSQL: STOPPED and DISABLED")
        if result.final_backup:
            logger.info(f"  Final backup: {result.final_backup}")
        logger.info(f"The server {self.host.name} is now idle and still incurs costs until deleted.")
        logger.info("Recommended: keep it for 24-48 hours after migration, then delete it.")
