"""One-shot database migration between two hosts over SSH."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional

from ._utils import logger, format_timestamp, human_size
from .backup import BackupEngine
from .config import LifecycleConfig
from .confirm import BaseConfirmer, PromptConfirmer
from .errors import TransferError
from .models import BackupArtifact, RemoteEndpoint, VerificationResult
from .postgres import PostgresHost
from .remote import RemoteShell
from .restore import RestoreEngine
from .runner import CommandRunner


class MigrationState(str, Enum):
    CONFIRM = "confirm"
    BACKUP_ON_SOURCE = "backup_on_source"
    TRANSFER_ARTIFACT = "transfer_artifact"
    RESTORE_ON_DESTINATION = "restore_on_destination"
    VERIFY = "verify"
    CLEANUP = "cleanup"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


TERMINAL_STATES = (MigrationState.COMPLETED, MigrationState.CANCELLED, MigrationState.FAILED)


@dataclass
class MigrationSession:
    """State of a single migration run; discarded when the run ends."""
    source: str
    destination: str
    source_path: str
    dest_path: str
    local_path: Path
    state: MigrationState = MigrationState.CONFIRM
    history: List[MigrationState] = field(default_factory=list)
    artifact: Optional[BackupArtifact] = None
    verification: Optional[VerificationResult] = None
    failed_state: Optional[MigrationState] = None
    error: Optional[str] = None

    def advance(self, state: MigrationState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(f"Migration already finished in state {self.state.value}")
        self.history.append(self.state)
        self.state = state
        logger.debug(f"Migration state: {state.value}")

    @property
    def backup_started(self) -> bool:
        return MigrationState.BACKUP_ON_SOURCE in self.history or self.state == MigrationState.BACKUP_ON_SOURCE

    @property
    def destination_touched(self) -> bool:
        return (self.failed_state or self.state) in (
            MigrationState.RESTORE_ON_DESTINATION,
            MigrationState.VERIFY,
        ) or MigrationState.RESTORE_ON_DESTINATION in self.history


class MigrationOrchestrator:
    """Move a database from a source host to a destination host.

    Runs Confirm, BackupOnSource, TransferArtifact, RestoreOnDestination,
    Verify and Cleanup in order. The source is only read. Every failure
    before RestoreOnDestination leaves the destination database untouched;
    a failure during the restore itself is reported, not rolled back.
    Temporary dump files are removed from all three machines on every
    path once the source backup has started.
    """

    def __init__(
        self,
        config: LifecycleConfig,
        source: PostgresHost,
        dest: PostgresHost,
        confirmer: Optional[BaseConfirmer] = None,
    ):
        self.config = config
        self.source = source
        self.dest = dest
        self.confirmer = confirmer or PromptConfirmer()

    @classmethod
    def for_hosts(
        cls,
        config: LifecycleConfig,
        source_host: str,
        dest_host: str,
        confirmer: Optional[BaseConfirmer] = None,
        runner: Optional[CommandRunner] = None,
    ) -> "MigrationOrchestrator":
        """Build an orchestrator that reaches both hosts over SSH."""
        runner = runner or CommandRunner()
        source = RemoteEndpoint(host=source_host, user=config.ssh.user, key_path=config.ssh.source_key)
        dest = RemoteEndpoint(
            host=dest_host,
            user=config.ssh.user,
            key_path=config.ssh.dest_key,
            working_dir=config.services.app_dir,
        )
        return cls(
            config,
            PostgresHost(RemoteShell(source, config.ssh, runner), config.database, config.services),
            PostgresHost(RemoteShell(dest, config.ssh, runner), config.database, config.services),
            confirmer=confirmer,
        )

    def new_session(self) -> MigrationSession:
        stamp = format_timestamp()
        db = self.config.database.name
        remote_tmp = self.config.migration.remote_tmp.rstrip("/")
        return MigrationSession(
            source=self.source.name,
            destination=self.dest.name,
            source_path=f"{remote_tmp}/{db}_migration_export_{stamp}.sql.gz",
            dest_path=f"{remote_tmp}/{db}_migration_import_{stamp}.sql.gz",
            local_path=Path(self.config.migration.staging_dir) / f"migration_{stamp}.sql.gz",
        )

    async def run(self, session: Optional[MigrationSession] = None) -> MigrationSession:
        """Run the migration.

        Returns:
            The finished session, in state COMPLETED or CANCELLED

        Raises:
            LifecycleError: a step failed; the session is in state FAILED
        """
        session = session or self.new_session()
        self._log_plan()

        if not await self._confirm():
            session.advance(MigrationState.CANCELLED)
            logger.warning("Migration cancelled")
            return session

        finished = False
        try:
            await self._execute(session)
            finished = True
        except Exception as e:
            session.failed_state = session.state
            session.error = str(e)
            logger.error(f"Migration failed during {session.state.value}: {e}")
            if session.destination_touched:
                logger.error("Destination may be partially restored; recover it from your own prior backup")
            else:
                logger.info("Destination database was not modified")
            raise
        finally:
            if session.backup_started:
                session.advance(MigrationState.CLEANUP)
                await self._cleanup(session)
            session.advance(MigrationState.COMPLETED if finished else MigrationState.FAILED)

        self._log_next_steps(session)
        return session

    async def _confirm(self) -> bool:
        if not await self.confirmer.confirm("Have you reviewed the migration plan above?"):
            return False
        return await self.confirmer.confirm("Continue with migration?")

    async def _execute(self, session: MigrationSession) -> None:
        session.advance(MigrationState.BACKUP_ON_SOURCE)
        logger.info(f"Step 1/5: Creating backup on source ({self.source.name})...")
        session.artifact = await BackupEngine(self.config, self.source).export(session.source_path)

        session.advance(MigrationState.TRANSFER_ARTIFACT)
        logger.info("Step 2/5: Transferring backup to destination...")
        await self._transfer(session)

        session.advance(MigrationState.RESTORE_ON_DESTINATION)
        logger.info(f"Step 3/5: Restoring backup on destination ({self.dest.name})...")
        restorer = RestoreEngine(self.config, self.dest, confirmer=self.confirmer)
        await restorer.apply_verified(session.dest_path)

        session.advance(MigrationState.VERIFY)
        logger.info("Step 4/5: Verifying migration...")
        session.verification = await self.verify()

    async def _transfer(self, session: MigrationSession) -> None:
        """Copy source -> local staging -> destination, checking size at each hop."""
        await self.source.download(session.source_path, session.local_path)
        local_size = session.local_path.stat().st_size if session.local_path.exists() else 0
        if local_size == 0:
            raise TransferError("Downloaded backup file is empty or missing")
        logger.info(f"Downloaded backup: {session.local_path} ({human_size(local_size)})")

        await self.dest.upload(session.local_path, session.dest_path)
        dest_size = await self.dest.file_size(session.dest_path)
        if dest_size == 0:
            raise TransferError(f"Uploaded backup on {self.dest.name} is empty or missing")
        if dest_size != local_size:
            raise TransferError(
                f"Uploaded backup on {self.dest.name} has {dest_size} bytes, expected {local_size}"
            )
        logger.info(f"Backup uploaded to {self.dest.name}:{session.dest_path}")

    async def verify(self) -> VerificationResult:
        """Compare public table counts, and record row counts, on both hosts."""
        source_tables = await self.source.count_tables()
        dest_tables = await self.dest.count_tables()
        logger.info(f"Source tables: {source_tables}")
        logger.info(f"Destination tables: {dest_tables}")

        tables = self.config.migration.verify_tables
        if tables:
            source_rows = {t: await self.source.count_rows(t) for t in tables}
            dest_rows = {t: await self.dest.count_rows(t) for t in tables}
        else:
            source_rows = await self.source.largest_tables()
            dest_rows = await self.dest.largest_tables()
        for table, count in dest_rows.items():
            logger.info(f"  {table}: {count} rows (source: {source_rows.get(table, 'n/a')})")

        matched = source_tables == dest_tables
        if matched:
            logger.info("Table count matches - migration successful")
        else:
            logger.warning("Table count mismatch - please verify manually")
        return VerificationResult(
            source_table_count=source_tables,
            dest_table_count=dest_tables,
            matched=matched,
            source_row_counts=source_rows,
            dest_row_counts=dest_rows,
        )

    async def _cleanup(self, session: MigrationSession) -> None:
        logger.info("Step 5/5: Removing temporary dump files...")
        try:
            if session.local_path.exists():
                await asyncio.to_thread(session.local_path.unlink)
            if session.local_path.parent.is_dir() and not any(session.local_path.parent.iterdir()):
                session.local_path.parent.rmdir()
        except OSError as e:
            logger.warning(f"Could not remove local staging file {session.local_path}: {e}")
        for host, path in ((self.dest, session.dest_path), (self.source, session.source_path)):
            try:
                await host.remove(path)
            except Exception as e:
                logger.warning(f"Could not remove {path} on {host.name}: {e}")

    def _log_plan(self) -> None:
        logger.info("======================================")
        logger.info("Database Migration")
        logger.info(f"Source: {self.source.name}")
        logger.info(f"Destination: {self.dest.name}")
        logger.info(f"Database: {self.config.database.name}, User: {self.config.database.user}")
        logger.info("======================================")
        logger.warning("The source database will NOT be modified (read-only).")
        logger.warning("The destination database will be OVERWRITTEN with data from the source.")

    def _log_next_steps(self, session: MigrationSession) -> None:
        logger.info("Migration complete. Next steps:")
        logger.info("  1. Point application secrets at the new database")
        logger.info("  2. Verify application connectivity")
        logger.info("  3. Monitor for any issues")
        logger.info(f"  4. Once verified, run 'pg-lifecycle decommission --host {session.source}'")
