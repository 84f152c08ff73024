"""Selector resolution and database restore."""

from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from botocore.exceptions import BotoCoreError, ClientError

from ._utils import logger, human_size
from .backup import BackupEngine
from .config import LifecycleConfig
from .confirm import BaseConfirmer, PromptConfirmer
from .errors import BackupNotFoundError, IntegrityCheckError, InvalidArgumentError, TransferError
from .models import (
    BackupArtifact,
    BackupClass,
    BackupListing,
    LatestSelector,
    ListSelector,
    LocalPathSelector,
    RemoteUriSelector,
    RestoreResult,
    Selector,
    parse_selector,
)
from .postgres import PostgresHost
from .storage import ObjectStore

REMOTE_LISTING_LIMIT = 5


class RestoreEngine:
    """Resolve a backup selector and apply the dump to the database."""

    def __init__(
        self,
        config: LifecycleConfig,
        host: PostgresHost,
        store: Optional[ObjectStore] = None,
        confirmer: Optional[BaseConfirmer] = None,
    ):
        self.config = config
        self.host = host
        self.store = store
        self.confirmer = confirmer or PromptConfirmer()
        self.catalog = BackupEngine(config, host, store)
        self.backup_dir = Path(config.database.backup_dir)

    async def list_backups(self) -> BackupListing:
        """Local artifacts plus the most recent remote ones per class."""
        listing = BackupListing(local=self.catalog.list_local())
        if self.store is not None:
            for backup_class in (BackupClass.DAILY, BackupClass.HOURLY, BackupClass.WEEKLY):
                try:
                    remote = await self.catalog.list_remote(backup_class)
                except Exception as e:
                    logger.warning(f"Could not list remote {backup_class.value} backups: {e}")
                    remote = []
                listing.remote[backup_class] = remote[:REMOTE_LISTING_LIMIT]
        return listing

    async def resolve_selector(self, selector: Union[Selector, str, None]) -> Union[BackupListing, BackupArtifact]:
        """Resolve a selector to a local, non-empty artifact.

        An empty selector returns the backup listing instead.

        Raises:
            BackupNotFoundError: nothing usable matches the selector
        """
        if selector is None or isinstance(selector, str):
            selector = parse_selector(selector)

        if isinstance(selector, ListSelector):
            return await self.list_backups()
        if isinstance(selector, LatestSelector):
            artifact = await self._resolve_latest(selector.backup_class)
        elif isinstance(selector, RemoteUriSelector):
            artifact = await self._download(selector.uri)
        elif isinstance(selector, LocalPathSelector):
            path = Path(selector.path).expanduser()
            artifact = BackupArtifact.from_location(str(path)) or BackupArtifact(
                backup_class=BackupClass.DAILY,
                created_at=_mtime(path),
                location=str(path),
            )
        else:
            raise InvalidArgumentError(f"Unsupported selector: {selector!r}")

        path = Path(artifact.location)
        if not path.is_file() or path.stat().st_size == 0:
            raise BackupNotFoundError(f"Backup file not found: {artifact.location}")
        return artifact.model_copy(update={"size_bytes": path.stat().st_size})

    async def _resolve_latest(self, backup_class: BackupClass) -> BackupArtifact:
        candidates = self.catalog.list_local(backup_class)[:1]
        if self.store is not None:
            try:
                candidates += (await self.catalog.list_remote(backup_class))[:1]
            except Exception as e:
                logger.warning(f"Could not list remote {backup_class.value} backups, using local only: {e}")
        if not candidates:
            raise BackupNotFoundError(f"No {backup_class.value} backups found")

        # Local wins ties so no download is needed
        newest = max(candidates, key=lambda a: (a.created_at, not a.remote))
        logger.info(f"Latest {backup_class.value} backup: {newest.location}")
        if newest.remote:
            return await self._download(self.store.uri_for(newest.location))
        return newest

    async def _download(self, uri: str) -> BackupArtifact:
        if self.store is None:
            raise InvalidArgumentError(f"Object store not configured, cannot fetch {uri}")
        bucket, key = ObjectStore.parse_uri(uri)
        local_path = self.backup_dir / Path(key).name
        logger.info(f"Downloading from {uri}...")
        try:
            await self.store.with_bucket(bucket).get(key, local_path)
        except ClientError as e:
            raise BackupNotFoundError(f"Backup not found in object store: {uri} ({e})") from e
        except BotoCoreError as e:
            raise TransferError(f"Download of {uri} failed: {e}") from e
        return BackupArtifact.from_location(str(local_path)) or BackupArtifact(
            backup_class=BackupClass.DAILY,
            created_at=_mtime(local_path),
            location=str(local_path),
        )

    async def apply_verified(self, path: str) -> None:
        """Check the archive on the host, then apply it.

        Raises:
            IntegrityCheckError: the archive is corrupted; the database is untouched
        """
        logger.info(f"Verifying backup integrity on {self.host.name}: {path}")
        if not await self.host.verify_archive(path):
            raise IntegrityCheckError(f"Backup file is corrupted: {path}")
        logger.info("Backup integrity verified")

        logger.info(f"Restoring database {self.config.database.name} on {self.host.name}...")
        await self.host.apply_dump(path)
        logger.info("Database restored successfully")

    async def restore(self, artifact: BackupArtifact) -> RestoreResult:
        """Overwrite the database with ``artifact`` after explicit confirmation."""
        logger.info(f"Backup file: {artifact.location}"
                    + (f" ({human_size(artifact.size_bytes)})" if artifact.size_bytes else ""))
        logger.info(f"Database: {self.config.database.name}, User: {self.config.database.user}")

        if not await self.confirmer.confirm("This will OVERWRITE the current database. Continue?"):
            logger.warning("Restore cancelled")
            return RestoreResult(artifact=artifact, cancelled=True)

        await self.host.stop_services()
        try:
            await self.apply_verified(artifact.location)
        finally:
            await self.host.start_services()

        table_count = await self.host.count_tables()
        logger.info(f"Database has {table_count} tables")
        return RestoreResult(
            artifact=artifact.model_copy(update={"checksum_valid": True}),
            table_count=table_count,
        )


def _mtime(path: Path) -> datetime:
    try:
        return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    except OSError:
        return datetime.now(timezone.utc)
