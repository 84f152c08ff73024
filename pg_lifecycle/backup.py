"""Backup creation, upload and retention sweeps."""

import os
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import List, Optional, Union

from ._utils import logger, utc_now, format_timestamp, human_size, parse_embedded_timestamp, verify_gzip_stream
from .config import LifecycleConfig
from .errors import IntegrityCheckError, InvalidArgumentError
from .models import ARTIFACT_SUFFIX, BackupArtifact, BackupClass, RetentionPolicy
from .postgres import PostgresHost
from .storage import ObjectStore


class BackupEngine:
    """Produce integrity-checked, compressed dumps and age them out.

    ``create_backup`` works against the backup directory of the machine the
    tool runs on. ``export`` runs the same dump and verification on whatever
    host ``PostgresHost`` points at, including a remote one.
    """

    def __init__(
        self,
        config: LifecycleConfig,
        host: PostgresHost,
        store: Optional[ObjectStore] = None,
    ):
        self.config = config
        self.host = host
        self.store = store
        self.backup_dir = Path(config.database.backup_dir)
        self.policy = RetentionPolicy.from_days(config.retention.as_days())

    async def create_backup(
        self,
        backup_class: Union[str, BackupClass],
        now: Optional[datetime] = None,
    ) -> BackupArtifact:
        """Create a backup of the given class.

        Args:
            backup_class: hourly, daily or weekly
            now: Creation time, defaults to the current UTC time

        Returns:
            The verified artifact. On failure no artifact is left on disk.
        """
        backup_class = BackupClass.parse(backup_class) if isinstance(backup_class, str) else backup_class
        now = now or utc_now()
        logger.info(f"Starting {backup_class.value} backup of {self.config.database.name} "
                    f"(user {self.config.database.user})")

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        final_path = self.backup_dir / BackupArtifact.filename_for(backup_class, format_timestamp(now))
        staging_path = final_path.with_name(final_path.name + ".partial")
        if final_path.exists():
            raise InvalidArgumentError(f"Backup {final_path.name} already exists")

        try:
            await self.host.dump_to(str(staging_path))

            size = staging_path.stat().st_size if staging_path.exists() else 0
            if size == 0:
                raise IntegrityCheckError("Backup failed - dump file is empty")

            if not verify_gzip_stream(staging_path):
                raise IntegrityCheckError(f"Backup verification failed - {final_path.name} is corrupted")

            # os.link never replaces an existing artifact
            try:
                os.link(staging_path, final_path)
            except FileExistsError:
                raise InvalidArgumentError(f"Backup {final_path.name} already exists") from None
        finally:
            if staging_path.exists():
                staging_path.unlink()

        artifact = BackupArtifact(
            backup_class=backup_class,
            created_at=now.replace(microsecond=0),
            location=str(final_path),
            size_bytes=size,
            checksum_valid=True,
        )
        logger.info(f"Backup created: {final_path} ({human_size(size)}), integrity verified")

        await self._upload(artifact)
        await self.sweep(backup_class, now=now, keep=artifact)

        logger.info(f"Backup complete: {artifact.name}")
        return artifact

    async def export(self, path: str) -> BackupArtifact:
        """Dump the host's database to ``path`` and verify it in place.

        Used for one-off exports such as migrations. The file is removed
        again if it comes out empty or corrupted.
        """
        logger.info(f"Exporting {self.config.database.name} on {self.host.name} to {path}")
        try:
            await self.host.dump_to(path)
            size = await self.host.file_size(path)
            if size == 0:
                raise IntegrityCheckError(f"Export on {self.host.name} produced an empty file")
            if not await self.host.verify_archive(path):
                raise IntegrityCheckError(f"Export on {self.host.name} failed integrity check")
        except Exception:
            await self.host.remove(path)
            raise

        logger.info(f"Export created on {self.host.name}: {path} ({human_size(size)})")
        return BackupArtifact(
            backup_class=BackupClass.DAILY,
            created_at=utc_now().replace(microsecond=0),
            location=path,
            size_bytes=size,
            checksum_valid=True,
        )

    async def _upload(self, artifact: BackupArtifact) -> None:
        if self.store is None:
            logger.warning("Object store not configured - backup stored locally only")
            return
        key = ObjectStore.key_for(artifact.backup_class, artifact.name)
        try:
            await self.store.put(Path(artifact.location), key)
        except Exception as e:
            logger.warning(f"Upload of {artifact.name} failed, keeping local copy only: {e}")

    async def sweep(
        self,
        backup_class: BackupClass,
        now: Optional[datetime] = None,
        keep: Optional[BackupArtifact] = None,
    ) -> List[str]:
        """Delete expired artifacts of one class locally and remotely.

        Failures are logged and never raised.
        """
        now = now or utc_now()
        logger.info(f"Cleaning up {backup_class.value} backups older than "
                    f"{self.policy.window(backup_class).days} days")
        deleted: List[str] = []
        try:
            deleted += [str(p) for p in self.sweep_local(backup_class, now, keep)]
        except Exception as e:
            logger.warning(f"Local retention sweep failed: {e}")
        try:
            deleted += await self.sweep_remote(backup_class, now, keep)
        except Exception as e:
            logger.warning(f"Remote retention sweep failed: {e}")
        return deleted

    def sweep_local(
        self,
        backup_class: BackupClass,
        now: datetime,
        keep: Optional[BackupArtifact] = None,
    ) -> List[Path]:
        deleted = []
        for artifact in self.list_local(backup_class):
            if keep is not None and artifact.location == keep.location:
                continue
            if not self.policy.is_expired(artifact, now):
                continue
            try:
                Path(artifact.location).unlink()
                deleted.append(Path(artifact.location))
                logger.info(f"Deleted old backup: {artifact.location}")
            except OSError as e:
                logger.warning(f"Could not delete {artifact.location}: {e}")
        return deleted

    async def sweep_remote(
        self,
        backup_class: BackupClass,
        now: datetime,
        keep: Optional[BackupArtifact] = None,
    ) -> List[str]:
        if self.store is None:
            return []
        cutoff = self.policy.cutoff(backup_class, now)
        keep_name = keep.name if keep is not None else None
        deleted = []
        for obj in await self.store.list(f"{backup_class.value}/"):
            name = PurePosixPath(obj.key).name
            stamp = parse_embedded_timestamp(name)
            if stamp is None or name == keep_name or not stamp < cutoff:
                continue
            try:
                await self.store.delete(obj.key)
                deleted.append(obj.key)
            except Exception as e:
                logger.warning(f"Could not delete remote backup {obj.key}: {e}")
        return deleted

    def list_local(self, backup_class: Optional[BackupClass] = None) -> List[BackupArtifact]:
        """Local artifacts, newest first."""
        if not self.backup_dir.is_dir():
            return []
        pattern = f"{backup_class.value}_*{ARTIFACT_SUFFIX}" if backup_class else f"*{ARTIFACT_SUFFIX}"
        artifacts = []
        for path in self.backup_dir.glob(pattern):
            artifact = BackupArtifact.from_location(str(path), size_bytes=path.stat().st_size)
            if artifact is not None:
                artifacts.append(artifact)
        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts

    async def list_remote(self, backup_class: BackupClass) -> List[BackupArtifact]:
        """Remote artifacts of one class, newest first."""
        if self.store is None:
            return []
        artifacts = []
        for obj in await self.store.list(f"{backup_class.value}/"):
            artifact = BackupArtifact.from_location(obj.key, remote=True, size_bytes=obj.size)
            if artifact is not None:
                artifacts.append(artifact)
        artifacts.sort(key=lambda a: a.created_at, reverse=True)
        return artifacts
