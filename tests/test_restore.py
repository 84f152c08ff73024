"""Tests for RestoreEngine."""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from pg_lifecycle._utils import format_timestamp
from pg_lifecycle.backup import BackupEngine
from pg_lifecycle.confirm import AutoConfirmer, ScriptedConfirmer
from pg_lifecycle.errors import BackupNotFoundError, CommandFailedError, IntegrityCheckError, InvalidArgumentError
from pg_lifecycle.models import BackupClass, BackupListing, LatestSelector
from pg_lifecycle.restore import RestoreEngine
from tests.utils import FakeObjectStore, write_gzip

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)
RESTORED_TABLES = {"accounts": 7, "goals": 2, "users": 30}


def _name(backup_class, moment):
    return f"{backup_class}_{format_timestamp(moment)}.sql.gz"


@pytest.fixture
def backup_dir(config):
    return Path(config.database.backup_dir)


class TestResolveSelector:
    """Selector resolution."""

    @pytest.mark.asyncio
    async def test_latest_local(self, config, local_host, backup_dir):
        write_gzip(backup_dir / _name("daily", NOW - timedelta(days=1)), {})
        newest = write_gzip(backup_dir / _name("daily", NOW), {})
        write_gzip(backup_dir / _name("hourly", NOW + timedelta(hours=1)), {})
        engine = RestoreEngine(config, local_host)

        artifact = await engine.resolve_selector("latest")

        assert artifact.location == str(newest)
        assert artifact.size_bytes == newest.stat().st_size

    @pytest.mark.asyncio
    async def test_latest_of_class(self, config, local_host, backup_dir):
        hourly = write_gzip(backup_dir / _name("hourly", NOW), {})
        write_gzip(backup_dir / _name("daily", NOW + timedelta(days=1)), {})
        engine = RestoreEngine(config, local_host)

        artifact = await engine.resolve_selector(LatestSelector(backup_class=BackupClass.HOURLY))

        assert artifact.location == str(hourly)

    @pytest.mark.asyncio
    async def test_latest_prefers_newer_remote(self, config, local_host, backup_dir, tmp_path):
        write_gzip(backup_dir / _name("daily", NOW - timedelta(days=1)), {})
        remote_name = _name("daily", NOW)
        store = FakeObjectStore()
        store.objects[f"daily/{remote_name}"] = write_gzip(tmp_path / "remote.sql.gz", {"users": 1}).read_bytes()
        engine = RestoreEngine(config, local_host, store)

        artifact = await engine.resolve_selector("latest")

        assert artifact.location == str(backup_dir / remote_name)
        assert artifact.remote is False
        assert (backup_dir / remote_name).exists()

    @pytest.mark.asyncio
    async def test_latest_tie_uses_local_copy(self, config, local_host, backup_dir):
        name = _name("daily", NOW)
        local = write_gzip(backup_dir / name, {})
        store = FakeObjectStore()
        store.objects[f"daily/{name}"] = b"remote copy"
        engine = RestoreEngine(config, local_host, store)

        artifact = await engine.resolve_selector("latest")

        assert artifact.location == str(local)
        assert local.read_bytes() != b"remote copy"

    @pytest.mark.asyncio
    async def test_latest_with_nothing(self, config, local_host):
        engine = RestoreEngine(config, local_host, FakeObjectStore())
        with pytest.raises(BackupNotFoundError, match="No daily backups found"):
            await engine.resolve_selector("latest")

    @pytest.mark.asyncio
    async def test_remote_uri(self, config, local_host, backup_dir, tmp_path):
        store = FakeObjectStore()
        store.objects["weekly/custom.sql.gz"] = write_gzip(tmp_path / "x.sql.gz", {"a": 1}).read_bytes()
        engine = RestoreEngine(config, local_host, store)

        artifact = await engine.resolve_selector("s3://wp-backups/weekly/custom.sql.gz")

        assert artifact.location == str(backup_dir / "custom.sql.gz")

    @pytest.mark.asyncio
    async def test_remote_uri_missing(self, config, local_host):
        engine = RestoreEngine(config, local_host, FakeObjectStore())
        with pytest.raises(BackupNotFoundError):
            await engine.resolve_selector("s3://wp-backups/daily/missing.sql.gz")

    @pytest.mark.asyncio
    async def test_remote_uri_without_store(self, config, local_host):
        engine = RestoreEngine(config, local_host)
        with pytest.raises(InvalidArgumentError):
            await engine.resolve_selector("s3://wp-backups/daily/missing.sql.gz")

    @pytest.mark.asyncio
    async def test_missing_and_empty_paths(self, config, local_host, tmp_path):
        engine = RestoreEngine(config, local_host)
        with pytest.raises(BackupNotFoundError, match="Backup file not found"):
            await engine.resolve_selector(str(tmp_path / "nope.sql.gz"))

        empty = tmp_path / "empty.sql.gz"
        empty.write_bytes(b"")
        with pytest.raises(BackupNotFoundError):
            await engine.resolve_selector(str(empty))

    @pytest.mark.asyncio
    async def test_listing(self, config, local_host, backup_dir):
        write_gzip(backup_dir / _name("daily", NOW), {})
        store = FakeObjectStore()
        for hours in range(8):
            store.objects[f"hourly/{_name('hourly', NOW - timedelta(hours=hours))}"] = b"x"
        engine = RestoreEngine(config, local_host, store)

        listing = await engine.resolve_selector("")

        assert isinstance(listing, BackupListing)
        assert len(listing.local) == 1
        assert len(listing.remote[BackupClass.HOURLY]) == 5
        assert listing.remote[BackupClass.HOURLY][0].created_at == NOW
        assert listing.remote[BackupClass.WEEKLY] == []
        assert local_host.events == []


class TestRestore:
    """Applying a backup to the database."""

    @pytest.mark.asyncio
    async def test_restore_replaces_tables(self, config, local_host, tmp_path):
        dump = write_gzip(tmp_path / "snapshot.sql.gz", RESTORED_TABLES)
        engine = RestoreEngine(config, local_host, confirmer=ScriptedConfirmer(["yes"]))

        artifact = await engine.resolve_selector(str(dump))
        result = await engine.restore(artifact)

        assert not result.cancelled
        assert result.table_count == 3
        assert local_host.tables == RESTORED_TABLES
        assert local_host.events == [
            "stop_services",
            f"verify:{dump}",
            f"apply:{dump}",
            "start_services",
        ]

    @pytest.mark.asyncio
    async def test_backup_then_restore_latest(self, config, local_host):
        original = dict(local_host.tables)
        created = await BackupEngine(config, local_host).create_backup("daily")
        local_host.tables["scratch"] = 99
        engine = RestoreEngine(config, local_host, confirmer=AutoConfirmer())

        artifact = await engine.resolve_selector("latest")
        result = await engine.restore(artifact)

        assert artifact.location == created.location
        assert result.table_count == 3
        assert local_host.tables == original

    @pytest.mark.asyncio
    async def test_restore_is_repeatable(self, config, local_host, tmp_path):
        dump = write_gzip(tmp_path / "snapshot.sql.gz", RESTORED_TABLES)
        engine = RestoreEngine(config, local_host, confirmer=AutoConfirmer())
        artifact = await engine.resolve_selector(str(dump))

        await engine.restore(artifact)
        first = dict(local_host.tables)
        await engine.restore(artifact)

        assert local_host.tables == first == RESTORED_TABLES

    @pytest.mark.parametrize("answer", ["no", "", "y", "YES please"])
    @pytest.mark.asyncio
    async def test_declined_restore_does_nothing(self, config, local_host, tmp_path, answer):
        before = dict(local_host.tables)
        dump = write_gzip(tmp_path / "snapshot.sql.gz", RESTORED_TABLES)
        confirmer = ScriptedConfirmer([answer])
        engine = RestoreEngine(config, local_host, confirmer=confirmer)

        result = await engine.restore(await engine.resolve_selector(str(dump)))

        assert result.cancelled
        assert local_host.events == []
        assert local_host.tables == before
        assert "OVERWRITE" in confirmer.prompts[0]

    @pytest.mark.asyncio
    async def test_corrupted_backup_is_not_applied(self, config, local_host, tmp_path):
        before = dict(local_host.tables)
        dump = tmp_path / "corrupt.sql.gz"
        dump.write_bytes(b"\x1f\x8b\x08\x00garbage")
        engine = RestoreEngine(config, local_host, confirmer=AutoConfirmer())

        with pytest.raises(IntegrityCheckError):
            await engine.restore(await engine.resolve_selector(str(dump)))

        assert not any(e.startswith("apply:") for e in local_host.events)
        assert local_host.events[-1] == "start_services"
        assert local_host.tables == before

    @pytest.mark.asyncio
    async def test_apply_failure_restarts_services(self, config, local_host, tmp_path):
        local_host.fail_apply = True
        dump = write_gzip(tmp_path / "snapshot.sql.gz", RESTORED_TABLES)
        engine = RestoreEngine(config, local_host, confirmer=AutoConfirmer())

        with pytest.raises(CommandFailedError):
            await engine.restore(await engine.resolve_selector(str(dump)))

        assert local_host.events[-1] == "start_services"
