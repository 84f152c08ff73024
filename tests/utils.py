"""Fakes and helpers shared by the test suite."""

import copy
import gzip
import json
from pathlib import Path
from typing import Dict, List, Optional

from botocore.exceptions import ClientError, EndpointConnectionError

from pg_lifecycle._utils import verify_gzip_stream
from pg_lifecycle.config import (
    DatabaseConfig,
    LifecycleConfig,
    MigrationConfig,
    ObjectStoreConfig,
    SSHConfig,
)
from pg_lifecycle.errors import CommandFailedError, TransferError
from pg_lifecycle.runner import Outcome
from pg_lifecycle.storage import StoredObject


class FakeExecutor:
    """Records shell scripts instead of running them."""

    def __init__(self, name: str = "fake", exit_code: int = 0, stdout: str = ""):
        self.name = name
        self.exit_code = exit_code
        self.stdout = stdout
        self.scripts: List[str] = []

    async def shell(self, script, best_effort=False, timeout=None):
        self.scripts.append(script)
        outcome = Outcome(command=["bash", "-c", script], exit_code=self.exit_code,
                          stdout=self.stdout, best_effort=best_effort)
        if outcome.fatal:
            raise CommandFailedError(outcome.error_summary(), outcome=outcome)
        return outcome


class FakePostgresHost:
    """In-memory stand-in for PostgresHost.

    Tables map names to row counts. Dumps are real gzip files holding the
    table map as JSON, so integrity checks run against real bytes. With
    ``local=True`` dump files live on the real filesystem, otherwise in a
    per-host dictionary that imitates the remote machine's disk.
    """

    def __init__(self, name: str = "local", tables: Optional[Dict[str, int]] = None, local: bool = True):
        self.name = name
        self.tables: Dict[str, int] = dict(tables or {})
        self.local = local
        self.files: Dict[str, bytes] = {}
        self.events: List[str] = []
        self.executor = FakeExecutor(name)
        self.fail_dump = False
        self.dump_payload: Optional[bytes] = None
        self.fail_download = False
        self.fail_upload = False
        self.fail_apply = False
        self.running = True

    # file helpers

    def _write(self, path: str, data: bytes) -> None:
        if self.local:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            Path(path).write_bytes(data)
        else:
            self.files[path] = data

    def _read(self, path: str) -> Optional[bytes]:
        if self.local:
            p = Path(path)
            return p.read_bytes() if p.exists() else None
        return self.files.get(path)

    def exists(self, path: str) -> bool:
        return self._read(path) is not None

    # PostgresHost interface

    async def dump_to(self, path: str) -> None:
        self.events.append(f"dump:{path}")
        if self.fail_dump:
            raise CommandFailedError("pg_dump: connection refused")
        if self.dump_payload is not None:
            data = self.dump_payload
        else:
            data = gzip.compress(json.dumps({"tables": self.tables}).encode())
        self._write(path, data)

    async def verify_archive(self, path: str) -> bool:
        self.events.append(f"verify:{path}")
        if self.local:
            return Path(path).exists() and verify_gzip_stream(Path(path))
        data = self.files.get(path)
        if data is None:
            return False
        try:
            gzip.decompress(data)
        except (OSError, EOFError):
            return False
        return True

    async def file_size(self, path: str) -> int:
        data = self._read(path)
        return len(data) if data is not None else 0

    async def apply_dump(self, path: str) -> None:
        self.events.append(f"apply:{path}")
        if self.fail_apply:
            raise CommandFailedError("psql: ERROR during restore")
        payload = json.loads(gzip.decompress(self._read(path)))
        # --clean --if-exists semantics: the dump replaces the whole schema
        self.tables = copy.deepcopy(payload["tables"])

    async def count_tables(self) -> int:
        return len(self.tables)

    async def count_rows(self, table: str) -> int:
        return self.tables.get(table, 0)

    async def largest_tables(self, limit: int = 10) -> Dict[str, int]:
        ordered = sorted(self.tables.items(), key=lambda kv: kv[1], reverse=True)
        return dict(ordered[:limit])

    async def is_running(self) -> bool:
        return self.running

    async def stop_services(self) -> bool:
        self.events.append("stop_services")
        return True

    async def start_services(self) -> bool:
        self.events.append("start_services")
        return True

    async def remove(self, path: str) -> bool:
        self.events.append(f"remove:{path}")
        if self.local:
            Path(path).unlink(missing_ok=True)
        else:
            self.files.pop(path, None)
        return True

    async def download(self, remote_path: str, local_path: Path) -> Path:
        self.events.append(f"download:{remote_path}")
        if self.fail_download:
            raise TransferError(f"scp from {self.name} failed: connection reset")
        data = self._read(remote_path)
        if data is None:
            raise TransferError(f"{remote_path} does not exist on {self.name}")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(data)
        return local_path

    async def upload(self, local_path: Path, remote_path: str) -> str:
        self.events.append(f"upload:{remote_path}")
        if self.fail_upload:
            raise TransferError(f"scp to {self.name} failed: connection reset")
        self._write(remote_path, Path(local_path).read_bytes())
        return remote_path


def make_config(tmp_path: Path, **overrides) -> LifecycleConfig:
    """Build a config rooted in a temporary directory."""
    return LifecycleConfig(
        database=overrides.pop("database", DatabaseConfig(backup_dir=str(tmp_path / "backups"))),
        object_store=overrides.pop("object_store", ObjectStoreConfig()),
        ssh=overrides.pop("ssh", SSHConfig(transfer_attempts=1)),
        migration=overrides.pop("migration", MigrationConfig(
            staging_dir=str(tmp_path / "staging"),
            decommission_backup_dir=str(tmp_path / "final"),
        )),
        **overrides,
    )


def write_gzip(path: Path, tables: Dict[str, int]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(gzip.compress(json.dumps({"tables": tables}).encode()))
    return path


class FakeObjectStore:
    """In-memory ObjectStore keyed ``<class>/<filename>``."""

    def __init__(self, bucket: str = "wp-backups"):
        self.bucket = bucket
        self.objects: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_put = False
        self.fail_list = False

    def uri_for(self, key: str) -> str:
        return f"s3://{self.bucket}/{key}"

    def with_bucket(self, bucket: str) -> "FakeObjectStore":
        return self

    async def put(self, local_path: Path, key: str) -> str:
        if self.fail_put:
            raise EndpointConnectionError(endpoint_url="https://nyc3.digitaloceanspaces.com")
        self.objects[key] = Path(local_path).read_bytes()
        return key

    async def get(self, key: str, local_path: Path) -> Path:
        if key not in self.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_bytes(self.objects[key])
        return local_path

    async def list(self, prefix: str) -> List[StoredObject]:
        if self.fail_list:
            raise EndpointConnectionError(endpoint_url="https://nyc3.digitaloceanspaces.com")
        return [StoredObject(key=k, size=len(v)) for k, v in self.objects.items() if k.startswith(prefix)]

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)
        self.deleted.append(key)
