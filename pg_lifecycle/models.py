"""Data models for backup, restore and migration operations."""

import re
from datetime import datetime, timedelta
from enum import Enum
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Union, Literal

from pydantic import BaseModel, Field

from ._utils import parse_embedded_timestamp
from .errors import InvalidArgumentError

ARTIFACT_SUFFIX = ".sql.gz"

_ARTIFACT_NAME_RE = re.compile(r"^(hourly|daily|weekly)_(\d{8}_\d{6})\.sql\.gz$")


class BackupClass(str, Enum):
    """Retention tier of a backup artifact."""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"

    @classmethod
    def parse(cls, value: str) -> "BackupClass":
        """Parse a class name, raising InvalidArgumentError for anything else."""
        try:
            return cls(value)
        except ValueError:
            choices = "|".join(c.value for c in cls)
            raise InvalidArgumentError(f"Invalid backup type: {value!r} (expected {choices})") from None


class BackupArtifact(BaseModel):
    """A compressed database dump, stored locally or in the object store."""

    backup_class: BackupClass
    created_at: datetime
    location: str = Field(..., description="Local path or object-store key")
    remote: bool = False
    size_bytes: Optional[int] = None
    checksum_valid: Optional[bool] = None

    @property
    def name(self) -> str:
        return PurePosixPath(self.location).name

    @staticmethod
    def filename_for(backup_class: BackupClass, timestamp: str) -> str:
        return f"{backup_class.value}_{timestamp}{ARTIFACT_SUFFIX}"

    @classmethod
    def from_location(
        cls,
        location: str,
        remote: bool = False,
        size_bytes: Optional[int] = None,
    ) -> Optional["BackupArtifact"]:
        """Build an artifact from a path or key named ``<class>_<stamp>.sql.gz``.

        Returns None for names that do not follow the artifact naming scheme.
        """
        match = _ARTIFACT_NAME_RE.match(PurePosixPath(location).name)
        if not match:
            return None
        created_at = parse_embedded_timestamp(match.group(2))
        if created_at is None:
            return None
        return cls(
            backup_class=BackupClass(match.group(1)),
            created_at=created_at,
            location=location,
            remote=remote,
            size_bytes=size_bytes,
        )


class RetentionPolicy(BaseModel):
    """How long artifacts of each class are kept."""

    windows: Dict[BackupClass, timedelta] = Field(
        default_factory=lambda: {
            BackupClass.HOURLY: timedelta(days=1),
            BackupClass.DAILY: timedelta(days=7),
            BackupClass.WEEKLY: timedelta(days=30),
        }
    )

    @classmethod
    def from_days(cls, days: Dict[str, int]) -> "RetentionPolicy":
        return cls(windows={BackupClass(k): timedelta(days=v) for k, v in days.items()})

    def window(self, backup_class: BackupClass) -> timedelta:
        return self.windows[backup_class]

    def cutoff(self, backup_class: BackupClass, now: datetime) -> datetime:
        return now - self.window(backup_class)

    def is_expired(self, artifact: BackupArtifact, now: datetime) -> bool:
        """An artifact expires once it is strictly older than its class window."""
        return now - artifact.created_at > self.window(artifact.backup_class)


class RemoteEndpoint(BaseModel):
    """A host reachable over SSH."""

    host: str
    user: str = "root"
    key_path: Optional[str] = None
    working_dir: Optional[str] = None

    @property
    def target(self) -> str:
        return f"{self.user}@{self.host}"


# Selector variants, parsed once at the CLI boundary

class ListSelector(BaseModel):
    kind: Literal["list"] = "list"


class LatestSelector(BaseModel):
    kind: Literal["latest"] = "latest"
    backup_class: BackupClass = BackupClass.DAILY


class RemoteUriSelector(BaseModel):
    kind: Literal["remote"] = "remote"
    uri: str


class LocalPathSelector(BaseModel):
    kind: Literal["local"] = "local"
    path: str


Selector = Union[ListSelector, LatestSelector, RemoteUriSelector, LocalPathSelector]


def parse_selector(value: Optional[str]) -> Selector:
    """Parse a restore selector.

    "" or None lists backups, "latest" means newest daily, "latest:<class>"
    newest of that class, "s3://..." a remote object, anything else a path.
    """
    value = (value or "").strip()
    if not value:
        return ListSelector()
    if value == "latest":
        return LatestSelector()
    if value.startswith("latest:"):
        return LatestSelector(backup_class=BackupClass.parse(value[len("latest:"):]))
    if value.startswith("s3://"):
        return RemoteUriSelector(uri=value)
    return LocalPathSelector(path=value)


class BackupListing(BaseModel):
    """Read-only view of available backups."""

    local: List[BackupArtifact] = Field(default_factory=list)
    remote: Dict[BackupClass, List[BackupArtifact]] = Field(default_factory=dict)


class RestoreResult(BaseModel):
    """Outcome of a restore run."""

    artifact: Optional[BackupArtifact] = None
    cancelled: bool = False
    table_count: Optional[int] = None


class VerificationResult(BaseModel):
    """Table-count comparison between migration source and destination."""

    source_table_count: int
    dest_table_count: int
    matched: bool
    source_row_counts: Dict[str, int] = Field(default_factory=dict)
    dest_row_counts: Dict[str, int] = Field(default_factory=dict)
