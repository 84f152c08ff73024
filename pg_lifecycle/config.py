"""Configuration management for pg-lifecycle."""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple, Dict


def _split_list(value: str) -> Tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL target configuration."""
    user: str = "wealthpath"
    name: str = "wealthpath"
    os_user: str = "postgres"  # account `sudo -u` switches to; empty disables sudo
    backup_dir: str = "/var/backups/wealthpath"

    @classmethod
    def from_env(cls) -> 'DatabaseConfig':
        """Create config from environment variables."""
        return cls(
            user=os.getenv("POSTGRES_USER", "wealthpath"),
            name=os.getenv("POSTGRES_DB", "wealthpath"),
            os_user=os.getenv("POSTGRES_OS_USER", "postgres"),
            backup_dir=os.getenv("BACKUP_DIR", "/var/backups/wealthpath"),
        )

    def __post_init__(self):
        """Validate configuration."""
        if not self.user:
            raise ValueError("database user must not be empty")
        if not self.name:
            raise ValueError("database name must not be empty")


@dataclass(frozen=True)
class ObjectStoreConfig:
    """S3-compatible object store (DigitalOcean Spaces) configuration."""
    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    bucket: Optional[str] = None
    region: str = "nyc3"
    endpoint_url: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'ObjectStoreConfig':
        """Create config from environment variables."""
        return cls(
            access_key=os.getenv("DO_SPACES_KEY") or None,
            secret_key=os.getenv("DO_SPACES_SECRET") or None,
            bucket=os.getenv("DO_SPACES_BUCKET") or None,
            region=os.getenv("DO_SPACES_REGION", "nyc3"),
            endpoint_url=os.getenv("DO_SPACES_ENDPOINT") or None,
        )

    @property
    def configured(self) -> bool:
        return bool(self.access_key and self.secret_key and self.bucket)

    @property
    def endpoint(self) -> str:
        """Endpoint URL, derived from the region unless set explicitly."""
        return self.endpoint_url or f"https://{self.region}.digitaloceanspaces.com"

    def __repr__(self) -> str:
        secret = "***" if self.secret_key else None
        return (
            f"ObjectStoreConfig(access_key={self.access_key!r}, secret_key={secret!r}, "
            f"bucket={self.bucket!r}, region={self.region!r}, endpoint_url={self.endpoint_url!r})"
        )


@dataclass(frozen=True)
class RetentionConfig:
    """Retention window per backup class, in days."""
    hourly_days: int = 1
    daily_days: int = 7
    weekly_days: int = 30

    @classmethod
    def from_env(cls) -> 'RetentionConfig':
        """Create config from environment variables."""
        return cls(
            hourly_days=int(os.getenv("RETENTION_HOURLY_DAYS", "1")),
            daily_days=int(os.getenv("RETENTION_DAILY_DAYS", "7")),
            weekly_days=int(os.getenv("RETENTION_WEEKLY_DAYS", "30")),
        )

    def __post_init__(self):
        """Validate configuration."""
        for name in ("hourly_days", "daily_days", "weekly_days"):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")

    def as_days(self) -> Dict[str, int]:
        return {"hourly": self.hourly_days, "daily": self.daily_days, "weekly": self.weekly_days}


@dataclass(frozen=True)
class SSHConfig:
    """Remote shell configuration."""
    user: str = "root"
    source_key: str = "~/.ssh/wealthpath_key"
    dest_key: str = "~/.ssh/id_ed25519"
    decommission_key: Optional[str] = None
    command_timeout: float = 300.0
    connect_timeout: int = 15
    strict_host_key_checking: bool = False
    transfer_attempts: int = 3

    @classmethod
    def from_env(cls) -> 'SSHConfig':
        """Create config from environment variables."""
        return cls(
            user=os.getenv("SSH_USER", "root"),
            source_key=os.getenv("SSH_KEY_SOURCE", "~/.ssh/wealthpath_key"),
            dest_key=os.getenv("SSH_KEY_DEST", "~/.ssh/id_ed25519"),
            decommission_key=os.getenv("SSH_KEY") or None,
            command_timeout=float(os.getenv("SSH_TIMEOUT", "300")),
            connect_timeout=int(os.getenv("SSH_CONNECT_TIMEOUT", "15")),
            strict_host_key_checking=_env_bool("SSH_STRICT_HOST_KEY_CHECKING", "false"),
            transfer_attempts=int(os.getenv("TRANSFER_ATTEMPTS", "3")),
        )

    def __post_init__(self):
        """Validate configuration."""
        if self.command_timeout <= 0:
            raise ValueError(f"command_timeout must be positive, got {self.command_timeout}")
        if self.connect_timeout <= 0:
            raise ValueError(f"connect_timeout must be positive, got {self.connect_timeout}")
        if self.transfer_attempts < 1:
            raise ValueError(f"transfer_attempts must be at least 1, got {self.transfer_attempts}")


@dataclass(frozen=True)
class ServiceConfig:
    """Dependent application services stopped around a restore."""
    app_dir: str = "/opt/wealthpath"
    compose_file: str = "docker-compose.deploy.yaml"
    services: Tuple[str, ...] = ("backend", "admin")

    @classmethod
    def from_env(cls) -> 'ServiceConfig':
        """Create config from environment variables."""
        return cls(
            app_dir=os.getenv("APP_DIR", "/opt/wealthpath"),
            compose_file=os.getenv("COMPOSE_FILE", "docker-compose.deploy.yaml"),
            services=_split_list(os.getenv("APP_SERVICES", "backend,admin")),
        )


@dataclass(frozen=True)
class MigrationConfig:
    """Server-to-server migration and decommission settings."""
    staging_dir: str = "/tmp/wealthpath_migration"
    remote_tmp: str = "/tmp"
    verify_tables: Tuple[str, ...] = ()
    source_host: Optional[str] = None
    dest_host: Optional[str] = None
    decommission_backup_dir: str = "/tmp/wealthpath_final_backup"

    @classmethod
    def from_env(cls) -> 'MigrationConfig':
        """Create config from environment variables."""
        return cls(
            staging_dir=os.getenv("MIGRATION_STAGING_DIR", "/tmp/wealthpath_migration"),
            remote_tmp=os.getenv("MIGRATION_REMOTE_TMP", "/tmp"),
            verify_tables=_split_list(os.getenv("MIGRATION_VERIFY_TABLES", "")),
            source_host=os.getenv("OLD_SERVER_IP") or None,
            dest_host=os.getenv("NEW_DB_SERVER_IP") or None,
            decommission_backup_dir=os.getenv("DECOMMISSION_BACKUP_DIR", "/tmp/wealthpath_final_backup"),
        )


@dataclass(frozen=True)
class LifecycleConfig:
    """Complete configuration, built once at startup."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    object_store: ObjectStoreConfig = field(default_factory=ObjectStoreConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    services: ServiceConfig = field(default_factory=ServiceConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)

    @classmethod
    def from_env(cls) -> 'LifecycleConfig':
        """Create complete config from environment variables."""
        return cls(
            database=DatabaseConfig.from_env(),
            object_store=ObjectStoreConfig.from_env(),
            retention=RetentionConfig.from_env(),
            ssh=SSHConfig.from_env(),
            services=ServiceConfig.from_env(),
            migration=MigrationConfig.from_env(),
        )
