"""Command-line entry point: backup, restore, migrate, decommission."""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from ._utils import logger, human_size
from .backup import BackupEngine
from .config import LifecycleConfig
from .confirm import AutoConfirmer, BaseConfirmer, PromptConfirmer
from .decommission import Decommissioner
from .errors import InvalidArgumentError, LifecycleError
from .migrate import MigrationOrchestrator
from .models import BackupListing
from .postgres import PostgresHost
from .remote import LocalExecutor
from .restore import RestoreEngine
from .runner import CommandRunner
from .storage import ObjectStore


def configure_logging(verbose: bool = False, log_file: Optional[str] = None) -> None:
    """Attach handlers to the package logger instead of relying on the root logger."""
    level = logging.DEBUG if verbose else logging.INFO
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()

    formatter = logging.Formatter(
        '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-lifecycle",
        description="PostgreSQL backup, restore and server-to-server migration",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    parser.add_argument("--log-file", default=None, help="Also write logs to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    backup = sub.add_parser("backup", help="Create a backup and apply retention")
    backup.add_argument("backup_class", nargs="?", default="daily", help="hourly, daily or weekly (default: daily)")

    restore = sub.add_parser("restore", help="List backups, or restore one")
    restore.add_argument(
        "selector",
        nargs="?",
        default="",
        help="Path, s3://bucket/key, 'latest' or 'latest:<class>'; omit to list backups",
    )
    restore.add_argument("--yes", action="store_true", help="Skip the interactive confirmation")

    migrate = sub.add_parser("migrate", help="Copy the database from one host to another")
    migrate.add_argument("--source", default=None, help="Source host (default: $OLD_SERVER_IP)")
    migrate.add_argument("--dest", default=None, help="Destination host (default: $NEW_DB_SERVER_IP)")
    migrate.add_argument("--yes", action="store_true", help="Answer yes to both confirmations")

    decommission = sub.add_parser("decommission", help="Shut down services on a migrated host")
    decommission.add_argument("--host", default=None, help="Host to decommission (default: $OLD_SERVER_IP)")
    decommission.add_argument("--cleanup", choices=["keep", "remove", "destroy"], default=None,
                              help="Data cleanup option; prompts when omitted")
    decommission.add_argument("--yes", action="store_true", help="Answer yes to both confirmations")
    return parser


def _confirmer(args: argparse.Namespace) -> BaseConfirmer:
    if getattr(args, "yes", False):
        return AutoConfirmer(approve=True)
    return PromptConfirmer()


def _local_host(config: LifecycleConfig, runner: CommandRunner) -> PostgresHost:
    return PostgresHost(LocalExecutor(runner), config.database, config.services)


def print_listing(listing: BackupListing) -> None:
    print("")
    print("Available local backups:")
    print("-" * 57)
    if listing.local:
        for artifact in listing.local:
            print(f"  {artifact.location} ({human_size(artifact.size_bytes or 0)})")
    else:
        print("  No local backups found")
    if listing.remote:
        print("")
        print("Available remote backups:")
        print("-" * 57)
        for backup_class, artifacts in listing.remote.items():
            print(f"  {backup_class.value}:")
            if not artifacts:
                print("    None")
            for artifact in artifacts:
                print(f"    {artifact.location} ({human_size(artifact.size_bytes or 0)})")
    print("")
    print("Usage: pg-lifecycle restore <backup_file_or_s3_path>")
    print("       pg-lifecycle restore latest           # Restore latest daily backup")
    print("       pg-lifecycle restore latest:hourly    # Restore latest hourly backup")


async def run_backup(args, config: LifecycleConfig, runner: CommandRunner) -> int:
    engine = BackupEngine(config, _local_host(config, runner), ObjectStore.from_config(config.object_store))
    await engine.create_backup(args.backup_class)
    return 0


async def run_restore(args, config: LifecycleConfig, runner: CommandRunner) -> int:
    engine = RestoreEngine(
        config,
        _local_host(config, runner),
        ObjectStore.from_config(config.object_store),
        confirmer=_confirmer(args),
    )
    resolved = await engine.resolve_selector(args.selector)
    if isinstance(resolved, BackupListing):
        print_listing(resolved)
        return 0
    result = await engine.restore(resolved)
    if not result.cancelled:
        logger.info(f"Restore complete: {result.table_count} tables in {config.database.name}")
    return 0


async def run_migrate(args, config: LifecycleConfig, runner: CommandRunner) -> int:
    source = args.source or config.migration.source_host
    dest = args.dest or config.migration.dest_host
    if not source or not dest:
        raise InvalidArgumentError("Both --source and --dest are required (or OLD_SERVER_IP / NEW_DB_SERVER_IP)")
    if source == dest:
        raise InvalidArgumentError("Source and destination must be different hosts")
    orchestrator = MigrationOrchestrator.for_hosts(config, source, dest, confirmer=_confirmer(args), runner=runner)
    await orchestrator.run()
    return 0


async def run_decommission(args, config: LifecycleConfig, runner: CommandRunner) -> int:
    host = args.host or config.migration.source_host
    if not host:
        raise InvalidArgumentError("--host is required (or OLD_SERVER_IP)")
    cleanup = args.cleanup
    if args.yes and cleanup is None:
        cleanup = "keep"
    decommissioner = Decommissioner.for_host(config, host, confirmer=_confirmer(args), runner=runner)
    await decommissioner.run(cleanup=cleanup)
    return 0


COMMANDS = {
    "backup": run_backup,
    "restore": run_restore,
    "migrate": run_migrate,
    "decommission": run_decommission,
}


async def run(argv: Optional[List[str]] = None, config: Optional[LifecycleConfig] = None) -> int:
    """Parse arguments, run one command and map errors to an exit code."""
    args = build_parser().parse_args(argv)
    configure_logging(args.verbose, args.log_file)
    try:
        config = config or LifecycleConfig.from_env()
        runner = CommandRunner()
        return await COMMANDS[args.command](args, config, runner)
    except LifecycleError as e:
        logger.error(e.describe())
        return 1
    except ValueError as e:
        logger.error(f"[{InvalidArgumentError.category}] {e}")
        return 1


def main() -> None:
    try:
        sys.exit(asyncio.run(run()))
    except KeyboardInterrupt:
        logger.warning("Interrupted by operator")
        sys.exit(130)


if __name__ == "__main__":
    main()
