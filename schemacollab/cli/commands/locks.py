"""Lock maintenance CLI commands.

``locks list`` prints the valid leases of the store, ``locks sweep`` deletes
expired ones. Both read configuration from ``--config`` (YAML) or from
``SCHEMACOLLAB_*`` environment variables.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from schemacollab.config import CollabConfig, ConfigError
from schemacollab.locking import LockManager, format_time_remaining
from schemacollab.session import build_engine
from schemacollab.storage import DatabaseEngine, LeaseModel, SQLDatabaseEngine

logger = logging.getLogger(__name__)


def add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a YAML configuration file",
    )
    parser.add_argument(
        "--db-url",
        type=str,
        default=None,
        help="Async database URL, e.g. sqlite+aiosqlite:///collab.db (overrides configuration)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["debug", "info", "warning", "error", "critical"],
        help="Log level (default: from configuration, else info)",
    )


def setup_list_parser(parser: argparse.ArgumentParser) -> None:
    """Configure arguments for the ``locks list`` command."""
    add_common_arguments(parser)
    parser.add_argument(
        "--project",
        type=str,
        default=None,
        help="Only show locks of this project",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print locks as JSON",
    )


def setup_sweep_parser(parser: argparse.ArgumentParser) -> None:
    """Configure arguments for the ``locks sweep`` command."""
    add_common_arguments(parser)


def load_config(args: argparse.Namespace) -> CollabConfig:
    """Resolve configuration from ``--config`` or the environment, then apply CLI overrides."""
    load_dotenv()
    config = CollabConfig.from_yaml(args.config) if args.config else CollabConfig.from_env(load_dotenv=False)
    overrides = {}
    if args.db_url:
        overrides["database_url"] = args.db_url
    if args.log_level:
        overrides["log_level"] = args.log_level
    return config.model_copy(update=overrides) if overrides else config


def configure_logging(level_name: str) -> None:
    numeric_level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        force=True,  # Override any existing configuration
    )


def _prepare(args: argparse.Namespace) -> CollabConfig | None:
    try:
        config = load_config(args)
    except ConfigError as e:
        print(f"❌ {e}", file=sys.stderr)
        return None
    configure_logging(config.log_level)
    if config.database_url is None:
        logger.warning("No database URL configured; using an empty in-memory store")
    return config


async def _dispose(engine: DatabaseEngine) -> None:
    if isinstance(engine, SQLDatabaseEngine):
        await engine.dispose()


def format_lease(lease: LeaseModel) -> str:
    return (
        f"{lease.resource_id}\t{lease.kind.value}\t{lease.owner_id}\t"
        f"{format_time_remaining(lease)}\t{lease.expires_at.isoformat()}\t{lease.reason}"
    )


def lease_to_dict(lease: LeaseModel) -> dict[str, object]:
    return {
        "resource_id": lease.resource_id,
        "lease_id": lease.lease_id,
        "owner_id": lease.owner_id,
        "project_id": lease.project_id,
        "kind": lease.kind.value,
        "reason": lease.reason,
        "acquired_at": lease.acquired_at.isoformat(),
        "expires_at": lease.expires_at.isoformat(),
    }


async def run_list(config: CollabConfig, *, project_id: str | None, as_json: bool) -> int:
    engine = build_engine(config.database_url)
    try:
        manager = LockManager(engine=engine, settings=config.locks)
        leases = await manager.list_active(project_id=project_id)
    finally:
        await _dispose(engine)

    if as_json:
        print(json.dumps([lease_to_dict(lease) for lease in leases], indent=2))
        return 0

    if not leases:
        print("No active locks")
        return 0
    print("RESOURCE\tKIND\tOWNER\tREMAINING\tEXPIRES_AT\tREASON")
    for lease in leases:
        print(format_lease(lease))
    return 0


async def run_sweep(config: CollabConfig) -> int:
    engine = build_engine(config.database_url)
    try:
        manager = LockManager(engine=engine, settings=config.locks)
        count = await manager.cleanup_expired()
    finally:
        await _dispose(engine)
    print(f"✓ Removed {count} expired lock(s)")
    return 0


def list_main(args: argparse.Namespace) -> int:
    """Execute ``locks list``.

    Returns:
        Exit code (0 = success, non-0 = error)
    """
    config = _prepare(args)
    if config is None:
        return 1
    return asyncio.run(run_list(config, project_id=args.project, as_json=args.json))


def sweep_main(args: argparse.Namespace) -> int:
    """Execute ``locks sweep``.

    Returns:
        Exit code (0 = success, non-0 = error)
    """
    config = _prepare(args)
    if config is None:
        return 1
    return asyncio.run(run_sweep(config))
