"""schemacollab CLI - Main dispatcher for lease maintenance commands."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence

from schemacollab.cli.commands import locks


def create_parser() -> argparse.ArgumentParser:
    """Create the main CLI parser with subcommands.

    Returns:
        Configured ArgumentParser with all subcommands
    """
    parser = argparse.ArgumentParser(
        prog="schemacollab",
        description="Schema designer collaboration tools",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        required=False,
    )

    # Locks command group: lease inspection and maintenance
    locks_parser = subparsers.add_parser(
        "locks",
        help="Inspect and maintain table locks",
    )
    locks_subparsers = locks_parser.add_subparsers(
        dest="action",
        required=True,
        help="Lock action",
    )

    # Locks list: show valid leases
    list_parser = locks_subparsers.add_parser(
        "list",
        help="List active (non-expired) table locks, newest first",
    )
    locks.setup_list_parser(list_parser)
    list_parser.set_defaults(func=locks.list_main)

    # Locks sweep: delete expired leases
    sweep_parser = locks_subparsers.add_parser(
        "sweep",
        help="Delete expired table locks",
    )
    locks.setup_sweep_parser(sweep_parser)
    sweep_parser.set_defaults(func=locks.sweep_main)

    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """CLI main entry point.

    Args:
        argv: Command line arguments (uses sys.argv if None)

    Returns:
        Exit code (0 = success, non-0 = error)
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    # If no command provided, show help
    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
