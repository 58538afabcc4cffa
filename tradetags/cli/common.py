"""
Common Click decorators and utilities for CLI commands.
"""
import click
from pathlib import Path
from typing import Callable

DEFAULT_OWNER = 'default'


def db_option(f: Callable) -> Callable:
    """
    Add --db-path option to command.

    Args:
        f: Command function to decorate

    Returns:
        Decorated function with --db-path option
    """
    return click.option(
        '--db-path',
        type=click.Path(path_type=Path),
        help='Path to database file (default: OS-specific location)'
    )(f)


def owner_option(f: Callable) -> Callable:
    """Add --owner option (records are partitioned by owner)."""
    return click.option(
        '--owner',
        default=DEFAULT_OWNER,
        envvar='TRADETAGS_OWNER',
        show_default=True,
        help='Owner whose records are used'
    )(f)


def limit_option(default: int = 10) -> Callable:
    """
    Add --limit/-n option to command.

    Args:
        default: Default number of results

    Returns:
        Decorator function
    """
    def decorator(f: Callable) -> Callable:
        return click.option(
            '-n', '--limit',
            type=int,
            default=default,
            help=f'Maximum number of results (default: {default})'
        )(f)
    return decorator


def use_db_path(ctx: click.Context, db_path) -> None:
    """Point the shared context at --db-path when given."""
    if db_path:
        ctx.obj.db_path = Path(db_path)


def create_progress_callback(label: str = 'Processing'):
    """
    Create a progress callback for long-running operations.

    Args:
        label: Label to display in progress output

    Returns:
        Callback function(item_id, total, current)
    """
    def progress_callback(item_id: str, total: int, current: int):
        """Progress callback for record operations."""
        if current % 100 == 0 or current == total:
            click.echo(f"{label}: {current}/{total} records processed...")
    return progress_callback
