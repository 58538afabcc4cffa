"""
Click-based CLI for trade tags.

This module provides the main Click group and entry point. Commands are
organized in the commands/ subpackage.
"""
import click
import logging
import sys

from .context import CLIContext

# Configure logging format
logging.basicConfig(
    level=logging.INFO,
    format='%(message)s'
)


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.pass_context
def cli(ctx, verbose):
    """
    Trade Tags - Tag indexing, analytics and migration for trade journals.
    """
    ctx.obj = CLIContext(verbose=verbose)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


@cli.result_callback()
@click.pass_context
def cleanup(ctx, result, **kwargs):
    """
    Clean up resources after command execution.

    Ensures the database connection is closed so the WAL is checkpointed.
    """
    if ctx.obj:
        ctx.obj.close()


from .commands.records import records
from .commands.tag import tag
from .commands.migrate import migrate

cli.add_command(records)
cli.add_command(tag)
cli.add_command(migrate)


def main():
    """
    Main entry point for the CLI.
    """
    try:
        cli()
    except Exception as e:
        click.secho(f"Error: {e}", fg='red', err=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
