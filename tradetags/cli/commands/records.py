"""
Record CLI commands.

Commands for importing trade record files and listing stored records.
"""
import click
from pathlib import Path

from tradetags.cli.common import db_option, limit_option, owner_option, use_db_path
from tradetags.core.models import FilterMode, TagFilter
from tradetags.core.tag_normalizer import record_tags
from tradetags.services.importer import RecordImporter


@click.group()
def records():
    """Import and list trade records."""
    pass


@records.command('import')
@click.argument('path', type=click.Path(exists=True))
@click.option('--pattern', default=None, help='File pattern for directory import (default: *.json and *.csv)')
@owner_option
@db_option
@click.pass_context
def import_records(ctx, path, pattern, owner, db_path):
    """Import trade records from a JSON/CSV file or a directory."""
    use_db_path(ctx, db_path)
    db = ctx.obj.get_db()

    try:
        importer = RecordImporter(db)
        path_obj = Path(path)

        if path_obj.is_file():
            imported = importer.import_file(path_obj, owner)
            click.secho(f"Imported {imported} records from {path}", fg='green')
        else:
            stats = importer.import_directory(path_obj, owner, pattern)
            imported = stats['records']
            click.echo("\nImport complete!")
            click.echo(f"  Files processed: {stats['files']}")
            click.secho(f"  Records imported: {imported}", fg='green')
            if stats['errors'] > 0:
                click.secho(f"  Errors: {stats['errors']}", fg='yellow')
    except Exception as e:
        click.secho(f"Error during import: {e}", fg='red', err=True)
        raise click.Abort()

    if not imported:
        raise click.Abort()


@records.command('list')
@click.option('--tag', 'tags', multiple=True, help='Only records carrying this tag (repeatable)')
@click.option('--any', 'match_any', is_flag=True, help='Match any of the given tags instead of all')
@owner_option
@limit_option(default=50)
@db_option
@click.pass_context
def list_records(ctx, tags, match_any, owner, limit, db_path):
    """List stored records."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    if tags:
        mode = FilterMode.OR if match_any else FilterMode.AND
        found = manager.filter(TagFilter(include_tags=list(tags), mode=mode))
    else:
        found = manager.records()

    if not found:
        click.echo("No records found.")
        return

    click.secho(f"\n{len(found)} records:\n", fg='green')
    for record in found[:limit]:
        date_str = record.date.isoformat() if record.date else '-'
        pnl_str = f"{record.pnl:.2f}" if record.pnl is not None else '-'
        tag_str = ' '.join(record_tags(record.tags)) or '(no tags)'
        click.echo(f"  {record.id}  {date_str}  {record.status.value:<6}  {pnl_str:>10}  {tag_str}")
    if len(found) > limit:
        click.echo(f"  ... and {len(found) - limit} more")
