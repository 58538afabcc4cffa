"""
Tag CLI commands.

Commands for tagging records, bulk tag operations, and querying tag usage,
performance, suggestions and analytics.
"""
import click
from pathlib import Path

from tradetags.cli.common import db_option, limit_option, owner_option, use_db_path
from tradetags.core.errors import ValidationError
from tradetags.core.models import BulkOperationType, BulkTagOperation, FilterMode, TagFilter
from tradetags.core.tag_normalizer import record_tags, sanitize_tag, validate_tag
from tradetags.services.exporter import TagExporter


def _echo_entries(entries, empty_message="No tags found."):
    if not entries:
        click.echo(empty_message)
        return
    for entry in entries:
        last_used = entry.last_used.isoformat() if entry.last_used else 'never'
        click.echo(f"  {entry.tag:<30} {entry.count:>5}  last used {last_used}")


@click.group()
def tag():
    """Manage and analyze trade tags."""
    pass


@tag.command()
@click.argument('record_id')
@click.argument('tags', nargs=-1, required=True)
@owner_option
@db_option
@click.pass_context
def add(ctx, record_id, tags, owner, db_path):
    """Add tags to a record."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    for raw in tags:
        result = validate_tag(raw)
        if not result.is_valid:
            cleaned = sanitize_tag(raw)
            action = f"storing {cleaned}" if cleaned else "skipping"
            click.secho(f"'{raw}': {result.errors[0].message}; {action}", fg='yellow')

    try:
        updated = manager.add_tags(record_id, list(tags))
    except ValidationError as e:
        click.secho(str(e), fg='red', err=True)
        raise click.Abort()
    click.secho(f"Tags for record {record_id}: {', '.join(updated) or '(none)'}", fg='green')


@tag.command()
@click.argument('record_id')
@click.argument('tags', nargs=-1, required=True)
@owner_option
@db_option
@click.pass_context
def remove(ctx, record_id, tags, owner, db_path):
    """Remove tags from a record."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    remaining = manager.remove_tags(record_id, list(tags))
    click.secho(f"Tags for record {record_id}: {', '.join(remaining) or '(none)'}", fg='green')


@tag.command()
@owner_option
@limit_option()
@db_option
@click.pass_context
def top(ctx, owner, limit, db_path):
    """Show the most used tags."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    click.echo("\nMost used tags:")
    _echo_entries(manager.most_used(limit))


@tag.command()
@owner_option
@limit_option()
@db_option
@click.pass_context
def recent(ctx, owner, limit, db_path):
    """Show the most recently used tags."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    click.echo("\nRecently used tags:")
    _echo_entries(manager.recent(limit))


@tag.command()
@click.argument('query')
@owner_option
@db_option
@click.pass_context
def search(ctx, query, owner, db_path):
    """Search tags by substring."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    entries = manager.search(query)
    if entries:
        click.secho(f"\nFound {len(entries)} tags matching '{query}':", fg='green')
    _echo_entries(entries, f"No tags matching '{query}'")


@tag.command('filter')
@click.option('-i', '--include', 'include_tags', multiple=True, help='Tag the record must carry (repeatable)')
@click.option('-x', '--exclude', 'exclude_tags', multiple=True, help='Tag the record must not carry (repeatable)')
@click.option('--mode', type=click.Choice(['AND', 'OR'], case_sensitive=False), default='AND',
              help='How include tags combine (default: AND)')
@click.option('-q', '--query', default=None, help='Require a tag containing this text')
@click.option('-e', '--expr', 'expression', default=None,
              help="Boolean tag query, e.g. '#scalp AND NOT (#news OR #fomc)'")
@owner_option
@db_option
@click.pass_context
def filter_command(ctx, include_tags, exclude_tags, mode, query, expression, owner, db_path):
    """Filter records by include/exclude tags or a boolean tag query."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    tag_filter = TagFilter(
        include_tags=list(include_tags),
        exclude_tags=list(exclude_tags),
        mode=FilterMode(mode.upper()),
        search_query=query,
        query=expression,
    )
    try:
        found = manager.filter(tag_filter)
    except ValidationError as e:
        click.secho(f"Invalid query: {e}", fg='red', err=True)
        raise click.Abort()
    if not found:
        click.echo("No matching records.")
        return

    click.secho(f"\n{len(found)} matching records:", fg='green')
    for record in found:
        click.echo(f"  {record.id}: {' '.join(record_tags(record.tags))}")


@tag.command()
@click.argument('tag_name', metavar='TAG')
@click.option('--detailed', is_flag=True, help='Include streaks, drawdown and consistency')
@owner_option
@db_option
@click.pass_context
def performance(ctx, tag_name, detailed, owner, db_path):
    """Show trading performance for a tag."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    if detailed:
        stats = manager.analytics.detailed_performance(manager.records(), tag_name)
    else:
        stats = manager.performance(tag_name)

    click.secho(f"\nPerformance for {stats.tag}:", fg='green')
    for name, value in stats.to_dict().items():
        if name == 'tag':
            continue
        label = name.replace('_', ' ').capitalize()
        if isinstance(value, float):
            click.echo(f"  {label}: {value:.2f}")
        else:
            click.echo(f"  {label}: {value}")


@tag.command()
@click.argument('partial', default='')
@click.option('--instrument', default=None, help='Instrument of the trade being tagged')
@click.option('--strategy', default=None, help='Strategy of the trade being tagged')
@click.option('--side', default=None, help='Side of the trade being tagged')
@owner_option
@limit_option()
@db_option
@click.pass_context
def suggest(ctx, partial, instrument, strategy, side, owner, limit, db_path):
    """Suggest tags for a partial input."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    context = {'instrument': instrument, 'strategy': strategy, 'side': side}
    if not any(context.values()):
        context = None

    suggestions = manager.suggest(partial, context, limit)
    if not suggestions:
        click.echo("No suggestions.")
        return
    for suggestion in suggestions:
        line = f"  {suggestion.tag:<30} {suggestion.score:>8.2f}  {suggestion.reason}"
        if suggestion.context:
            line += f"  ({suggestion.context})"
        click.echo(line)


@tag.command()
@owner_option
@limit_option(default=5)
@db_option
@click.pass_context
def analytics(ctx, owner, limit, db_path):
    """Show a tag analytics summary."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    summary = manager.summary(limit)

    click.secho("\nTag analytics", fg='green')
    click.echo(f"  Total tags: {summary.total_tags}")
    click.echo(f"  Average tags per trade: {summary.average_tags_per_trade:.2f}")

    click.echo("\nMost used:")
    _echo_entries(summary.most_used_tags)

    if summary.top_performing_tags:
        click.echo("\nTop performers (win rate):")
        for perf in summary.top_performing_tags:
            click.echo(f"  {perf.tag:<30} {perf.win_rate:6.1f}%  {perf.total_trades} trades")

    orphaned = manager.orphaned_tags()
    if orphaned:
        click.secho(f"\nOrphaned tags: {', '.join(orphaned)}", fg='yellow')

    if summary.tag_correlations:
        click.echo("\nCorrelated tags:")
        for corr in summary.tag_correlations[:limit]:
            click.echo(f"  {corr.tag1} ~ {corr.tag2}: {corr.correlation:.2f}")


@tag.command()
@click.argument('output', type=click.Path(path_type=Path))
@owner_option
@db_option
@click.pass_context
def export(ctx, output, owner, db_path):
    """Export tag statistics to OUTPUT (.csv or .json)."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    try:
        entries = manager.most_used(limit=None)
        summary = manager.summary()
        path = TagExporter().export(entries, summary, output)
        click.secho(f"Exported tag statistics to {path}", fg='green')
    except Exception as e:
        click.secho(f"Error during export: {e}", fg='red', err=True)
        raise click.Abort()


def _preview_option(f):
    return click.option('--preview', is_flag=True, help='Show the changes without writing')(f)


def _run_bulk(manager, operation, preview):
    """Preview or execute a bulk operation and print the outcome."""
    if preview:
        report = manager.preview_bulk_operation(operation)
        click.secho(f"\nPreview: {operation.describe()}", fg='green')
        click.echo(f"  Records affected: {report.records_needing_migration}")
        for analysis in report.records:
            for change in analysis.changes:
                click.echo(f"    {change.record_id}: {change.old_value!r} -> {change.new_value!r}")
        return

    try:
        result = manager.bulk_operation(operation)
    except ValidationError as e:
        click.secho(str(e), fg='red', err=True)
        raise click.Abort()

    click.secho(f"\nDone: {operation.describe()}", fg='green')
    click.echo(f"  Records changed: {result.converted_count}")
    if result.failed_count:
        click.secho(f"  Failed: {result.failed_count} records", fg='yellow')
    for warning in result.warnings:
        click.secho(f"  Warning: {warning}", fg='yellow')
    if not result.completed:
        raise click.Abort()


@tag.command()
@click.argument('old')
@click.argument('new')
@_preview_option
@owner_option
@db_option
@click.pass_context
def rename(ctx, old, new, preview, owner, db_path):
    """Rename tag OLD to NEW on every record."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    _run_bulk(manager, BulkTagOperation(BulkOperationType.RENAME, [old], new), preview)


@tag.command()
@click.argument('sources', nargs=-1, required=True)
@click.option('--into', 'target', required=True, help='Tag the sources are merged into')
@_preview_option
@owner_option
@db_option
@click.pass_context
def merge(ctx, sources, target, preview, owner, db_path):
    """Merge SOURCES into one tag on every record."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    _run_bulk(manager, BulkTagOperation(BulkOperationType.MERGE, list(sources), target), preview)


@tag.command()
@click.argument('tags', nargs=-1, required=True)
@_preview_option
@owner_option
@db_option
@click.pass_context
def delete(ctx, tags, preview, owner, db_path):
    """Delete TAGS from every record."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    _run_bulk(manager, BulkTagOperation(BulkOperationType.DELETE, list(tags)), preview)


@tag.command()
@owner_option
@db_option
@click.pass_context
def undo(ctx, owner, db_path):
    """Undo the last rename, merge or delete."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    result = manager.undo_bulk_operation()
    click.secho(f"Restored {result.migrated_count} of {result.total_records} records", fg='green')
    for error in result.errors:
        click.secho(f"  {error.record_id or '-'}: {error.message}", fg='yellow')
    if not result.completed:
        raise click.Abort()


@tag.command('operations')
@owner_option
@db_option
@click.pass_context
def operations(ctx, owner, db_path):
    """Show past bulk tag operations."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    runs = manager.bulk.history(owner)
    if not runs:
        click.echo("No bulk operations recorded.")
        return
    for entry in runs:
        click.echo(
            f"  {entry['started_at']}  {entry.get('description', '')}: "
            f"{entry['converted_count']} records changed ({entry['state']})"
        )
