"""
Migration CLI commands.

Commands for previewing, running and rolling back the tag migration.
"""
import dataclasses

import click

from tradetags.cli.common import create_progress_callback, db_option, owner_option, use_db_path
from tradetags.core.config import load_migration_config
from tradetags.core.models import MigrationState


def _default_tag_option(f):
    return click.option(
        '--default-tag', 'default_tags',
        multiple=True,
        help='Tag given to records left without tags (repeatable)'
    )(f)


@click.group()
def migrate():
    """Normalize stored tags."""
    pass


@migrate.command()
@_default_tag_option
@click.option('--details', is_flag=True, help='Show per-record changes')
@owner_option
@db_option
@click.pass_context
def analyze(ctx, default_tags, details, owner, db_path):
    """Preview what a migration would change (writes nothing)."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)
    report = manager.analyze_migration(default_tags)

    click.secho("\nMigration analysis", fg='green')
    click.echo(f"  Total records: {report.total_records}")
    click.echo(f"  Need migration: {report.records_needing_migration}")
    click.echo(f"  Already migrated: {report.records_already_migrated}")
    click.echo(f"  With invalid tags: {report.records_with_invalid_tags}")
    if report.unmigratable_records:
        click.secho(f"  Unmigratable: {report.unmigratable_records}", fg='yellow')
    click.echo(f"  Estimated time: {report.estimated_seconds:.1f}s")

    if details:
        for analysis in report.records:
            if not analysis.needs_migration:
                continue
            click.echo(f"\n  {analysis.record_id}:")
            for change in analysis.changes:
                click.echo(f"    {change.field}: {change.old_value!r} -> {change.new_value!r}")
            for issue in analysis.issues:
                click.secho(f"    ! {issue}", fg='yellow')

    click.echo("\nRecommendations:")
    for recommendation in report.recommendations:
        click.echo(f"  - {recommendation}")


@migrate.command()
@click.option('--config', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='JSON file with migration options')
@click.option('--batch-size', type=int, default=None, help='Records per batch (default: 100)')
@click.option('--no-backup', is_flag=True, help='Skip the pre-migration backup')
@click.option('--no-validate', is_flag=True, help='Skip post-migration validation')
@click.option('--skip-validation-errors', is_flag=True,
              help='Write records that fail validation instead of failing them')
@click.option('--dry-run', is_flag=True, help='Process records without writing')
@_default_tag_option
@owner_option
@db_option
@click.pass_context
def run(ctx, config_path, batch_size, no_backup, no_validate, skip_validation_errors,
        dry_run, default_tags, owner, db_path):
    """Run the tag migration."""
    use_db_path(ctx, db_path)

    config = load_migration_config(config_path)
    overrides = {}
    if batch_size is not None:
        overrides['batch_size'] = batch_size
    if no_backup:
        overrides['backup_before_migration'] = False
    if no_validate:
        overrides['validate_after_migration'] = False
    if skip_validation_errors:
        overrides['skip_validation_errors'] = True
    if dry_run:
        overrides['dry_run'] = True
    if overrides:
        config = dataclasses.replace(config, **overrides)

    manager = ctx.obj.get_manager(owner)
    mode_str = "dry run" if config.dry_run else "live"
    click.echo(f"Migrating tags for {owner} ({mode_str})...")

    result = manager.run_migration(
        config,
        default_tags,
        progress_callback=create_progress_callback('Migrating'),
    )

    click.echo("\nMigration finished!")
    click.echo(f"  State: {result.state.value}")
    click.secho(f"  Migrated: {result.migrated_count} records", fg='green')
    click.echo(f"  Converted: {result.converted_count} records")
    if result.failed_count:
        click.secho(f"  Failed: {result.failed_count} records", fg='yellow')
    for error in result.errors:
        click.secho(f"    {error.record_id or '-'}: {error.message}", fg='yellow')
    for warning in result.warnings:
        click.secho(f"  Warning: {warning}", fg='yellow')

    if result.state in (MigrationState.ABORTED, MigrationState.CANCELLED):
        raise click.Abort()


@migrate.command()
@owner_option
@db_option
@click.pass_context
def rollback(ctx, owner, db_path):
    """Restore records from the last migration backup."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    result = manager.pipeline().rollback(owner)
    click.secho(f"Restored {result.migrated_count} of {result.total_records} records", fg='green')
    for error in result.errors:
        click.secho(f"  {error.record_id or '-'}: {error.message}", fg='yellow')
    if not result.completed:
        raise click.Abort()


@migrate.command()
@owner_option
@db_option
@click.pass_context
def history(ctx, owner, db_path):
    """Show past migration runs."""
    use_db_path(ctx, db_path)
    manager = ctx.obj.get_manager(owner)

    runs = manager.pipeline().history(owner)
    if not runs:
        click.echo("No migrations recorded.")
        return
    for entry in runs:
        click.echo(
            f"  {entry['started_at']}  {entry['state']:<22} "
            f"{entry['migrated_count']}/{entry['total_records']} migrated, "
            f"{entry['failed_count']} failed"
        )
