"""
CLI for deploying schema changes and config data to target databases.
Thin wrapper over DeploymentService.
"""
import asyncio
import json
import logging
import re
from pathlib import Path
from typing import List, Optional

import click

from ..config.config_loader import ConfigLoader
from ..core.models import DeploymentSettings, DeploymentSummary
from ..datastore.connection_validator import ConnectionValidator
from ..deployment.service import DeploymentService
from ..schema.catalog_comparer import CatalogSchemaComparer
from ..sync.data_sync_service import DataSyncService


logger = logging.getLogger(__name__)

LOG_LINES_PER_TARGET = 5


def build_connection_validator(settings: DeploymentSettings) -> ConnectionValidator:
    return ConnectionValidator(connect_timeout=settings.options.connect_timeout)


def build_deployment_service(settings: DeploymentSettings) -> DeploymentService:
    """Wire the deployment service from settings"""
    validator = build_connection_validator(settings)
    return DeploymentService(
        connection_validator=validator,
        schema_comparer=CatalogSchemaComparer(validator, included_schemas=settings.included_schemas),
        data_sync_service=DataSyncService(validator)
    )


def _parse_targets(targets: Optional[str]) -> List[str]:
    if not targets:
        return []
    return [name.strip() for name in targets.split(',') if name.strip()]


def _load_settings(ctx: click.Context) -> DeploymentSettings:
    try:
        return ConfigLoader.load_from_yaml(ctx.obj['config_path'], ctx.obj['environment'])
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load configuration: {e}")
        raise click.ClickException(f"Failed to load configuration: {e}")


def display_configuration_summary(
    settings: DeploymentSettings,
    target_filter: List[str],
    schema_only: bool,
    data_only: bool
):
    options = settings.options

    click.echo("Configuration:")
    click.echo(f"  Source Database: {settings.source.name}")
    click.echo(f"  Target Databases: {len(settings.targets)}")

    if target_filter:
        click.echo(f"    Filtered to: {', '.join(target_filter)}")
    else:
        for target in settings.targets:
            click.echo(f"    - {target.name}")

    click.echo(f"  Config Tables: {len(settings.config_tables)}")
    for table in settings.config_tables:
        click.echo(f"    - {table}")

    click.echo("\nOptions:")
    click.echo(f"  Preview Mode: {options.preview_mode}")
    click.echo(f"  Schema Only: {schema_only}")
    click.echo(f"  Data Only: {data_only}")
    click.echo(f"  Max Parallel: {options.max_parallel_deployments}")
    click.echo(f"  Block Destructive: {options.block_destructive_changes}")
    click.echo(f"  Continue On Error: {options.continue_on_error}")
    click.echo(f"  Use Transaction: {options.use_transaction}")


def display_deployment_summary(summary: DeploymentSummary):
    click.echo(f"\n{'='*60}")
    click.echo("DEPLOYMENT SUMMARY")
    click.echo(f"{'='*60}")

    click.echo(f"\nTotal Duration: {summary.total_duration}")
    click.echo(f"Targets: {len(summary.results)}")
    click.echo(f"  Succeeded: {summary.success_count}")
    click.echo(f"  Failed: {summary.failure_count}")

    click.echo("\nDetailed Results:")
    click.echo('-' * 60)

    for result in summary.results:
        status = click.style("SUCCESS", fg='green') if result.success else click.style("FAILED", fg='red')
        click.echo(f"\n{result.target_name}: {status}")
        click.echo(f"  Duration: {result.duration}")

        if result.success:
            click.echo(f"  Schema Changes: {result.schema_changes_applied}")
            click.echo(f"  Config Tables Synced: {result.config_tables_synced}")
        else:
            click.echo(f"  Error: {result.error_message}")

        if result.log_messages:
            click.echo("  Log Messages:")
            for message in result.log_messages[:LOG_LINES_PER_TARGET]:
                click.echo(f"    {message}")
            remaining = len(result.log_messages) - LOG_LINES_PER_TARGET
            if remaining > 0:
                click.echo(f"    ... and {remaining} more")

    click.echo(f"\n{'='*60}")
    if summary.overall_success:
        click.secho("DEPLOYMENT COMPLETED SUCCESSFULLY", fg='green')
    else:
        click.secho("DEPLOYMENT COMPLETED WITH ERRORS", fg='red')
    click.echo(f"{'='*60}")


def write_scripts(summary: DeploymentSummary, script_dir: Path) -> List[Path]:
    """Write preview scripts as <target>.sql files"""
    script_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for result in summary.results:
        if not result.deployment_script:
            continue
        file_name = re.sub(r'[^A-Za-z0-9_.-]', '_', result.target_name) + '.sql'
        path = script_dir / file_name
        path.write_text(result.deployment_script)
        written.append(path)
    return written


@click.group()
@click.option('--config', 'config_path', default='deploy.yaml', show_default=True,
              help='Path to deployment settings YAML')
@click.option('--environment', default=None,
              help='Environment overlay to apply (default: $DEPLOYTOOL_ENVIRONMENT or production)')
@click.option('--log-level', default='INFO', help='Log level')
@click.pass_context
def cli(ctx: click.Context, config_path: str, environment: Optional[str], log_level: str):
    """Deploy schema changes and config table data from a source database to targets"""

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config_path
    ctx.obj['environment'] = environment


@cli.command()
@click.option('--preview', '-p', is_flag=True, help='Show changes without applying them')
@click.option('--schema-only', is_flag=True, help='Only deploy schema changes')
@click.option('--data-only', is_flag=True, help='Only sync config table data')
@click.option('--targets', '-t', default=None, help='Comma-separated target names to deploy to')
@click.option('--yes', '-y', is_flag=True, help='Skip the confirmation prompt')
@click.option('--script-dir', type=click.Path(file_okay=False), default=None,
              help='Directory to write preview deployment scripts to')
@click.option('--report', type=click.Path(dir_okay=False), default=None,
              help='Write the deployment summary as JSON to this file')
@click.pass_context
def run(ctx: click.Context, preview: bool, schema_only: bool, data_only: bool, targets: Optional[str],
        yes: bool, script_dir: Optional[str], report: Optional[str]):
    """Deploy to all (or the selected) target databases"""
    if schema_only and data_only:
        raise click.UsageError("--schema-only and --data-only cannot be used together")

    settings = _load_settings(ctx)
    if preview:
        settings.options.preview_mode = True

    target_filter = _parse_targets(targets)
    display_configuration_summary(settings, target_filter, schema_only, data_only)

    if not yes and not settings.options.preview_mode:
        if not click.confirm("\nProceed with deployment?", default=False):
            click.echo("Deployment cancelled by user.")
            return

    click.echo()
    deployment_service = build_deployment_service(settings)

    try:
        summary = asyncio.run(deployment_service.deploy_to_targets(
            settings,
            schema_only=schema_only,
            data_only=data_only,
            target_filter=target_filter
        ))
    except Exception as e:
        logger.error(f"Deployment failed: {e}", exc_info=True)
        raise click.ClickException(str(e))

    display_deployment_summary(summary)

    if script_dir:
        for path in write_scripts(summary, Path(script_dir)):
            click.echo(f"Wrote deployment script: {path}")

    if report:
        Path(report).write_text(json.dumps(summary.to_dict(), indent=2))
        click.echo(f"Wrote deployment report: {report}")

    ctx.exit(0 if summary.overall_success else 1)


@cli.command()
@click.option('--targets', '-t', default=None, help='Comma-separated target names to validate')
@click.pass_context
def validate(ctx: click.Context, targets: Optional[str]):
    """Check connectivity to the source and target databases"""
    settings = _load_settings(ctx)
    target_filter = set(_parse_targets(targets))

    endpoints = [settings.source] + [
        t for t in settings.targets if not target_filter or t.name in target_filter
    ]
    validator = build_connection_validator(settings)

    try:
        results = asyncio.run(validator.validate_connections(endpoints))
    except Exception as e:
        logger.error(f"Validation failed: {e}", exc_info=True)
        raise click.ClickException(str(e))

    width = max(len(e.name) for e in endpoints)
    click.echo(f"\n{'='*60}")
    click.echo("CONNECTION VALIDATION")
    click.echo(f"{'='*60}")
    for endpoint in endpoints:
        role = 'source' if endpoint is settings.source else 'target'
        status = click.style("OK", fg='green') if results.get(endpoint.name) else click.style("UNREACHABLE", fg='red')
        click.echo(f"  {endpoint.name:<{width}}  {role:<6}  {status}")
    click.echo(f"{'='*60}")

    ctx.exit(0 if all(results.values()) else 1)


@cli.command()
@click.argument('name')
@click.pass_context
def info(ctx: click.Context, name: str):
    """Show server and object-count metadata for the source or a target"""
    settings = _load_settings(ctx)

    endpoint = settings.source if settings.source.name == name else settings.get_target(name)
    if endpoint is None:
        raise click.ClickException(f"Unknown database '{name}'")

    validator = build_connection_validator(settings)
    metadata = asyncio.run(validator.get_database_metadata(endpoint))
    if metadata is None:
        raise click.ClickException(f"Could not read metadata for '{name}'")

    click.echo(f"Database: {metadata.config_name}")
    click.echo(f"  Connection: {endpoint.safe_connection_string}")
    click.echo(f"  Server: {metadata.server_name}")
    click.echo(f"  Database Name: {metadata.database_name}")
    click.echo(f"  Version: {metadata.version}")
    click.echo(f"  Tables: {metadata.table_count}")
    click.echo(f"  Views: {metadata.view_count}")
    click.echo(f"  Routines: {metadata.routine_count}")


if __name__ == '__main__':
    cli()
