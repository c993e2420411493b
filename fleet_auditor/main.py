"""
    Main entry point for the fleet auditing tool.
"""
import json
import sys

import click

from fleet_auditor.collectors.registry import default_registry
from fleet_auditor.config import AuditOptions, load_config
from fleet_auditor.core.errors import AuditError
from fleet_auditor.core.models import Target
from fleet_auditor.core.report import to_serializable, write_json_report
from fleet_auditor.helpers.log import configure_logging
from fleet_auditor.orchestrator import AuditOrchestrator
from fleet_auditor.reports.formatter import format_report
from fleet_auditor.shared.system import get_runtime_info


def _options(config_path) -> AuditOptions:
    return load_config(config_path) if config_path else AuditOptions()


def _emit(obj, output):
    if output:
        path = write_json_report(obj, output)
        click.echo(f"report written to {path}", err=True)
    else:
        click.echo(json.dumps(to_serializable(obj), indent=2, default=str))


@click.group()
@click.option("--config", "config_path", type=click.Path(exists=True, dir_okay=False), default=None,
              help="YAML file with audit options.")
@click.option("--log-level", default="WARNING", show_default=True)
@click.option("--structured-logs", is_flag=True, help="Emit JSON log lines.")
@click.pass_context
def cli(ctx, config_path, log_level, structured_logs):
    """Audit fleets of servers."""
    configure_logging(log_level, structured_logs)
    try:
        ctx.obj = _options(config_path)
    except AuditError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@click.option("--collector", "collectors", multiple=True, help="Only run these collectors.")
@click.option("--dry-run", is_flag=True, help="Check and profile, but only print the plan.")
@click.option("--force-unhealthy", is_flag=True, help="Audit targets that fail pre-flight checks.")
@click.option("--output", type=click.Path(dir_okay=False), default=None, help="Write the JSON report here.")
@click.option("--text", "as_text", is_flag=True, help="Print a human-readable summary instead of JSON.")
@click.pass_obj
def audit(options, targets, collectors, dry_run, force_unhealthy, output, as_text):
    """Audit TARGETS (hostnames or addresses; 'localhost' for this machine)."""
    overrides = {}
    if dry_run:
        overrides["dry_run"] = True
    if force_unhealthy:
        overrides["override_unhealthy"] = True
    options = options.model_copy(update=overrides)

    try:
        report = AuditOrchestrator(options=options).audit_fleet(
            [Target(t) for t in targets], collector_filter=list(collectors) or None)
    except AuditError as e:
        raise click.ClickException(str(e))

    if as_text:
        click.echo(format_report(report))
        if output:
            write_json_report(report, output)
    else:
        _emit(report, output)
    if report.summary.successful_collectors == 0 and not report.dry_run:
        sys.exit(2)


@cli.command()
@click.argument("target")
@click.option("--no-cache", is_flag=True, help="Re-measure even if a fresh profile is cached.")
@click.pass_obj
def profile(options, target, no_cache):
    """Measure TARGET and print its capability profile."""
    try:
        result = AuditOrchestrator(options=options).profile(Target(target), use_cache=not no_cache)
    except AuditError as e:
        raise click.ClickException(str(e))
    _emit(result, None)


@cli.command()
@click.argument("targets", nargs=-1, required=True)
@click.pass_obj
def check(options, targets):
    """Run pre-flight health checks against TARGETS."""
    report = AuditOrchestrator(options=options).check_fleet([Target(t) for t in targets])
    _emit(report, None)
    if report.unhealthy:
        sys.exit(1)


@cli.command()
@click.option("--os", "os_family", default=None, help="OS family to list for (default: this machine).")
def collectors(os_family):
    """List the collectors that can run on an OS family."""
    runtime = get_runtime_info()
    for c in default_registry().list_compatible(runtime.runtime_version, os_family or runtime.os_family):
        click.echo(f"{c.name}\t{c.description}")


def main():
    cli()


if __name__ == "__main__":
    main()
