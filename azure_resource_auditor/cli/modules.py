#!/usr/bin/env python3
"""Command-line interface for running single audit stages"""

import asyncio
import sys
from typing import Optional

import typer
from rich.panel import Panel

from .. import __version__
from ..core.exceptions import AuditError
from ..core.orchestrator import AuditOrchestrator
from ..utils.config import create_sample_config
from .main import console, display_audit_summary, exit_on_error, load_cli_configuration

app = typer.Typer(
    name="azure-audit-module",
    help="🧩 Run individual Azure audit stages",
    add_completion=False
)

SUBSCRIPTION_HELP = "Subscription ID or name"
OUTPUT_HELP = "Report file path; side reports are written beside it"


def _run_stage(view: str, output: Optional[str], verbose: bool, config_file: Optional[str], **overrides) -> None:
    try:
        config = load_cli_configuration(config_file, verbose, **overrides)
        overrides_map = {view: output} if output else None
        orchestrator = AuditOrchestrator(config, output_overrides=overrides_map)
        summary = asyncio.run(orchestrator.run_module(view))
    except KeyboardInterrupt:
        console.print("\n❌ Cancelled by user.", style="red")
        sys.exit(130)
    except AuditError as e:
        exit_on_error(e, verbose)

    display_audit_summary(summary)
    sys.exit(summary.exit_code)


@app.command()
def inventory(
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help=SUBSCRIPTION_HELP),
    resource_groups: Optional[str] = typer.Option(
        None, "--resource-groups", "-g", help="Comma-separated resource groups"
    ),
    output: Optional[str] = typer.Option(None, "--output", "-o", help=OUTPUT_HELP),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """📦 Collect the resource inventory"""
    _run_stage("inventory", output, verbose, config_file,
               subscription=subscription, resource_groups=resource_groups)


@app.command()
def costs(
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help=SUBSCRIPTION_HELP),
    time_period: Optional[str] = typer.Option(
        None, "--time-period", help="MonthToDate, TheLastMonth or Custom"
    ),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="Custom period start (YYYY-MM-DD)"),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="Custom period end (YYYY-MM-DD)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help=OUTPUT_HELP),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """💰 Analyze costs for the subscription"""
    _run_stage("costs", output, verbose, config_file,
               subscription=subscription, time_period=time_period,
               cost_start_date=start_date, cost_end_date=end_date)


@app.command()
def orphans(
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help=SUBSCRIPTION_HELP),
    output: Optional[str] = typer.Option(None, "--output", "-o", help=OUTPUT_HELP),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """🧹 Detect orphaned and idle resources"""
    _run_stage("orphans", output, verbose, config_file, subscription=subscription)


@app.command()
def activity(
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help=SUBSCRIPTION_HELP),
    days_back: Optional[int] = typer.Option(None, "--days-back", help="Lookback window in days (1-90)"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help=OUTPUT_HELP),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """🕵️  Track resource creators and changes from the activity log"""
    _run_stage("activity", output, verbose, config_file, subscription=subscription, days_back=days_back)


@app.command()
def cleanup(
    subscription: Optional[str] = typer.Option(None, "--subscription", "-s", help=SUBSCRIPTION_HELP),
    input_dir: Optional[str] = typer.Option(None, "--input-dir", "-i", help="Directory holding earlier reports"),
    report_date: Optional[str] = typer.Option(
        None, "--report-date", help="Report date of the earlier run (YYYYmmdd_HHMMSS)"
    ),
    auto_tag: bool = typer.Option(False, "--auto-tag", help="Apply audit-candidate safety tags"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Never apply safety tags"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help=OUTPUT_HELP),
    config_file: Optional[str] = typer.Option(None, "--config", "-c", help="YAML configuration file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """🗑️  Generate cleanup recommendations from earlier reports"""
    if not report_date:
        console.print("❌ --report-date is required", style="red")
        sys.exit(3)
    try:
        config = load_cli_configuration(
            config_file, verbose,
            subscription=subscription, report_date=report_date,
            auto_tag=auto_tag or None, dry_run=dry_run or None,
        )
        orchestrator = AuditOrchestrator(config, output_overrides={"cleanup": output} if output else None)
        summary = asyncio.run(orchestrator.run_cleanup(input_dir or config.output_dir))
    except KeyboardInterrupt:
        console.print("\n❌ Cancelled by user.", style="red")
        sys.exit(130)
    except AuditError as e:
        exit_on_error(e, verbose)

    display_audit_summary(summary)
    sys.exit(summary.exit_code)


@app.command("sample-config")
def sample_config(
    path: str = typer.Argument("azure_resource_auditor_sample.yml", help="Where to write the sample")
):
    """📝 Write an annotated sample configuration file"""
    try:
        output = create_sample_config(path)
    except OSError as e:
        console.print(f"❌ Failed to write sample configuration: {e}", style="red")
        sys.exit(1)
    console.print(f"📁 Sample configuration written to: {output}", style="green")


@app.command()
def version():
    """📝 Show version information"""

    version_info = {
        "Azure Resource Auditor": __version__,
        "Python": sys.version.split()[0],
        "Platform": sys.platform
    }

    panel_content = "\n".join([f"{k}: {v}" for k, v in version_info.items()])
    console.print(Panel(panel_content, title="Version Information", expand=False))


def main():
    """Main entry point"""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n❌ Interrupted by user.", style="red")
        sys.exit(130)
    except Exception as e:
        console.print(f"\n❌ Unexpected error: {e}", style="red")
        sys.exit(1)


if __name__ == "__main__":
    main()
