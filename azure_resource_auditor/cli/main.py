#!/usr/bin/env python3
"""Command-line interface for the full Azure resource audit"""

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..core.configuration import AuditConfiguration
from ..core.exceptions import AuditError
from ..core.models import AuditSummary, ModuleState
from ..core.orchestrator import AuditOrchestrator
from ..utils.config import ConfigurationLoader
from ..utils.logger import configure_logging
from ..utils.validation import validate_subscription

app = typer.Typer(
    name="azure-audit",
    help="🔍 Azure resource audit: inventory, costs, orphans, activity and cleanup recommendations",
    add_completion=False
)

console = Console()

STATE_STYLES = {
    ModuleState.SUCCEEDED: "green",
    ModuleState.DEGRADED: "yellow",
    ModuleState.FAILED: "red",
    ModuleState.SKIPPED: "blue",
}


def load_cli_configuration(config_file: Optional[str], verbose: bool, **overrides) -> AuditConfiguration:
    """Build the configuration and set up logging; the subscription must be known afterwards"""
    config = ConfigurationLoader().load_configuration(config_file, verbose=verbose or None, **overrides)
    configure_logging("DEBUG" if config.verbose else "INFO", config.log_file)
    validate_subscription(config.subscription)
    return config


def exit_on_error(error: AuditError, verbose: bool = False) -> None:
    console.print(f"\n❌ {error}", style="red")
    if verbose:
        console.print_exception()
    sys.exit(error.exit_code)


@app.command()
def audit(
    subscription: Optional[str] = typer.Option(
        None, "--subscription", "-s",
        help="Subscription ID or name to audit"
    ),
    resource_groups: Optional[str] = typer.Option(
        None, "--resource-groups", "-g",
        help="Comma-separated resource groups to audit (default: all)"
    ),
    config_file: Optional[str] = typer.Option(
        None, "--config", "-c",
        help="YAML configuration file"
    ),
    output_dir: Optional[str] = typer.Option(
        None, "--output-dir", "-o",
        help="Directory for report files"
    ),
    output_format: Optional[str] = typer.Option(
        None, "--format", "-f",
        help="Report format: csv or json"
    ),
    no_cost_analysis: bool = typer.Option(
        False, "--no-cost-analysis",
        help="Skip the cost analysis module"
    ),
    no_orphan_detection: bool = typer.Option(
        False, "--no-orphan-detection",
        help="Skip the orphan detection module"
    ),
    no_activity_tracking: bool = typer.Option(
        False, "--no-activity-tracking",
        help="Skip the activity tracking module"
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run",
        help="Analyze only; never apply safety tags"
    ),
    parallel_jobs: Optional[int] = typer.Option(
        None, "--parallel-jobs",
        help="Maximum number of analysis modules running at once"
    ),
    auto_tag: bool = typer.Option(
        False, "--auto-tag",
        help="Apply audit-candidate safety tags to low and medium risk resources"
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v",
        help="Enable verbose logging"
    )
):
    """🔍 Run the complete audit pipeline for one subscription"""

    try:
        config = load_cli_configuration(
            config_file,
            verbose,
            subscription=subscription,
            resource_groups=resource_groups,
            output_dir=output_dir,
            output_format=output_format,
            enable_cost_analysis=False if no_cost_analysis else None,
            enable_orphan_detection=False if no_orphan_detection else None,
            enable_activity_tracking=False if no_activity_tracking else None,
            dry_run=dry_run or None,
            parallel_jobs=parallel_jobs,
            auto_tag=auto_tag or None,
        )

        console.print(f"\n🚀 Starting Azure resource audit for {config.subscription}...\n")
        if config.dry_run:
            console.print("🧪 Dry run: no safety tags will be applied", style="yellow")

        summary = asyncio.run(AuditOrchestrator(config).run())

    except KeyboardInterrupt:
        console.print("\n❌ Audit cancelled by user.", style="red")
        sys.exit(130)
    except AuditError as e:
        exit_on_error(e, verbose)

    display_audit_summary(summary)

    if summary.exit_code:
        console.print("\n⚠️  Audit completed with failed stages. Check logs for details.", style="yellow")
    else:
        console.print(f"\n✅ Audit completed successfully! Reports in {config.output_dir}", style="green")
    sys.exit(summary.exit_code)


def display_audit_summary(summary: AuditSummary) -> None:
    """Display run summary, stage states and report files"""

    summary_content = f"""
🔍 Run ID: {summary.run_id}
📋 Subscription: {summary.subscription_name or summary.subscription_id}
📁 Resource Groups: {', '.join(summary.resource_groups) or 'All'}
⏱️  Duration: {summary.duration_seconds:.2f} seconds
🧪 Dry Run: {'Yes' if summary.dry_run else 'No'}
"""
    if summary.summary_file:
        summary_content += f"📝 Summary: {summary.summary_file}"

    console.print(Panel(summary_content, title="📋 Audit Summary", expand=False))

    table = Table(title="Pipeline Stages")
    table.add_column("Stage", style="cyan")
    table.add_column("State")
    table.add_column("Files", justify="right")
    table.add_column("Duration", justify="right")
    table.add_column("Notes", style="dim")

    for stage in summary.stages:
        style = STATE_STYLES.get(stage.state, "white")
        notes = stage.error or "; ".join(stage.warnings)
        table.add_row(
            stage.name,
            f"[{style}]{stage.state.value.upper()}[/{style}]",
            str(len(stage.files)),
            f"{stage.duration_seconds:.1f}s",
            notes,
        )

    console.print(table)

    if summary.files:
        files_table = Table(title="📁 Report Files")
        files_table.add_column("File", style="cyan")
        files_table.add_column("Records", justify="right", style="green")
        for report in summary.files:
            files_table.add_row(Path(report.path).name, str(report.record_count))
        console.print(files_table)


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
