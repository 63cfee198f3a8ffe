"""
Rendering of run reports: rich tables for people, JSON for machines.

Every resource's final status is printed, including failed, blocked and
unknown ones. Secret entries only ever carry provider references.
"""

from __future__ import annotations

import json
from typing import Any

from stackweaver.cli.ux import console, print_key_value, print_table, styled_status
from stackweaver.orchestration.results import DeploymentResult, RunReport

# DeploymentResult field -> section label
_SECTIONS = {
    "networks": "Networks",
    "database_endpoints": "Database endpoints",
    "cache_endpoints": "Cache endpoints",
    "service_urls": "Service URLs",
    "secret_references": "Secret references",
    "functions": "Functions",
    "scheduler_jobs": "Scheduler jobs",
    "buckets": "Storage buckets",
}


def report_to_dict(report: RunReport) -> dict[str, Any]:
    return {
        "deployment": report.deployment,
        "operation": report.operation,
        "success": report.success,
        "exit_code": int(report.exit_code),
        "cancelled": report.cancelled,
        "aborted_reason": report.aborted_reason,
        "duration_seconds": round(report.duration_seconds, 3),
        "statuses": report.status_counts(),
        "resources": [record.to_dict() for record in report.resources],
        "result": report.result.to_dict(),
        "errors": list(report.errors),
    }


def print_report_json(report: RunReport) -> None:
    """Print a run report in JSON format."""
    print(json.dumps(report_to_dict(report), indent=2))


def print_report(report: RunReport, verbose: bool = False) -> None:
    """Print a run report with rich formatting."""
    console.print()

    rows = []
    for record in report.resources:
        detail = record.last_error or record.provider_handle or ""
        if not verbose and len(detail) > 80:
            detail = detail[:77] + "..."
        row = [record.resource_id, record.kind, styled_status(record.status.value), detail]
        if verbose:
            row.append(str(record.attempts))
        rows.append(row)

    columns = ["Resource", "Kind", "Status", "Handle / Error"]
    if verbose:
        columns.append("Attempts")
    print_table(f"{report.deployment} ({report.operation})", columns, rows)

    print_result(report.result)

    console.print()
    counts = ", ".join(f"{count} {status}" for status, count in sorted(report.status_counts().items()))
    duration = f" in {report.duration_seconds:.1f}s" if report.duration_seconds > 0 else ""
    if report.success:
        console.print(f"[bold green]{report.operation.capitalize()} complete{duration}[/bold green] ({counts})")
    elif report.cancelled:
        console.print(f"[bold yellow]{report.operation.capitalize()} cancelled{duration}[/bold yellow] ({counts})")
        console.print("  [dim]Re-run the same command to resume.[/dim]")
    else:
        console.print(f"[bold red]{report.operation.capitalize()} incomplete{duration}[/bold red] ({counts})")

    if report.aborted_reason:
        console.print(f"  [red]Aborted:[/red] {report.aborted_reason}")

    if report.result.failures or report.errors:
        console.print()
        console.print("[yellow]Problems:[/yellow]")
        for failure in report.result.failures:
            console.print(f"  [dim]•[/dim] {failure.resource_id} ({failure.kind}): {failure.cause}")
        for err in report.errors:
            console.print(f"  [dim]•[/dim] {err}")

    console.print()


def print_result(result: DeploymentResult) -> None:
    for field_name, label in _SECTIONS.items():
        values = getattr(result, field_name)
        if values:
            print_key_value(dict(values), title=label)
