"""
CLI command for provisioning (or resuming) a deployment.
"""

from __future__ import annotations

from stackweaver.cli.report import print_report, print_report_json
from stackweaver.cli.runtime import make_executor
from stackweaver.cli.ux import header
from stackweaver.config import get_settings
from stackweaver.core.errors import main_with_error_handling
from stackweaver.descriptors import load


@main_with_error_handling()
def provision_command(
    descriptor_file: str,
    *,
    provider: str | None = None,
    state_dir: str | None = None,
    workers: int | None = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Create every resource in the descriptor file that is not yet created.

    Re-running after a failure or interruption resumes: created resources
    are skipped, unknown ones are reconciled through idempotent create.

    Returns:
        Exit code (0 all created, 1 any failed/blocked, 2 config error, 130 cancelled)
    """
    settings = get_settings()
    descriptors = load(descriptor_file)
    text = output_format == "text"

    executor = make_executor(
        descriptors,
        settings,
        provider=provider,
        state_dir=state_dir,
        workers=workers,
        show_progress=text,
        verbose=verbose,
    )

    if text:
        header(f"Provisioning {descriptors.deployment} ({len(descriptors)} resources)")
    report = executor.provision()

    if text:
        print_report(report, verbose=verbose)
    else:
        print_report_json(report)
    return report.exit_code
