"""
CLI command for deprovisioning a deployment in reverse dependency order.
"""

from __future__ import annotations

from stackweaver.cli.report import print_report, print_report_json
from stackweaver.cli.runtime import make_executor
from stackweaver.cli.ux import confirm, header, is_interactive, warning
from stackweaver.config import get_settings
from stackweaver.core.errors import ConfigError, ExitCode, main_with_error_handling
from stackweaver.descriptors import load


@main_with_error_handling()
def teardown_command(
    descriptor_file: str,
    *,
    provider: str | None = None,
    state_dir: str | None = None,
    output_format: str = "text",
    verbose: bool = False,
    yes: bool = False,
) -> int:
    """
    Delete every created resource, dependents first.

    Without ``yes`` the user is asked to confirm; in a non-interactive
    session ``--yes`` is required.

    Returns:
        Exit code (0 all deleted, 1 any delete failed or declined, 2 config error)
    """
    settings = get_settings()
    descriptors = load(descriptor_file)
    text = output_format == "text"

    if not yes:
        if not is_interactive():
            raise ConfigError("Teardown needs confirmation; pass --yes in non-interactive sessions")
        if not confirm(f"Delete all resources of '{descriptors.deployment}'?"):
            warning("Teardown declined, nothing was deleted")
            return ExitCode.FAILURE

    executor = make_executor(
        descriptors,
        settings,
        provider=provider,
        state_dir=state_dir,
        workers=1,
        show_progress=text,
        verbose=verbose,
    )

    if text:
        header(f"Tearing down {descriptors.deployment}")
    report = executor.teardown()

    if text:
        print_report(report, verbose=verbose)
    else:
        print_report_json(report)
    return report.exit_code
