"""
CLI command for showing the recorded state of a deployment.
"""

from __future__ import annotations

from stackweaver.cli.report import print_report, print_report_json
from stackweaver.cli.runtime import make_recorder
from stackweaver.cli.ux import info
from stackweaver.config import get_settings
from stackweaver.core.errors import main_with_error_handling
from stackweaver.descriptors import load
from stackweaver.orchestration import ResourceStatus, RunReport, collect_result


@main_with_error_handling()
def status_command(
    descriptor_file: str,
    *,
    state_dir: str | None = None,
    output_format: str = "text",
    verbose: bool = False,
) -> int:
    """
    Print every resource's recorded status without calling the provider.

    Returns:
        Exit code (0 when every resource is created, 1 otherwise)
    """
    settings = get_settings()
    descriptors = load(descriptor_file)
    recorder = make_recorder(descriptors, settings, state_dir)
    state = recorder.load()

    for descriptor in descriptors:
        state.ensure(descriptor.id, descriptor.kind.value)

    report = RunReport(
        deployment=descriptors.deployment,
        operation="status",
        resources=state.ordered(descriptors.ids),
        result=collect_result(descriptors, state),
        target_status=ResourceStatus.CREATED,
    )

    if output_format == "json":
        print_report_json(report)
    else:
        if not recorder.exists():
            info(f"No state recorded yet at {recorder.path}")
        print_report(report, verbose=verbose)
    return report.exit_code
