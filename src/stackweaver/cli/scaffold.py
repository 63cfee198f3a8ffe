"""CLI command for rendering the demo application sources."""

from __future__ import annotations

from pathlib import Path

from stackweaver.cli.ux import console, success
from stackweaver.core.errors import main_with_error_handling
from stackweaver.scaffold import APPS, ScaffoldOptions, render


@main_with_error_handling()
def scaffold_command(
    target_dir: str = ".",
    *,
    apps: list[str] | None = None,
    project: str | None = None,
    force: bool = False,
    verbose: bool = False,
) -> int:
    """Render backend, frontend and backup-function sources into ``target_dir``."""
    options = ScaffoldOptions()
    if project:
        options.project = project

    target = Path(target_dir)
    written = render(target, options, apps=tuple(apps or APPS), overwrite=force)

    if verbose:
        for path in written:
            console.print(f"  [dim]•[/dim] {path}")
    success(f"Rendered {len(written)} files into {target}/")
    return 0
