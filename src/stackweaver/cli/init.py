"""CLI command for writing the example three-tier descriptor file."""

from __future__ import annotations

import re
from pathlib import Path

from stackweaver.cli.ux import console, success
from stackweaver.core.errors import ConfigError, main_with_error_handling

EXAMPLE_DESCRIPTOR = Path(__file__).parent.parent / "examples" / "three_tier.yaml"


@main_with_error_handling()
def init_command(
    path: str = "three_tier.yaml",
    *,
    project: str | None = None,
    region: str | None = None,
    force: bool = False,
) -> int:
    """Write the bundled three-tier descriptor to ``path``.

    ``project`` and ``region`` replace the example's variables.
    """
    target = Path(path)
    if target.exists() and not force:
        raise ConfigError("File already exists (use --force to overwrite)", details={"path": str(target)})

    content = EXAMPLE_DESCRIPTOR.read_text()
    if project:
        content = _set_variable(content, "project", project)
    if region:
        content = _set_variable(content, "region", region)

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)

    success(f"Created {target}")
    console.print("\n[bold]Next steps:[/bold]")
    console.print(f"  1. Review {target} and adjust names and sizes")
    console.print(f"  2. Validate: stackweaver validate {target}")
    console.print(f"  3. Dry run:  stackweaver provision {target} --provider memory --state-dir .stackweaver/dry-run")
    console.print(f"  4. Provision: stackweaver provision {target}")
    return 0


def _set_variable(content: str, name: str, value: str) -> str:
    """Replace ``name: ...`` inside the top-level ``variables`` block."""
    head, marker, rest = content.partition("\nvariables:\n")
    if not marker:
        raise ConfigError("Example descriptor has no variables block")
    pattern = re.compile(rf"^(  {re.escape(name)}: ).*$", re.MULTILINE)
    block, sep, tail = rest.partition("\n\n")
    block = pattern.sub(lambda m: m.group(1) + value, block, count=1)
    return head + marker + block + sep + tail
