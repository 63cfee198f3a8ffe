"""CLI command for listing registered provider adapters."""

from __future__ import annotations

from stackweaver.cli.ux import print_table
from stackweaver.providers import list_providers


def providers_command() -> int:
    rows = [
        [spec.name, spec.version or "-", spec.description or ""]
        for spec in sorted(list_providers(), key=lambda s: s.name)
    ]
    print_table("Providers", ["Name", "Version", "Description"], rows)
    return 0
