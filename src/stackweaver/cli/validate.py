"""
CLI command for validating a descriptor file without provisioning.
"""

from __future__ import annotations

import json

from stackweaver.cli.ux import console, print_table, success
from stackweaver.core.errors import main_with_error_handling
from stackweaver.descriptors import load


@main_with_error_handling()
def validate_command(descriptor_file: str, *, output_format: str = "text") -> int:
    """
    Load and validate a descriptor file, printing the execution order.

    Returns:
        Exit code (0 valid, 2 invalid)
    """
    descriptors = load(descriptor_file)
    order = descriptors.topological_order()

    if output_format == "json":
        output = {
            "deployment": descriptors.deployment,
            "provider": descriptors.provider,
            "valid": True,
            "order": [
                {"id": d.id, "kind": d.kind.value, "depends_on": sorted(d.depends_on)} for d in order
            ],
        }
        print(json.dumps(output, indent=2))
        return 0

    rows = [
        [str(position), d.id, d.kind.value, ", ".join(sorted(d.depends_on)) or "-"]
        for position, d in enumerate(order, 1)
    ]
    console.print()
    print_table(f"{descriptors.deployment} execution order", ["#", "Resource", "Kind", "Depends on"], rows)
    success(f"{descriptor_file} is valid ({len(descriptors)} resources, provider: {descriptors.provider or 'default'})")
    return 0
