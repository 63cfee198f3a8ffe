"""
stackweaver command line entry point.

Usage:
    stackweaver <command> [args]

Commands provision, inspect and tear down a deployment described by a
resource descriptor file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Sequence

from stackweaver import __version__
from stackweaver.config import get_settings
from stackweaver.logging import configure_logging


def _add_common(parser: argparse.ArgumentParser, *, provider: bool = True) -> None:
    parser.add_argument("descriptor_file", help="Path to resource descriptor YAML file")
    parser.add_argument("--state-dir", help="Directory holding <deployment>.state.json")
    if provider:
        parser.add_argument("--provider", help="Provider adapter (overrides the descriptor file)")
    parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show detailed progress and debug logs")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="stackweaver",
        description="Idempotent, dependency-ordered infrastructure provisioning",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    provision_parser = subparsers.add_parser("provision", help="Create (or resume creating) all resources")
    _add_common(provision_parser)
    provision_parser.add_argument("--workers", type=int, help="Run independent resources on N worker threads")

    status_parser = subparsers.add_parser("status", help="Show recorded resource status")
    _add_common(status_parser, provider=False)

    teardown_parser = subparsers.add_parser("teardown", help="Delete all resources in reverse dependency order")
    _add_common(teardown_parser)
    teardown_parser.add_argument("-y", "--yes", action="store_true", help="Do not ask for confirmation")

    validate_parser = subparsers.add_parser("validate", help="Validate a descriptor file")
    validate_parser.add_argument("descriptor_file", help="Path to resource descriptor YAML file")
    validate_parser.add_argument("--output", choices=["text", "json"], default="text", help="Output format")

    init_parser = subparsers.add_parser("init", help="Write the example three-tier descriptor file")
    init_parser.add_argument("path", nargs="?", default="three_tier.yaml", help="Destination file")
    init_parser.add_argument("--project", help="Google Cloud project id")
    init_parser.add_argument("--region", help="Google Cloud region")
    init_parser.add_argument("--force", action="store_true", help="Overwrite an existing file")

    scaffold_parser = subparsers.add_parser("scaffold", help="Render the demo application sources")
    scaffold_parser.add_argument("target_dir", nargs="?", default=".", help="Destination directory")
    scaffold_parser.add_argument("--app", dest="apps", action="append", help="Only render this app (repeatable)")
    scaffold_parser.add_argument("--project", help="Google Cloud project id")
    scaffold_parser.add_argument("--force", action="store_true", help="Overwrite existing files")
    scaffold_parser.add_argument("-v", "--verbose", action="store_true", help="List rendered files")

    subparsers.add_parser("providers", help="List registered provider adapters")

    return parser


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    level = logging.DEBUG if getattr(args, "verbose", False) else settings.log_level
    configure_logging(level, json_output=settings.log_json)

    if args.command == "provision":
        from stackweaver.cli.provision import provision_command

        sys.exit(provision_command(
            args.descriptor_file,
            provider=args.provider,
            state_dir=args.state_dir,
            workers=args.workers,
            output_format=args.output,
            verbose=args.verbose,
        ))

    if args.command == "status":
        from stackweaver.cli.status import status_command

        sys.exit(status_command(
            args.descriptor_file,
            state_dir=args.state_dir,
            output_format=args.output,
            verbose=args.verbose,
        ))

    if args.command == "teardown":
        from stackweaver.cli.teardown import teardown_command

        sys.exit(teardown_command(
            args.descriptor_file,
            provider=args.provider,
            state_dir=args.state_dir,
            output_format=args.output,
            verbose=args.verbose,
            yes=args.yes,
        ))

    if args.command == "validate":
        from stackweaver.cli.validate import validate_command

        sys.exit(validate_command(args.descriptor_file, output_format=args.output))

    if args.command == "init":
        from stackweaver.cli.init import init_command

        sys.exit(init_command(args.path, project=args.project, region=args.region, force=args.force))

    if args.command == "scaffold":
        from stackweaver.cli.scaffold import scaffold_command

        sys.exit(scaffold_command(
            args.target_dir,
            apps=args.apps,
            project=args.project,
            force=args.force,
            verbose=args.verbose,
        ))

    if args.command == "providers":
        from stackweaver.cli.providers import providers_command

        sys.exit(providers_command())

    parser.error(f"Unknown command: {args.command}")


if __name__ == "__main__":  # pragma: no cover
    main()
