"""Wiring shared by the commands: settings -> adapter -> executor."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from stackweaver.cli.ux import console, styled_status
from stackweaver.config import Settings
from stackweaver.descriptors import DescriptorSet, ResourceDescriptor
from stackweaver.orchestration import Executor, ResourceStatus, StateRecorder
from stackweaver.providers import ProviderAdapter, create_provider

logger = structlog.get_logger()


def provider_options(descriptors: DescriptorSet, settings: Settings) -> dict[str, Any]:
    """Adapter keyword arguments; descriptor ``provider_options`` win over settings."""
    options: dict[str, Any] = {
        "project": settings.gcloud_project,
        "region": settings.gcloud_region,
        "binary": settings.gcloud_binary,
        "timeout": settings.call_timeout_seconds,
    }
    options.update(descriptors.provider_options)
    return {key: value for key, value in options.items() if value is not None}


def make_adapter(descriptors: DescriptorSet, settings: Settings, provider: str | None = None) -> ProviderAdapter:
    name = provider or descriptors.provider or settings.default_provider
    logger.debug("provider_selected", provider=name, deployment=descriptors.deployment)
    return create_provider(name, **provider_options(descriptors, settings))


def make_recorder(descriptors: DescriptorSet, settings: Settings, state_dir: str | None = None) -> StateRecorder:
    return StateRecorder(descriptors.deployment, Path(state_dir) if state_dir else settings.state_dir)


def make_executor(
    descriptors: DescriptorSet,
    settings: Settings,
    *,
    provider: str | None = None,
    state_dir: str | None = None,
    workers: int | None = None,
    show_progress: bool = False,
    verbose: bool = False,
) -> Executor:
    adapter = make_adapter(descriptors, settings, provider)
    return Executor(
        descriptors,
        adapter,
        make_recorder(descriptors, settings, state_dir),
        max_attempts=settings.max_attempts,
        backoff_multiplier=settings.backoff_multiplier,
        backoff_max=settings.backoff_max_seconds,
        max_workers=workers or settings.max_workers,
        progress=_console_progress(verbose) if show_progress else None,
    )


def _console_progress(verbose: bool):
    def progress(descriptor: ResourceDescriptor, status: ResourceStatus, error: str | None) -> None:
        if status is ResourceStatus.CREATING and not verbose:
            return
        suffix = f" [dim]{error}[/dim]" if error else ""
        console.print(f"  {styled_status(status.value)} {descriptor.id}{suffix}")

    return progress
