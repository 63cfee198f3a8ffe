"""Result types for provisioning runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from stackweaver.core.errors import ExitCode
from stackweaver.descriptors.models import DescriptorSet, ResourceDescriptor, ResourceKind
from stackweaver.orchestration.state import ExecutionState, ResourceState, ResourceStatus

@dataclass(frozen=True)
class ResourceFailure:
    """A resource that did not reach its target status."""

    resource_id: str
    kind: str
    cause: str


@dataclass(frozen=True)
class DeploymentResult:
    """Endpoints and references gathered from completed resources.

    Secret entries hold provider references only, never secret values.
    """

    deployment: str
    networks: Mapping[str, str] = field(default_factory=dict)
    database_endpoints: Mapping[str, str] = field(default_factory=dict)
    cache_endpoints: Mapping[str, str] = field(default_factory=dict)
    service_urls: Mapping[str, str] = field(default_factory=dict)
    secret_references: Mapping[str, str] = field(default_factory=dict)
    functions: Mapping[str, str] = field(default_factory=dict)
    scheduler_jobs: Mapping[str, str] = field(default_factory=dict)
    buckets: Mapping[str, str] = field(default_factory=dict)
    failures: tuple[ResourceFailure, ...] = ()

    def to_dict(self) -> dict:
        return {
            "deployment": self.deployment,
            "networks": dict(self.networks),
            "database_endpoints": dict(self.database_endpoints),
            "cache_endpoints": dict(self.cache_endpoints),
            "service_urls": dict(self.service_urls),
            "secret_references": dict(self.secret_references),
            "functions": dict(self.functions),
            "scheduler_jobs": dict(self.scheduler_jobs),
            "buckets": dict(self.buckets),
            "failures": [
                {"resource": f.resource_id, "kind": f.kind, "cause": f.cause} for f in self.failures
            ],
        }


# kind -> DeploymentResult field
_RESULT_FIELDS: dict[ResourceKind, str] = {
    ResourceKind.NETWORK: "networks",
    ResourceKind.DATABASE_INSTANCE: "database_endpoints",
    ResourceKind.CACHE_INSTANCE: "cache_endpoints",
    ResourceKind.SERVICE: "service_urls",
    ResourceKind.SECRET: "secret_references",
    ResourceKind.FUNCTION: "functions",
    ResourceKind.SCHEDULER_JOB: "scheduler_jobs",
    ResourceKind.STORAGE_BUCKET: "buckets",
}


class ResultCollector:
    """Aggregates resource outcomes while the executor walks the graph."""

    def __init__(self, deployment: str) -> None:
        self._deployment = deployment
        self._sections: dict[str, dict[str, str]] = {name: {} for name in _RESULT_FIELDS.values()}
        self._failures: dict[str, ResourceFailure] = {}

    def record(self, descriptor: ResourceDescriptor, handle: str | None) -> None:
        """Record a resource that exists in the provider."""
        self._failures.pop(descriptor.id, None)
        section = _RESULT_FIELDS.get(descriptor.kind)
        if section and handle:
            self._sections[section][descriptor.name] = handle

    def forget(self, descriptor: ResourceDescriptor) -> None:
        """Drop a resource that no longer exists (after teardown)."""
        section = _RESULT_FIELDS.get(descriptor.kind)
        if section:
            self._sections[section].pop(descriptor.name, None)

    def record_error(self, descriptor: ResourceDescriptor, cause: str) -> None:
        self._failures[descriptor.id] = ResourceFailure(
            resource_id=descriptor.id, kind=descriptor.kind.value, cause=cause
        )

    def finalize(self) -> DeploymentResult:
        return DeploymentResult(
            deployment=self._deployment,
            failures=tuple(self._failures.values()),
            **{name: MappingProxyType(dict(values)) for name, values in self._sections.items()},
        )


def collect_result(descriptors: DescriptorSet, state: ExecutionState) -> DeploymentResult:
    """Build a DeploymentResult from persisted state (used by ``status``)."""
    collector = ResultCollector(descriptors.deployment)
    for descriptor in descriptors:
        record = state.resources.get(descriptor.id)
        if record is None:
            continue
        if record.status is ResourceStatus.CREATED:
            collector.record(descriptor, record.provider_handle)
        elif record.status in (ResourceStatus.FAILED, ResourceStatus.BLOCKED, ResourceStatus.UNKNOWN):
            collector.record_error(descriptor, record.last_error or record.status.value)
    return collector.finalize()


@dataclass
class RunReport:
    """Outcome of one provision or teardown run."""

    deployment: str
    operation: str
    resources: list[ResourceState]
    result: DeploymentResult
    duration_seconds: float = 0.0
    cancelled: bool = False
    aborted_reason: str | None = None
    target_status: ResourceStatus = ResourceStatus.CREATED
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        if self.cancelled or self.aborted_reason or self.errors:
            return False
        if self.target_status is ResourceStatus.DELETED:
            return all(
                r.status not in (ResourceStatus.CREATED, ResourceStatus.UNKNOWN) for r in self.resources
            )
        return all(r.status is self.target_status for r in self.resources)

    @property
    def exit_code(self) -> ExitCode:
        if self.cancelled:
            return ExitCode.INTERRUPTED
        return ExitCode.SUCCESS if self.success else ExitCode.FAILURE

    def status_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for record in self.resources:
            counts[record.status.value] = counts.get(record.status.value, 0) + 1
        return counts
