from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol

from stackweaver.descriptors.models import ResourceKind

# Resolved configuration handed to an adapter: descriptor config with
# ${ID} references replaced and "name" always present.
ResourceConfig = dict[str, Any]


@dataclass(frozen=True)
class ProviderHealth:
    status: Literal["healthy", "degraded", "unreachable"]
    details: str | None = None


class ProviderAdapter(Protocol):
    """Contract between the executor and one cloud backend.

    Every ``create_*`` operation is idempotent: when an equivalent resource
    already exists its handle is returned instead of an error. Failures are
    raised as AuthError, QuotaError, ConflictError or TransientError.
    """

    name: str

    def health_check(self) -> ProviderHealth:
        ...

    def create_network(self, config: ResourceConfig) -> str:
        ...

    def create_subnet(self, config: ResourceConfig) -> str:
        ...

    def create_database(self, config: ResourceConfig) -> str:
        ...

    def create_cache(self, config: ResourceConfig) -> str:
        ...

    def create_secret(self, config: ResourceConfig) -> str:
        ...

    def create_service(self, config: ResourceConfig) -> str:
        ...

    def create_scheduler_job(self, config: ResourceConfig) -> str:
        ...

    def create_function(self, config: ResourceConfig) -> str:
        ...

    def create_monitoring_policy(self, config: ResourceConfig) -> str:
        ...

    def create_service_account(self, config: ResourceConfig) -> str:
        ...

    def create_project_services(self, config: ResourceConfig) -> str:
        ...

    def create_storage_bucket(self, config: ResourceConfig) -> str:
        ...

    def delete(self, kind: ResourceKind, config: ResourceConfig, handle: str | None) -> None:
        ...


CREATE_OPERATIONS: dict[ResourceKind, str] = {
    ResourceKind.NETWORK: "create_network",
    ResourceKind.SUBNET: "create_subnet",
    ResourceKind.DATABASE_INSTANCE: "create_database",
    ResourceKind.CACHE_INSTANCE: "create_cache",
    ResourceKind.SECRET: "create_secret",
    ResourceKind.SERVICE: "create_service",
    ResourceKind.SCHEDULER_JOB: "create_scheduler_job",
    ResourceKind.FUNCTION: "create_function",
    ResourceKind.MONITORING_POLICY: "create_monitoring_policy",
    ResourceKind.SERVICE_ACCOUNT: "create_service_account",
    ResourceKind.PROJECT_SERVICES: "create_project_services",
    ResourceKind.STORAGE_BUCKET: "create_storage_bucket",
}


def create_resource(adapter: ProviderAdapter, kind: ResourceKind, config: ResourceConfig) -> str:
    """Dispatch to the adapter's create operation for ``kind``."""
    operation = getattr(adapter, CREATE_OPERATIONS[kind])
    return operation(config)
