"""Resource descriptor data model."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping


class ResourceKind(str, Enum):
    """Kinds of infrastructure resource a provider adapter can create."""

    NETWORK = "network"
    SUBNET = "subnet"
    DATABASE_INSTANCE = "database-instance"
    CACHE_INSTANCE = "cache-instance"
    SECRET = "secret"
    SERVICE = "service"
    SCHEDULER_JOB = "scheduler-job"
    FUNCTION = "function"
    MONITORING_POLICY = "monitoring-policy"
    SERVICE_ACCOUNT = "service-account"
    PROJECT_SERVICES = "project-services"
    STORAGE_BUCKET = "storage-bucket"

    @classmethod
    def values(cls) -> list[str]:
        return [kind.value for kind in cls]


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({k: _freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


@dataclass(frozen=True)
class ResourceDescriptor:
    """Declarative definition of one infrastructure resource.

    ``configuration`` is exposed as a read-only mapping; nested mappings
    and lists are frozen as well.
    """

    id: str
    kind: ResourceKind
    configuration: Mapping[str, Any] = field(default_factory=dict)
    depends_on: frozenset[str] = frozenset()

    def __post_init__(self) -> None:
        object.__setattr__(self, "configuration", _freeze(dict(self.configuration)))
        object.__setattr__(self, "depends_on", frozenset(self.depends_on))

    @property
    def name(self) -> str:
        """Provider-side resource name, defaulting to the descriptor id."""
        return str(self.configuration.get("name", self.id))


@dataclass(frozen=True)
class DescriptorSet:
    """Validated, dependency-ordered collection of descriptors."""

    deployment: str
    descriptors: tuple[ResourceDescriptor, ...]
    provider: str | None = None
    provider_options: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "provider_options", _freeze(dict(self.provider_options)))

    def __iter__(self) -> Iterator[ResourceDescriptor]:
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    def __contains__(self, resource_id: object) -> bool:
        return any(d.id == resource_id for d in self.descriptors)

    @property
    def ids(self) -> list[str]:
        return [d.id for d in self.descriptors]

    def get(self, resource_id: str) -> ResourceDescriptor:
        for descriptor in self.descriptors:
            if descriptor.id == resource_id:
                return descriptor
        raise KeyError(resource_id)

    def topological_order(self) -> list[ResourceDescriptor]:
        """Descriptors ordered so every dependency precedes its dependents."""
        from stackweaver.descriptors.graph import topological_order

        return topological_order(self.descriptors)

    def dependents(self, resource_id: str) -> set[str]:
        """Transitive descendants of ``resource_id``."""
        from stackweaver.descriptors.graph import descendants

        return descendants(self.descriptors, resource_id)
