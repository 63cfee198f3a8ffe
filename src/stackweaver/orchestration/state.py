"""Execution state: one status record per descriptor."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable

from stackweaver.core.errors import ConfigError


class ResourceStatus(str, Enum):
    PENDING = "pending"
    CREATING = "creating"
    CREATED = "created"
    FAILED = "failed"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"
    DELETED = "deleted"


_ALLOWED_TRANSITIONS: dict[ResourceStatus, frozenset[ResourceStatus]] = {
    ResourceStatus.PENDING: frozenset({ResourceStatus.CREATING, ResourceStatus.BLOCKED}),
    ResourceStatus.CREATING: frozenset(
        {ResourceStatus.CREATED, ResourceStatus.FAILED, ResourceStatus.UNKNOWN}
    ),
    ResourceStatus.CREATED: frozenset({ResourceStatus.DELETED}),
    ResourceStatus.FAILED: frozenset({ResourceStatus.CREATING, ResourceStatus.BLOCKED}),
    ResourceStatus.BLOCKED: frozenset({ResourceStatus.CREATING, ResourceStatus.BLOCKED}),
    ResourceStatus.UNKNOWN: frozenset(
        {ResourceStatus.CREATING, ResourceStatus.BLOCKED, ResourceStatus.DELETED}
    ),
    ResourceStatus.DELETED: frozenset({ResourceStatus.CREATING, ResourceStatus.BLOCKED}),
}


class InvalidTransition(RuntimeError):
    """Raised when a status change would break the resource lifecycle."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ResourceState:
    """Lifecycle record for one resource."""

    resource_id: str
    kind: str
    status: ResourceStatus = ResourceStatus.PENDING
    provider_handle: str | None = None
    last_error: str | None = None
    attempts: int = 0
    updated_at: str | None = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceState":
        return cls(
            resource_id=data["resource_id"],
            kind=data.get("kind", ""),
            status=ResourceStatus(data.get("status", ResourceStatus.PENDING.value)),
            provider_handle=data.get("provider_handle"),
            last_error=data.get("last_error"),
            attempts=int(data.get("attempts", 0)),
            updated_at=data.get("updated_at"),
        )


@dataclass
class ExecutionState:
    """Per-deployment map of resource id to ResourceState.

    Mutated only by the executor; persisted by the StateRecorder.
    """

    deployment: str
    resources: Dict[str, ResourceState] = field(default_factory=dict)
    updated_at: str | None = None

    def ensure(self, resource_id: str, kind: str) -> ResourceState:
        """Return the record for ``resource_id``, creating a pending one if needed."""
        record = self.resources.get(resource_id)
        if record is None:
            record = ResourceState(resource_id=resource_id, kind=kind)
            self.resources[resource_id] = record
        elif not record.kind:
            record.kind = kind
        return record

    def status_of(self, resource_id: str) -> ResourceStatus:
        record = self.resources.get(resource_id)
        return record.status if record else ResourceStatus.PENDING

    def handles(self) -> Dict[str, str]:
        """Provider handles of every resource that currently has one."""
        return {
            rid: record.provider_handle
            for rid, record in self.resources.items()
            if record.provider_handle is not None
        }

    def transition(
        self,
        resource_id: str,
        status: ResourceStatus,
        *,
        handle: str | None = None,
        error: str | None = None,
    ) -> ResourceState:
        record = self.resources[resource_id]
        if status not in _ALLOWED_TRANSITIONS[record.status]:
            raise InvalidTransition(
                f"{resource_id}: {record.status.value} -> {status.value} is not allowed"
            )
        record.status = status
        if status is ResourceStatus.CREATED:
            record.provider_handle = handle
            record.last_error = None
        elif status is ResourceStatus.DELETED:
            record.provider_handle = None
            record.last_error = None
        elif status is ResourceStatus.CREATING:
            record.attempts = 0
            record.last_error = None
        elif error is not None:
            record.last_error = error
        record.updated_at = _now()
        self.updated_at = record.updated_at
        return record

    def note_error(self, resource_id: str, error: str) -> ResourceState:
        """Record an error without changing status (e.g. a failed delete)."""
        record = self.resources[resource_id]
        record.last_error = error
        record.updated_at = _now()
        self.updated_at = record.updated_at
        return record

    def by_status(self, *statuses: ResourceStatus) -> list[ResourceState]:
        return [r for r in self.resources.values() if r.status in statuses]

    def ordered(self, resource_ids: Iterable[str]) -> list[ResourceState]:
        return [self.resources[rid] for rid in resource_ids if rid in self.resources]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deployment": self.deployment,
            "updated_at": self.updated_at,
            "resources": {rid: r.to_dict() for rid, r in self.resources.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionState":
        try:
            resources = {
                rid: ResourceState.from_dict({"resource_id": rid, **raw})
                for rid, raw in (data.get("resources") or {}).items()
            }
            return cls(
                deployment=data["deployment"],
                resources=resources,
                updated_at=data.get("updated_at"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError("Malformed state data", details={"error": str(e)}) from e
