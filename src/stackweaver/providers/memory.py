"""In-process provider adapter.

Keeps resources in a dictionary and never touches a real cloud. Used for
dry runs (``--provider memory``) and as the test double for the executor:
failures can be scripted per resource name and every call is recorded.
"""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from typing import Any

import structlog

from stackweaver.descriptors.models import ResourceKind
from stackweaver.providers.base import ProviderAdapter, ProviderHealth, ResourceConfig
from stackweaver.providers.registry import register_provider

logger = structlog.get_logger()


@dataclass
class _ScriptedFailure:
    error: Exception
    remaining: int | None  # None: fail forever


class MemoryProvider(ProviderAdapter):
    name = "memory"

    def __init__(self, project: str = "local-project", region: str = "local-region", **_: Any) -> None:
        self.project = project
        self.region = region
        self.resources: dict[tuple[ResourceKind, str], str] = {}
        self.calls: list[tuple[str, str]] = []
        self.create_calls: list[tuple[str, str]] = []
        self.delete_calls: list[tuple[str, str]] = []
        self.enabled_apis: set[str] = set()
        self._secret_values: dict[str, str] = {}
        self._failures: dict[tuple[str, str], _ScriptedFailure] = {}
        self._lock = threading.Lock()

    # --- test hooks ---

    def fail(self, name: str, error: Exception, *, times: int | None = None, operation: str = "create") -> None:
        """Raise ``error`` for the next ``times`` calls touching ``name``."""
        self._failures[(operation, name)] = _ScriptedFailure(error=error, remaining=times)

    def seed(self, kind: ResourceKind, name: str, handle: str) -> None:
        """Pretend a resource already exists in the provider."""
        self.resources[(kind, name)] = handle

    def exists(self, kind: ResourceKind, name: str) -> bool:
        return (kind, name) in self.resources

    # --- adapter contract ---

    def health_check(self) -> ProviderHealth:
        return ProviderHealth(status="healthy")

    def create_network(self, config: ResourceConfig) -> str:
        return self._create(ResourceKind.NETWORK, config, lambda n: f"projects/{self.project}/global/networks/{n}")

    def create_subnet(self, config: ResourceConfig) -> str:
        return self._create(
            ResourceKind.SUBNET,
            config,
            lambda n: f"projects/{self.project}/regions/{self.region}/subnetworks/{n}",
        )

    def create_database(self, config: ResourceConfig) -> str:
        return self._create(ResourceKind.DATABASE_INSTANCE, config, lambda n: f"{self.project}:{self.region}:{n}")

    def create_cache(self, config: ResourceConfig) -> str:
        port = config.get("port", 6379)
        return self._create(ResourceKind.CACHE_INSTANCE, config, lambda n: f"10.0.0.{len(self.resources) + 2}:{port}")

    def create_secret(self, config: ResourceConfig) -> str:
        handle = self._create(ResourceKind.SECRET, config, lambda n: f"projects/{self.project}/secrets/{n}")
        name = config["name"]
        with self._lock:
            if name not in self._secret_values:
                if config.get("generate"):
                    self._secret_values[name] = secrets.token_urlsafe(32)
                else:
                    self._secret_values[name] = str(config.get("value", ""))
        return handle

    def create_service(self, config: ResourceConfig) -> str:
        return self._create(ResourceKind.SERVICE, config, lambda n: f"https://{n}.run.memory.local")

    def create_scheduler_job(self, config: ResourceConfig) -> str:
        return self._create(
            ResourceKind.SCHEDULER_JOB,
            config,
            lambda n: f"projects/{self.project}/locations/{self.region}/jobs/{n}",
        )

    def create_function(self, config: ResourceConfig) -> str:
        return self._create(
            ResourceKind.FUNCTION,
            config,
            lambda n: f"projects/{self.project}/locations/{self.region}/functions/{n}",
        )

    def create_monitoring_policy(self, config: ResourceConfig) -> str:
        return self._create(
            ResourceKind.MONITORING_POLICY,
            config,
            lambda n: f"projects/{self.project}/alertPolicies/{n}",
        )

    def create_service_account(self, config: ResourceConfig) -> str:
        return self._create(
            ResourceKind.SERVICE_ACCOUNT,
            config,
            lambda n: f"{n}@{self.project}.iam.gserviceaccount.com",
        )

    def create_project_services(self, config: ResourceConfig) -> str:
        handle = self._create(ResourceKind.PROJECT_SERVICES, config, lambda n: f"projects/{self.project}/services")
        with self._lock:
            self.enabled_apis.update(config.get("apis", ()))
        return handle

    def create_storage_bucket(self, config: ResourceConfig) -> str:
        return self._create(ResourceKind.STORAGE_BUCKET, config, lambda n: f"gs://{n}")

    def delete(self, kind: ResourceKind, config: ResourceConfig, handle: str | None) -> None:
        name = config["name"]
        with self._lock:
            self.calls.append(("delete", name))
            self._maybe_fail("delete", name)
            if self.resources.pop((kind, name), None) is not None:
                self.delete_calls.append((kind.value, name))
            if kind is ResourceKind.SECRET:
                self._secret_values.pop(name, None)

    def secret_value(self, name: str) -> str | None:
        return self._secret_values.get(name)

    # --- internals ---

    def _create(self, kind: ResourceKind, config: ResourceConfig, make_handle) -> str:
        name = config["name"]
        with self._lock:
            self.calls.append(("create", name))
            self._maybe_fail("create", name)
            existing = self.resources.get((kind, name))
            if existing is not None:
                logger.debug("memory_resource_exists", kind=kind.value, name=name)
                return existing
            handle = make_handle(name)
            self.resources[(kind, name)] = handle
            self.create_calls.append((kind.value, name))
            return handle

    def _maybe_fail(self, operation: str, name: str) -> None:
        failure = self._failures.get((operation, name))
        if failure is None:
            return
        if failure.remaining is not None:
            if failure.remaining <= 0:
                return
            failure.remaining -= 1
        raise failure.error


def _factory(**kwargs: Any) -> MemoryProvider:
    return MemoryProvider(**kwargs)


register_provider(
    MemoryProvider.name,
    _factory,
    version="0.1.0",
    description="In-process provider for dry runs and tests",
)
