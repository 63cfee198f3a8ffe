"""
Descriptor file loading and validation.

A descriptor file is YAML:

    deployment: webapp-prod
    provider: gcloud
    provider_options: {project: my-webapp-project, region: us-central1}
    variables: {region: us-central1}
    resources:
      - id: vpc
        kind: network
        config: {name: webapp-vpc}
      - id: subnet
        kind: subnet
        depends_on: [vpc]
        config: {network: "${vpc}", region: "${vars.region}"}

Loading is pure: nothing is provisioned and no state is touched. Any
problem raises ConfigError.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Mapping

import structlog
import yaml

from stackweaver.core.errors import ConfigError
from stackweaver.descriptors.graph import topological_order
from stackweaver.descriptors.models import DescriptorSet, ResourceDescriptor, ResourceKind
from stackweaver.descriptors.substitution import PLACEHOLDER, VariableSubstitutor, find_references

logger = structlog.get_logger()

# Credentials come from the environment, never from descriptor files
FORBIDDEN_CONFIG_KEYS = frozenset(
    {"password", "token", "api_key", "private_key", "secret_value", "credentials"}
)

_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_\-]*$")


def load(path: str | Path) -> DescriptorSet:
    """Load and validate a descriptor file."""
    file_path = Path(path)
    if not file_path.exists():
        raise ConfigError("Descriptor file not found", details={"path": str(file_path)})

    try:
        with open(file_path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError("Invalid YAML in descriptor file", details={"path": str(file_path), "error": str(e)}) from e

    descriptor_set = parse(data, default_deployment=file_path.stem)
    logger.debug(
        "descriptors_loaded",
        path=str(file_path),
        deployment=descriptor_set.deployment,
        resources=len(descriptor_set),
    )
    return descriptor_set


def parse(data: Any, default_deployment: str = "default") -> DescriptorSet:
    """Validate already-parsed descriptor data and build a DescriptorSet."""
    if not isinstance(data, Mapping):
        raise ConfigError("Descriptor file must be a mapping")

    resources = data.get("resources")
    if not isinstance(resources, list) or not resources:
        raise ConfigError("Descriptor file must contain a non-empty 'resources' list")

    variables = data.get("variables") or {}
    if not isinstance(variables, Mapping):
        raise ConfigError("'variables' must be a mapping")
    substitutor = VariableSubstitutor(variables)

    descriptors: list[ResourceDescriptor] = []
    seen: set[str] = set()
    for index, raw in enumerate(resources):
        descriptor = _parse_resource(raw, index, substitutor)
        if descriptor.id in seen:
            raise ConfigError("Duplicate resource id", details={"resource": descriptor.id})
        seen.add(descriptor.id)
        descriptors.append(descriptor)

    for descriptor in descriptors:
        for dep in sorted(descriptor.depends_on):
            if dep not in seen:
                raise ConfigError(
                    "Unknown dependency", details={"resource": descriptor.id, "depends_on": dep}
                )

    ordered = topological_order(descriptors)

    provider_options = substitutor.substitute(data.get("provider_options") or {})
    if not isinstance(provider_options, Mapping):
        raise ConfigError("'provider_options' must be a mapping")

    return DescriptorSet(
        deployment=str(data.get("deployment") or default_deployment),
        descriptors=tuple(ordered),
        provider=data.get("provider"),
        provider_options=provider_options,
    )


def _parse_resource(raw: Any, index: int, substitutor: VariableSubstitutor) -> ResourceDescriptor:
    if not isinstance(raw, Mapping):
        raise ConfigError("Resource entry must be a mapping", details={"index": index})

    resource_id = raw.get("id")
    if not isinstance(resource_id, str) or not _ID_PATTERN.match(resource_id):
        raise ConfigError("Resource id missing or invalid", details={"index": index, "id": resource_id})

    kind_value = raw.get("kind")
    try:
        kind = ResourceKind(kind_value)
    except ValueError:
        raise ConfigError(
            "Unknown resource kind",
            details={"resource": resource_id, "kind": kind_value, "allowed": ", ".join(ResourceKind.values())},
        ) from None

    config = raw.get("config") or {}
    if not isinstance(config, Mapping):
        raise ConfigError("Resource config must be a mapping", details={"resource": resource_id})
    _reject_credentials(resource_id, config)
    if kind is ResourceKind.SECRET:
        _require_reference_value(resource_id, config)
    config = substitutor.substitute(config)

    depends_on = raw.get("depends_on") or []
    if isinstance(depends_on, str):
        depends_on = [depends_on]
    if not isinstance(depends_on, list) or not all(isinstance(d, str) for d in depends_on):
        raise ConfigError("depends_on must be a list of resource ids", details={"resource": resource_id})
    if resource_id in depends_on:
        raise ConfigError("Resource depends on itself", details={"resource": resource_id})

    for ref in sorted(find_references(config)):
        if ref not in depends_on:
            raise ConfigError(
                "Reference to a resource not listed in depends_on",
                details={"resource": resource_id, "reference": ref},
            )

    return ResourceDescriptor(
        id=resource_id,
        kind=kind,
        configuration=config,
        depends_on=frozenset(depends_on),
    )


def _require_reference_value(resource_id: str, config: Mapping[str, Any]) -> None:
    """A secret's ``value`` must be a single ${vars.NAME} or ${ID} placeholder."""
    if "value" not in config:
        return
    value = config["value"]
    if not isinstance(value, str) or not PLACEHOLDER.fullmatch(value):
        raise ConfigError(
            "Secret value must be a ${vars.NAME} or ${ID} reference; use generate or from_env for literals",
            details={"resource": resource_id},
        )


def _reject_credentials(resource_id: str, config: Mapping[str, Any]) -> None:
    for key, value in config.items():
        if str(key).lower() in FORBIDDEN_CONFIG_KEYS:
            raise ConfigError(
                "Credentials must not be embedded in descriptors",
                details={"resource": resource_id, "key": key},
            )
        if isinstance(value, Mapping):
            _reject_credentials(resource_id, value)
        elif isinstance(value, list):
            for item in value:
                if isinstance(item, Mapping):
                    _reject_credentials(resource_id, item)
