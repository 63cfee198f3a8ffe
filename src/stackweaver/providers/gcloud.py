"""
Google Cloud provider adapter driven through the gcloud CLI.

Each create operation probes with ``describe`` first and only creates when
nothing is found, so repeated runs return the existing handle. CLI failures
are classified from stderr into the stackweaver error taxonomy.

Authentication is whatever the gcloud CLI is logged in as
(``gcloud auth login`` / ``GOOGLE_APPLICATION_CREDENTIALS``); nothing is read
from descriptor files.

Secret material never appears on a command line: secret payloads are piped
on stdin, and database user passwords are sent to the Cloud SQL Admin API in
an HTTPS request body. They do pass through this process's memory and the
stdout of ``gcloud secrets versions access``.
"""

from __future__ import annotations

import base64
import json
import os
import re
import secrets
import shutil
import subprocess
import tempfile
from typing import Any, Sequence

import httpx
import structlog

from stackweaver.core.errors import (
    AuthError,
    ConfigError,
    ConflictError,
    ProviderError,
    QuotaError,
    TransientError,
)
from stackweaver.descriptors.models import ResourceKind
from stackweaver.providers.base import ProviderAdapter, ProviderHealth, ResourceConfig
from stackweaver.providers.registry import register_provider

logger = structlog.get_logger()

SQLADMIN_URL = "https://sqladmin.googleapis.com/v1"

_AUTH_PATTERNS = re.compile(
    r"PERMISSION_DENIED|UNAUTHENTICATED|not authenticated|gcloud auth login|invalid_grant|"
    r"does not have permission",
    re.IGNORECASE,
)
_QUOTA_PATTERNS = re.compile(r"QUOTA_EXCEEDED|RESOURCE_EXHAUSTED|quota exceeded|exceeded quota", re.IGNORECASE)
_CONFLICT_PATTERNS = re.compile(r"ALREADY_EXISTS|already exists|already in use", re.IGNORECASE)
_NOT_FOUND_PATTERNS = re.compile(
    r"NOT_FOUND|was not found|does not exist|Cannot find|could not be found|\bcode=404\b|\b404\b",
    re.IGNORECASE,
)
_TRANSIENT_PATTERNS = re.compile(
    r"UNAVAILABLE|(?-i:\bINTERNAL\b)|DEADLINE_EXCEEDED|(?-i:\bABORTED\b)|try again|timed out|"
    r"Connection reset|code=\[?5\d\d\]?|\b50[0234]\b",
    re.IGNORECASE,
)


class ResourceNotFound(ProviderError):
    """The described resource does not exist (internal to the adapter)."""


def _error_lines(stderr: str) -> str:
    """The ``ERROR:`` part of gcloud stderr; WARNING lines are ignored."""
    lines = stderr.strip().splitlines()
    for index, line in enumerate(lines):
        if line.startswith("ERROR:"):
            return "\n".join(lines[index:])
    return "\n".join(line for line in lines if not line.startswith("WARNING:"))


def classify_error(stderr: str, operation: str) -> ProviderError:
    """Map gcloud stderr output to a typed provider error."""
    text = _error_lines(stderr)
    message = text.splitlines()[0] if text else "gcloud command failed"
    details = {"operation": operation}
    # First match wins
    if _AUTH_PATTERNS.search(text):
        return AuthError(message, details=details)
    if _QUOTA_PATTERNS.search(text):
        return QuotaError(message, details=details)
    if _CONFLICT_PATTERNS.search(text):
        return ConflictError(message, details=details)
    if _NOT_FOUND_PATTERNS.search(text):
        return ResourceNotFound(message, details=details)
    if _TRANSIENT_PATTERNS.search(text):
        return TransientError(message, details=details)
    return ProviderError(message, details=details)


def _http_error(status_code: int, body: str, operation: str) -> ProviderError:
    """Map a Google API HTTP status to a typed provider error."""
    message = f"HTTP {status_code}: {body.strip()[:200]}"
    details = {"operation": operation}
    if status_code in (401, 403):
        return AuthError(message, details=details)
    if status_code == 429:
        return QuotaError(message, details=details)
    if status_code == 409:
        return ConflictError(message, details=details)
    if status_code in (408, 500, 502, 503, 504):
        return TransientError(message, details=details)
    return ProviderError(message, details=details)


class GcloudProvider(ProviderAdapter):
    name = "gcloud"

    def __init__(
        self,
        project: str | None = None,
        region: str = "us-central1",
        *,
        binary: str = "gcloud",
        timeout: float = 120.0,
        **_: Any,
    ) -> None:
        resolved = shutil.which(binary)
        if resolved is None:
            raise ConfigError("gcloud CLI not found in PATH", details={"binary": binary})
        if not project:
            raise ConfigError("gcloud provider requires a project (provider_options.project or STACKWEAVER_GCLOUD_PROJECT)")
        self._binary = resolved
        self.project = project
        self.region = region
        self._timeout = timeout

    def health_check(self) -> ProviderHealth:
        try:
            account = self._run(["auth", "list", "--filter=status:ACTIVE", "--format=value(account)"])
        except ProviderError as exc:
            return ProviderHealth(status="unreachable", details=exc.message)
        if not account:
            return ProviderHealth(status="degraded", details="no active gcloud account")
        return ProviderHealth(status="healthy", details=account)

    # --- networking ---

    def create_network(self, config: ResourceConfig) -> str:
        name = config["name"]
        handle = self._create_or_get(
            describe=["compute", "networks", "describe", name, "--format=value(selfLink)"],
            create=[
                "compute", "networks", "create", name,
                f"--subnet-mode={config.get('subnet_mode', 'custom')}",
                f"--bgp-routing-mode={config.get('routing_mode', 'regional')}",
            ],
        )
        if config.get("private_service_access"):
            self._ensure_private_service_access(name, int(config.get("peering_prefix_length", 16)))
        return handle

    def _ensure_private_service_access(self, network: str, prefix_length: int) -> None:
        range_name = f"google-managed-services-{network}"
        self._create_or_get(
            describe=["compute", "addresses", "describe", range_name, "--global", "--format=value(name)"],
            create=[
                "compute", "addresses", "create", range_name,
                "--global", "--purpose=VPC_PEERING",
                f"--prefix-length={prefix_length}", f"--network={network}",
            ],
        )
        try:
            self._run([
                "services", "vpc-peerings", "connect",
                "--service=servicenetworking.googleapis.com",
                f"--ranges={range_name}", f"--network={network}",
            ])
        except ConflictError:
            logger.debug("vpc_peering_exists", network=network)

    def create_subnet(self, config: ResourceConfig) -> str:
        name = config["name"]
        region = config.get("region", self.region)
        create = [
            "compute", "subnets", "create", name,
            f"--network={config['network']}",
            f"--range={config.get('range', '10.0.0.0/24')}",
            f"--region={region}",
        ]
        if config.get("private_google_access", True):
            create.append("--enable-private-ip-google-access")
        handle = self._create_or_get(
            describe=["compute", "subnets", "describe", name, f"--region={region}", "--format=value(selfLink)"],
            create=create,
        )
        connector = config.get("connector")
        if connector:
            self._ensure_connector(name, region, connector)
        return handle

    def _ensure_connector(self, subnet: str, region: str, connector: dict[str, Any]) -> None:
        name = connector["name"]
        self._create_or_get(
            describe=[
                "compute", "networks", "vpc-access", "connectors", "describe", name,
                f"--region={region}", "--format=value(name)",
            ],
            create=[
                "compute", "networks", "vpc-access", "connectors", "create", name,
                f"--region={region}", f"--subnet={subnet}", f"--subnet-project={self.project}",
                f"--min-instances={connector.get('min_instances', 2)}",
                f"--max-instances={connector.get('max_instances', 10)}",
                f"--machine-type={connector.get('machine_type', 'e2-micro')}",
            ],
        )

    # --- data tier ---

    def create_database(self, config: ResourceConfig) -> str:
        name = config["name"]
        create = [
            "sql", "instances", "create", name,
            f"--database-version={config.get('version', 'POSTGRES_14')}",
            f"--tier={config.get('tier', 'db-f1-micro')}",
            f"--region={config.get('region', self.region)}",
            f"--storage-type={config.get('storage_type', 'SSD')}",
            f"--storage-size={config.get('storage_size', '20GB')}",
            "--storage-auto-increase",
        ]
        if config.get("network"):
            create += [f"--network={config['network']}", "--no-assign-ip"]
        if config.get("backup_start_time"):
            create.append(f"--backup-start-time={config['backup_start_time']}")
        if config.get("maintenance_window"):
            window = config["maintenance_window"]
            create += [
                f"--maintenance-window-day={window.get('day', 'SUN')}",
                f"--maintenance-window-hour={window.get('hour', 4)}",
            ]
        if config.get("deletion_protection"):
            create.append("--deletion-protection")

        handle = self._create_or_get(
            describe=["sql", "instances", "describe", name, "--format=value(connectionName)"],
            create=create,
        )

        for database in config.get("databases", []):
            try:
                self._run(["sql", "databases", "create", database, f"--instance={name}"])
            except ConflictError:
                logger.debug("sql_database_exists", instance=name, database=database)

        for user in config.get("users", []):
            self._ensure_sql_user(name, user["name"], self._read_secret(user["password_secret"]))
        return handle

    def _ensure_sql_user(self, instance: str, user: str, password: str) -> None:
        """Create a database user through the Cloud SQL Admin API.

        The password travels in the HTTPS request body, never on a gcloud
        command line; the bearer token comes from ``gcloud auth
        print-access-token`` on stdout.
        """
        token = self._run(["auth", "print-access-token"], redact=True)
        url = f"{SQLADMIN_URL}/projects/{self.project}/instances/{instance}/users"
        operation = "sql users create"
        logger.debug("sqladmin_call", operation=operation, instance=instance, user=user)
        try:
            response = httpx.post(
                url,
                json={"name": user, "password": password},
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise TransientError("Cloud SQL Admin call timed out", details={"operation": operation}) from exc
        except httpx.HTTPError as exc:
            raise TransientError(str(exc), details={"operation": operation}) from exc

        if response.status_code == 409:
            logger.debug("sql_user_exists", instance=instance, user=user)
            return
        if response.status_code >= 400:
            raise _http_error(response.status_code, response.text, operation)

    def create_cache(self, config: ResourceConfig) -> str:
        name = config["name"]
        region = config.get("region", self.region)
        create = [
            "redis", "instances", "create", name,
            f"--size={config.get('size_gb', 1)}",
            f"--region={region}",
            f"--redis-version={config.get('version', 'redis_6_x')}",
            f"--tier={config.get('tier', 'basic')}",
        ]
        if config.get("network"):
            create.append(f"--network={config['network']}")
        raw = self._create_or_get(
            describe=["redis", "instances", "describe", name, f"--region={region}", "--format=value(host,port)"],
            create=create,
        )
        host, _, port = raw.partition("\t")
        return f"{host}:{port or 6379}"

    # --- secrets ---

    def create_secret(self, config: ResourceConfig) -> str:
        name = config["name"]
        existing = self._describe(["secrets", "describe", name, "--format=value(name)"])
        if existing:
            return existing
        value = _secret_payload(name, config)
        try:
            self._run(
                ["secrets", "create", name, "--data-file=-", "--replication-policy=automatic"],
                stdin=value,
            )
        except ConflictError:
            pass
        return self._require(["secrets", "describe", name, "--format=value(name)"], "secrets create")

    def _read_secret(self, name: str) -> str:
        return self._run(["secrets", "versions", "access", "latest", f"--secret={name}"], redact=True)

    # --- compute ---

    def create_service(self, config: ResourceConfig) -> str:
        name = config["name"]
        region = config.get("region", self.region)
        describe = [
            "run", "services", "describe", name, f"--region={region}",
            "--platform=managed", "--format=value(status.url)",
        ]
        existing = self._describe(describe)
        if existing:
            return existing

        image = config.get("image") or f"gcr.io/{self.project}/{name}"
        if config.get("source"):
            self._run(["builds", "submit", str(config["source"]), f"--tag={image}"])

        deploy = [
            "run", "deploy", name, f"--image={image}", f"--region={region}", "--platform=managed",
            f"--memory={config.get('memory', '512Mi')}",
            f"--cpu={config.get('cpu', 1)}",
            f"--min-instances={config.get('min_instances', 0)}",
            f"--max-instances={config.get('max_instances', 10)}",
        ]
        if config.get("port"):
            deploy.append(f"--port={config['port']}")
        if config.get("public", False):
            deploy.append("--allow-unauthenticated")
        if config.get("vpc_connector"):
            deploy.append(f"--vpc-connector={config['vpc_connector']}")
        instances = config.get("cloudsql_instances")
        if instances:
            if isinstance(instances, str):
                instances = [instances]
            deploy.append("--add-cloudsql-instances=" + ",".join(instances))
        if config.get("service_account"):
            deploy.append(f"--service-account={config['service_account']}")
        if config.get("env"):
            deploy.append("--set-env-vars=" + ",".join(f"{k}={v}" for k, v in config["env"].items()))
        if config.get("secrets"):
            deploy.append(
                "--set-secrets=" + ",".join(f"{k}={v}:latest" for k, v in config["secrets"].items())
            )
        self._run(deploy)
        return self._require(describe, "run deploy")

    def create_function(self, config: ResourceConfig) -> str:
        name = config["name"]
        region = config.get("region", self.region)
        describe = ["functions", "describe", name, f"--region={region}", "--format=value(name)"]
        deploy = [
            "functions", "deploy", name,
            f"--runtime={config.get('runtime', 'python311')}",
            f"--entry-point={config.get('entry_point', 'main')}",
            f"--source={config.get('source', '.')}",
            f"--region={region}",
        ]
        if config.get("trigger_topic"):
            deploy.append(f"--trigger-topic={config['trigger_topic']}")
        else:
            deploy.append("--trigger-http")
        if config.get("service_account"):
            deploy.append(f"--service-account={config['service_account']}")
        if config.get("env"):
            deploy.append("--set-env-vars=" + ",".join(f"{k}={v}" for k, v in config["env"].items()))
        return self._create_or_get(describe=describe, create=deploy)

    def create_scheduler_job(self, config: ResourceConfig) -> str:
        name = config["name"]
        location = config.get("region", self.region)
        create = [
            "scheduler", "jobs", "create", "pubsub", name,
            f"--schedule={config.get('schedule', '0 2 * * *')}",
            f"--topic={config['topic']}",
            f"--message-body={config.get('message_body', '{}')}",
            f"--location={location}",
        ]
        if config.get("time_zone"):
            create.append(f"--time-zone={config['time_zone']}")
        return self._create_or_get(
            describe=["scheduler", "jobs", "describe", name, f"--location={location}", "--format=value(name)"],
            create=create,
        )

    # --- operations ---

    def create_monitoring_policy(self, config: ResourceConfig) -> str:
        display_name = config.get("display_name", config["name"])
        lookup = [
            "alpha", "monitoring", "policies", "list",
            f'--filter=displayName="{display_name}"', "--format=value(name)",
        ]
        existing = self._describe(lookup)
        if existing:
            return existing.splitlines()[0]

        policy = config.get("policy") or _default_policy(display_name, config)
        with tempfile.NamedTemporaryFile("w", suffix=".json", delete=False) as f:
            json.dump(policy, f)
            policy_file = f.name
        try:
            self._run(["alpha", "monitoring", "policies", "create", f"--policy-from-file={policy_file}"])
        finally:
            os.unlink(policy_file)
        return self._require(lookup, "monitoring policies create").splitlines()[0]

    def create_service_account(self, config: ResourceConfig) -> str:
        name = config["name"]
        email = f"{name}@{self.project}.iam.gserviceaccount.com"
        handle = self._create_or_get(
            describe=["iam", "service-accounts", "describe", email, "--format=value(email)"],
            create=[
                "iam", "service-accounts", "create", name,
                f"--display-name={config.get('display_name', name)}",
            ],
        )
        for role in config.get("roles", []):
            self._run([
                "projects", "add-iam-policy-binding", self.project,
                f"--member=serviceAccount:{handle}", f"--role={role}",
                "--condition=None",
            ])
        return handle

    # --- project ---

    def create_project_services(self, config: ResourceConfig) -> str:
        """Enable the listed Google APIs; already enabled ones are skipped."""
        wanted = [_api_name(api) for api in config.get("apis", [])]
        enabled = set(self._run(["services", "list", "--enabled", "--format=value(config.name)"]).split())
        missing = [api for api in wanted if api not in enabled]
        if missing:
            self._run(["services", "enable", *missing])
            logger.info("gcloud_services_enabled", apis=missing)
        return f"projects/{self.project}/services"

    def create_storage_bucket(self, config: ResourceConfig) -> str:
        url = f"gs://{config['name']}"
        create = [
            "storage", "buckets", "create", url,
            f"--location={config.get('location', self.region)}",
        ]
        if config.get("uniform_access", True):
            create.append("--uniform-bucket-level-access")
        if config.get("storage_class"):
            create.append(f"--default-storage-class={config['storage_class']}")
        self._create_or_get(
            describe=["storage", "buckets", "describe", url, "--format=value(name)"],
            create=create,
        )
        return url

    def delete(self, kind: ResourceKind, config: ResourceConfig, handle: str | None) -> None:
        name = config["name"]
        if kind is ResourceKind.PROJECT_SERVICES:
            # APIs stay enabled after teardown
            logger.info("gcloud_services_left_enabled", apis=list(config.get("apis", [])))
            return
        region = f"--region={config.get('region', self.region)}"
        commands: dict[ResourceKind, list[str]] = {
            ResourceKind.NETWORK: ["compute", "networks", "delete", name],
            ResourceKind.SUBNET: ["compute", "subnets", "delete", name, region],
            ResourceKind.DATABASE_INSTANCE: ["sql", "instances", "delete", name],
            ResourceKind.CACHE_INSTANCE: ["redis", "instances", "delete", name, region],
            ResourceKind.SECRET: ["secrets", "delete", name],
            ResourceKind.SERVICE: ["run", "services", "delete", name, region, "--platform=managed"],
            ResourceKind.SCHEDULER_JOB: [
                "scheduler", "jobs", "delete", name, f"--location={config.get('region', self.region)}",
            ],
            ResourceKind.FUNCTION: ["functions", "delete", name, region],
            ResourceKind.MONITORING_POLICY: ["alpha", "monitoring", "policies", "delete", handle or name],
            ResourceKind.SERVICE_ACCOUNT: ["iam", "service-accounts", "delete", handle or name],
            ResourceKind.STORAGE_BUCKET: ["storage", "buckets", "delete", f"gs://{name}"],
        }
        if kind is ResourceKind.SUBNET and config.get("connector"):
            self._delete_quietly([
                "compute", "networks", "vpc-access", "connectors", "delete",
                config["connector"]["name"], region,
            ])
        self._delete_quietly(commands[kind])

    def _delete_quietly(self, args: list[str]) -> None:
        try:
            self._run(args)
        except ResourceNotFound:
            logger.debug("gcloud_delete_missing", operation=" ".join(args[:3]))

    # --- plumbing ---

    def _create_or_get(self, *, describe: list[str], create: list[str]) -> str:
        existing = self._describe(describe)
        if existing:
            return existing
        try:
            self._run(create)
        except ConflictError:
            existing = self._describe(describe)
            if existing:
                return existing
            raise
        return self._require(describe, " ".join(create[:3]))

    def _describe(self, args: list[str]) -> str | None:
        try:
            output = self._run(args)
        except ResourceNotFound:
            return None
        return output or None

    def _require(self, describe: list[str], operation: str) -> str:
        handle = self._describe(describe)
        if not handle:
            raise TransientError("Resource not visible after create", details={"operation": operation})
        return handle

    def _run(self, args: Sequence[str], *, stdin: str | None = None, redact: bool = False) -> str:
        cmd = [self._binary, *args, f"--project={self.project}", "--quiet"]
        operation = " ".join(args[:3])
        logger.debug("gcloud_call", operation=operation, args=None if redact else list(args))
        try:
            proc = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                input=stdin,
                timeout=self._timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise TransientError(
                "gcloud call timed out", details={"operation": operation, "timeout": self._timeout}
            ) from exc
        except OSError as exc:
            raise ProviderError(str(exc), details={"operation": operation}) from exc

        if proc.returncode != 0:
            raise classify_error(proc.stderr or "", operation)
        return proc.stdout.strip()


def _secret_payload(name: str, config: ResourceConfig) -> str:
    if config.get("generate"):
        return base64.b64encode(secrets.token_bytes(int(config.get("bytes", 32)))).decode()
    if config.get("from_env"):
        value = os.environ.get(config["from_env"])
        if value is None:
            raise ConfigError(
                "Secret source variable is not set", details={"secret": name, "variable": config["from_env"]}
            )
        return value
    if "value" in config:
        return str(config["value"])
    raise ConfigError("Secret needs one of generate, from_env or value", details={"secret": name})


def _api_name(api: str) -> str:
    return api if "." in api else f"{api}.googleapis.com"


def _default_policy(display_name: str, config: ResourceConfig) -> dict[str, Any]:
    return {
        "displayName": display_name,
        "combiner": "OR",
        "conditions": [
            {
                "displayName": config.get("condition_name", f"{display_name} threshold"),
                "conditionThreshold": {
                    "filter": config.get(
                        "filter",
                        'resource.type="cloud_run_revision" AND metric.type="run.googleapis.com/request_count"',
                    ),
                    "comparison": "COMPARISON_GT",
                    "thresholdValue": config.get("threshold", 10),
                    "duration": config.get("duration", "300s"),
                },
            }
        ],
        "alertStrategy": {"autoClose": "1800s"},
    }


def _factory(**kwargs: Any) -> GcloudProvider:
    return GcloudProvider(**kwargs)


register_provider(
    GcloudProvider.name,
    _factory,
    version="0.1.0",
    description="Google Cloud via the gcloud CLI",
)
