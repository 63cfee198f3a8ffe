"""Tests for providers/gcloud.py.

Tests for the gcloud CLI adapter: stderr classification, describe-before-create
idempotence, secret handling and timeouts. The CLI itself is never invoked.
"""

import subprocess
from unittest.mock import MagicMock, patch

import httpx
import pytest

from stackweaver.core.errors import (
    AuthError,
    ConfigError,
    ConflictError,
    ProviderError,
    QuotaError,
    TransientError,
)
from stackweaver.descriptors import ResourceKind
from stackweaver.providers.gcloud import GcloudProvider, ResourceNotFound, _http_error, classify_error

NOT_FOUND = "ERROR: (gcloud.compute.networks.describe) The resource 'webapp-vpc' was not found"
SERVICE_NOT_FOUND = "ERROR: (gcloud.run.services.describe) Cannot find service [webapp-backend]"
ADC_WARNING = (
    "WARNING: Your active project does not match the quota project in your local Application Default "
    "Credentials file. This might result in unexpected quota issues."
)


def ok(stdout=""):
    return MagicMock(returncode=0, stdout=stdout, stderr="")


def failed(stderr):
    return MagicMock(returncode=1, stdout="", stderr=stderr)


@pytest.fixture
def gcloud():
    with patch("shutil.which", return_value="/usr/bin/gcloud"):
        yield GcloudProvider(project="my-webapp-project", region="us-central1", timeout=30.0)


class TestClassifyError:
    """Tests for mapping gcloud stderr to the error taxonomy."""

    @pytest.mark.parametrize(
        "stderr, expected",
        [
            ("ERROR: (gcloud.sql.instances.create) PERMISSION_DENIED: caller lacks access", AuthError),
            ("ERROR: You do not currently have an active account selected. Run gcloud auth login", AuthError),
            ("ERROR: QUOTA_EXCEEDED: Quota 'NETWORKS' exceeded. Limit: 5.0 globally.", QuotaError),
            ("ERROR: RESOURCE_EXHAUSTED: too many instances", QuotaError),
            ("ERROR: (gcloud.compute.networks.create) The resource 'webapp-vpc' already exists", ConflictError),
            (NOT_FOUND, ResourceNotFound),
            ("ERROR: UNAVAILABLE: the service is currently unavailable", TransientError),
            ("ERROR: DEADLINE_EXCEEDED", TransientError),
            ("ERROR: invalid value for --tier", ProviderError),
        ],
    )
    def test_classification(self, stderr, expected):
        error = classify_error(stderr, "sql instances create")

        assert type(error) is expected
        assert error.details == {"operation": "sql instances create"}

    def test_message_is_error_line(self):
        error = classify_error("WARNING: something\nERROR: QUOTA_EXCEEDED: limit 5\n", "op")

        assert error.message == "ERROR: QUOTA_EXCEEDED: limit 5"

    def test_empty_stderr(self):
        assert classify_error("", "op").message == "gcloud command failed"

    def test_only_transient_is_retryable(self):
        assert classify_error("UNAVAILABLE", "op").retryable is True
        assert classify_error("PERMISSION_DENIED", "op").retryable is False

    @pytest.mark.parametrize(
        "stderr",
        [
            SERVICE_NOT_FOUND,
            "ERROR: (gcloud.storage.buckets.describe) gs://acme-backups not found: 404.",
            "ERROR: (gcloud.functions.describe) ResponseError: status=[404], code=[Ok], message=[Resource "
            "'projects/p/locations/us-central1/functions/db-backup' was not found]",
            "ERROR: (gcloud.secrets.describe) NOT_FOUND: Secret [projects/1/secrets/db-password] not found or has no versions.",
            "ERROR: (gcloud.sql.instances.describe) HTTPError 404: The Cloud SQL instance does not exist.",
        ],
    )
    def test_describe_not_found_per_command(self, stderr):
        assert type(classify_error(stderr, "describe")) is ResourceNotFound

    @pytest.mark.parametrize(
        "stderr, expected",
        [
            (f"{ADC_WARNING}\n{NOT_FOUND}", ResourceNotFound),
            (f"{ADC_WARNING}\n{SERVICE_NOT_FOUND}", ResourceNotFound),
            (f"{ADC_WARNING}\nERROR: invalid value for --tier", ProviderError),
            ("WARNING: retrying after 503\nERROR: (gcloud.compute.networks.describe) bad flag", ProviderError),
            (f"{ADC_WARNING}\nERROR: QUOTA_EXCEEDED: Quota 'NETWORKS' exceeded.", QuotaError),
        ],
    )
    def test_warning_lines_are_ignored(self, stderr, expected):
        error = classify_error(stderr, "describe")

        assert type(error) is expected
        assert error.message.startswith("ERROR:")

    @pytest.mark.parametrize(
        "stderr, expected",
        [
            ("ERROR: (gcloud.sql.instances.create) invalid value for --storage-size: 5000GB", ProviderError),
            ("ERROR: (gcloud.run.deploy) INTERNAL: an internal error occurred", TransientError),
            ("ERROR: (gcloud.compute.networks.create) HTTPError 503: backend unavailable", TransientError),
            ("ERROR: (gcloud.functions.deploy) ResponseError: status=[500], code=[500]", TransientError),
        ],
    )
    def test_numeric_codes_are_anchored(self, stderr, expected):
        assert type(classify_error(stderr, "op")) is expected


class TestHttpErrors:
    """Tests for Cloud SQL Admin API status mapping."""

    @pytest.mark.parametrize(
        "status, expected",
        [(401, AuthError), (403, AuthError), (429, QuotaError), (409, ConflictError), (503, TransientError), (400, ProviderError)],
    )
    def test_status_mapping(self, status, expected):
        assert type(_http_error(status, "{}", "sql users create")) is expected



class TestConstruction:
    """Tests for provider setup."""

    @patch("shutil.which")
    def test_missing_binary(self, mock_which):
        """Test a missing gcloud binary is a configuration error."""
        mock_which.return_value = None

        with pytest.raises(ConfigError, match="not found"):
            GcloudProvider(project="my-webapp-project")

    @patch("shutil.which")
    def test_missing_project(self, mock_which):
        mock_which.return_value = "/usr/bin/gcloud"

        with pytest.raises(ConfigError, match="project"):
            GcloudProvider(project=None)


class TestCreate:
    """Tests for idempotent create operations."""

    @patch("subprocess.run")
    def test_existing_resource_is_not_recreated(self, mock_run, gcloud):
        mock_run.return_value = ok("https://compute/projects/p/global/networks/webapp-vpc\n")

        handle = gcloud.create_network({"name": "webapp-vpc"})

        assert handle == "https://compute/projects/p/global/networks/webapp-vpc"
        mock_run.assert_called_once()
        args = mock_run.call_args[0][0]
        assert args[:5] == ["/usr/bin/gcloud", "compute", "networks", "describe", "webapp-vpc"]
        assert "--project=my-webapp-project" in args
        assert "--quiet" in args

    @patch("subprocess.run")
    def test_describe_create_describe(self, mock_run, gcloud):
        mock_run.side_effect = [failed(NOT_FOUND), ok(), ok("selfLink/webapp-vpc")]

        handle = gcloud.create_network({"name": "webapp-vpc", "subnet_mode": "custom"})

        assert handle == "selfLink/webapp-vpc"
        create_args = mock_run.call_args_list[1][0][0]
        assert create_args[1:5] == ["compute", "networks", "create", "webapp-vpc"]
        assert "--subnet-mode=custom" in create_args
        assert mock_run.call_args_list[1][1]["timeout"] == 30.0

    @patch("subprocess.run")
    def test_conflict_resolved_by_describe(self, mock_run, gcloud):
        """Test ALREADY_EXISTS on create falls back to the existing resource."""
        mock_run.side_effect = [
            failed(NOT_FOUND),
            failed("ERROR: ALREADY_EXISTS: webapp-vpc"),
            ok("selfLink/webapp-vpc"),
        ]

        assert gcloud.create_network({"name": "webapp-vpc"}) == "selfLink/webapp-vpc"

    @patch("subprocess.run")
    def test_conflict_with_nothing_visible(self, mock_run, gcloud):
        mock_run.side_effect = [
            failed(NOT_FOUND),
            failed("ERROR: name already in use by another project"),
            failed(NOT_FOUND),
        ]

        with pytest.raises(ConflictError):
            gcloud.create_network({"name": "webapp-vpc"})

    @patch("subprocess.run")
    def test_quota_error_propagates(self, mock_run, gcloud):
        mock_run.side_effect = [failed(NOT_FOUND), failed("ERROR: QUOTA_EXCEEDED")]

        with pytest.raises(QuotaError):
            gcloud.create_database({"name": "webapp-db"})

    @patch("subprocess.run")
    def test_cache_handle_is_host_port(self, mock_run, gcloud):
        mock_run.return_value = ok("10.0.0.3\t6379")

        assert gcloud.create_cache({"name": "webapp-cache"}) == "10.0.0.3:6379"

    @patch("subprocess.run")
    def test_generated_secret_goes_through_stdin(self, mock_run, gcloud):
        """Test generated secret values are piped on stdin, never on the command line."""
        mock_run.side_effect = [
            failed("ERROR: NOT_FOUND: Secret [db-password] not found"),
            ok(),
            ok("projects/123/secrets/db-password"),
        ]

        handle = gcloud.create_secret({"name": "db-password", "generate": True})

        assert handle == "projects/123/secrets/db-password"
        create_call = mock_run.call_args_list[1]
        payload = create_call[1]["input"]
        assert payload and len(payload) >= 40
        assert payload not in " ".join(create_call[0][0])
        assert "--data-file=-" in create_call[0][0]

    @patch("subprocess.run")
    def test_secret_from_missing_env(self, mock_run, gcloud, monkeypatch):
        monkeypatch.delenv("WEBAPP_API_SECRET", raising=False)
        mock_run.return_value = failed(NOT_FOUND)

        with pytest.raises(ConfigError, match="not set"):
            gcloud.create_secret({"name": "api", "from_env": "WEBAPP_API_SECRET"})

    @patch("subprocess.run")
    def test_service_deploy_flags(self, mock_run, gcloud):
        mock_run.side_effect = [failed(SERVICE_NOT_FOUND), ok(), ok(), ok("https://webapp-backend-xyz.a.run.app")]

        url = gcloud.create_service(
            {
                "name": "webapp-backend",
                "source": "backend",
                "public": True,
                "vpc_connector": "webapp-connector",
                "secrets": {"DB_PASSWORD": "db-password"},
                "cloudsql_instances": ["my-webapp-project:us-central1:webapp-db"],
            }
        )

        assert url == "https://webapp-backend-xyz.a.run.app"
        build_args = mock_run.call_args_list[1][0][0]
        deploy_args = mock_run.call_args_list[2][0][0]
        assert build_args[1:4] == ["builds", "submit", "backend"]
        assert "--allow-unauthenticated" in deploy_args
        assert "--vpc-connector=webapp-connector" in deploy_args
        assert "--set-secrets=DB_PASSWORD=db-password:latest" in deploy_args
        assert "--add-cloudsql-instances=my-webapp-project:us-central1:webapp-db" in deploy_args

    @patch("subprocess.run")
    def test_timeout_is_transient(self, mock_run, gcloud):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="gcloud", timeout=30.0)

        with pytest.raises(TransientError, match="timed out"):
            gcloud.create_network({"name": "webapp-vpc"})

    @patch("subprocess.run")
    def test_auth_error(self, mock_run, gcloud):
        mock_run.return_value = failed("ERROR: (gcloud.compute.networks.describe) UNAUTHENTICATED")

        with pytest.raises(AuthError):
            gcloud.create_network({"name": "webapp-vpc"})


    @patch("httpx.post")
    @patch("subprocess.run")
    def test_sql_user_password_stays_off_the_command_line(self, mock_run, mock_post, gcloud):
        """Test database user passwords go to the Cloud SQL Admin API body, not argv."""
        mock_run.side_effect = [
            ok("my-webapp-project:us-central1:webapp-db"),
            ok("s3cret-db-pw"),
            ok("ya29.token"),
        ]
        mock_post.return_value = MagicMock(status_code=200, text="{}")

        handle = gcloud.create_database(
            {"name": "webapp-db", "users": [{"name": "webapp", "password_secret": "db-password"}]}
        )

        assert handle == "my-webapp-project:us-central1:webapp-db"
        for call in mock_run.call_args_list:
            assert "s3cret-db-pw" not in " ".join(call[0][0])
        assert mock_run.call_args_list[1][0][0][1:4] == ["secrets", "versions", "access"]
        url = mock_post.call_args[0][0]
        assert url.endswith("/projects/my-webapp-project/instances/webapp-db/users")
        assert mock_post.call_args[1]["json"] == {"name": "webapp", "password": "s3cret-db-pw"}
        assert mock_post.call_args[1]["headers"]["Authorization"] == "Bearer ya29.token"

    @patch("httpx.post")
    @patch("subprocess.run")
    def test_existing_sql_user_is_kept(self, mock_run, mock_post, gcloud):
        mock_run.side_effect = [ok("p:r:webapp-db"), ok("pw"), ok("token")]
        mock_post.return_value = MagicMock(status_code=409, text="user already exists")

        assert gcloud.create_database({"name": "webapp-db", "users": [{"name": "u", "password_secret": "s"}]})

    @patch("httpx.post")
    @patch("subprocess.run")
    def test_sql_user_forbidden(self, mock_run, mock_post, gcloud):
        mock_run.side_effect = [ok("p:r:webapp-db"), ok("pw"), ok("token")]
        mock_post.return_value = MagicMock(status_code=403, text="forbidden")

        with pytest.raises(AuthError):
            gcloud.create_database({"name": "webapp-db", "users": [{"name": "u", "password_secret": "s"}]})

    @patch("httpx.post")
    @patch("subprocess.run")
    def test_sql_admin_connection_failure_is_transient(self, mock_run, mock_post, gcloud):
        mock_run.side_effect = [ok("p:r:webapp-db"), ok("pw"), ok("token")]
        mock_post.side_effect = httpx.ConnectError("connection refused")

        with pytest.raises(TransientError):
            gcloud.create_database({"name": "webapp-db", "users": [{"name": "u", "password_secret": "s"}]})

    @patch("subprocess.run")
    def test_project_services_enables_only_missing_apis(self, mock_run, gcloud):
        mock_run.side_effect = [ok("run.googleapis.com\ncompute.googleapis.com\n"), ok()]

        handle = gcloud.create_project_services(
            {"name": "webapp-apis", "apis": ["run", "sqladmin", "compute.googleapis.com", "redis"]}
        )

        assert handle == "projects/my-webapp-project/services"
        list_args = mock_run.call_args_list[0][0][0]
        enable_args = mock_run.call_args_list[1][0][0]
        assert list_args[1:4] == ["services", "list", "--enabled"]
        assert enable_args[1:5] == ["services", "enable", "sqladmin.googleapis.com", "redis.googleapis.com"]
        assert "run.googleapis.com" not in enable_args

    @patch("subprocess.run")
    def test_project_services_all_enabled(self, mock_run, gcloud):
        mock_run.return_value = ok("run.googleapis.com\n")

        gcloud.create_project_services({"name": "webapp-apis", "apis": ["run"]})

        mock_run.assert_called_once()

    @patch("subprocess.run")
    def test_storage_bucket_created(self, mock_run, gcloud):
        bucket_missing = "ERROR: (gcloud.storage.buckets.describe) gs://acme-backups not found: 404."
        mock_run.side_effect = [failed(bucket_missing), ok(), ok("acme-backups")]

        handle = gcloud.create_storage_bucket(
            {"name": "acme-backups", "location": "us-central1", "storage_class": "NEARLINE"}
        )

        assert handle == "gs://acme-backups"
        create_args = mock_run.call_args_list[1][0][0]
        assert create_args[1:5] == ["storage", "buckets", "create", "gs://acme-backups"]
        assert "--location=us-central1" in create_args
        assert "--uniform-bucket-level-access" in create_args
        assert "--default-storage-class=NEARLINE" in create_args

    @patch("subprocess.run")
    def test_existing_storage_bucket(self, mock_run, gcloud):
        mock_run.return_value = ok("acme-backups")

        assert gcloud.create_storage_bucket({"name": "acme-backups"}) == "gs://acme-backups"
        mock_run.assert_called_once()


class TestDelete:
    """Tests for deprovisioning."""

    @patch("subprocess.run")
    def test_delete_missing_is_ignored(self, mock_run, gcloud):
        mock_run.return_value = failed(NOT_FOUND)

        gcloud.delete(ResourceKind.NETWORK, {"name": "webapp-vpc"}, "selfLink")

        args = mock_run.call_args[0][0]
        assert args[1:5] == ["compute", "networks", "delete", "webapp-vpc"]

    @patch("subprocess.run")
    def test_delete_subnet_removes_connector_first(self, mock_run, gcloud):
        mock_run.return_value = ok()

        gcloud.delete(
            ResourceKind.SUBNET,
            {"name": "webapp-subnet", "connector": {"name": "webapp-connector"}},
            "selfLink",
        )

        first, second = (c[0][0] for c in mock_run.call_args_list)
        assert "connectors" in first
        assert second[1:4] == ["compute", "subnets", "delete"]

    @patch("subprocess.run")
    def test_delete_failure_propagates(self, mock_run, gcloud):
        mock_run.return_value = failed("ERROR: PERMISSION_DENIED")

        with pytest.raises(AuthError):
            gcloud.delete(ResourceKind.SERVICE, {"name": "webapp-backend"}, None)


    @patch("subprocess.run")
    def test_project_services_stay_enabled(self, mock_run, gcloud):
        gcloud.delete(ResourceKind.PROJECT_SERVICES, {"name": "webapp-apis", "apis": ["run"]}, None)

        mock_run.assert_not_called()

    @patch("subprocess.run")
    def test_delete_storage_bucket(self, mock_run, gcloud):
        mock_run.return_value = ok()

        gcloud.delete(ResourceKind.STORAGE_BUCKET, {"name": "acme-backups"}, "gs://acme-backups")

        assert mock_run.call_args[0][0][1:5] == ["storage", "buckets", "delete", "gs://acme-backups"]


class TestHealthCheck:
    """Tests for provider health reporting."""

    @patch("subprocess.run")
    def test_active_account(self, mock_run, gcloud):
        mock_run.return_value = ok("deployer@example.com")

        health = gcloud.health_check()

        assert health.status == "healthy"
        assert health.details == "deployer@example.com"

    @patch("subprocess.run")
    def test_no_account(self, mock_run, gcloud):
        mock_run.return_value = ok("")

        assert gcloud.health_check().status == "degraded"
