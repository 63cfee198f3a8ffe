"""Tests for environment-based settings."""

from pathlib import Path

from stackweaver.cli.runtime import make_executor, provider_options
from stackweaver.config import get_settings
from stackweaver.descriptors import parse


class TestSettings:
    """Tests for Settings defaults and STACKWEAVER_ overrides."""

    def test_defaults(self):
        settings = get_settings()

        assert settings.state_dir == Path(".stackweaver/state")
        assert settings.default_provider == "gcloud"
        assert settings.max_attempts == 3
        assert settings.max_workers == 1
        assert settings.gcloud_project is None

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("STACKWEAVER_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("STACKWEAVER_STATE_DIR", "/var/lib/stackweaver")
        monkeypatch.setenv("STACKWEAVER_GCLOUD_PROJECT", "acme-prod")
        get_settings.cache_clear()

        settings = get_settings()

        assert settings.max_attempts == 5
        assert settings.state_dir == Path("/var/lib/stackweaver")
        assert settings.gcloud_project == "acme-prod"

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("STACKWEAVER_DEFAULT_PROVIDER=memory\n")
        get_settings.cache_clear()

        assert get_settings().default_provider == "memory"

    def test_cached(self):
        assert get_settings() is get_settings()


class TestRuntimeWiring:
    """Tests for settings flowing into the adapter and executor."""

    def test_descriptor_options_win(self, monkeypatch):
        monkeypatch.setenv("STACKWEAVER_GCLOUD_PROJECT", "from-env")
        get_settings.cache_clear()
        descriptors = parse(
            {
                "provider_options": {"project": "from-file"},
                "resources": [{"id": "vpc", "kind": "network", "config": {"name": "vpc"}}],
            }
        )

        options = provider_options(descriptors, get_settings())

        assert options["project"] == "from-file"
        assert options["region"] == "us-central1"
        assert options["binary"] == "gcloud"

    def test_unset_values_dropped(self, three_tier):
        assert "project" not in provider_options(three_tier, get_settings())

    def test_executor_uses_state_dir_setting(self, monkeypatch, tmp_path, three_tier):
        monkeypatch.setenv("STACKWEAVER_STATE_DIR", str(tmp_path / "states"))
        get_settings.cache_clear()

        executor = make_executor(three_tier, get_settings())
        executor.provision()

        assert (tmp_path / "states" / "webapp-test.state.json").exists()
