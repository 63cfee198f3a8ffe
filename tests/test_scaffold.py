"""Tests for application source scaffolding."""

import re

import pytest

from stackweaver.core.errors import ConfigError
from stackweaver.scaffold import APPS, ScaffoldOptions, render, render_text
from stackweaver.scaffold.renderer import TEMPLATES_DIR


class TestRenderText:
    """Tests for token substitution."""

    def test_replaces_tokens(self):
        assert render_text("db=__DB_NAME__;", {"DB_NAME": "webapp"}) == "db=webapp;"

    def test_leaves_lowercase_dunders_alone(self):
        text = 'if __name__ == "__main__":'

        assert render_text(text, {}) == text

    def test_unknown_token(self):
        with pytest.raises(ConfigError) as exc_info:
            render_text("__NOPE__", {})

        assert exc_info.value.details == {"token": "NOPE"}


class TestScaffoldOptions:
    """Tests for ScaffoldOptions token values."""

    def test_backup_bucket_defaults_from_project(self):
        assert ScaffoldOptions(project="acme").tokens()["BACKUP_BUCKET"] == "acme-backups"

    def test_every_template_token_is_known(self):
        tokens = ScaffoldOptions().tokens()
        for path in TEMPLATES_DIR.rglob("*"):
            if path.is_file():
                render_text(path.read_text(), tokens)


class TestRender:
    """Tests for rendering the bundled applications."""

    def test_renders_all_apps(self, tmp_path):
        written = render(tmp_path, ScaffoldOptions(project="acme-prod", cache_ttl_seconds=60))

        relative = {p.relative_to(tmp_path).as_posix() for p in written}
        assert {"backend/server.js", "backend/schema.sql", "frontend/default.conf.template", "backup-function/main.py"} <= relative
        assert {p.split("/")[0] for p in relative} == set(APPS)

        for path in written:
            assert not re.search(r"__[A-Z][A-Z0-9_]*__", path.read_text())

        backup = (tmp_path / "backup-function" / "main.py").read_text()
        assert '"gs://acme-prod-backups"' in backup
        assert "60" in (tmp_path / "backend" / "server.js").read_text()

    def test_single_app(self, tmp_path):
        render(tmp_path, apps=("backend",))

        assert (tmp_path / "backend" / "package.json").exists()
        assert not (tmp_path / "frontend").exists()

    def test_unknown_app(self, tmp_path):
        with pytest.raises(ConfigError):
            render(tmp_path, apps=("mobile",))

    def test_refuses_to_overwrite(self, tmp_path):
        target = tmp_path / "frontend" / "index.html"
        target.parent.mkdir()
        target.write_text("mine")

        with pytest.raises(ConfigError):
            render(tmp_path, apps=("frontend",))

        assert target.read_text() == "mine"
        assert not (tmp_path / "frontend" / "app.js").exists()

    def test_overwrite(self, tmp_path):
        target = tmp_path / "frontend" / "index.html"
        target.parent.mkdir()
        target.write_text("mine")

        render(tmp_path, apps=("frontend",), overwrite=True)

        assert target.read_text() != "mine"

    def test_frontend_backend_url_is_resolved_by_nginx_at_start(self, tmp_path):
        """Test the proxy target comes from the container's BACKEND_URL, not from scaffold time."""
        render(tmp_path, apps=("frontend",))

        frontend = tmp_path / "frontend"
        conf = (frontend / "default.conf.template").read_text()
        assert "proxy_pass ${BACKEND_URL}/api/;" in conf
        assert "try_files $uri $uri/ /index.html;" in conf
        assert not (frontend / "default.conf").exists()
        dockerfile = (frontend / "Dockerfile").read_text()
        assert "COPY default.conf.template /etc/nginx/templates/default.conf.template" in dockerfile

    def test_backend_applies_schema_at_start(self, tmp_path):
        render(tmp_path, apps=("backend",))

        server = (tmp_path / "backend" / "server.js").read_text()
        assert "path.join(__dirname, 'schema.sql')" in server
        assert "applySchema()" in server
        assert "CREATE TABLE IF NOT EXISTS users" in (tmp_path / "backend" / "schema.sql").read_text()
