"""
Application source scaffolding.

Renders the demo three-tier application (Node backend API, nginx static
frontend, Python backup function) from the bundled templates. Templates use
``__UPPER_CASE__`` tokens so they stay valid source for their own language.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import structlog

from stackweaver.core.errors import ConfigError

logger = structlog.get_logger()

TEMPLATES_DIR = Path(__file__).parent / "templates"

APPS = ("backend", "frontend", "backup-function")

_TOKEN = re.compile(r"__([A-Z][A-Z0-9_]*)__")


@dataclass
class ScaffoldOptions:
    """Values substituted into the application templates."""

    project: str = "my-webapp-project"
    app_title: str = "Three-Tier Web App"
    backend_name: str = "webapp-backend"
    db_instance: str = "webapp-db"
    db_name: str = "webapp_production"
    backup_bucket: str | None = None
    cache_ttl_seconds: int = 3600

    def tokens(self) -> dict[str, str]:
        return {
            "PROJECT": self.project,
            "APP_TITLE": self.app_title,
            "BACKEND_NAME": self.backend_name,
            "DB_INSTANCE": self.db_instance,
            "DB_NAME": self.db_name,
            "BACKUP_BUCKET": self.backup_bucket or f"{self.project}-backups",
            "CACHE_TTL_SECONDS": str(self.cache_ttl_seconds),
        }


def render_text(text: str, tokens: dict[str, str]) -> str:
    """Replace ``__TOKEN__`` markers; an unknown token is a ConfigError."""

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in tokens:
            raise ConfigError("Unknown template token", details={"token": key})
        return tokens[key]

    return _TOKEN.sub(replace, text)


def render(
    target_dir: Path,
    options: ScaffoldOptions | None = None,
    *,
    apps: tuple[str, ...] = APPS,
    overwrite: bool = False,
) -> list[Path]:
    """Write the selected applications under ``target_dir``.

    Returns the written paths. Existing files are left alone (and reported
    as a ConfigError) unless ``overwrite`` is set.
    """
    options = options or ScaffoldOptions()
    unknown = sorted(set(apps) - set(APPS))
    if unknown:
        raise ConfigError("Unknown application", details={"apps": ", ".join(unknown), "available": ", ".join(APPS)})

    tokens = options.tokens()
    planned: list[tuple[Path, str]] = []
    for app in apps:
        source_root = TEMPLATES_DIR / app
        for source in sorted(p for p in source_root.rglob("*") if p.is_file()):
            destination = target_dir / app / source.relative_to(source_root)
            planned.append((destination, render_text(source.read_text(), tokens)))

    if not overwrite:
        existing = [str(path) for path, _ in planned if path.exists()]
        if existing:
            raise ConfigError("Refusing to overwrite existing files", details={"files": ", ".join(existing)})

    written = []
    for destination, content in planned:
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(content)
        written.append(destination)

    logger.info("scaffold_rendered", target=str(target_dir), apps=list(apps), files=len(written))
    return written
