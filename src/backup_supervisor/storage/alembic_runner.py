"""Programmatic access to the supervisor's Alembic migrations."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def migration_config(db_path: Path) -> Config:
    """Alembic config bound to ``db_path`` using the repo's ``alembic/`` scripts."""

    config = Config(str(PROJECT_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    return config


def head_revision(db_path: Path) -> str | None:
    return ScriptDirectory.from_config(migration_config(db_path)).get_current_head()


def upgrade_head(db_path: Path) -> None:
    command.upgrade(migration_config(db_path), "head")
