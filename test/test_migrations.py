"""
Tests for the Alembic migrations.
"""

from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect

import callengine.callbacks.models  # noqa: F401
import callengine.telephony.models  # noqa: F401
from callengine.shared.database import Base

ROOT = Path(__file__).resolve().parents[1]


@pytest.fixture
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "callengine.db"


@pytest.fixture
def alembic_config(database_path: Path) -> Config:
    """Alembic configuration pointing at a file-backed SQLite database."""
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "src" / "callengine" / "migrations"))
    config.set_main_option("sqlalchemy.url", f"sqlite+aiosqlite:///{database_path}")
    config.attributes["configure_logging"] = False
    return config


def _inspect(database_path: Path, fn):
    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.connect() as conn:
            return fn(inspect(conn))
    finally:
        engine.dispose()


class TestMigrations:
    """Test suite for database migrations."""

    def test_upgrade_creates_every_model_table(self, alembic_config: Config, database_path: Path) -> None:
        command.upgrade(alembic_config, "head")

        tables = set(_inspect(database_path, lambda i: i.get_table_names()))

        assert tables == set(Base.metadata.tables) | {"alembic_version"}

    def test_columns_match_models(self, alembic_config: Config, database_path: Path) -> None:
        command.upgrade(alembic_config, "head")

        columns = _inspect(
            database_path,
            lambda i: {name: {c["name"] for c in i.get_columns(name)} for name in Base.metadata.tables},
        )

        for name, table in Base.metadata.tables.items():
            assert columns[name] == {c.name for c in table.columns}, name

    def test_unique_keys_used_for_idempotency(self, alembic_config: Config, database_path: Path) -> None:
        command.upgrade(alembic_config, "head")

        def unique_columns(i, table: str) -> set[tuple[str, ...]]:
            found = {tuple(u["column_names"]) for u in i.get_unique_constraints(table)}
            found |= {tuple(ix["column_names"]) for ix in i.get_indexes(table) if ix["unique"]}
            return found

        uniques = _inspect(
            database_path,
            lambda i: {
                table: unique_columns(i, table)
                for table in ("call_events", "call_sessions", "call_metrics", "missed_calls", "callback_requests")
            },
        )

        assert ("idempotency_key",) in uniques["call_events"]
        assert ("linked_id",) in uniques["call_sessions"]
        assert ("call_session_id",) in uniques["call_metrics"]
        assert ("call_session_id",) in uniques["missed_calls"]
        assert ("missed_call_id",) in uniques["callback_requests"]

    def test_downgrade_to_base(self, alembic_config: Config, database_path: Path) -> None:
        command.upgrade(alembic_config, "head")
        command.downgrade(alembic_config, "base")

        tables = set(_inspect(database_path, lambda i: i.get_table_names()))

        assert tables == {"alembic_version"}
