"""
Tests for database connection management.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import create_engine, inspect, text
from sqlalchemy.dialects import postgresql
from sqlalchemy.orm import Session

from chatlake.db.connection import (
    check_connection,
    db_session,
    enable_sqlite_savepoints,
    get_db,
    transaction,
)
from chatlake.models.db import Base, Project, ProjectStatus


class TestGetDb:
    """Tests for the FastAPI session dependency."""

    def test_commits_and_closes(self):
        mock_session = MagicMock(spec=Session)

        with patch("chatlake.db.connection.SessionLocal", return_value=mock_session):
            gen = get_db()
            assert next(gen) is mock_session
            with pytest.raises(StopIteration):
                next(gen)

        mock_session.commit.assert_called_once()
        mock_session.close.assert_called_once()

    def test_rolls_back_on_error(self):
        mock_session = MagicMock(spec=Session)

        with patch("chatlake.db.connection.SessionLocal", return_value=mock_session):
            gen = get_db()
            next(gen)
            with pytest.raises(ValueError):
                gen.throw(ValueError("boom"))

        mock_session.rollback.assert_called_once()
        mock_session.commit.assert_not_called()
        mock_session.close.assert_called_once()


class TestContextManagers:
    """Tests for db_session and transaction."""

    @pytest.mark.parametrize("manager", [db_session, transaction])
    def test_commit_on_success(self, manager):
        mock_session = MagicMock(spec=Session)

        with patch("chatlake.db.connection.SessionLocal", return_value=mock_session):
            with manager() as session:
                assert session is mock_session

        mock_session.commit.assert_called_once()
        mock_session.close.assert_called_once()

    @pytest.mark.parametrize("manager", [db_session, transaction])
    def test_rollback_on_error(self, manager):
        mock_session = MagicMock(spec=Session)

        with patch("chatlake.db.connection.SessionLocal", return_value=mock_session):
            with pytest.raises(RuntimeError):
                with manager():
                    raise RuntimeError("failed")

        mock_session.rollback.assert_called_once()
        mock_session.commit.assert_not_called()


class TestCheckConnection:
    def test_healthy(self):
        assert check_connection() is True

    def test_unhealthy(self):
        mock_session = MagicMock(spec=Session)
        mock_session.execute.side_effect = RuntimeError("connection refused")

        with patch("chatlake.db.connection.SessionLocal", return_value=mock_session):
            assert check_connection() is False


class TestSqliteSupport:
    """Tests for running the schema on SQLite."""

    def test_jsonb_columns_become_json(self, test_engine):
        columns = {c["name"]: c for c in inspect(test_engine).get_columns("topics")}

        assert not isinstance(Base.metadata.tables["topics"].c.keywords.type, postgresql.JSONB)
        assert "keywords" in columns

    def test_savepoint_rollback_keeps_outer_work(self, tmp_path):
        engine = create_engine(f"sqlite:///{tmp_path / 'savepoints.db'}")
        enable_sqlite_savepoints(engine)
        Base.metadata.create_all(engine)

        with Session(engine) as session:
            session.add(Project(name="Kept", status=ProjectStatus.ACTIVE))
            session.flush()
            with pytest.raises(RuntimeError):
                with session.begin_nested():
                    session.add(Project(name="Dropped", status=ProjectStatus.ACTIVE))
                    session.flush()
                    raise RuntimeError("undo inner work")
            session.commit()

            names = [row[0] for row in session.execute(text("SELECT name FROM projects"))]

        assert names == ["Kept"]
        engine.dispose()
