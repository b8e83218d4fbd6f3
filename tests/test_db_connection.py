import pytest

from vibe_rooms import config
from vibe_rooms.db_connection import DbConnection


@pytest.fixture
def db_settings(monkeypatch):
    monkeypatch.setattr(config, "DATABASE_URL", "")
    monkeypatch.setattr(config, "DB_HOST", "localhost")
    monkeypatch.setattr(config, "DB_PORT", 5432)
    monkeypatch.setattr(config, "DB_NAME", "")
    monkeypatch.setattr(config, "DB_USER", "rooms")
    monkeypatch.setattr(config, "DB_PASSWORD", "pw")
    monkeypatch.setattr(config, "DB_SECRET_ID", "")
    monkeypatch.setattr(config, "LOCAL_SQLITE_URL", "sqlite:///local.db")
    return monkeypatch


class TestDatabaseUrl:

    def test_local_postgres_is_used_when_named(self, db_settings):
        db_settings.setattr(config, "DB_NAME", "vibe")

        db = DbConnection()

        assert db.DATABASE_URL == "postgresql+pg8000://rooms:pw@localhost:5432/vibe"
        assert db.IS_SQLITE is False

    def test_remote_postgres(self, db_settings):
        db_settings.setattr(config, "DB_NAME", "vibe")
        db_settings.setattr(config, "DB_HOST", "10.0.0.7")

        assert DbConnection().DATABASE_URL == "postgresql+pg8000://rooms:pw@10.0.0.7:5432/vibe"

    def test_sqlite_without_db_name(self, db_settings):
        db = DbConnection()

        assert db.DATABASE_URL == "sqlite:///local.db"
        assert db.IS_SQLITE is True

    def test_explicit_url_wins(self, db_settings):
        db_settings.setattr(config, "DB_NAME", "vibe")
        db_settings.setattr(config, "DATABASE_URL", "sqlite:///from-env.db")

        assert DbConnection("sqlite:///explicit.db").DATABASE_URL == "sqlite:///explicit.db"
        assert DbConnection().DATABASE_URL == "sqlite:///from-env.db"
