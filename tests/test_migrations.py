import pytest
from sqlalchemy import create_engine, inspect, text

from db_sqlalchemy import (
    MIGRATIONS, add_original_duration_column, backfill_language, create_token_unique_index,
    run_migrations,
)
from store import PASTE_FIELDS


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'legacy.db'}")
    yield engine
    engine.dispose()


def columns(conn):
    return {c["name"] for c in inspect(conn).get_columns("pastes")}


def create_legacy_table(conn):
    # the very first on-disk shape: no token, expiry, language, views or visibility
    conn.execute(text(
        "CREATE TABLE pastes ("
        " id INTEGER PRIMARY KEY AUTOINCREMENT,"
        " title TEXT NOT NULL,"
        " content TEXT NOT NULL,"
        " created_at INTEGER NOT NULL DEFAULT (strftime('%s','now')))"
    ))


def test_fresh_database_gets_current_shape(engine):
    with engine.begin() as conn:
        applied = run_migrations(conn)
        assert applied == ["create_pastes_table"]
        assert columns(conn) == set(PASTE_FIELDS)


def test_rerunning_is_a_no_op(engine):
    with engine.begin() as conn:
        run_migrations(conn)
        assert run_migrations(conn) == []


def test_migration_names_are_unique():
    names = [name for name, _ in MIGRATIONS]
    assert len(names) == len(set(names))
    assert names[0] == "create_pastes_table"


def test_legacy_table_is_upgraded(engine):
    with engine.begin() as conn:
        create_legacy_table(conn)
        conn.execute(text("INSERT INTO pastes (title, content, created_at) VALUES ('old', 'body', 1000)"))
        applied = run_migrations(conn)

        assert "create_pastes_table" not in applied
        assert "backfill_expires_at" in applied
        assert "backfill_language" in applied
        assert columns(conn) >= set(PASTE_FIELDS)
        row = conn.execute(text(
            "SELECT language, expires_at, views, max_views, is_public, original_duration FROM pastes"
        )).one()
        assert row.language == "auto"
        assert row.expires_at is not None
        assert row.views == 0
        assert row.max_views is None
        assert row.is_public == 0
        assert row.original_duration == row.expires_at - 1000


def test_token_index_enforces_uniqueness(engine):
    with engine.begin() as conn:
        create_legacy_table(conn)
        run_migrations(conn)
        assert create_token_unique_index(conn) is False
    with engine.connect() as conn:
        conn.execute(text("INSERT INTO pastes (token, title, content, expires_at) VALUES ('abc', 't', 'c', 1)"))
        with pytest.raises(Exception, match="UNIQUE"):
            conn.execute(text("INSERT INTO pastes (token, title, content, expires_at) VALUES ('abc', 't', 'c', 1)"))


def test_original_duration_keeps_default_when_underivable(engine):
    with engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE pastes (id INTEGER PRIMARY KEY, title TEXT, content TEXT,"
            " created_at INTEGER, expires_at INTEGER)"
        ))
        conn.execute(text("INSERT INTO pastes (title, content, created_at, expires_at) VALUES ('a', 'b', 10, NULL)"))
        assert add_original_duration_column(conn) is True
        assert conn.execute(text("SELECT original_duration FROM pastes")).scalar() == 86400
        assert add_original_duration_column(conn) is False


def test_backfill_language_only_touches_nulls(engine):
    with engine.begin() as conn:
        run_migrations(conn)
        conn.execute(text(
            "INSERT INTO pastes (token, title, content, created_at, expires_at, language)"
            " VALUES ('a', 't', 'c', 1, 2, 'rust')"
        ))
        assert backfill_language(conn) is False
        assert conn.execute(text("SELECT language FROM pastes")).scalar() == "rust"
