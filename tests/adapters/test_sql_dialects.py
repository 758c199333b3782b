"""
Tests for the PostgreSQL and MySQL specializations without a server.

Statements are compiled with the SQLAlchemy dialects; driver error
translation is exercised with synthetic DBAPI exceptions.
"""

import pytest
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import DataError, OperationalError

from kvspine.adapters.sql import MySQLStore, PostgreSQLStore
from kvspine.adapters.sql import mysql as mysql_stmts
from kvspine.adapters.sql import postgresql as pg_stmts
from kvspine.adapters.sql import sqlite as sqlite_stmts
from kvspine.core.engine import create_kv_engine
from kvspine.core.errors import BackendError, ConflictError, DatabaseConnectionError, ValueTypeError
from kvspine.core.schema import kv_table


def compiled(stmt, dialect) -> str:
    return " ".join(str(stmt.compile(dialect=dialect)).split())


@pytest.fixture
def table():
    return kv_table("kv")


class TestPostgreSQLStatements:
    def test_upsert(self, table):
        sql = compiled(pg_stmts.upsert_statement(table, "a", b"x"), postgresql.dialect())
        assert sql.startswith("INSERT INTO kv (k, v) VALUES")
        assert "ON CONFLICT (k) DO UPDATE SET v = excluded.v" in sql

    def test_increment_adds_in_sql_and_returns(self, table):
        sql = compiled(pg_stmts.increment_statement(table, "ctr", 5), postgresql.dialect())
        assert "ON CONFLICT (k) DO UPDATE SET v = convert_to(" in sql
        assert "convert_from(" in sql
        assert "AS BIGINT)" in sql
        assert "AS TEXT)" in sql
        assert sql.endswith("RETURNING kv.v")

    def test_increment_initial_value_is_the_amount(self, table):
        stmt = pg_stmts.increment_statement(table, "ctr", -3)
        params = stmt.compile(dialect=postgresql.dialect()).params
        assert params["v"] == b"-3"

    def test_delete_returning(self, table):
        sql = compiled(pg_stmts.delete_returning_statement(table, "a"), postgresql.dialect())
        assert sql.startswith("DELETE FROM kv WHERE kv.k =")
        assert sql.endswith("RETURNING kv.v")


class TestMySQLStatements:
    def test_upsert(self, table):
        sql = compiled(mysql_stmts.upsert_statement(table, "a", b"x"), mysql.dialect())
        assert sql.startswith("INSERT INTO kv (k, v) VALUES")
        assert "ON DUPLICATE KEY UPDATE v =" in sql

    def test_increment_casts_both_ways(self, table):
        sql = compiled(mysql_stmts.increment_statement(table, "ctr", 2), mysql.dialect())
        assert "ON DUPLICATE KEY UPDATE v = CAST(" in sql
        assert "AS SIGNED INTEGER) +" in sql
        assert "AS CHAR)" in sql


class TestSQLiteStatements:
    def test_replace(self, table):
        sql = compiled(sqlite_stmts.replace_statement(table, "a", b"x"), sqlite.dialect())
        assert sql == "INSERT OR REPLACE INTO kv (k, v) VALUES (?, ?)"

    def test_delete_returning(self, table):
        sql = compiled(sqlite_stmts.delete_returning_statement(table, "a"), sqlite.dialect())
        assert sql.startswith("DELETE FROM kv WHERE kv.k = ? RETURNING")


class FakeDriverError(Exception):
    """Stands in for a DBAPI exception carrying driver error codes."""

    def __init__(self, *args, pgcode=None):
        super().__init__(*args)
        self.pgcode = pgcode


@pytest.fixture
def engine(db_url):
    engine = create_kv_engine(db_url)
    yield engine
    engine.dispose()


class TestErrorTranslation:
    """Translation is dialect logic only, so a SQLite engine backs the stores."""

    @pytest.mark.parametrize("sqlstate", ["40001", "40P01"])
    def test_postgresql_serialization_failures_are_conflicts(self, engine, sqlstate):
        store = PostgreSQLStore(engine)
        error = OperationalError("UPDATE", {}, FakeDriverError("could not serialize", pgcode=sqlstate))
        translated = store._translate(error, "store", "k")
        assert isinstance(translated, ConflictError)
        assert translated.retryable
        assert translated.context.key == "k"

    def test_postgresql_bad_integer_is_type_error(self, engine):
        store = PostgreSQLStore(engine)
        error = DataError("INSERT", {}, FakeDriverError("invalid input syntax for type bigint", pgcode="22P02"))
        assert isinstance(store._translate(error, "increment", "ctr"), ValueTypeError)

    def test_postgresql_other_errors_are_backend_errors(self, engine):
        store = PostgreSQLStore(engine)
        error = OperationalError("SELECT", {}, FakeDriverError("disk full", pgcode="53100"))
        translated = store._translate(error, "load", "k")
        assert type(translated) is BackendError
        assert not translated.retryable

    @pytest.mark.parametrize("errno", [1205, 1213])
    def test_mysql_lock_errors_are_conflicts(self, engine, errno):
        store = MySQLStore(engine)
        error = OperationalError("UPDATE", {}, FakeDriverError(errno, "Deadlock found"))
        assert isinstance(store._translate(error, "increment", "ctr"), ConflictError)

    def test_mysql_other_errors_are_backend_errors(self, engine):
        store = MySQLStore(engine)
        error = OperationalError("SELECT", {}, FakeDriverError(1146, "Table doesn't exist"))
        assert type(store._translate(error, "load", "k")) is BackendError

    def test_invalidated_connection_is_transient(self, engine):
        store = MySQLStore(engine)
        error = OperationalError(
            "SELECT", {}, FakeDriverError(2013, "Lost connection"), connection_invalidated=True
        )
        translated = store._translate(error, "load", "k")
        assert isinstance(translated, DatabaseConnectionError)
        assert translated.retryable
