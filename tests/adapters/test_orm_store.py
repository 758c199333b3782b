"""
Tests for the ORM-style adapter family.

Covers:
- Connection spec normalization and the process-wide engine registry
- Per-table model declaration, custom columns, pre-declared models
- Contract operations through sessions, shared-engine close semantics
- Concurrent first use (table creation, engine registration)
"""

import threading

import pytest
from sqlalchemy import LargeBinary, String
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Mapped, mapped_column

from kvspine.adapters.orm import KVBase, ORMStore, record_model, registered_specs, spec_name
from kvspine.adapters.orm.session import (
    connection_url,
    retrieve_engine,
    retrieve_or_establish_engine,
)
from kvspine.core.engine import create_kv_engine
from kvspine.core.errors import BackendError, InvalidConfigError, ValueTypeError
from kvspine.core.schema import table_exists


class Preference(KVBase):
    __tablename__ = "orm_preferences"

    k: Mapped[str] = mapped_column(String(255), primary_key=True)
    v: Mapped[bytes | None] = mapped_column(LargeBinary)


def run_threads(count, target):
    barrier = threading.Barrier(count)
    results, errors = [], []

    def worker():
        barrier.wait()
        try:
            results.append(target())
        except Exception as e:  # noqa: BLE001
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


class TestConnectionSpec:
    def test_spec_name_strips_credentials_and_sorts_query(self):
        url = make_url("postgresql://app:secret@db:5432/kv?sslmode=require&application_name=x")
        name = spec_name(url)
        assert "secret" not in name
        assert name == "kvspine?postgresql://app@db:5432/kv?application_name=x&sslmode=require"

    def test_equivalent_specs_share_a_name(self):
        a = spec_name(make_url("postgresql://app:one@db/kv?b=2&a=1"))
        b = spec_name(make_url("postgresql://app:two@db/kv?a=1&b=2"))
        assert a == b

    def test_mapping_spec(self, db_path):
        url = connection_url({"drivername": "sqlite", "database": str(db_path)})
        assert url.get_backend_name() == "sqlite"
        assert url.database == str(db_path)

    def test_mapping_needs_drivername(self):
        with pytest.raises(InvalidConfigError):
            connection_url({"database": "kv"})

    def test_unsupported_spec(self):
        with pytest.raises(InvalidConfigError):
            connection_url(42)


class TestEngineRegistry:
    def test_string_and_mapping_share_engine(self, db_url, db_path):
        first = retrieve_or_establish_engine(db_url)
        second = retrieve_or_establish_engine({"drivername": "sqlite", "database": str(db_path)})
        assert first is second
        assert retrieve_engine(db_url) is first
        assert spec_name(make_url(db_url)) in registered_specs()

    def test_unknown_spec_is_not_registered(self, tmp_path):
        assert retrieve_engine(f"sqlite:///{tmp_path / 'other.db'}") is None

    @pytest.mark.integration
    def test_concurrent_registration_creates_one_engine(self, db_url):
        results, errors = run_threads(8, lambda: retrieve_or_establish_engine(db_url))
        assert errors == []
        assert len({id(engine) for engine in results}) == 1


class TestModels:
    def test_model_reused_per_table(self):
        assert record_model("orm_reuse") is record_model("orm_reuse")

    def test_custom_columns(self):
        model = record_model("orm_custom_cols", key_column="name", value_column="payload")
        assert [c.name for c in model.__table__.columns] == ["name", "payload"]

    def test_conflicting_columns_rejected(self):
        record_model("orm_conflict")
        with pytest.raises(InvalidConfigError):
            record_model("orm_conflict", key_column="id")


class TestORMStore:
    def test_table_created_on_first_use(self, orm_store):
        assert table_exists(orm_store._engine, "kvspine")
        assert orm_store.table_name == "kvspine"

    def test_basic_operations(self, orm_store):
        assert orm_store.store("k", b"a") == b"a"
        orm_store.store("k", b"b")
        assert orm_store.load("k") == b"b"
        assert orm_store.exists("k")
        assert orm_store.delete("k") == b"b"
        assert orm_store.delete("k") is None
        assert orm_store.load("k") is None

    def test_create(self, orm_store):
        assert orm_store.create("k", b"1") is True
        assert orm_store.create("k", b"2") is False
        assert orm_store.load("k") == b"1"

    def test_increment(self, orm_store):
        assert orm_store.increment("ctr", 5) == 5
        assert orm_store.increment("ctr", -2) == 3
        assert orm_store.load("ctr") == b"3"

    def test_increment_non_integer(self, orm_store):
        orm_store.store("ctr", b"abc")
        with pytest.raises(ValueTypeError):
            orm_store.increment("ctr")
        assert orm_store.load("ctr") == b"abc"

    def test_increment_adds_to_value_written_after_validation(self, orm_store, monkeypatch):
        orm_store.store("ctr", b"1")
        orm_store.increment_retries = 0
        original_select = orm_store._select_value

        def select_then_overwrite(session, key, *, lock=False):
            value = original_select(session, key, lock=lock)
            if lock:
                with orm_store._engine.begin() as conn:
                    conn.execute(orm_store.model.__table__.update().values(v=b"100"))
            return value

        monkeypatch.setattr(orm_store, "_select_value", select_then_overwrite)
        assert orm_store.increment("ctr", 1) == 101
        assert orm_store.load("ctr") == b"101"

    @pytest.mark.integration
    def test_concurrent_increments_within_default_budget(self, orm_store):
        assert orm_store.increment_retries == 3

        def bump():
            for _ in range(10):
                orm_store.increment("hits", 1)

        _, errors = run_threads(6, bump)
        assert errors == []
        assert orm_store.load("hits") == b"60"

    def test_default_connection_from_environment(self, db_url, db_path, monkeypatch):
        monkeypatch.setenv("KVSPINE_URL", db_url)
        store = ORMStore(table="from_env")
        try:
            assert store._engine.url.database == str(db_path)
            store.store("a", b"1")
            assert store.load("a") == b"1"
        finally:
            store.close()

    def test_rejects_text_values(self, orm_store):
        with pytest.raises(ValueTypeError):
            orm_store.store("k", "text")

    def test_each_key_pages(self, orm_store):
        orm_store.page_size = 2
        for key in ["c", "a", "e", "b", "d"]:
            orm_store.store(key, b"x")
        assert list(orm_store.each_key()) == ["a", "b", "c", "d", "e"]

    def test_clear(self, orm_store):
        orm_store.merge({"a": b"1", "b": b"2"})
        orm_store.clear()
        assert not orm_store.exists("a")
        assert list(orm_store.each_key()) == []

    def test_custom_table_and_columns(self, db_url):
        with ORMStore(db_url, table="orm_named", key_column="name", value_column="payload") as store:
            store.store("a", b"1")
            assert store.load("a") == b"1"
            assert store.increment("n", 2) == 2
            with store._engine.connect() as conn:
                assert conn.exec_driver_sql("SELECT payload FROM orm_named WHERE name = 'a'").scalar() == b"1"

    def test_predeclared_model(self, db_url):
        with ORMStore(db_url, model=Preference) as store:
            assert store.table_name == "orm_preferences"
            store.store("theme", b"dark")
            assert store.load("theme") == b"dark"

    def test_custom_table_creator(self, db_url):
        created = []

        def create(conn, name):
            created.append(name)
            conn.exec_driver_sql(f"CREATE TABLE {name} (k VARCHAR(255) PRIMARY KEY, v BLOB)")

        with ORMStore(db_url, table="orm_custom_ddl", create_table=create) as store:
            store.store("a", b"1")
        assert created == ["orm_custom_ddl"]

    def test_explicit_engine(self, db_url):
        engine = create_kv_engine(db_url)
        try:
            with ORMStore(engine, table="orm_explicit") as store:
                store.store("a", b"1")
            with engine.connect() as conn:
                assert conn.exec_driver_sql("SELECT count(*) FROM orm_explicit").scalar() == 1
        finally:
            engine.dispose()

    def test_close_keeps_shared_engine(self, db_url):
        first = ORMStore(db_url, table="orm_shared")
        second = ORMStore(db_url, table="orm_shared")
        first.store("a", b"1")
        first.close()
        first.close()  # idempotent
        assert second.load("a") == b"1"
        assert retrieve_engine(db_url) is second._engine
        second.close()

    def test_closed_store_raises(self, db_url):
        store = ORMStore(db_url)
        store.close()
        with pytest.raises(BackendError, match="closed"):
            store.load("a")
        assert repr(store) == "ORMStore(table=None)"

    @pytest.mark.integration
    def test_concurrent_first_use(self, db_url):
        results, errors = run_threads(8, lambda: ORMStore(db_url, table="orm_racing"))
        assert errors == []
        assert len(results) == 8
        results[0].store("a", b"1")
        assert all(store.load("a") == b"1" for store in results)
