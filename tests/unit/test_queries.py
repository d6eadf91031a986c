"""
SQL Cache — Query Surface Tests

Statements are compiled (not executed) to check dialect selection and that
values travel as bound parameters.
"""

from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import MetaData
from sqlalchemy.dialects import mssql, mysql, postgresql, sqlite

from sqlcache.expiration import compute_write_expiration
from sqlcache.queries import CacheQueries
from sqlcache.schema import build_cache_table

NOW = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)
KEY = "user:42:profile"


@pytest.fixture
def queries() -> CacheQueries:
    return CacheQueries(build_cache_table(MetaData(), "cache_items"))


class TestCacheQueries:
    """Statement shapes for each dialect."""

    def test_get_filters_on_key_and_unexpired(self, queries: CacheQueries) -> None:
        compiled = queries.get_cache_item(KEY, NOW).compile(dialect=sqlite.dialect())
        sql = str(compiled)

        assert '"ExpiresAtTime" >' in sql
        assert KEY not in sql
        assert KEY in compiled.params.values()

    def test_delete_expired_uses_inclusive_bound(self, queries: CacheQueries) -> None:
        sql = str(queries.delete_expired_cache_items(NOW).compile(dialect=sqlite.dialect()))

        assert sql.startswith("DELETE FROM cache_items")
        assert '"ExpiresAtTime" <=' in sql

    def test_update_expiration_touches_only_expires_at(self, queries: CacheQueries) -> None:
        sql = str(queries.update_cache_item_expiration(KEY, NOW).compile(dialect=sqlite.dialect()))

        assert '"ExpiresAtTime"=' in sql
        assert '"Value"' not in sql
        assert '"SlidingExpirationInTicks"' not in sql

    @pytest.mark.parametrize(
        ("dialect", "marker"),
        [
            (sqlite.dialect(), "ON CONFLICT"),
            (postgresql.dialect(), "ON CONFLICT"),
            (mysql.dialect(), "ON DUPLICATE KEY UPDATE"),
        ],
    )
    def test_native_upsert(self, queries: CacheQueries, dialect: object, marker: str) -> None:
        info = compute_write_expiration(NOW, sliding_expiration=timedelta(minutes=5))

        upsert = queries.set_cache_item(dialect.name, KEY, b"value", info)  # type: ignore[attr-defined]
        compiled = upsert.statement.compile(dialect=dialect)  # type: ignore[arg-type]

        assert upsert.fallback_insert is None
        assert marker in str(compiled)
        assert b"value" in compiled.params.values()

    def test_other_dialects_fall_back_to_update_then_insert(self, queries: CacheQueries) -> None:
        info = compute_write_expiration(NOW, absolute_expiration_relative_to_now=timedelta(minutes=5))

        upsert = queries.set_cache_item("mssql", KEY, b"value", info)

        assert str(upsert.statement.compile(dialect=mssql.dialect())).startswith("UPDATE")
        assert upsert.fallback_insert is not None
        assert str(upsert.fallback_insert.compile(dialect=mssql.dialect())).startswith("INSERT")

    def test_mysql_upsert_replaces_every_field_but_the_key(self, queries: CacheQueries) -> None:
        info = compute_write_expiration(NOW, sliding_expiration=timedelta(minutes=5))

        upsert = queries.set_cache_item("mysql", KEY, b"value", info)
        sql = str(upsert.statement.compile(dialect=mysql.dialect()))
        update_clause = sql.split("ON DUPLICATE KEY UPDATE", 1)[1]

        for column in ("`Value`", "`ExpiresAtTime`", "`SlidingExpirationInTicks`", "`AbsoluteExpiration`"):
            assert column in update_clause
        assert "`Id`" not in update_clause
