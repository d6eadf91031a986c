"""
SQL Cache — Query Surface

Builds the parameterized statements the cache issues. Values are always bound,
never rendered into SQL text.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import Delete, Executable, Select, Table, Update, delete, insert, select, update
from sqlalchemy.dialects.mysql import insert as mysql_insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Inspector

from .expiration import ExpirationInfo
from .schema import Columns, value_bind

# Dialects with a native single-statement upsert
ON_CONFLICT_DIALECTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


@dataclass(frozen=True)
class Upsert:
    """
    Insert-or-replace of a full record.

    ``fallback_insert`` is only set for dialects without a native upsert: the
    caller runs ``statement`` (an UPDATE) and, if it matched no row, the insert,
    both inside one transaction. An insert that loses a race to a concurrent
    writer of the same key is followed by the UPDATE again, so the last write wins.
    """

    statement: Executable
    fallback_insert: Executable | None = None


class CacheQueries:
    """Statements for a single cache table."""

    def __init__(self, table: Table):
        self.table = table

    def missing_columns(self, inspector: Inspector) -> list[str]:
        """
        Return required physical columns absent from the table descriptor.

        Raises NoSuchTableError (from the inspector) if the table does not exist.
        """
        present = {c["name"] for c in inspector.get_columns(self.table.name, schema=self.table.schema)}
        return [name for name in Columns.REQUIRED if name not in present]

    def get_cache_item(self, key: str, now: datetime) -> Select[Any]:
        """Fetch the row for ``key`` only if it has not logically expired."""
        c = self.table.c
        return select(
            c.id.label("id"),
            c.value.label("value"),
            c.expires_at.label("expires_at"),
            c.sliding_expiration.label("sliding_expiration"),
            c.absolute_expiration.label("absolute_expiration"),
        ).where(c.id == key, c.expires_at > now)

    def set_cache_item(self, dialect_name: str, key: str, value: bytes, info: ExpirationInfo) -> Upsert:
        """Insert a row or fully replace its value and all expiration fields."""
        c = self.table.c
        values: dict[str, Any] = {
            "id": key,
            "value": value_bind(value),
            "expires_at": info.expires_at,
            "sliding_expiration": info.sliding_expiration,
            "absolute_expiration": info.absolute_expiration,
        }
        replaced = [c.value, c.expires_at, c.sliding_expiration, c.absolute_expiration]

        if dialect_name in ON_CONFLICT_DIALECTS:
            stmt = ON_CONFLICT_DIALECTS[dialect_name](self.table).values(**values)
            return Upsert(
                stmt.on_conflict_do_update(
                    index_elements=[c.id],
                    set_={col: stmt.excluded[col.key] for col in replaced},
                )
            )

        if dialect_name in ("mysql", "mariadb"):
            stmt = mysql_insert(self.table).values(**values)
            return Upsert(stmt.on_duplicate_key_update(**{col.key: stmt.inserted[col.key] for col in replaced}))

        update_values = {k: v for k, v in values.items() if k != "id"}
        return Upsert(
            statement=update(self.table).where(c.id == key).values(**update_values),
            fallback_insert=insert(self.table).values(**values),
        )

    def update_cache_item_expiration(self, key: str, expires_at: datetime) -> Update:
        """Move only the expires_at column of an existing row."""
        c = self.table.c
        return update(self.table).where(c.id == key).values(expires_at=expires_at)

    def delete_cache_item(self, key: str) -> Delete:
        """Remove a row unconditionally."""
        return delete(self.table).where(self.table.c.id == key)

    def delete_expired_cache_items(self, now: datetime) -> Delete:
        """Remove every row whose deadline is at or before ``now``."""
        return delete(self.table).where(self.table.c.expires_at <= now)
