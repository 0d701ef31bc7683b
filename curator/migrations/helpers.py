"""Guards that keep revision scripts idempotent against existing schemas."""

from __future__ import annotations

from collections.abc import Iterable

from alembic import op
import sqlalchemy as sa
from sqlalchemy.engine import Connection, Inspector


def get_inspector(connection: Connection | None = None) -> Inspector:
    bind = connection if connection is not None else op.get_bind()
    return sa.inspect(bind)


def has_table(inspector: Inspector, table_name: str) -> bool:
    return table_name in inspector.get_table_names()


def index_names(inspector: Inspector, table_name: str) -> set[str]:
    if not has_table(inspector, table_name):
        return set()
    return {index["name"] for index in inspector.get_indexes(table_name)}


def create_index_if_missing(
    inspector: Inspector,
    table_name: str,
    index_name: str,
    columns: Iterable[str],
) -> None:
    """Create *index_name* unless a previous run (or ``create_all``) made it."""

    if index_name not in index_names(inspector, table_name):
        op.create_index(index_name, table_name, list(columns))


def drop_table_if_exists(inspector: Inspector, table_name: str) -> None:
    if has_table(inspector, table_name):
        op.drop_table(table_name)


__all__ = [
    "create_index_if_missing",
    "drop_table_if_exists",
    "get_inspector",
    "has_table",
    "index_names",
]
