"""Guarded (conditional) writes.

Every at-most-once transition is an UPDATE whose WHERE clause re-asserts the
expected prior state. The affected row count tells the caller whether it won
the race; zero means another request already moved the row (or it never
matched).
"""

from __future__ import annotations

from typing import Any, Iterable, TypeVar

from sqlalchemy import ColumnElement, update
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from promo_ledger_api.db.base import Base


ModelT = TypeVar("ModelT", bound=Base)


async def update_where(
    session: AsyncSession,
    model: type[Base],
    *,
    criteria: Iterable[ColumnElement[bool]],
    values: dict[str, Any],
) -> int:
    """Apply ``values`` to rows matching every criterion; return the affected count."""

    conditions = list(criteria)
    if not conditions:
        raise ValueError("Guarded updates require at least one criterion")

    stmt = (
        update(model)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return int(result.rowcount or 0)


async def reload(session: AsyncSession, model: type[ModelT], identifier: Any) -> ModelT | None:
    """Re-read a row after a guarded write so the identity map reflects the database."""

    return await session.get(model, identifier, populate_existing=True)


async def insert_if_absent(
    session: AsyncSession,
    model: type[Base],
    *,
    values: dict[str, Any],
    index_elements: list[str],
) -> int:
    """Insert a row unless one already occupies the unique key; return rows inserted."""

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql_insert(model)
    elif dialect == "sqlite":
        stmt = sqlite_insert(model)
    else:  # pragma: no cover - deployments run on postgres or sqlite
        raise RuntimeError(f"Unsupported dialect for conflict-free inserts: {dialect}")

    stmt = stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)
    result = await session.execute(stmt)
    return int(result.rowcount or 0)
