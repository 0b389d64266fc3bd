"""Shared "latest record at or before a date" lookup.

Platform configuration and exchange rates are both versioned by a timestamp column;
readers always want the newest row that was already in force at ``as_of``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession

T = TypeVar("T")


def latest_as_of_stmt(model: type[T], date_column: Any, as_of: datetime, *conditions: Any) -> Select:
    return (
        select(model)
        .where(date_column <= as_of, *conditions)
        .order_by(date_column.desc())
        .limit(1)
    )


async def latest_as_of(
    db: AsyncSession,
    model: type[T],
    date_column: Any,
    as_of: datetime,
    *conditions: Any,
) -> T | None:
    result = await db.execute(latest_as_of_stmt(model, date_column, as_of, *conditions))
    return result.scalars().first()
