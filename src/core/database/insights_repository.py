"""Queries and upserts for the per-dimension insight tables and consolidated reports.

Upserts use ``INSERT ... ON CONFLICT DO UPDATE`` keyed on
``(client_id, month_year, <dimension key>)`` so re-storing the same period
replaces rows instead of duplicating them.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import Table, and_, delete, func, select, tuple_
from sqlalchemy.orm import Session

from src.core.database.models import MonthlyReport
from src.core.dimensions import DimensionSpec

logger = logging.getLogger(__name__)

# Rows per INSERT statement; keeps bound parameters under SQLite's limit
UPSERT_CHUNK_SIZE = 200


def _dialect_insert(session: Session, table: Table):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise ValueError(f"Upsert is not supported for dialect {dialect!r}")
    return insert(table)


def conflict_columns(spec: DimensionSpec) -> list[str]:
    return ["client_id", "month_year", *spec.key_fields]


def upsert_dimension_rows(session: Session, spec: DimensionSpec, rows: list[dict[str, Any]]) -> int:
    """Insert or wholesale-replace rows for one dimension. Returns the number of rows affected.

    Rows repeating a conflict key are collapsed to the last one before writing.

    The caller owns the transaction (commit/rollback).
    """
    if not rows:
        return 0

    table: Table = spec.model.__table__
    keys = conflict_columns(spec)
    # One statement may not touch a key twice; the last row for a key wins
    rows = list({tuple(row[key] for key in keys): row for row in rows}.values())
    affected = 0
    unknown_count = False

    for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
        chunk = rows[start : start + UPSERT_CHUNK_SIZE]
        stmt = _dialect_insert(session, table).values(chunk)
        update_columns = {
            column.name: stmt.excluded[column.name]
            for column in table.columns
            if column.name not in keys and not column.primary_key
        }
        stmt = stmt.on_conflict_do_update(index_elements=keys, set_=update_columns)
        result = session.execute(stmt)
        if result.rowcount is None or result.rowcount < 0:
            unknown_count = True
        else:
            affected += result.rowcount

    if unknown_count:
        # Driver did not report a row count; count the keys that are now present
        affected = count_keys(session, spec, rows)
        logger.debug(f"{spec.table_name}: driver row count unavailable, verified {affected} rows")

    return affected


def count_keys(session: Session, spec: DimensionSpec, rows: list[dict[str, Any]]) -> int:
    """Count stored rows whose conflict key matches one of the given rows."""
    table: Table = spec.model.__table__
    keys = conflict_columns(spec)
    wanted = {tuple(row[key] for key in keys) for row in rows}
    columns = [table.c[key] for key in keys]
    total = 0
    wanted_list = list(wanted)
    for start in range(0, len(wanted_list), UPSERT_CHUNK_SIZE):
        chunk = wanted_list[start : start + UPSERT_CHUNK_SIZE]
        stmt = select(func.count()).select_from(table).where(tuple_(*columns).in_(chunk))
        total += session.scalar(stmt) or 0
    return total


def fetch_dimension_rows(session: Session, spec: DimensionSpec, client_id: str, period: str) -> list[dict[str, Any]]:
    table: Table = spec.model.__table__
    stmt = (
        select(table)
        .where(and_(table.c.client_id == client_id, table.c.month_year == period))
        .order_by(table.c.id)
    )
    return [dict(row) for row in session.execute(stmt).mappings()]


def count_dimension_rows(session: Session, spec: DimensionSpec, client_id: str, period: str) -> int:
    table: Table = spec.model.__table__
    stmt = (
        select(func.count())
        .select_from(table)
        .where(and_(table.c.client_id == client_id, table.c.month_year == period))
    )
    return session.scalar(stmt) or 0


def period_activity(session: Session, spec: DimensionSpec, client_id: str) -> list[tuple[str, int, datetime | None]]:
    """(month_year, row count, latest scraped_at) for every period stored for a client."""
    table: Table = spec.model.__table__
    stmt = (
        select(table.c.month_year, func.count(), func.max(table.c.scraped_at))
        .where(table.c.client_id == client_id)
        .group_by(table.c.month_year)
    )
    return [(row[0], row[1], row[2]) for row in session.execute(stmt)]


def delete_dimension_rows(session: Session, spec: DimensionSpec, client_id: str, period: str) -> int:
    table: Table = spec.model.__table__
    stmt = delete(table).where(and_(table.c.client_id == client_id, table.c.month_year == period))
    return session.execute(stmt).rowcount or 0


def upsert_report(
    session: Session, client_id: str, period: str, report_data: dict[str, Any], scraped_at: datetime
) -> None:
    table: Table = MonthlyReport.__table__
    stmt = _dialect_insert(session, table).values(
        client_id=client_id, month_year=period, report_data=report_data, scraped_at=scraped_at
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=["client_id", "month_year"],
        set_={"report_data": stmt.excluded.report_data, "scraped_at": stmt.excluded.scraped_at},
    )
    session.execute(stmt)
