"""
Normalized insights store.

Writes transformed insights into one table per dimension. Each dimension is
upserted in its own transaction so a failure in one (say, regional) does not
roll back the others; the result lists every failed dimension.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select

from src.core.database.database_session import SessionFactory, execute_with_retry, get_db_session
from src.core.database.insights_repository import (
    count_dimension_rows,
    delete_dimension_rows,
    fetch_dimension_rows,
    period_activity,
    upsert_dimension_rows,
    upsert_report,
)
from src.core.database.models import MonthlyReport
from src.core.dimensions import DIMENSIONS, DimensionSpec, dimension_records, map_record
from src.core.errors import StorageFailure
from src.core.logging_config import pipeline_logger
from src.core.schemas import PeriodSummary, StorageResult

logger = logging.getLogger(__name__)

DimensionData = dict[str, list[dict[str, Any]]]


def parse_timestamp(value: Any, default: datetime) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Unparseable scraped_at {value!r}; using current time")
    return default


class NormalizedStore:
    """Per-dimension persistence of insights for (client, period)."""

    def __init__(
        self,
        session_factory: SessionFactory | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.session_factory = session_factory
        self.clock = clock

    def store_dimension(
        self, spec: DimensionSpec, client_id: str, period: str, records: list[dict[str, Any]], scraped_at: datetime
    ) -> int:
        """Upsert one dimension in its own transaction.

        Raises:
            StorageFailure: If mapping or the upsert fails (the transaction is rolled back)
        """
        from src.core.metrics import storage_failures_total, stored_rows_total

        try:
            rows = [map_record(spec, record, client_id, period, scraped_at) for record in records]
            # Upserts are idempotent, so a dropped connection is safe to retry
            affected = execute_with_retry(
                lambda session: upsert_dimension_rows(session, spec, rows), self.session_factory
            )
        except Exception as e:
            storage_failures_total.labels(dimension=spec.name).inc()
            raise StorageFailure(spec.name, f"{spec.label}: {e}", details={"client_id": client_id}) from e

        stored_rows_total.labels(dimension=spec.name).inc(affected)
        return affected

    def store(self, client_id: str, period: str, data: dict[str, Any]) -> StorageResult:
        """Store every dimension of transformed data for a client and period.

        Dimensions are independent: a failure is recorded and the remaining
        dimensions still run. ``success`` is True only if all of them succeeded.
        """
        start_time = time.time()
        scraped_at = parse_timestamp(data.get("scraped_at"), self.clock())
        errors: list[str] = []
        counts: dict[str, int] = {}

        for spec in DIMENSIONS:
            records = dimension_records(data, spec)
            if records is None:
                records = []
            if not isinstance(records, list):
                errors.append(f"{spec.label}: expected an array of records")
                continue
            if not records:
                counts[spec.name] = 0
                continue
            try:
                counts[spec.name] = self.store_dimension(spec, client_id, period, records, scraped_at)
            except StorageFailure as e:
                logger.error(f"[Store] {client_id} {period}: {e}")
                errors.append(str(e))

        result = StorageResult(
            success=not errors,
            errors=errors,
            records_inserted=sum(counts.values()),
            dimension_counts=counts,
        )
        pipeline_logger.log_storage(client_id, period, result.success, result.records_inserted, errors)
        logger.info(
            f"[Store] {client_id} {period}: {result.records_inserted} rows across "
            f"{len(counts)} dimension(s) in {(time.time() - start_time) * 1000:.0f}ms"
        )
        return result

    def fetch(self, client_id: str, period: str) -> DimensionData | None:
        """Return stored rows per dimension, or None when nothing is stored for the period."""
        with get_db_session(self.session_factory) as session:
            data = {spec.name: fetch_dimension_rows(session, spec, client_id, period) for spec in DIMENSIONS}

        if not any(data.values()):
            logger.info(f"[Store] No stored insights for {client_id} {period}")
            return None
        return data

    def latest_period(self, client_id: str) -> str | None:
        """The most recently scraped period with any stored rows."""
        summaries = self.available_periods(client_id)
        return summaries[0].month_year if summaries else None

    def available_periods(self, client_id: str) -> list[PeriodSummary]:
        """Stored periods for a client, most recently scraped first."""
        periods: dict[str, PeriodSummary] = {}
        with get_db_session(self.session_factory) as session:
            for spec in DIMENSIONS:
                for month_year, count, scraped_at in period_activity(session, spec, client_id):
                    summary = periods.setdefault(month_year, PeriodSummary(month_year=month_year, total_records=0))
                    summary.total_records += count
                    summary.dimension_counts[spec.name] = count
                    if scraped_at is not None and (
                        summary.last_scraped_at is None or as_utc(scraped_at) > as_utc(summary.last_scraped_at)
                    ):
                        summary.last_scraped_at = scraped_at

        epoch = datetime.min.replace(tzinfo=UTC)
        return sorted(
            periods.values(),
            key=lambda s: (as_utc(s.last_scraped_at) if s.last_scraped_at else epoch, s.month_year),
            reverse=True,
        )

    def count(self, client_id: str, period: str) -> dict[str, int]:
        with get_db_session(self.session_factory) as session:
            return {spec.name: count_dimension_rows(session, spec, client_id, period) for spec in DIMENSIONS}

    def delete_period(self, client_id: str, period: str) -> int:
        """Remove one period from every dimension table. Returns rows deleted."""
        with get_db_session(self.session_factory) as session:
            deleted = sum(delete_dimension_rows(session, spec, client_id, period) for spec in DIMENSIONS)
            session.commit()
        logger.info(f"[Store] Deleted {deleted} rows for {client_id} {period}")
        return deleted

    # Consolidated reports

    def save_report(self, client_id: str, period: str, data: dict[str, Any]) -> None:
        """Upsert the consolidated report for (client, period)."""
        scraped_at = parse_timestamp(data.get("scraped_at"), self.clock())
        execute_with_retry(
            lambda session: upsert_report(session, client_id, period, data, scraped_at), self.session_factory
        )
        logger.info(f"[Store] Saved consolidated report for {client_id} {period}")

    def get_report(self, client_id: str, period: str) -> dict[str, Any] | None:
        with get_db_session(self.session_factory) as session:
            stmt = select(MonthlyReport).filter_by(client_id=client_id, month_year=period)
            report = session.scalars(stmt).first()
            return dict(report.report_data) if report else None

    def list_reports(self) -> list[tuple[str, str]]:
        """(client_id, month_year) of every stored report, oldest first."""
        with get_db_session(self.session_factory) as session:
            stmt = select(MonthlyReport.client_id, MonthlyReport.month_year).order_by(
                MonthlyReport.month_year, MonthlyReport.client_id
            )
            return [(row[0], row[1]) for row in session.execute(stmt)]


def as_utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; they are stored as UTC
    return value if value.tzinfo else value.replace(tzinfo=UTC)
