"""
Distribution of consolidated monthly reports into the per-dimension tables.

Used to backfill or reconcile the normalized tables from ``monthly_reports``.
Records go through the same mapping and upsert as a fresh collection, so
distributing a report that was already stored changes nothing.
"""

import logging

from src.core.dimensions import DIMENSIONS, dimension_records
from src.core.errors import StorageFailure
from src.core.schemas import DistributionResult
from src.services.normalized_store import NormalizedStore, parse_timestamp

logger = logging.getLogger(__name__)


class ReportDistributor:
    def __init__(self, store: NormalizedStore):
        self.store = store

    def distribute_one(self, client_id: str, period: str) -> DistributionResult:
        """Re-project one consolidated report into the dimension tables."""
        report = self.store.get_report(client_id, period)
        if report is None:
            logger.warning(f"[Distributor] No report found for {client_id} {period}")
            return DistributionResult(success=False, errors=[f"No report found for client {client_id} in {period}"])

        scraped_at = parse_timestamp(report.get("scraped_at"), self.store.clock())
        result = DistributionResult(success=True)

        for spec in DIMENSIONS:
            records = dimension_records(report, spec)
            if records is None:
                message = f"{spec.label}: missing from report"
                logger.error(f"[Distributor] {client_id} {period}: {message}")
                result.errors.append(message)
                continue
            if not isinstance(records, list) or not all(isinstance(record, dict) for record in records):
                message = f"{spec.label}: corrupt data in report (expected an array of records)"
                logger.error(f"[Distributor] {client_id} {period}: {message}")
                result.errors.append(message)
                continue
            if not records:
                continue

            try:
                affected = self.store.store_dimension(spec, client_id, period, records, scraped_at)
            except StorageFailure as e:
                logger.error(f"[Distributor] {client_id} {period}: {e}")
                result.errors.append(str(e))
                continue

            result.records_distributed += affected
            if spec.table_name not in result.tables_updated:
                result.tables_updated.append(spec.table_name)

        result.success = not result.errors
        logger.info(
            f"[Distributor] {client_id} {period}: {result.records_distributed} records into "
            f"{len(result.tables_updated)} table(s), {len(result.errors)} error(s)"
        )
        return result

    def distribute_all(self) -> DistributionResult:
        """Distribute every stored report and aggregate the outcomes."""
        total = DistributionResult(success=True)
        reports = self.store.list_reports()
        logger.info(f"[Distributor] Distributing {len(reports)} report(s)")

        for client_id, period in reports:
            try:
                result = self.distribute_one(client_id, period)
            except Exception as e:
                logger.exception(f"[Distributor] Failed to distribute {client_id} {period}")
                total.errors.append(f"{client_id} {period}: {e}")
                continue

            total.records_distributed += result.records_distributed
            total.errors.extend(f"{client_id} {period}: {error}" for error in result.errors)
            for table in result.tables_updated:
                if table not in total.tables_updated:
                    total.tables_updated.append(table)

        total.success = not total.errors
        return total
