"""
Insights collector.

Pulls all six dimensions for one ad account and date range. Dimensions are
fetched concurrently on a small thread pool and fail independently: a dimension
that errors is recorded in the collection summary and left empty. Only
account-level problems (bad account id, missing or rejected token) abort the
whole collection.
"""

import concurrent.futures
import logging
import re
import time
from datetime import UTC, date, datetime, timedelta

from src.adapters.meta_insights_client import InsightsFetch, MetaInsightsClient
from src.core.config import AdsPlatformConfig, get_config
from src.core.dimensions import DIMENSIONS, DimensionSpec
from src.core.errors import ConfigurationError, PartialSourceFailure, SourceUnavailableError
from src.core.logging_config import pipeline_logger
from src.core.schemas import CollectionSummary, DateRange, InsightsCollection

logger = logging.getLogger(__name__)

ACCOUNT_ID_PATTERN = re.compile(r"^act_\d+$")


def default_date_range(days: int = 30, today: date | None = None) -> DateRange:
    """Lookback window ending today."""
    today = today or datetime.now(UTC).date()
    return DateRange(since=(today - timedelta(days=days)).isoformat(), until=today.isoformat())


def month_identifier(date_range: DateRange) -> str:
    """Period that a collection over this window is stored under."""
    return date_range.month_identifier


def period_date_range(period: str) -> DateRange:
    """Full calendar month for a YYYY-MM period."""
    first = date.fromisoformat(f"{period}-01")
    next_month = (first.replace(day=28) + timedelta(days=4)).replace(day=1)
    return DateRange(since=first.isoformat(), until=(next_month - timedelta(days=1)).isoformat())


class InsightsCollector:
    """Collects raw insights for one account across every dimension."""

    def __init__(self, client: MetaInsightsClient | None = None, config: AdsPlatformConfig | None = None):
        self.config = config or (client.config if client else get_config().platform)
        self.client = client or MetaInsightsClient(self.config)

    def collect(self, account_id: str, date_range: DateRange) -> InsightsCollection:
        """Collect every dimension for the account.

        Raises:
            SourceUnavailableError: Invalid account id, or the platform refused the account
            ConfigurationError: No access token configured
        """
        from src.core.metrics import dimension_collection_total

        if not account_id or not ACCOUNT_ID_PATTERN.match(account_id):
            raise SourceUnavailableError(
                f"Invalid ad account id {account_id!r}: expected 'act_' followed by digits", fatal=True
            )
        if not self.config.access_token:
            raise ConfigurationError("FB_ACCESS_TOKEN is not configured")

        start_time = time.time()
        summary = CollectionSummary()
        fetched: dict[str, InsightsFetch] = {}
        fatal: SourceUnavailableError | None = None

        logger.info(
            f"[Collector] Collecting {len(DIMENSIONS)} dimensions for {account_id} "
            f"({date_range.since}..{date_range.until})"
        )

        workers = max(1, min(self.config.max_concurrent_requests, len(DIMENSIONS)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="insights") as executor:
            futures = {
                executor.submit(self.client.fetch_insights, account_id, spec, date_range): spec for spec in DIMENSIONS
            }
            for future in concurrent.futures.as_completed(futures):
                spec = futures[future]
                try:
                    fetched[spec.name] = future.result()
                    dimension_collection_total.labels(dimension=spec.name, outcome="success").inc()
                except SourceUnavailableError as e:
                    dimension_collection_total.labels(dimension=spec.name, outcome="failed").inc()
                    if e.fatal:
                        fatal = fatal or e
                        for pending in futures:
                            pending.cancel()
                        continue
                    self._record_failure(summary, spec, str(e))
                except Exception as e:
                    # Anything unexpected is isolated to its dimension
                    logger.exception(f"[Collector] Unexpected error collecting {spec.name}")
                    dimension_collection_total.labels(dimension=spec.name, outcome="failed").inc()
                    self._record_failure(summary, spec, str(e))

        if fatal is not None:
            pipeline_logger.log_collection(account_id, False, error=str(fatal))
            raise fatal

        arrays: dict[str, list] = {}
        for spec in DIMENSIONS:
            result = fetched.get(spec.name)
            arrays[spec.name] = result.records if result else []
            if result is None:
                continue
            summary.successful_endpoints += 1
            summary.total_records += len(result.records)
            if not result.records:
                summary.warnings.append(f"{spec.name}: No data returned (this may be normal for some breakdowns)")
            if result.truncated:
                summary.warnings.append(
                    f"{spec.name}: Stopped after {result.pages} pages; results are incomplete"
                )

        collection = InsightsCollection(
            account_id=account_id,
            scraped_at=datetime.now(UTC).isoformat(),
            date_range=date_range,
            month_identifier=month_identifier(date_range),
            collection_summary=summary,
            **arrays,
        )

        duration_ms = (time.time() - start_time) * 1000
        pipeline_logger.log_collection(account_id, True, summary=summary.model_dump())
        logger.info(
            f"[Collector] {account_id}: {summary.total_records} records, "
            f"{summary.successful_endpoints}/{len(DIMENSIONS)} endpoints in {duration_ms:.0f}ms"
        )
        return collection

    @staticmethod
    def _record_failure(summary: CollectionSummary, spec: DimensionSpec, message: str) -> None:
        failure = PartialSourceFailure(spec.name, message)
        logger.warning(f"[Collector] {failure}")
        summary.failed_endpoints.append(str(failure))


def collect(
    account_id: str,
    date_range: DateRange,
    *,
    client: MetaInsightsClient | None = None,
    config: AdsPlatformConfig | None = None,
) -> InsightsCollection:
    """Collect all dimensions for an account with a default collector."""
    return InsightsCollector(client=client, config=config).collect(account_id, date_range)
