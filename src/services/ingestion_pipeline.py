"""
End-to-end ingestion for one client.

collect -> validate -> transform -> quality report -> store per dimension ->
save consolidated report -> refresh analytics cache.

Everything a run needs (config, database, platform client, clock, sleep) is
carried in a PipelineContext so runs never share hidden module state.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from src.adapters.meta_insights_client import MetaInsightsClient
from src.core.config import AppConfig, get_config
from src.core.database.database_session import SessionFactory
from src.core.errors import PipelineError
from src.core.logging_config import pipeline_logger
from src.core.schemas import ClientRunResult, StorageSummary
from src.services.analytics_cache import AnalyticsCache
from src.services.analytics_engine import thresholds_from_config
from src.services.data_transformer import transform
from src.services.data_validation import generate_quality_report, validate
from src.services.insights_collector import InsightsCollector, default_date_range, period_date_range
from src.services.normalized_store import NormalizedStore

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    """Run-scoped dependencies for the ingestion pipeline."""

    config: AppConfig = field(default_factory=get_config)
    session_factory: SessionFactory | None = None
    platform_client: MetaInsightsClient | None = None
    clock: Callable[[], datetime] = lambda: datetime.now(UTC)
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self):
        if self.platform_client is None:
            self.platform_client = MetaInsightsClient(self.config.platform, sleep=self.sleep)


@dataclass(frozen=True)
class ClientRef:
    """The parts of a client record a pipeline run needs."""

    id: str
    name: str | None
    ad_account_id: str | None

    @classmethod
    def from_any(cls, client: Any) -> "ClientRef":
        if isinstance(client, ClientRef):
            return client
        if isinstance(client, dict):
            account = client.get("fb_ad_account_id") or client.get("ad_account_id")
            return cls(id=str(client["id"]), name=client.get("name"), ad_account_id=account)
        return cls(id=str(client.id), name=getattr(client, "name", None), ad_account_id=client.fb_ad_account_id)


class IngestionPipeline:
    def __init__(self, context: PipelineContext | None = None):
        self.context = context or PipelineContext()
        self.collector = InsightsCollector(client=self.context.platform_client, config=self.context.config.platform)
        self.store = NormalizedStore(self.context.session_factory, clock=self.context.clock)
        self.cache = AnalyticsCache(
            self.context.session_factory,
            self.store,
            ttl_seconds=self.context.config.pipeline.cache_ttl_seconds,
            thresholds=thresholds_from_config(self.context.config.pipeline),
            clock=self.context.clock,
        )

    def collect_and_store_client(self, client: Any, period: str | None = None) -> ClientRunResult:
        """Run the full pipeline for one client.

        ``period`` (YYYY-MM) collects that calendar month; otherwise the
        configured lookback window ending today is collected.
        """
        ref = ClientRef.from_any(client)
        result = ClientRunResult(client_id=ref.id, client_name=ref.name, success=False)

        if not ref.ad_account_id:
            result.error = "Client has no ad account configured"
            logger.warning(f"[Pipeline] {ref.id}: {result.error}")
            return result

        pipeline_config = self.context.config.pipeline
        if period:
            date_range = period_date_range(period)
        else:
            date_range = default_date_range(pipeline_config.collection_window_days, today=self.context.clock().date())

        logger.info(f"[Pipeline] {ref.id}: collecting {ref.ad_account_id} {date_range.since}..{date_range.until}")

        try:
            collection = self.collector.collect(ref.ad_account_id, date_range)
        except PipelineError as e:
            result.error = f"Collection failed: {e}"
            pipeline_logger.log_stage("collection", False, client_id=ref.id, error=str(e))
            return result

        validation = validate(collection, max_date_range_days=pipeline_config.max_date_range_days)
        result.validation = validation
        if not validation.is_valid:
            result.error = f"Validation failed: {'; '.join(validation.errors)}"
            pipeline_logger.log_stage("validation", False, client_id=ref.id, details={"errors": validation.errors})
            return result
        for warning in validation.warnings:
            logger.warning(f"[Pipeline] {ref.id}: {warning}")

        transformed = transform(validation.validated_data)
        result.transformations = len(transformed.transformations)
        result.quality_report = generate_quality_report(transformed.data, transformed)
        logger.info(
            f"[Pipeline] {ref.id}: quality {result.quality_report.overall_score:.1f} "
            f"({result.quality_report.classification}), {result.transformations} transformation(s)"
        )

        month_year = period or collection.month_identifier
        start_time = time.time()
        storage = self.store.store(ref.id, month_year, transformed.data)
        result.storage = storage
        result.storage_summary = StorageSummary(
            client_id=ref.id,
            month_year=month_year,
            total_records=storage.records_inserted,
            storage_time_ms=(time.time() - start_time) * 1000,
        )

        self.store.save_report(ref.id, month_year, transformed.data)

        if not storage.success:
            result.error = f"Storage failed: {'; '.join(storage.errors)}"

        try:
            refreshed = self.cache.refresh(ref.id)
            if not refreshed.success or refreshed.stale:
                logger.warning(f"[Pipeline] {ref.id}: analytics refresh did not complete ({refreshed.warning})")
        except Exception as e:
            logger.warning(f"[Pipeline] {ref.id}: analytics refresh failed: {e}")

        result.success = storage.success
        pipeline_logger.log_stage(
            "client_run",
            result.success,
            client_id=ref.id,
            details={"month_year": month_year, "records": storage.records_inserted},
            error=result.error,
        )
        return result
