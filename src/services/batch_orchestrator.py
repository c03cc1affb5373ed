"""
Batch orchestration: run the ingestion pipeline for many clients.

Clients are processed one at a time with a pause between them to stay under
platform rate limits. A cancellation event can stop the run between clients;
results gathered so far are kept.
"""

import logging
import threading
import time
from typing import Any

from sqlalchemy import select

from src.core.database.database_session import SessionFactory, get_db_session
from src.core.database.models import Client
from src.core.schemas import BatchResult, BatchSummary, ClientRunResult
from src.services.ingestion_pipeline import ClientRef, IngestionPipeline

logger = logging.getLogger(__name__)


def select_eligible_clients(session_factory: SessionFactory | None = None) -> list[ClientRef]:
    """Active clients with an ad account configured, ordered by name."""
    with get_db_session(session_factory) as session:
        stmt = (
            select(Client)
            .where(Client.status == "active", Client.fb_ad_account_id.is_not(None), Client.fb_ad_account_id != "")
            .order_by(Client.name)
        )
        return [ClientRef.from_any(client) for client in session.scalars(stmt)]


def batch_collect_and_store(
    clients: list[Any],
    period: str | None = None,
    *,
    continue_on_error: bool = True,
    delay_between_clients: int = 5000,
    cancel_event: threading.Event | None = None,
    pipeline: IngestionPipeline | None = None,
) -> BatchResult:
    """Collect and store insights for each client in turn.

    Args:
        clients: Client rows, dicts or ClientRefs
        period: YYYY-MM to collect; None collects the default lookback window
        continue_on_error: Keep going after a failed client
        delay_between_clients: Milliseconds to wait between clients (not after the last)
        cancel_event: Set to stop the run before the next client starts
        pipeline: Pipeline to run each client through

    Returns:
        BatchResult; ``success`` only if every client ran and succeeded
    """
    from src.core.metrics import active_batch_runs, batch_client_total

    pipeline = pipeline or IngestionPipeline()
    cancel_event = cancel_event or threading.Event()
    summary = BatchSummary(total_clients=len(clients))
    results: list[ClientRunResult] = []
    start_time = time.time()

    logger.info(f"[Batch] Starting run for {len(clients)} client(s), period={period or 'default window'}")
    active_batch_runs.inc()
    try:
        for index, client in enumerate(clients):
            if cancel_event.is_set():
                summary.cancelled = True
                logger.warning(f"[Batch] Cancelled after {summary.processed}/{len(clients)} client(s)")
                break

            ref = None
            try:
                ref = ClientRef.from_any(client)
                result = pipeline.collect_and_store_client(ref, period)
            except Exception as e:
                client_id = ref.id if ref else str(client)
                logger.exception(f"[Batch] Unexpected error for client {client_id}")
                result = ClientRunResult(
                    client_id=client_id, client_name=ref.name if ref else None, success=False, error=str(e)
                )

            results.append(result)
            summary.processed += 1
            if result.success:
                summary.successful += 1
                batch_client_total.labels(outcome="success").inc()
            else:
                summary.failed += 1
                batch_client_total.labels(outcome="failure").inc()
                logger.error(f"[Batch] Client {result.client_id} failed: {result.error}")
            if result.storage:
                summary.total_records += result.storage.records_inserted

            if not result.success and not continue_on_error:
                logger.warning("[Batch] Stopping at first failure (continue_on_error=False)")
                break

            if index < len(clients) - 1 and delay_between_clients > 0:
                # Returns early when cancelled
                cancel_event.wait(delay_between_clients / 1000)
    finally:
        active_batch_runs.dec()

    summary.total_time_ms = (time.time() - start_time) * 1000
    success = summary.failed == 0 and summary.processed == summary.total_clients and not summary.cancelled
    logger.info(
        f"[Batch] Done: {summary.successful} succeeded, {summary.failed} failed, "
        f"{summary.total_records} records in {summary.total_time_ms:.0f}ms"
    )
    return BatchResult(success=success, summary=summary, results=results)
