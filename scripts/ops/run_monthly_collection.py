#!/usr/bin/env python3
"""
Collect, store and refresh analytics for every active client.

Intended to be run as a cron job:
  0 3 1 * * /path/to/run_monthly_collection.py --period 2026-09

Arguments:
  --period YYYY-MM     Calendar month to collect (default: rolling lookback window)
  --client-id ID       Process a single client only (optional)
  --stop-on-error      Halt at the first failed client
  --delay-ms N         Pause between clients (default: PIPELINE_BATCH_DELAY_MS)
"""

import argparse
import logging
import os
import re
import signal
import sys
import threading

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from src.core.config import get_config
from src.core.logging_config import setup_structured_logging
from src.core.schemas import PERIOD_PATTERN
from src.services.batch_orchestrator import batch_collect_and_store, select_eligible_clients

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def main():
    """Main entry point for the monthly insights collection."""
    config = get_config()

    parser = argparse.ArgumentParser(description="Collect ads insights for all active clients")
    parser.add_argument("--period", type=str, help="Calendar month to collect, YYYY-MM (optional)")
    parser.add_argument("--client-id", type=str, help="Process single client only (optional)")
    parser.add_argument("--stop-on-error", action="store_true", help="Halt at the first failed client")
    parser.add_argument(
        "--delay-ms",
        type=int,
        default=config.pipeline.batch_delay_ms,
        help=f"Pause between clients in milliseconds (default: {config.pipeline.batch_delay_ms})",
    )
    args = parser.parse_args()

    setup_structured_logging()

    if args.period and not re.match(PERIOD_PATTERN, args.period):
        logger.error(f"Invalid period {args.period!r}; expected YYYY-MM")
        sys.exit(2)

    clients = select_eligible_clients()
    if args.client_id:
        clients = [client for client in clients if client.id == args.client_id]
        if not clients:
            logger.error(f"Client {args.client_id} not found or not eligible")
            sys.exit(1)

    cancel_event = threading.Event()

    def _cancel(signum, frame):
        logger.warning(f"Received signal {signum}; stopping after the current client")
        cancel_event.set()

    signal.signal(signal.SIGINT, _cancel)
    signal.signal(signal.SIGTERM, _cancel)

    try:
        result = batch_collect_and_store(
            clients,
            args.period,
            continue_on_error=not args.stop_on_error and config.pipeline.continue_on_error,
            delay_between_clients=args.delay_ms,
            cancel_event=cancel_event,
        )
    except Exception as e:
        logger.error(f"Insights collection failed: {e}", exc_info=True)
        sys.exit(1)

    summary = result.summary
    logger.info(
        f"Collection complete: {summary.successful} successful, {summary.failed} failed "
        f"out of {summary.total_clients} clients ({summary.total_records} records)"
    )

    if not result.success:
        sys.exit(1)


if __name__ == "__main__":
    main()
