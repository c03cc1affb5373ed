#!/usr/bin/env python3
"""Inspect and maintain stored insights and analytics snapshots."""

import json
import os
import sys

from rich.console import Console
from rich.table import Table

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from src.core.config import get_config
from src.services.analytics_cache import AnalyticsCache
from src.services.analytics_engine import thresholds_from_config
from src.services.batch_orchestrator import select_eligible_clients
from src.services.normalized_store import NormalizedStore
from src.services.report_distributor import ReportDistributor

console = Console()


def _cache(store: NormalizedStore) -> AnalyticsCache:
    pipeline = get_config().pipeline
    return AnalyticsCache(
        store=store, ttl_seconds=pipeline.cache_ttl_seconds, thresholds=thresholds_from_config(pipeline)
    )


def list_clients():
    """List clients eligible for collection."""
    clients = select_eligible_clients()
    if not clients:
        console.print("[yellow]No eligible clients found.[/yellow]")
        return

    table = Table(title="Eligible Clients")
    table.add_column("Client ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Ad Account", style="yellow")
    for client in clients:
        table.add_row(client.id, client.name or "", client.ad_account_id or "")
    console.print(table)


def list_periods(client_id: str):
    """Show stored periods and per-dimension row counts for a client."""
    periods = NormalizedStore().available_periods(client_id)
    if not periods:
        console.print(f"[yellow]No stored insights for {client_id}.[/yellow]")
        return

    table = Table(title=f"Stored periods for {client_id}")
    table.add_column("Period", style="cyan")
    table.add_column("Records", style="green")
    table.add_column("Dimensions", style="blue")
    table.add_column("Last scraped", style="yellow")
    for summary in periods:
        dimensions = ", ".join(f"{name}={count}" for name, count in sorted(summary.dimension_counts.items()))
        scraped = summary.last_scraped_at.isoformat() if summary.last_scraped_at else "-"
        table.add_row(summary.month_year, str(summary.total_records), dimensions, scraped)
    console.print(table)


def show_analytics(client_id: str, refresh: bool = False):
    """Print the analytics snapshot for a client."""
    cache = _cache(NormalizedStore())
    response = cache.refresh(client_id) if refresh else cache.get(client_id)
    if not response.success:
        console.print(f"[red]{response.error}[/red]")
        sys.exit(1)

    if response.warning:
        console.print(f"[yellow]{response.warning}[/yellow]")
    console.print(f"[bold]Source:[/bold] {response.source}  [bold]Period:[/bold] {response.month_year}")
    console.print_json(json.dumps(response.data, default=str))


def distribute(client_id: str | None, period: str | None):
    """Re-project consolidated reports into the dimension tables."""
    distributor = ReportDistributor(NormalizedStore())
    if client_id and period:
        result = distributor.distribute_one(client_id, period)
    else:
        result = distributor.distribute_all()

    colour = "green" if result.success else "red"
    console.print(
        f"[{colour}]Distributed {result.records_distributed} records into "
        f"{len(result.tables_updated)} table(s)[/{colour}]"
    )
    for error in result.errors:
        console.print(f"[red]  {error}[/red]")
    if not result.success:
        sys.exit(1)


def invalidate(client_id: str):
    """Drop a client's analytics snapshot."""
    if _cache(NormalizedStore()).invalidate(client_id):
        console.print(f"[green]Invalidated analytics snapshot for {client_id}[/green]")
    else:
        console.print(f"[yellow]No analytics snapshot stored for {client_id}[/yellow]")


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description="Manage stored ads insights")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Clients command
    subparsers.add_parser("clients", help="List clients eligible for collection")

    # Periods command
    periods_parser = subparsers.add_parser("periods", help="List stored periods for a client")
    periods_parser.add_argument("client_id", help="Client ID")

    # Analytics command
    analytics_parser = subparsers.add_parser("analytics", help="Show a client's analytics snapshot")
    analytics_parser.add_argument("client_id", help="Client ID")
    analytics_parser.add_argument("--refresh", action="store_true", help="Recompute regardless of cache age")

    # Distribute command
    distribute_parser = subparsers.add_parser("distribute", help="Rebuild dimension tables from consolidated reports")
    distribute_parser.add_argument("--client-id", help="Client ID (requires --period)")
    distribute_parser.add_argument("--period", help="Period YYYY-MM (requires --client-id)")

    # Invalidate command
    invalidate_parser = subparsers.add_parser("invalidate", help="Drop a client's analytics snapshot")
    invalidate_parser.add_argument("client_id", help="Client ID")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "clients":
        list_clients()
    elif args.command == "periods":
        list_periods(args.client_id)
    elif args.command == "analytics":
        show_analytics(args.client_id, args.refresh)
    elif args.command == "distribute":
        if bool(args.client_id) != bool(args.period):
            parser.error("--client-id and --period must be given together")
        distribute(args.client_id, args.period)
    elif args.command == "invalidate":
        invalidate(args.client_id)


if __name__ == "__main__":
    main()
