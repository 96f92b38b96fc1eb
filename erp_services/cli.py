"""
Operator command line for the engine.

Usage:
  erp-engine create-tables [--db-url URL]
  erp-engine verify-stock [--db-url URL]
  erp-engine stock-report --start YYYY-MM-DD --end YYYY-MM-DD
                          [--item-id ID] [--location-id ID]
                          [--location-type warehouse|branch]
                          [--movement-type in|out|increased|decreased|balanced]

The database URL defaults to $DATABASE_URL, then to a local SQLite file.
"""

from __future__ import annotations

import argparse
import json
import os
import sys

from erp_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from erp_kernel.db.immutability import register_immutability_listeners
from erp_kernel.exceptions import StockChainBrokenError, ValidationError
from erp_kernel.logging_config import get_logger
from erp_modules._orm_registry import import_all_orm_models
from erp_modules.inventory.ledger import StockLedger
from erp_services.queries import ErpQueries
from erp_services.requests import StockMovementReportRequest

logger = get_logger("services.cli")

DEFAULT_DB_URL = "sqlite:///erp_engine.db"


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="erp-engine", description="Fulfillment and stock ledger engine tools")
    p.add_argument(
        "--db-url",
        default=os.environ.get("DATABASE_URL", DEFAULT_DB_URL),
        help=f"Database URL (default: $DATABASE_URL or {DEFAULT_DB_URL!r})",
    )
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("create-tables", help="Create every table of the schema")
    sub.add_parser("verify-stock", help="Check every stock movement chain and cached level")

    report = sub.add_parser("stock-report", help="Print stock movements as JSON lines")
    report.add_argument("--start", required=True, help="Start date (YYYY-MM-DD), inclusive")
    report.add_argument("--end", required=True, help="End date (YYYY-MM-DD), inclusive")
    report.add_argument("--item-id")
    report.add_argument("--location-id")
    report.add_argument("--location-type")
    report.add_argument("--movement-type")
    return p.parse_args(argv)


def _create_tables() -> int:
    create_tables()
    print("  Tables created.")
    return 0


def _verify_stock() -> int:
    broken = 0
    checked = 0
    with session_scope() as session:
        ledger = StockLedger(session)
        for item_id, location in ledger.all_pairs():
            try:
                count = ledger.verify_chain(item_id, location)
            except StockChainBrokenError as exc:
                broken += 1
                print(f"  BROKEN  {item_id} @ {location}: {exc}", file=sys.stderr)
                continue
            checked += 1
            print(f"  OK      {item_id} @ {location}: {count} entries")
    print(f"  {checked} chain(s) verified, {broken} broken.")
    return 1 if broken else 0


def _stock_report(args: argparse.Namespace) -> int:
    try:
        request = StockMovementReportRequest.from_dict({
            "start_date": args.start,
            "end_date": args.end,
            "item_id": args.item_id,
            "location_id": args.location_id,
            "location_type": args.location_type,
            "movement_type": args.movement_type,
        })
    except ValidationError as exc:
        for error in exc.field_errors:
            print(f"  ERROR: {error['field']}: {error['message']}", file=sys.stderr)
        return 2
    with session_scope() as session:
        for row in ErpQueries(session).stock_movement_report(request):
            print(json.dumps(row, default=str))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    init_engine_from_url(args.db_url)
    import_all_orm_models()
    register_immutability_listeners()
    logger.info("cli_command_started", extra={"command": args.command})

    if args.command == "create-tables":
        return _create_tables()
    if args.command == "verify-stock":
        return _verify_stock()
    return _stock_report(args)


if __name__ == "__main__":
    sys.exit(main())
