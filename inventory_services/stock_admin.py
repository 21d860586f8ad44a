"""
Stock administration CLI: warehouses, receipts, stocktake corrections,
transfers, movement history, reconciliation and a one-shot expiry sweep.

Usage:
  stock-admin init-db
  stock-admin warehouse-add --name "Main" --code MAIN
  stock-admin receive --product <uuid> --warehouse MAIN --qty 10
  stock-admin adjust --product <uuid> --warehouse MAIN --delta -2 --reason stocktake
  stock-admin transfer --product <uuid> --from MAIN --to EAST --qty 3
  stock-admin show --product <uuid> --warehouse MAIN
  stock-admin movements --product <uuid> --warehouse MAIN
  stock-admin reconcile
  stock-admin sweep

Warehouses are addressed by code.  Configuration comes from --config,
INVENTORY_CONFIG, or the packaged defaults; --db-url overrides the database.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from uuid import UUID

from inventory_config import get_active_config
from inventory_kernel.db.engine import create_tables
from inventory_kernel.domain.values import StockKey
from inventory_kernel.exceptions import InventoryKernelError
from inventory_services.runtime import InventoryRuntime


def _parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Stock ledger administration")
    p.add_argument("--config", help="Path to a YAML configuration file")
    p.add_argument("--db-url", help="Database URL (overrides configuration)")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables")

    wh = sub.add_parser("warehouse-add", help="Register a warehouse")
    wh.add_argument("--name", required=True)
    wh.add_argument("--code", required=True)
    wh.add_argument("--address")

    for name in ("warehouse-activate", "warehouse-deactivate"):
        toggle = sub.add_parser(name, help=f"{name.split('-')[1].capitalize()} a warehouse")
        toggle.add_argument("--code", required=True)

    rc = sub.add_parser("receive", help="Receive goods into a warehouse")
    rc.add_argument("--product", type=UUID, required=True)
    rc.add_argument("--warehouse", required=True, help="Warehouse code")
    rc.add_argument("--qty", type=int, required=True)
    rc.add_argument("--reason")
    rc.add_argument("--reference", type=UUID, help="Idempotency reference id")

    adj = sub.add_parser("adjust", help="Signed stocktake correction")
    adj.add_argument("--product", type=UUID, required=True)
    adj.add_argument("--warehouse", required=True)
    adj.add_argument("--delta", type=int, required=True)
    adj.add_argument("--reason", required=True)

    tr = sub.add_parser("transfer", help="Move unreserved units between warehouses")
    tr.add_argument("--product", type=UUID, required=True)
    tr.add_argument("--from", dest="source", required=True)
    tr.add_argument("--to", dest="destination", required=True)
    tr.add_argument("--qty", type=int, required=True)
    tr.add_argument("--reason")
    tr.add_argument("--transfer-id", type=UUID)

    show = sub.add_parser("show", help="Show one stock row")
    show.add_argument("--product", type=UUID, required=True)
    show.add_argument("--warehouse", required=True)

    mv = sub.add_parser("movements", help="List movements of one stock row")
    mv.add_argument("--product", type=UUID, required=True)
    mv.add_argument("--warehouse", required=True)
    mv.add_argument("--since", type=int, help="Only sequences greater than this")
    mv.add_argument("--limit", type=int)

    sub.add_parser("reconcile", help="Replay every stock row and report mismatches")
    sub.add_parser("sweep", help="Run one expiry sweep now")
    return p.parse_args(argv)


def _key(runtime: InventoryRuntime, product: UUID, warehouse_code: str) -> StockKey:
    warehouse = runtime.warehouses.get_by_code(warehouse_code)
    return StockKey(product, warehouse.id)


def _print_stock(label: str, stock) -> None:
    print(
        f"  {label}: quantity={stock.quantity} reserved={stock.reserved} "
        f"available={stock.available} version={stock.version}"
    )


def _run(runtime: InventoryRuntime, args: argparse.Namespace) -> int:
    if args.command == "init-db":
        create_tables(runtime.engine)
        print("  Tables created.")
        return 0

    if args.command == "warehouse-add":
        wh = runtime.warehouses.register(args.name, args.code, args.address)
        print(f"  Registered {wh.code} ({wh.name}) id={wh.id}")
        return 0

    if args.command in ("warehouse-activate", "warehouse-deactivate"):
        wh = runtime.warehouses.get_by_code(args.code)
        if args.command == "warehouse-activate":
            wh = runtime.warehouses.activate(wh.id)
        else:
            wh = runtime.warehouses.deactivate(wh.id)
        print(f"  {wh.code}: {'active' if wh.is_active else 'inactive'}")
        return 0

    if args.command == "receive":
        key = _key(runtime, args.product, args.warehouse)
        result = runtime.ledger.receive(
            key, args.qty, args.reason, reference_id=args.reference
        )
        if result.replayed:
            print("  Already recorded; nothing applied.")
        _print_stock(args.warehouse, result.stock)
        return 0

    if args.command == "adjust":
        key = _key(runtime, args.product, args.warehouse)
        result = runtime.ledger.adjust(key, args.delta, args.reason)
        _print_stock(args.warehouse, result.stock)
        return 0

    if args.command == "transfer":
        source = _key(runtime, args.product, args.source)
        destination = _key(runtime, args.product, args.destination)
        result = runtime.ledger.transfer(
            source, destination, args.qty, args.reason, transfer_id=args.transfer_id
        )
        print(f"  Transfer {result.correlation_id}")
        _print_stock(args.source, result.outbound.stock)
        _print_stock(args.destination, result.inbound.stock)
        return 0

    if args.command == "show":
        _print_stock(args.warehouse, runtime.ledger.get_stock(_key(runtime, args.product, args.warehouse)))
        return 0

    if args.command == "movements":
        key = _key(runtime, args.product, args.warehouse)
        movements = runtime.ledger.list_movements(key, args.since, args.limit)
        for m in movements:
            ref = f" ref={m.reference_type}:{m.reference_id}" if m.reference_id else ""
            reason = f" reason={m.reason!r}" if m.reason else ""
            print(
                f"  #{m.sequence:<5} {m.created_at.isoformat()} "
                f"{m.movement_type.value:<8} {m.quantity:+d}{ref}{reason}"
            )
        print(f"  {len(movements)} movement(s)")
        return 0

    if args.command == "reconcile":
        reports = runtime.reconciliation.reconcile_all()
        bad = [r for r in reports if not r.is_consistent]
        for r in bad:
            print(
                f"  MISMATCH {r.stock_id}: quantity {r.stored_quantity} vs replay "
                f"{r.replayed_quantity}; reserved {r.stored_reserved} vs active "
                f"{r.active_reserved}"
            )
        print(f"  {len(reports)} stock row(s) checked, {len(bad)} inconsistent")
        return 1 if bad else 0

    if args.command == "sweep":
        result = runtime.sweeper.tick()
        print(
            f"  scanned={result.scanned} expired={result.expired} "
            f"already_finalized={result.already_finalized} failed={result.failed}"
        )
        return 0

    raise ValueError(f"Unknown command {args.command!r}")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    try:
        config = get_active_config(args.config)
    except (FileNotFoundError, ValueError) as exc:
        print(f"  ERROR: {exc}", file=sys.stderr)
        return 2
    if args.db_url:
        config = replace(config, database=replace(config.database, url=args.db_url))

    runtime = InventoryRuntime.from_config(config)
    try:
        return _run(runtime, args)
    except InventoryKernelError as exc:
        print(f"  ERROR [{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        runtime.close()


if __name__ == "__main__":
    sys.exit(main())
