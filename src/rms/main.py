from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

from rms.application.container import AppContainer, build_container
from rms.config import get_app_paths
from rms.domain.errors import AppError, NotFoundError, StorageError, ValidationError
from rms.domain.models import DEFAULT_UNIT, DateRange
from rms.logging_config import setup_logging
from rms.services.analytics_service import growth_rate
from rms.services.receipt_service import A4, THERMAL_80MM

log = logging.getLogger(__name__)


def _range(args: argparse.Namespace) -> Optional[DateRange]:
    if not args.start and not args.end:
        return None
    return DateRange(
        start=date.fromisoformat(args.start) if args.start else None,
        end=date.fromisoformat(args.end) if args.end else None,
    )


def _sale_lines(raw: list[list[str]]) -> list[dict]:
    lines = []
    for values in raw:
        if len(values) not in (3, 4):
            raise ValidationError(f"A sale line needs NAME PRICE QTY [UNIT], got: {' '.join(values)}")
        name, price, qty = values[:3]
        unit = values[3] if len(values) == 4 else DEFAULT_UNIT
        lines.append({"name": name, "unit_price": price, "quantity": qty, "unit": unit})
    return lines


def _add_range_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("--start", help="first date, YYYY-MM-DD")
    p.add_argument("--end", help="last date, YYYY-MM-DD")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rms", description="Restaurant point-of-sale ledger.")
    parser.add_argument("--db", help="store file (defaults to the per-user data directory)")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("products", help="list the catalog")

    p = sub.add_parser("add-product", help="add a catalog product")
    p.add_argument("name")
    p.add_argument("price")
    p.add_argument("--unit", default="item")

    p = sub.add_parser("delete-product", help="delete a catalog product")
    p.add_argument("id", type=int)

    p = sub.add_parser("record-sale", help="record one sale")
    p.add_argument(
        "--line",
        action="append",
        nargs="+",
        required=True,
        metavar="VALUE",
        help="one sale line: name, unit price, quantity and optional unit; repeat per line",
    )
    p.add_argument("--currency", help="defaults to the currency in settings")
    p.add_argument("--total", help="total shown to the customer; must match the lines")

    p = sub.add_parser("transactions", help="list recorded sales")
    _add_range_options(p)

    p = sub.add_parser("delete-transaction", help="delete a recorded sale")
    p.add_argument("id", type=int)

    p = sub.add_parser("analytics", help="print aggregates as JSON")
    _add_range_options(p)

    p = sub.add_parser("export", help="write a snapshot of the store")
    p.add_argument("path")

    p = sub.add_parser("import", help="replace the store with a snapshot")
    p.add_argument("path")

    p = sub.add_parser("receipt", help="render the receipt of a recorded sale")
    p.add_argument("sale_id", type=int)
    p.add_argument("--a4", action="store_true", help="A4 layout instead of 80mm thermal")
    p.add_argument("--pdf", help="write a PDF here instead of printing text")

    p = sub.add_parser("report", help="write an Excel sales report")
    p.add_argument("path")
    _add_range_options(p)

    return parser


def run(container: AppContainer, args: argparse.Namespace) -> int:
    if args.command == "products":
        for prod in container.catalog.list_products():
            print(f"{prod.id:>5}  {prod.name:<30} {prod.price:>10} {prod.unit}")
    elif args.command == "add-product":
        pid = container.catalog.add_product(args.name, args.price, args.unit)
        print(pid)
    elif args.command == "delete-product":
        container.catalog.delete_product(args.id)
    elif args.command == "record-sale":
        currency = args.currency or container.settings.get_settings().currency
        sale_id = container.sales.record_sale(_sale_lines(args.line), currency, expected_total=args.total)
        print(sale_id)
    elif args.command == "transactions":
        for t in container.sales.get_transactions(_range(args)):
            print(f"#{t.id:<6} {t.date} {t.time}  {t.currency} {t.total_amount:.2f}  ({len(t.lines)} lines)")
    elif args.command == "delete-transaction":
        container.sales.delete_transaction(args.id)
    elif args.command == "analytics":
        snap = container.analytics.get_analytics(_range(args))
        payload = {
            "daily_revenue": [{"date": d.date, "revenue": str(d.revenue), "orders": d.orders} for d in snap.daily_revenue],
            "top_products": [{"name": p.name, "sales": str(p.sales), "revenue": str(p.revenue)} for p in snap.top_products],
            "product_distribution": [{"name": p.name, "value": str(p.value)} for p in snap.product_distribution],
            "summary": {
                "total_orders": snap.summary.total_orders,
                "total_revenue": str(snap.summary.total_revenue),
                "average_order_value": str(snap.summary.average_order_value),
            },
            "growth_rate": str(growth_rate(snap.daily_revenue)),
        }
        print(json.dumps(payload, indent=2))
    elif args.command == "export":
        print(container.snapshots.export_to_file(args.path))
    elif args.command == "import":
        container.snapshots.import_from_file(args.path)
    elif args.command == "receipt":
        doc = container.receipts.for_transaction(args.sale_id, layout=A4 if args.a4 else THERMAL_80MM)
        if args.pdf:
            Path(args.pdf).write_bytes(container.receipts.to_pdf(doc))
        else:
            sys.stdout.write(doc.text)
    elif args.command == "report":
        print(container.reporting.export_sales_report_excel(args.path, _range(args)))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO)

    try:
        container = build_container(args.db or paths.db_path)
        return run(container, args)
    except NotFoundError as e:
        print(f"not found: {e}", file=sys.stderr)
        return 2
    except StorageError as e:
        log.exception("storage_failure operation=%s", e.operation)
        print(f"internal error: {e}", file=sys.stderr)
        return 3
    except (AppError, ValueError) as e:
        print(f"invalid input: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
