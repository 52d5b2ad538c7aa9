"""
Command line:

    python -m wholesale_ledger [--db PATH] init
    python -m wholesale_ledger [--db PATH] low-stock
    python -m wholesale_ledger [--db PATH] ledger CLIENT_ID [--from DATE] [--to DATE]
    python -m wholesale_ledger [--db PATH] export-invoice INVOICE_ID OUT.pdf [--with-ledger]
"""
from __future__ import annotations

import argparse
import sys

from .app import LedgerApp
from .constants import APP_NAME
from .database.repositories import DomainError
from .utils.helpers import fmt_money
from .utils.loggers import get_logger


def _cmd_init(app: LedgerApp, args) -> int:
    print(f"Database ready at {app.db.db_path}")
    return 0


def _cmd_low_stock(app: LedgerApp, args) -> int:
    alerts = app.stock.low_stock_alerts()
    if not alerts:
        print("No items at or below minimum stock.")
        return 0
    for a in alerts:
        print(
            f"{a.stock_item.sku:<16} {a.stock_item.name:<32} "
            f"{a.current_quantity:>10g} / {a.min_level:<10g} short {a.deficit:g} {a.stock_item.unit}"
        )
    return 0


def _cmd_ledger(app: LedgerApp, args) -> int:
    client = app.clients.require(args.client_id)
    entries = app.clients.get_ledger(client.id, args.date_from, args.date_to)
    print(f"{client.shop_name} ({client.name}) balance {fmt_money(client.balance)}")
    for e in entries:
        print(
            f"{e.date}  {e.type:<10} {e.description:<32} "
            f"{fmt_money(e.debit):>12} {fmt_money(e.credit):>12} {fmt_money(e.balance):>12}"
        )
    return 0


def _cmd_export_invoice(app: LedgerApp, args) -> int:
    from .modules.invoices.pdf_export import export_invoice_pdf

    invoice = app.invoices.require(args.invoice_id)
    client = app.clients.require(invoice.client_id)
    ledger = app.clients.get_ledger(client.id) if args.with_ledger else None
    out = export_invoice_pdf(invoice, client, app.settings.get(), args.out, ledger)
    print(f"Wrote {out}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wholesale_ledger", description=APP_NAME)
    parser.add_argument("--db", help="Path to SQLite DB (default: config.DB_PATH)")
    parser.add_argument("--log-level", default=None, help="DEBUG, INFO, WARNING ...")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init", help="Create/migrate the database and seed defaults")
    p.set_defaults(func=_cmd_init)

    p = sub.add_parser("low-stock", help="List items at or below their minimum level")
    p.set_defaults(func=_cmd_low_stock)

    p = sub.add_parser("ledger", help="Print a client's ledger, newest first")
    p.add_argument("client_id")
    p.add_argument("--from", dest="date_from", help="YYYY-MM-DD (inclusive)")
    p.add_argument("--to", dest="date_to", help="YYYY-MM-DD (inclusive)")
    p.set_defaults(func=_cmd_ledger)

    p = sub.add_parser("export-invoice", help="Render an invoice to PDF")
    p.add_argument("invoice_id")
    p.add_argument("out")
    p.add_argument("--with-ledger", action="store_true", help="Append the client's account statement")
    p.set_defaults(func=_cmd_export_invoice)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    log = get_logger("wholesale_ledger", args.log_level.upper() if args.log_level else None)
    try:
        with LedgerApp(args.db) as app:
            return args.func(app, args)
    except DomainError as e:
        log.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
