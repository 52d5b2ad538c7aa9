# wholesale_ledger/database/repositories/reporting_repo.py
from __future__ import annotations

from dataclasses import dataclass
import calendar
import logging
import sqlite3
from typing import TYPE_CHECKING

from ...modules.payments.payment_utilities.calculations import round_money
from ...utils.helpers import to_date_str
from .errors import ValidationError

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)


@dataclass
class FinancialSummary:
    date_from: str
    date_to: str
    total_sales: float = 0.0
    invoice_count: int = 0
    average_invoice: float = 0.0
    payments_received: float = 0.0  # paid at invoice creation + recorded payments
    total_receivable: float = 0.0
    total_payable: float = 0.0
    total_expenses: float = 0.0
    stock_purchase_value: float = 0.0
    stock_sale_value: float = 0.0
    net: float = 0.0  # total_sales - total_expenses


@dataclass
class MonthlyEarnings:
    month: int
    label: str
    sales: float = 0.0
    expenses: float = 0.0
    net: float = 0.0


class ReportingRepo:
    """
    Read-only aggregates for the dashboard and reports.

    Notes on date handling:
      • Invoices are bucketed by the date part of created_at; ledger entries
        and expenses by their business `date`.
      • Everything here is advisory: an unexpected sqlite3.Error is logged
        and a zeroed result is returned instead of raising.
    """

    def __init__(self, db: "Database") -> None:
        self.db = db

    @staticmethod
    def _range(date_from, date_to) -> tuple[str, str]:
        try:
            return to_date_str(date_from), to_date_str(date_to)
        except ValueError as e:
            raise ValidationError(str(e)) from e

    def financial_summary(self, date_from, date_to) -> FinancialSummary:
        start, end = self._range(date_from, date_to)
        summary = FinancialSummary(date_from=start, date_to=end)
        try:
            sales = self.db.query_one(
                "SELECT COUNT(*) AS n, COALESCE(SUM(total), 0) AS total "
                "FROM invoices WHERE substr(created_at, 1, 10) BETWEEN ? AND ?",
                (start, end),
            )
            # cash taken when invoices were created, plus later receipts
            payments = self.db.query_one(
                "SELECT "
                "  (SELECT COALESCE(SUM(paid_at_creation), 0) FROM invoices "
                "     WHERE substr(created_at, 1, 10) BETWEEN ? AND ?) "
                "+ (SELECT COALESCE(SUM(credit), 0) FROM ledger_entries "
                "     WHERE is_receipt = 1 AND date BETWEEN ? AND ?) AS received",
                (start, end, start, end),
            )
            balances = self.db.query_one(
                "SELECT "
                "  COALESCE(SUM(CASE WHEN balance > 0 THEN balance ELSE 0 END), 0) AS receivable, "
                "  COALESCE(SUM(CASE WHEN balance < 0 THEN -balance ELSE 0 END), 0) AS payable "
                "FROM clients WHERE deleted_at IS NULL"
            )
            expenses = self.db.query_one(
                "SELECT COALESCE(SUM(amount), 0) AS total FROM expenses WHERE date BETWEEN ? AND ?",
                (start, end),
            )
            stock = self.db.query_one(
                "SELECT COALESCE(SUM(current_quantity * purchase_price), 0) AS pv, "
                "       COALESCE(SUM(current_quantity * sale_price), 0) AS sv "
                "FROM stock_items WHERE deleted_at IS NULL"
            )
        except sqlite3.Error:
            _log.exception("financial_summary failed for %s..%s; returning zeros", start, end)
            return summary

        summary.invoice_count = int(sales["n"])
        summary.total_sales = round_money(sales["total"])
        summary.average_invoice = (
            round_money(summary.total_sales / summary.invoice_count) if summary.invoice_count else 0.0
        )
        summary.payments_received = round_money(payments["received"])
        summary.total_receivable = round_money(balances["receivable"])
        summary.total_payable = round_money(balances["payable"])
        summary.total_expenses = round_money(expenses["total"])
        summary.stock_purchase_value = round_money(stock["pv"])
        summary.stock_sale_value = round_money(stock["sv"])
        summary.net = round_money(summary.total_sales - summary.total_expenses)
        return summary

    def monthly_earnings(self, year: int) -> list[MonthlyEarnings]:
        """Twelve rows (Jan..Dec) of sales, expenses and net for `year`."""
        months = [
            MonthlyEarnings(month=m, label=calendar.month_abbr[m]) for m in range(1, 13)
        ]
        y = f"{int(year):04d}"
        try:
            sales = self.db.query_all(
                "SELECT CAST(substr(created_at, 6, 2) AS INTEGER) AS m, COALESCE(SUM(total), 0) AS total "
                "FROM invoices WHERE substr(created_at, 1, 4) = ? GROUP BY m",
                (y,),
            )
            expenses = self.db.query_all(
                "SELECT CAST(substr(date, 6, 2) AS INTEGER) AS m, COALESCE(SUM(amount), 0) AS total "
                "FROM expenses WHERE substr(date, 1, 4) = ? GROUP BY m",
                (y,),
            )
        except sqlite3.Error:
            _log.exception("monthly_earnings failed for %s; returning zeros", y)
            return months

        for r in sales:
            months[int(r["m"]) - 1].sales = round_money(r["total"])
        for r in expenses:
            months[int(r["m"]) - 1].expenses = round_money(r["total"])
        for m in months:
            m.net = round_money(m.sales - m.expenses)
        return months
