# tests/test_reporting.py
import sqlite3
from datetime import date

import pytest

from wholesale_ledger.database.repositories import InvoiceLine, ValidationError


@pytest.fixture()
def trading_day(app, client, rice):
    """One part-paid invoice, a later payment, one expense and a client in credit."""
    app.invoices.create_invoice(client.id, [InvoiceLine(rice.id, 10, 70)], amount_paid=100)
    app.invoices.record_payment(client.id, 200)
    petrol = next(c.id for c in app.expenses.list_categories() if c.name == "Petrol & Transport")
    app.expenses.create(petrol, 150, "Diesel")
    app.clients.create("Asha Rao", "9000000002", "Asha Traders", opening_balance=-50)


# ---------------------------------------------------------------------
# R1. Financial summary for a date range
# ---------------------------------------------------------------------
def test_r1_financial_summary(app, trading_day):
    today = date.today()
    s = app.reporting.financial_summary(today, today)

    assert (s.date_from, s.date_to) == (today.isoformat(), today.isoformat())
    assert (s.invoice_count, s.total_sales, s.average_invoice) == (1, 700, 700)
    # 100 paid at invoice time + the 200 payment
    assert s.payments_received == 300
    assert (s.total_receivable, s.total_payable) == (400, 50)
    assert s.total_expenses == 150
    assert (s.stock_purchase_value, s.stock_sale_value) == (90 * 50, 90 * 70)
    assert s.net == 550


def test_r2_summary_outside_range_is_empty(app, trading_day):
    s = app.reporting.financial_summary("2001-01-01", "2001-12-31")
    assert (s.invoice_count, s.total_sales, s.average_invoice) == (0, 0, 0)
    assert (s.payments_received, s.total_expenses, s.net) == (0, 0, 0)
    # balances and stock value are point-in-time, not range-bound
    assert s.total_receivable == 400


def test_r3_invalid_range_dates(app):
    with pytest.raises(ValidationError):
        app.reporting.financial_summary("yesterday", "today")


# ---------------------------------------------------------------------
# R4. Monthly earnings
# ---------------------------------------------------------------------
def test_r4_monthly_earnings(app, trading_day):
    today = date.today()
    months = app.reporting.monthly_earnings(today.year)

    assert [m.month for m in months] == list(range(1, 13))
    assert months[0].label == "Jan"
    current = months[today.month - 1]
    assert (current.sales, current.expenses, current.net) == (700, 150, 550)
    assert sum(m.sales for m in months) == 700

    assert all(m.sales == 0 and m.expenses == 0 for m in app.reporting.monthly_earnings(1999))


# ---------------------------------------------------------------------
# R5. Reporting degrades to zeros on database errors
# ---------------------------------------------------------------------
def test_r5_reports_degrade_on_sqlite_errors(app, trading_day, monkeypatch):
    def boom(*args, **kwargs):
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(app.db, "query_one", boom)
    monkeypatch.setattr(app.db, "query_all", boom)

    s = app.reporting.financial_summary("2025-01-01", "2025-12-31")
    assert (s.total_sales, s.invoice_count, s.net) == (0, 0, 0)

    months = app.reporting.monthly_earnings(2025)
    assert len(months) == 12
    assert all(m.net == 0 for m in months)


# ---------------------------------------------------------------------
# R6. Cash received counts money taken at invoice time and every receipt
# ---------------------------------------------------------------------
def test_r6_payments_received_counts_all_cash_in(app, client, rice):
    app.invoices.create_invoice(client.id, [InvoiceLine(rice.id, 2, 50)], amount_paid=100)
    app.invoices.create_invoice(client.id, [InvoiceLine(rice.id, 2, 50)], amount_paid=40)
    app.invoices.record_payment(client.id, 10, entry_type="ADJUSTMENT")
    # credits that are not cash in
    app.clients.create("Asha Rao", "9000000002", "Asha Traders", opening_balance=-50)
    app.clients.append_entry(client.id, entry_type="RETURN", description="Damaged bag", credit=5)

    today = date.today()
    s = app.reporting.financial_summary(today, today)
    assert s.payments_received == 150
    assert s.total_sales == 200
