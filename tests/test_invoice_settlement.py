# tests/test_invoice_settlement.py
import re
import sqlite3

import pytest

from wholesale_ledger.app import LedgerApp
from wholesale_ledger.database.repositories import (
    ClientNotFoundError,
    ConstraintViolationError,
    InsufficientStockError,
    InvoiceLine,
    InvoiceNotFoundError,
    OverpaymentError,
    StockItemNotFoundError,
    ValidationError,
)


def _invoice(app, client, item, qty, price, **kw):
    return app.invoices.create_invoice(client.id, [InvoiceLine(item.id, qty, price)], **kw)


# ---------------------------------------------------------------------
# C1. Totals, stock deduction and the SALE entry, all from one call
# ---------------------------------------------------------------------
def test_c1_create_invoice_writes_everything(app, client, rice, oil):
    inv = app.invoices.create_invoice(
        client.id,
        [InvoiceLine(rice.id, 10, 70), {"stock_item_id": oil.id, "quantity": 5, "unit_price": 120}],
        discount=100, tax=50, amount_paid=250, notes="Deliver Monday",
    )

    assert (inv.subtotal, inv.total, inv.amount_paid, inv.amount_due) == (1300, 1250, 250, 1000)
    assert inv.status == "PARTIAL"
    assert re.fullmatch(r"INV\d{10}", inv.invoice_number)
    assert [(i.stock_item_name, i.total) for i in inv.items] == [("Basmati Rice", 700), ("Sunflower Oil", 600)]

    assert app.stock.get(rice.id).current_quantity == 90
    assert app.stock.get(oil.id).current_quantity == 15
    moves = app.stock.movements_by_reference(inv.id)
    assert [(m.stock_item_id, m.type, m.quantity) for m in moves] == [(rice.id, "OUT", 10), (oil.id, "OUT", 5)]
    assert all(m.reason == f"Sold via Invoice #{inv.invoice_number}" for m in moves)

    [sale] = app.clients.get_ledger(client.id)
    assert (sale.type, sale.debit, sale.credit, sale.balance) == ("SALE", 1250, 250, 1000)
    assert sale.description == f"Invoice #{inv.invoice_number}"
    assert sale.invoice_id == inv.id
    assert len(sale.items) == 2

    c = app.clients.get(client.id)
    assert (c.balance, c.total_business_value) == (1000, 1250)


def test_c2_fully_paid_invoice_has_no_ledger_entry(app, client, rice, count):
    inv = _invoice(app, client, rice, 2, 70, amount_paid=140)
    assert (inv.status, inv.amount_due) == ("PAID", 0)
    assert count("ledger_entries") == 0
    assert app.stock.get(rice.id).current_quantity == 98
    c = app.clients.get(client.id)
    assert (c.balance, c.total_business_value) == (0, 0)


def test_c3_unpaid_invoice(app, client, rice):
    inv = _invoice(app, client, rice, 1, 70)
    assert (inv.status, inv.amount_paid, inv.amount_due) == ("UNPAID", 0, 70)
    assert app.clients.get(client.id).balance == 70


def test_c4_overpayment_rejected_before_any_write(app, client, rice, count):
    with pytest.raises(OverpaymentError):
        _invoice(app, client, rice, 1, 70, amount_paid=71)
    assert count("invoices") == 0
    assert app.stock.get(rice.id).current_quantity == 100


# ---------------------------------------------------------------------
# C5. Atomicity: 2nd of 3 lines short on stock -> nothing persists
# ---------------------------------------------------------------------
def test_c5_failed_stock_deduction_rolls_back_everything(app, client, category, rice, oil, count):
    sugar = app.stock.create(category.id, "Sugar", "SUG-01", current_quantity=50)
    movements_before = count("stock_movements")

    with pytest.raises(InsufficientStockError):
        app.invoices.create_invoice(
            client.id,
            [InvoiceLine(rice.id, 10, 70), InvoiceLine(oil.id, 21, 120), InvoiceLine(sugar.id, 5, 40)],
        )

    assert count("invoices") == 0
    assert count("invoice_items") == 0
    assert count("stock_movements") == movements_before
    assert count("ledger_entries") == 0
    assert app.stock.get(rice.id).current_quantity == 100
    assert app.stock.get(oil.id).current_quantity == 20
    assert app.stock.get(sugar.id).current_quantity == 50
    c = app.clients.get(client.id)
    assert (c.balance, c.total_business_value) == (0, 0)


def test_c6_create_invoice_validation(app, client, rice, count):
    with pytest.raises(ValidationError):
        app.invoices.create_invoice(client.id, [])
    with pytest.raises(ValidationError):
        _invoice(app, client, rice, 0, 70)
    with pytest.raises(ValidationError):
        _invoice(app, client, rice, 1, -1)
    with pytest.raises(ValidationError):
        _invoice(app, client, rice, 1, 70, discount=-5)
    with pytest.raises(ValidationError):
        _invoice(app, client, rice, 1, 70, discount=100)
    with pytest.raises(StockItemNotFoundError):
        app.invoices.create_invoice(client.id, [InvoiceLine("ghost", 1, 10)])
    with pytest.raises(ClientNotFoundError):
        app.invoices.create_invoice("ghost", [InvoiceLine(rice.id, 1, 10)])

    app.clients.delete(client.id)
    with pytest.raises(ClientNotFoundError):
        _invoice(app, client, rice, 1, 70)
    assert count("invoices") == 0


# ---------------------------------------------------------------------
# C7. FIFO: A (due 500, older) then B (due 300); pay 600
# ---------------------------------------------------------------------
def test_c7_fifo_allocation(app, client, rice, oil):
    a = _invoice(app, client, rice, 10, 50)
    b = _invoice(app, client, oil, 10, 30)

    receipt = app.invoices.record_payment(client.id, 600)

    a2, b2 = app.invoices.get(a.id), app.invoices.get(b.id)
    assert (a2.amount_due, a2.amount_paid, a2.status) == (0, 500, "PAID")
    assert (b2.amount_due, b2.amount_paid, b2.status) == (200, 100, "PARTIAL")
    assert [(x.invoice_id, x.applied) for x in receipt.allocations] == [(a.id, 500), (b.id, 100)]
    assert (receipt.allocated_total, receipt.unallocated) == (600, 0)

    payments = [e for e in app.clients.get_ledger(client.id) if e.type == "PAYMENT"]
    assert len(payments) == 1
    assert payments[0].credit == 600
    assert payments[0].description == "Payment Received"
    assert receipt.ledger_entry.id == payments[0].id
    assert app.clients.get(client.id).balance == 200


def test_c8_fifo_follows_created_at_not_insertion(app, client, rice, oil):
    a = _invoice(app, client, rice, 10, 50)
    b = _invoice(app, client, oil, 10, 30)
    app.db.execute("UPDATE invoices SET created_at='2000-01-01T00:00:00.000000' WHERE id=?", (b.id,))

    receipt = app.invoices.record_payment(client.id, 300)

    assert [x.invoice_id for x in receipt.allocations] == [b.id]
    assert app.invoices.get(b.id).status == "PAID"
    assert app.invoices.get(a.id).status == "UNPAID"
    assert [i.id for i in app.invoices.list_open_by_client(client.id)] == [a.id]


# ---------------------------------------------------------------------
# C9. Targeted: 150 against due 200; other invoices untouched
# ---------------------------------------------------------------------
def test_c9_targeted_payment(app, client, rice, oil):
    other = _invoice(app, client, rice, 6, 50)
    target = _invoice(app, client, oil, 10, 20)

    receipt = app.invoices.record_payment(client.id, 150, target_invoice_id=target.id)

    t = app.invoices.get(target.id)
    assert (t.amount_paid, t.amount_due, t.status) == (150, 50, "PARTIAL")
    o = app.invoices.get(other.id)
    assert (o.amount_paid, o.amount_due, o.status) == (0, 300, "UNPAID")

    payments = [e for e in app.clients.get_ledger(client.id) if e.type == "PAYMENT"]
    assert len(payments) == 1
    assert payments[0].credit == 150
    assert payments[0].invoice_id == target.id
    assert receipt.unallocated == 0


def test_c10_targeted_surplus_is_ledger_credit_only(app, client, rice, oil):
    other = _invoice(app, client, rice, 6, 50)
    target = _invoice(app, client, oil, 10, 20)

    receipt = app.invoices.record_payment(client.id, 250, target_invoice_id=target.id)

    assert app.invoices.get(target.id).status == "PAID"
    assert app.invoices.get(other.id).amount_due == 300
    assert (receipt.allocated_total, receipt.unallocated) == (200, 50)
    assert receipt.ledger_entry.credit == 250
    assert app.clients.get(client.id).balance == 500 - 250


def test_c11_target_must_belong_to_client(app, client, rice, count):
    stranger = app.clients.create("Asha", "9000000002", "Asha Mart")
    theirs = _invoice(app, stranger, rice, 1, 70)
    entries_before = count("ledger_entries")

    with pytest.raises(InvoiceNotFoundError):
        app.invoices.record_payment(client.id, 50, target_invoice_id=theirs.id)
    with pytest.raises(InvoiceNotFoundError):
        app.invoices.record_payment(client.id, 50, target_invoice_id="ghost")

    assert count("ledger_entries") == entries_before
    assert app.invoices.get(theirs.id).amount_paid == 0
    assert app.clients.get(client.id).balance == 0


def test_c12_payment_validation(app, client, count):
    with pytest.raises(ValidationError):
        app.invoices.record_payment(client.id, 0)
    with pytest.raises(ValidationError):
        app.invoices.record_payment(client.id, -10)
    with pytest.raises(ValidationError):
        app.invoices.record_payment(client.id, 10, entry_type="SALE")
    with pytest.raises(ClientNotFoundError):
        app.invoices.record_payment("ghost", 10)
    assert count("ledger_entries") == 0


def test_c13_payment_ceiling(tmp_path):
    with LedgerApp(tmp_path / "capped.db", max_payment_amount=1000) as app:
        c = app.clients.create("Ravi", "9000000001", "Kumar Stores")
        with pytest.raises(OverpaymentError):
            app.invoices.record_payment(c.id, 1500)
        receipt = app.invoices.record_payment(c.id, 1000)
        assert receipt.ledger_entry.credit == 1000


def test_c14_paid_is_terminal_and_extra_payment_is_credit(app, client, rice):
    inv = _invoice(app, client, rice, 2, 50)
    app.invoices.record_payment(client.id, 100)
    receipt = app.invoices.record_payment(client.id, 40, entry_type="ADJUSTMENT", description="Goodwill")

    assert receipt.allocations == []
    assert receipt.unallocated == 40
    assert receipt.ledger_entry.type == "ADJUSTMENT"
    assert app.invoices.get(inv.id).status == "PAID"
    assert app.clients.get(client.id).balance == -40

    # targeting a PAID invoice applies nothing but still credits the ledger
    receipt = app.invoices.record_payment(client.id, 10, target_invoice_id=inv.id)
    assert receipt.allocations == []
    assert app.invoices.get(inv.id).amount_paid == 100
    assert app.clients.get(client.id).balance == -50


# ---------------------------------------------------------------------
# C15. Status rule and balance/TBV invariants over a mixed sequence
# ---------------------------------------------------------------------
def test_c15_invariants_over_mixed_sequence(app, client, rice, oil):
    tbv_seen = [app.clients.get(client.id).total_business_value]

    _invoice(app, client, rice, 10, 50)
    tbv_seen.append(app.clients.get(client.id).total_business_value)
    _invoice(app, client, oil, 4, 120, amount_paid=100)
    tbv_seen.append(app.clients.get(client.id).total_business_value)
    app.invoices.record_payment(client.id, 350)
    tbv_seen.append(app.clients.get(client.id).total_business_value)
    _invoice(app, client, rice, 1, 70, amount_paid=70)
    tbv_seen.append(app.clients.get(client.id).total_business_value)
    app.invoices.record_payment(client.id, 1000)
    tbv_seen.append(app.clients.get(client.id).total_business_value)

    for inv in app.invoices.list_by_client(client.id):
        assert inv.amount_due == pytest.approx(inv.total - inv.amount_paid)
        if inv.amount_due <= 0:
            assert inv.status == "PAID"
        elif inv.amount_paid > 0:
            assert inv.status == "PARTIAL"
        else:
            assert inv.status == "UNPAID"

    assert tbv_seen == sorted(tbv_seen)
    sales = [e for e in app.clients.get_ledger(client.id) if e.type == "SALE"]
    assert tbv_seen[-1] == pytest.approx(sum(e.debit for e in sales))
    assert app.clients.audit_balance(client.id).consistent


def test_c16_reads_and_notes(app, client, rice, oil):
    a = _invoice(app, client, rice, 10, 50)
    b = _invoice(app, client, oil, 2, 120, amount_paid=100, invoice_number="INV-MANUAL-1")
    paid = _invoice(app, client, rice, 1, 70, amount_paid=70)

    assert app.invoices.get_by_number("INV-MANUAL-1").id == b.id
    assert {i.id for i in app.invoices.list_by_status("unpaid")} == {a.id}
    assert {i.id for i in app.invoices.list_by_status("PAID")} == {paid.id}
    with pytest.raises(ValidationError):
        app.invoices.list_by_status("OVERDUE")
    assert [i.id for i in app.invoices.list_open_by_client(client.id)] == [a.id, b.id]
    assert app.invoices.open_balance(client.id) == 500 + 140
    assert len(app.invoices.list_invoices()) == 3
    today = a.created_at[:10]
    assert len(app.invoices.list_by_date_range(today, today)) == 3

    updated = app.invoices.update_notes(a.id, "Call before delivery")
    assert updated.notes == "Call before delivery"
    assert updated.amount_due == 500
    with pytest.raises(InvoiceNotFoundError):
        app.invoices.update_notes("ghost", "x")


def test_c17_duplicate_invoice_number_rolls_back(app, client, rice, count):
    _invoice(app, client, rice, 1, 70, invoice_number="INV-1")
    with pytest.raises(ConstraintViolationError):
        _invoice(app, client, rice, 5, 70, invoice_number="INV-1")
    assert count("invoices") == 1
    assert app.stock.get(rice.id).current_quantity == 99
    assert app.clients.get(client.id).balance == 70


def test_c18_storage_errors_are_reported_for_what_they_are(app, client, rice, count, monkeypatch):
    _invoice(app, client, rice, 1, 70, invoice_number="INV-1")
    with pytest.raises(ConstraintViolationError, match="already in use"):
        _invoice(app, client, rice, 1, 70, invoice_number=" INV-1 ")

    def broken_adjust(*args, **kwargs):
        raise sqlite3.IntegrityError("CHECK constraint failed: quantity > 0")

    monkeypatch.setattr(app.stock, "adjust_quantity", broken_adjust)
    with pytest.raises(ConstraintViolationError, match="storage constraint") as exc:
        _invoice(app, client, rice, 1, 70, invoice_number="INV-2")
    assert "already in use" not in str(exc.value)
    assert isinstance(exc.value.__cause__, sqlite3.IntegrityError)
    assert count("invoices") == 1
    assert app.stock.get(rice.id).current_quantity == 99
