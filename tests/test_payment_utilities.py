# tests/test_payment_utilities.py
import pytest

from wholesale_ledger.modules.payments.payment_utilities import status
from wholesale_ledger.modules.payments.payment_utilities.calculations import (
    apply_to_invoice,
    clamp_non_negative,
    invoice_totals,
    line_total,
    round_money,
    status_from_amounts,
    units_from_packs,
)
from wholesale_ledger.modules.payments.payment_utilities.partial_payment_manager import (
    allocate_oldest_first,
    allocate_targeted,
    sum_amount_due,
)


def _inv(invoice_id, due, paid=0.0, created_at="2025-01-01T09:00:00.000000"):
    return {
        "invoice_id": invoice_id,
        "invoice_number": f"INV-{invoice_id}",
        "amount_paid": paid,
        "amount_due": due,
        "created_at": created_at,
    }


def test_p1_totals():
    assert line_total(3, 0.1) == 0.3
    assert invoice_totals([(10, 70), (5, 120)], discount=100, tax=50) == (1300.0, 1250.0)
    assert invoice_totals([(1, 10)], discount=15) == (10.0, -5.0)
    assert round_money(0.1 + 0.2) == 0.3
    assert round_money(-0.001) == 0.0
    assert clamp_non_negative(-4) == 0.0


@pytest.mark.parametrize(
    "paid, due, expected",
    [(0, 100, "UNPAID"), (40, 60, "PARTIAL"), (100, 0, "PAID"), (0, 0, "PAID"), (120, -20, "PAID")],
)
def test_p2_status_from_amounts(paid, due, expected):
    assert status_from_amounts(paid, due) == expected


def test_p3_apply_to_invoice():
    assert apply_to_invoice(100, 400, 150) == (150, 250, 250, "PARTIAL")
    assert apply_to_invoice(0, 100, 500) == (100, 100, 0, "PAID")
    assert apply_to_invoice(100, 0, 50) == (0, 100, 0, "PAID")


def test_p4_units_from_packs():
    assert units_from_packs(2, 3, 12) == 27
    assert units_from_packs(2, 3) == 5
    assert units_from_packs(1, 0, 0) == 1


def test_p5_status_helpers():
    assert status.normalize(" paid ") == "PAID"
    assert status.normalize("") is None
    assert status.is_valid("partial")
    assert not status.is_valid("overdue")
    assert status.ensure_valid("unpaid") == "UNPAID"
    with pytest.raises(ValueError):
        status.ensure_valid("overdue")
    assert status.is_open("PARTIAL") and not status.is_open("PAID")
    assert status.label("PARTIAL") == "Partially paid"
    assert status.label("weird") == "Weird"

    assert status.can_transition("UNPAID", "PARTIAL")
    assert status.can_transition("PAID", "PAID")
    assert not status.can_transition("PAID", "PARTIAL")
    assert not status.can_transition("PARTIAL", "UNPAID")
    assert not status.can_transition("UNPAID", "overdue")
    assert status.badge("paid")["bg"] == "#D1FAE5"
    assert status.badge("weird")["bg"] == "#F3F4F6"


# ---------------------------------------------------------------------
# P6. Oldest first: A (day 1, due 500), B (day 2, due 300), pay 600
# ---------------------------------------------------------------------
def test_p6_oldest_first_plan():
    a = _inv("A", 500, created_at="2025-01-01T10:00:00.000000")
    b = _inv("B", 300, created_at="2025-01-02T10:00:00.000000")

    plan = allocate_oldest_first(600, [b, a])

    assert [(r["invoice_id"], r["applied"], r["amount_due"], r["status"]) for r in plan["rows"]] == [
        ("A", 500, 0, "PAID"),
        ("B", 100, 200, "PARTIAL"),
    ]
    assert (plan["allocated_total"], plan["unallocated"]) == (600, 0)
    assert plan["warnings"] == []


def test_p7_oldest_first_skips_settled_and_keeps_tie_order():
    plan = allocate_oldest_first(50, [_inv("X", 0, paid=80), _inv("Y", 100), _inv("Z", 100)])
    assert [(r["invoice_id"], r["applied"]) for r in plan["rows"]] == [("Y", 50)]
    assert plan["rows"][0]["status"] == "PARTIAL"


def test_p8_oldest_first_surplus_and_empty():
    plan = allocate_oldest_first(1000, [_inv("A", 500), _inv("B", 300)])
    assert plan["unallocated"] == 200
    assert plan["warnings"]

    plan = allocate_oldest_first(75, [])
    assert plan["rows"] == []
    assert plan["unallocated"] == 75
    assert sum_amount_due([_inv("A", 500), _inv("B", -3), {"amount_due": "junk"}]) == 500


def test_p9_targeted_plan():
    plan = allocate_targeted(250, _inv("T", 200))
    assert [(r["invoice_id"], r["applied"], r["amount_paid"], r["status"]) for r in plan["rows"]] == [
        ("T", 200, 200, "PAID")
    ]
    assert plan["unallocated"] == 50

    plan = allocate_targeted(150, _inv("T", 200))
    assert plan["rows"][0]["status"] == "PARTIAL"
    assert plan["unallocated"] == 0

    plan = allocate_targeted(10, None)
    assert plan["rows"] == []
    assert plan["unallocated"] == 10
