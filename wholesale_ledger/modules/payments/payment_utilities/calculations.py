"""
payment_utilities/calculations.py

Pure helpers for invoice totals and payment previews. Mirrors the math used by:
- InvoicesRepo.create_invoice() for subtotal/total/amount_due/status.
- InvoicesRepo.record_payment() when an amount is applied to one invoice.

Do not import repos or open DB connections here.
Only compute numbers; formatting belongs in utils.helpers.fmt_money.
"""
from __future__ import annotations

from typing import Iterable, Optional, Tuple

from ....constants import EPSILON, STATUS_PAID, STATUS_PARTIAL, STATUS_UNPAID

__all__ = [
    "clamp_non_negative",
    "round_money",
    "line_total",
    "invoice_totals",
    "status_from_amounts",
    "apply_to_invoice",
    "units_from_packs",
]


# -----------------------------
# Core utilities
# -----------------------------

def clamp_non_negative(x: float) -> float:
    """Return x if x > 0, else 0.0."""
    return x if x > 0.0 else 0.0


def round_money(x: float) -> float:
    """Two-place rounding used for every stored amount; snaps -0.0 and float dust to 0."""
    r = round(float(x), 2)
    return 0.0 if abs(r) < EPSILON else r


# -----------------------------
# Invoice helpers
# -----------------------------

def line_total(quantity: float, unit_price: float) -> float:
    return round_money(float(quantity) * float(unit_price))


def invoice_totals(
    lines: Iterable[Tuple[float, float]],
    discount: float = 0.0,
    tax: float = 0.0,
) -> Tuple[float, float]:
    """
    Returns (subtotal, total) for (quantity, unit_price) pairs.

    subtotal = Σ quantity × unit_price
    total    = subtotal − discount + tax

    No clamping: a negative total is the caller's validation problem.
    """
    subtotal = round_money(sum(line_total(q, p) for q, p in lines))
    total = round_money(subtotal - float(discount) + float(tax))
    return subtotal, total


def status_from_amounts(amount_paid: float, amount_due: float) -> str:
    """
    Status rules:
      - 'PAID'    if amount_due <= 0
      - 'PARTIAL' if amount_paid > 0 (and amount_due > 0)
      - 'UNPAID'  if amount_paid == 0
    """
    if amount_due <= EPSILON:
        return STATUS_PAID
    if amount_paid > EPSILON:
        return STATUS_PARTIAL
    return STATUS_UNPAID


def apply_to_invoice(
    amount_paid: float,
    amount_due: float,
    amount: float,
) -> Tuple[float, float, float, str]:
    """
    Apply up to `amount` to one invoice.

    Returns (applied, new_amount_paid, new_amount_due, new_status) where
    applied = min(amount, amount_due), never negative.
    """
    applied = round_money(min(clamp_non_negative(amount), clamp_non_negative(amount_due)))
    new_paid = round_money(amount_paid + applied)
    new_due = round_money(amount_due - applied)
    return applied, new_paid, new_due, status_from_amounts(new_paid, new_due)


# -----------------------------
# Stock helpers
# -----------------------------

def units_from_packs(packs: float, loose: float = 0.0, items_in_pack: Optional[int] = None) -> float:
    """
    Convert a pack + loose count into base units.

    Without a pack size, packs count as single units.
    """
    size = items_in_pack if items_in_pack and items_in_pack > 0 else 1
    return float(packs) * size + float(loose)
