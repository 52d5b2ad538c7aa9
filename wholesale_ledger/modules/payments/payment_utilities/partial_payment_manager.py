"""
payment_utilities/partial_payment_manager.py

Helpers to split a single received amount across a client's open invoices.

- Oldest first (FIFO): walk invoices by creation order until the amount runs out.
- Targeted: apply to one chosen invoice only; any surplus stays unallocated.

Pure functions; no DB. InvoicesRepo.record_payment persists the plan and
appends the single ledger credit for the full amount.

Each invoice is a mapping with at least:
    invoice_id, amount_paid, amount_due
and optionally invoice_number, created_at.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

from ....constants import EPSILON
from .calculations import apply_to_invoice, clamp_non_negative, round_money

__all__ = [
    "allocate_oldest_first",
    "allocate_targeted",
    "sum_amount_due",
]


def _safe_due(val: Any) -> float:
    try:
        return clamp_non_negative(float(val))
    except (TypeError, ValueError):
        return 0.0


def sum_amount_due(invoices: Sequence[Mapping[str, Any]]) -> float:
    return round_money(sum(_safe_due(i.get("amount_due", 0.0)) for i in invoices))


def _row(inv: Mapping[str, Any], applied: float, paid: float, due: float, status: str) -> Dict[str, Any]:
    return {
        "invoice_id": inv.get("invoice_id"),
        "invoice_number": inv.get("invoice_number"),
        "applied": applied,
        "amount_paid": paid,
        "amount_due": due,
        "status": status,
    }


def _envelope(requested: float, rows: List[Dict[str, Any]], warnings: List[str]) -> Dict[str, Any]:
    allocated_total = round_money(sum(r["applied"] for r in rows))
    return {
        "requested_total": requested,
        "allocated_total": allocated_total,
        "unallocated": round_money(requested - allocated_total),
        "rows": rows,
        "warnings": warnings,
    }


def allocate_oldest_first(amount: float, invoices: Sequence[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Split `amount` across `invoices`, oldest created first.

    Ties on created_at keep the caller's order (stable sort), so pass rows
    in insertion order. Settled invoices get nothing; the walk stops once
    the amount is exhausted. Returns an allocation plan envelope.
    """
    requested = round_money(clamp_non_negative(float(amount or 0.0)))
    warnings: List[str] = []
    total_due = sum_amount_due(invoices)
    if total_due <= EPSILON:
        warnings.append("No open balance to allocate.")
        return _envelope(requested, [], warnings)

    work = sorted(invoices, key=lambda i: i.get("created_at") or "")
    remaining = requested
    rows: List[Dict[str, Any]] = []
    for inv in work:
        if remaining <= EPSILON:
            break
        due = _safe_due(inv.get("amount_due"))
        if due <= EPSILON:
            continue
        applied, paid, new_due, status = apply_to_invoice(float(inv.get("amount_paid") or 0.0), due, remaining)
        rows.append(_row(inv, applied, paid, new_due, status))
        remaining = round_money(remaining - applied)

    if remaining > EPSILON:
        warnings.append(
            f"Amount exceeds combined amount due ({total_due:.2f}); {remaining:.2f} left unallocated."
        )
    return _envelope(requested, rows, warnings)


def allocate_targeted(amount: float, invoice: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Apply min(amount, amount_due) to `invoice` only. The surplus is NOT
    redirected to other invoices.
    """
    requested = round_money(clamp_non_negative(float(amount or 0.0)))
    warnings: List[str] = []
    rows: List[Dict[str, Any]] = []

    due = _safe_due(invoice.get("amount_due")) if invoice else 0.0
    if invoice is None or due <= EPSILON:
        warnings.append("Target invoice has nothing due.")
        return _envelope(requested, rows, warnings)

    applied, paid, new_due, status = apply_to_invoice(float(invoice.get("amount_paid") or 0.0), due, requested)
    rows.append(_row(invoice, applied, paid, new_due, status))
    if requested - applied > EPSILON:
        warnings.append("Amount exceeds the invoice's amount due; surplus left unallocated.")
    return _envelope(requested, rows, warnings)
