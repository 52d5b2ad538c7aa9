"""
Invoice settlement states.

UNPAID -> PARTIAL -> PAID only ever moves forward: amount_paid never
decreases and PAID is terminal. The schema enforces the same rule with a
trigger; `can_transition` lets callers check a plan before writing it.
"""
from __future__ import annotations
from typing import Optional

from ....constants import INVOICE_STATUSES, OPEN_INVOICE_STATUSES, STATUS_PAID

VALID_STATES: tuple[str, ...] = INVOICE_STATUSES
RANK: dict[str, int] = {s: i for i, s in enumerate(VALID_STATES)}  # UNPAID=0, PARTIAL=1, PAID=2

LABELS = {
    "UNPAID":  "Unpaid",
    "PARTIAL": "Partially paid",
    "PAID":    "Paid",
}

# badge colours for rendered invoices
BADGES = {
    "UNPAID":  {"fg": "#991B1B", "bg": "#FEE2E2"},
    "PARTIAL": {"fg": "#92400E", "bg": "#FEF3C7"},
    "PAID":    {"fg": "#065F46", "bg": "#D1FAE5"},
}
_NEUTRAL_BADGE = {"fg": "#374151", "bg": "#F3F4F6"}


def normalize(state: Optional[str]) -> Optional[str]:
    """Uppercase & strip; None for blanks."""
    if state is None:
        return None
    s = str(state).strip().upper()
    return s or None


def is_valid(state: Optional[str]) -> bool:
    return normalize(state) in RANK


def ensure_valid(state: str) -> str:
    if not is_valid(state):
        raise ValueError("status must be one of: " + ", ".join(VALID_STATES))
    return normalize(state)  # type: ignore[return-value]


def is_open(state: Optional[str]) -> bool:
    """Open invoices still accept payments."""
    return normalize(state) in OPEN_INVOICE_STATUSES


def can_transition(current: str, new: str) -> bool:
    """
    True when moving `current` -> `new` keeps settlement monotonic.
    Staying in the same state is allowed (PAID -> PAID included).
    """
    if not (is_valid(current) and is_valid(new)):
        return False
    cur, nxt = normalize(current), normalize(new)
    if cur == STATUS_PAID:
        return nxt == STATUS_PAID
    return RANK[nxt] >= RANK[cur]


def label(state: str) -> str:
    """'Partially paid' etc.; unknown states come back title-cased."""
    s = normalize(state)
    if s in LABELS:
        return LABELS[s]  # type: ignore[index]
    return (state or "").strip().title()


def badge(state: str) -> dict:
    return BADGES.get(normalize(state) or "", _NEUTRAL_BADGE)
