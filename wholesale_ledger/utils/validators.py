# utils/validators.py
from __future__ import annotations


def non_empty(text: str | None) -> bool:
    """
    True if `text` is not None/empty after stripping whitespace.
    """
    return bool(text and str(text).strip())


def normalize_text(s: str | None) -> str | None:
    """Trim surrounding whitespace; blank strings become None."""
    if s is None:
        return None
    s = str(s).strip()
    return s or None


# ---- Numeric parsing & validators ----

def try_parse_float(x):
    """
    Best-effort parse to float.

    Returns:
        (ok: bool, value: float|None)
    """
    try:
        return True, float(x)
    except (TypeError, ValueError):
        return False, None

