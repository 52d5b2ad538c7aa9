# utils/id_generator.py
from __future__ import annotations

import random
import uuid
from datetime import date


def generate_uuid() -> str:
    return str(uuid.uuid4())


def generate_invoice_number(on: date | None = None) -> str:
    """INV + yyMMdd + 4 random digits, e.g. INV2510190042."""
    d = on or date.today()
    return f"INV{d:%y%m%d}{random.randint(0, 9999):04d}"


def generate_sku(category_name: str, item_name: str) -> str:
    cat_prefix = (category_name or "")[:3].upper()
    item_prefix = (item_name or "")[:3].upper()
    return f"{cat_prefix}{item_prefix}{random.randint(0, 99999):05d}"
