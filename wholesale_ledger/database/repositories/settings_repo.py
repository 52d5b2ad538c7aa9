from __future__ import annotations
from dataclasses import dataclass, fields as dc_fields
import logging
import sqlite3
from typing import TYPE_CHECKING, Any

from ...utils.helpers import now_str
from ...utils.validators import non_empty, normalize_text
from .errors import ValidationError

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)


@dataclass
class AppSettings:
    business_name: str
    owner_name: str | None
    phone: str | None
    address: str | None
    gst_number: str | None
    currency: str
    date_format: str


_FIELDS = tuple(f.name for f in dc_fields(AppSettings))
_REQUIRED = {"business_name": "Business name", "currency": "Currency", "date_format": "Date format"}


def _row_to_settings(r: sqlite3.Row) -> AppSettings:
    return AppSettings(**{k: r[k] for k in _FIELDS})


class SettingsRepo:
    """The single business-settings row (id = 1), seeded on open."""

    def __init__(self, db: "Database"):
        self.db = db

    def get(self) -> AppSettings:
        r = self.db.query_one(f"SELECT {', '.join(_FIELDS)} FROM settings WHERE id=1")
        return _row_to_settings(r)

    def update(self, **fields: Any) -> AppSettings:
        unknown = set(fields) - set(_FIELDS)
        if unknown:
            raise ValidationError("Unknown setting(s): " + ", ".join(sorted(unknown)))
        for key, label in _REQUIRED.items():
            if key in fields and not non_empty(fields[key]):
                raise ValidationError(f"{label} cannot be empty.")
        if not fields:
            return self.get()

        values = {k: normalize_text(v) for k, v in fields.items()}
        if "currency" in values:
            values["currency"] = values["currency"].upper()
        assignments = ", ".join(f"{k}=?" for k in values)
        with self.db.transaction() as conn:
            conn.execute(
                f"UPDATE settings SET {assignments}, updated_at=? WHERE id=1",
                (*values.values(), now_str()),
            )
        _log.info("Updated settings: %s", ", ".join(sorted(values)))
        return self.get()
