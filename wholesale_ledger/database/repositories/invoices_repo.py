from __future__ import annotations
from dataclasses import dataclass, field
import logging
import sqlite3
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from ... import config
from ...constants import (
    DEFAULT_PERFORMED_BY,
    ENTRY_PAYMENT,
    ENTRY_SALE,
    EPSILON,
    MOVEMENT_OUT,
    OPEN_INVOICE_STATUSES,
    PAYMENT_ENTRY_TYPES,
)
from ...modules.payments.payment_utilities import status as invoice_status
from ...modules.payments.payment_utilities.calculations import (
    invoice_totals,
    line_total,
    round_money,
    status_from_amounts,
)
from ...modules.payments.payment_utilities.partial_payment_manager import (
    allocate_oldest_first,
    allocate_targeted,
)
from ...utils.helpers import now_str, to_date_str
from ...utils.id_generator import generate_invoice_number, generate_uuid
from ...utils.validators import normalize_text, try_parse_float
from .clients_repo import ClientsRepo, LedgerEntry, LedgerItem
from .errors import (
    ClientNotFoundError,
    ConstraintViolationError,
    InvoiceNotFoundError,
    OverpaymentError,
    StockItemNotFoundError,
    ValidationError,
)
from .stock_repo import StockRepo

if TYPE_CHECKING:
    from .. import Database

_log = logging.getLogger(__name__)

DEFAULT_PAYMENT_DESCRIPTION = "Payment Received"


@dataclass
class InvoiceLine:
    """One requested line for create_invoice()."""
    stock_item_id: str
    quantity: float
    unit_price: float
    stock_item_name: str | None = None


@dataclass
class InvoiceItem:
    stock_item_id: str
    stock_item_name: str
    quantity: float
    unit_price: float
    total: float


@dataclass
class Invoice:
    id: str
    invoice_number: str
    client_id: str
    subtotal: float
    discount: float
    tax: float
    total: float
    amount_paid: float
    amount_due: float
    status: str
    notes: str | None
    created_at: str
    updated_at: str
    items: list[InvoiceItem] = field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return invoice_status.is_open(self.status)


@dataclass
class PaymentAllocation:
    invoice_id: str
    invoice_number: str
    applied: float
    amount_due: float  # after this payment
    status: str        # after this payment


@dataclass
class PaymentReceipt:
    ledger_entry: LedgerEntry
    allocations: list[PaymentAllocation]
    allocated_total: float
    unallocated: float


_INVOICE_COLS = (
    "id, invoice_number, client_id, subtotal, discount, tax, total, amount_paid, amount_due, "
    "status, notes, created_at, updated_at"
)


def _row_to_invoice(r: sqlite3.Row, items: list[InvoiceItem] | None = None) -> Invoice:
    return Invoice(
        id=r["id"],
        invoice_number=r["invoice_number"],
        client_id=r["client_id"],
        subtotal=float(r["subtotal"]),
        discount=float(r["discount"]),
        tax=float(r["tax"]),
        total=float(r["total"]),
        amount_paid=float(r["amount_paid"]),
        amount_due=float(r["amount_due"]),
        status=r["status"],
        notes=r["notes"],
        created_at=r["created_at"],
        updated_at=r["updated_at"],
        items=items or [],
    )


def _row_to_item(r: sqlite3.Row) -> InvoiceItem:
    return InvoiceItem(
        stock_item_id=r["stock_item_id"],
        stock_item_name=r["stock_item_name"],
        quantity=float(r["quantity"]),
        unit_price=float(r["unit_price"]),
        total=float(r["total"]),
    )


def _coerce_line(line: InvoiceLine | Mapping[str, Any]) -> InvoiceLine:
    if isinstance(line, InvoiceLine):
        return line
    try:
        return InvoiceLine(
            stock_item_id=line["stock_item_id"],
            quantity=line["quantity"],
            unit_price=line["unit_price"],
            stock_item_name=line.get("stock_item_name"),
        )
    except KeyError as e:
        raise ValidationError(f"Invoice line is missing {e.args[0]!r}.") from e


def _non_negative(value: Any, label: str) -> float:
    ok, val = try_parse_float(value)
    if not ok or val is None:
        raise ValidationError(f"{label} must be a number.")
    if val < 0:
        raise ValidationError(f"{label} cannot be negative.")
    return round_money(val)


class InvoicesRepo:
    """
    Invoice Settlement.

    create_invoice() writes the invoice, its items, one OUT stock movement
    per line and (when something is still due) a SALE ledger entry in one
    transaction. record_payment() allocates a received amount across open
    invoices and credits the client ledger with the full amount.
    """

    def __init__(
        self,
        db: "Database",
        stock: StockRepo | None = None,
        clients: ClientsRepo | None = None,
        *,
        max_payment_amount: float | None = None,
    ):
        self.db = db
        self.stock = stock or StockRepo(db)
        self.clients = clients or ClientsRepo(db)
        self.max_payment_amount = (
            max_payment_amount if max_payment_amount is not None else config.MAX_PAYMENT_AMOUNT
        )

    # ---- Internal helpers -------------------------------------------------

    def _items_for(self, invoice_ids: Sequence[str]) -> dict[str, list[InvoiceItem]]:
        out: dict[str, list[InvoiceItem]] = {}
        if not invoice_ids:
            return out
        marks = ",".join("?" for _ in invoice_ids)
        rows = self.db.query_all(
            "SELECT invoice_id, stock_item_id, stock_item_name, quantity, unit_price, total "
            f"FROM invoice_items WHERE invoice_id IN ({marks}) ORDER BY rowid",
            tuple(invoice_ids),
        )
        for r in rows:
            out.setdefault(r["invoice_id"], []).append(_row_to_item(r))
        return out

    def _with_items(self, rows: Iterable[sqlite3.Row]) -> list[Invoice]:
        rows = list(rows)
        items = self._items_for([r["id"] for r in rows])
        return [_row_to_invoice(r, items.get(r["id"])) for r in rows]

    def _number_taken(self, number: str) -> bool:
        return self.db.query_one(
            "SELECT 1 FROM invoices WHERE invoice_number=?", (number,)
        ) is not None

    # ---- Queries ----------------------------------------------------------

    def get(self, invoice_id: str) -> Invoice | None:
        r = self.db.query_one(f"SELECT {_INVOICE_COLS} FROM invoices WHERE id=?", (invoice_id,))
        return self._with_items([r])[0] if r else None

    def require(self, invoice_id: str) -> Invoice:
        inv = self.get(invoice_id)
        if inv is None:
            raise InvoiceNotFoundError(f"Invoice {invoice_id} not found.")
        return inv

    def get_by_number(self, invoice_number: str) -> Invoice | None:
        r = self.db.query_one(
            f"SELECT {_INVOICE_COLS} FROM invoices WHERE invoice_number=?",
            ((invoice_number or "").strip(),),
        )
        return self._with_items([r])[0] if r else None

    def list_invoices(self) -> list[Invoice]:
        """Newest first."""
        return self._with_items(self.db.query_all(
            f"SELECT {_INVOICE_COLS} FROM invoices ORDER BY created_at DESC, rowid DESC"
        ))

    def list_by_client(self, client_id: str) -> list[Invoice]:
        return self._with_items(self.db.query_all(
            f"SELECT {_INVOICE_COLS} FROM invoices WHERE client_id=? "
            "ORDER BY created_at DESC, rowid DESC",
            (client_id,),
        ))

    def list_by_status(self, status: str) -> list[Invoice]:
        try:
            s = invoice_status.ensure_valid(status)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return self._with_items(self.db.query_all(
            f"SELECT {_INVOICE_COLS} FROM invoices WHERE status=? "
            "ORDER BY created_at DESC, rowid DESC",
            (s,),
        ))

    def list_by_date_range(self, date_from, date_to) -> list[Invoice]:
        """Invoices created between the two business dates, inclusive."""
        try:
            start, end = to_date_str(date_from), to_date_str(date_to)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        return self._with_items(self.db.query_all(
            f"SELECT {_INVOICE_COLS} FROM invoices "
            "WHERE substr(created_at, 1, 10) BETWEEN ? AND ? "
            "ORDER BY created_at DESC, rowid DESC",
            (start, end),
        ))

    def list_open_by_client(self, client_id: str) -> list[Invoice]:
        """UNPAID/PARTIAL invoices, oldest created first (FIFO allocation order)."""
        marks = ",".join("?" for _ in OPEN_INVOICE_STATUSES)
        return self._with_items(self.db.query_all(
            f"SELECT {_INVOICE_COLS} FROM invoices "
            f"WHERE client_id=? AND status IN ({marks}) "
            "ORDER BY created_at ASC, rowid ASC",
            (client_id, *OPEN_INVOICE_STATUSES),
        ))

    def open_balance(self, client_id: str) -> float:
        marks = ",".join("?" for _ in OPEN_INVOICE_STATUSES)
        r = self.db.query_one(
            f"SELECT COALESCE(SUM(amount_due), 0) AS due FROM invoices "
            f"WHERE client_id=? AND status IN ({marks})",
            (client_id, *OPEN_INVOICE_STATUSES),
        )
        return round_money(r["due"])

    def generate_invoice_number(self) -> str:
        """INVyyMMddNNNN not yet used by any invoice."""
        for _ in range(50):
            number = generate_invoice_number()
            if not self._number_taken(number):
                return number
        raise ConstraintViolationError("Could not find a free invoice number for today.")

    # ---- Settlement -------------------------------------------------------

    def create_invoice(
        self,
        client_id: str,
        lines: Iterable[InvoiceLine | Mapping[str, Any]],
        *,
        discount: float = 0.0,
        tax: float = 0.0,
        amount_paid: float = 0.0,
        notes: str | None = None,
        invoice_number: str | None = None,
        performed_by: str = DEFAULT_PERFORMED_BY,
    ) -> Invoice:
        """
        Create an invoice and everything that hangs off it, atomically.

        All validation happens before the first write. Any failure inside the
        transaction (e.g. InsufficientStockError on a later line) rolls back
        the invoice, its items, earlier stock movements and the ledger entry.
        """
        req_lines: list[InvoiceLine] = []
        for raw in lines or []:
            line = _coerce_line(raw)
            ok, qty = try_parse_float(line.quantity)
            if not ok or qty is None or qty <= 0:
                raise ValidationError("Line quantity must be greater than 0.")
            ok, price = try_parse_float(line.unit_price)
            if not ok or price is None or price < 0:
                raise ValidationError("Line unit price cannot be negative.")
            req_lines.append(InvoiceLine(line.stock_item_id, qty, price, line.stock_item_name))
        if not req_lines:
            raise ValidationError("An invoice needs at least one line.")

        discount_v = _non_negative(discount, "Discount")
        tax_v = _non_negative(tax, "Tax")
        paid_v = _non_negative(amount_paid, "Amount paid")
        subtotal, total = invoice_totals(((l.quantity, l.unit_price) for l in req_lines), discount_v, tax_v)
        if total < -EPSILON:
            raise ValidationError("Discount cannot exceed subtotal plus tax.")
        if paid_v > total + EPSILON:
            _log.warning("Invoice rejected: paid %g exceeds total %g", paid_v, total)
            raise OverpaymentError(f"Amount paid {paid_v:g} exceeds invoice total {total:g}.")
        amount_due = round_money(total - paid_v)
        status = status_from_amounts(paid_v, amount_due)

        client = self.clients.get(client_id)
        if client is None or not client.is_active:
            raise ClientNotFoundError(f"Client {client_id} not found.")
        items: list[InvoiceItem] = []
        for line in req_lines:
            stock_item = self.stock.get(line.stock_item_id)
            if stock_item is None:
                raise StockItemNotFoundError(f"Stock item {line.stock_item_id} not found.")
            items.append(
                InvoiceItem(
                    stock_item_id=stock_item.id,
                    stock_item_name=normalize_text(line.stock_item_name) or stock_item.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total=line_total(line.quantity, line.unit_price),
                )
            )

        number = normalize_text(invoice_number)
        if number is None:
            number = self.generate_invoice_number()
        elif self._number_taken(number):
            _log.warning("Invoice rejected: number %s already in use", number)
            raise ConstraintViolationError(f"Invoice number {number} is already in use.")
        invoice_id = generate_uuid()
        ts = now_str()
        try:
            with self.db.transaction() as conn:
                conn.execute(
                    f"INSERT INTO invoices({_INVOICE_COLS}, paid_at_creation) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        invoice_id, number, client_id, subtotal, discount_v, tax_v, total,
                        paid_v, amount_due, status, normalize_text(notes), ts, ts, paid_v,
                    ),
                )
                conn.executemany(
                    "INSERT INTO invoice_items(id, invoice_id, stock_item_id, stock_item_name, quantity, unit_price, total) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    [
                        (generate_uuid(), invoice_id, i.stock_item_id, i.stock_item_name, i.quantity, i.unit_price, i.total)
                        for i in items
                    ],
                )
                for i in items:
                    self.stock.adjust_quantity(
                        i.stock_item_id,
                        i.quantity,
                        movement_type=MOVEMENT_OUT,
                        reason=f"Sold via Invoice #{number}",
                        performed_by=performed_by,
                        reference=invoice_id,
                    )
                if amount_due > EPSILON:
                    self.clients.append_entry(
                        client_id,
                        entry_type=ENTRY_SALE,
                        description=f"Invoice #{number}",
                        debit=total,
                        credit=paid_v,
                        items=[
                            LedgerItem(i.stock_item_id, i.stock_item_name, i.quantity, i.unit_price, i.total)
                            for i in items
                        ],
                        invoice_id=invoice_id,
                        notes=notes,
                    )
        except sqlite3.IntegrityError as e:
            if self._number_taken(number):
                raise ConstraintViolationError(f"Invoice number {number} is already in use.") from e
            raise ConstraintViolationError(f"Invoice {number} violates a storage constraint: {e}") from e

        _log.info(
            "Created invoice %s (%s) for client %s: total %g, paid %g, %s",
            number, invoice_id, client_id, total, paid_v, status,
        )
        return self.require(invoice_id)

    def record_payment(
        self,
        client_id: str,
        amount: float,
        *,
        target_invoice_id: str | None = None,
        date=None,
        description: str | None = None,
        entry_type: str = ENTRY_PAYMENT,
        notes: str | None = None,
    ) -> PaymentReceipt:
        """
        Apply a received amount and credit the client's ledger.

        Targeted: min(amount, amount_due) goes to that invoice only; any
        surplus is NOT redirected and shows up only as ledger credit.
        Otherwise open invoices are paid oldest created first until the
        amount runs out. Either way exactly one ledger entry with
        credit = amount is appended, in the same transaction.
        """
        ok, value = try_parse_float(amount)
        if not ok or value is None or value <= 0:
            raise ValidationError("Payment amount must be greater than 0.")
        value = round_money(value)
        if self.max_payment_amount is not None and value > self.max_payment_amount + EPSILON:
            _log.warning("Payment of %g rejected: above limit %g", value, self.max_payment_amount)
            raise OverpaymentError(
                f"Payment {value:g} exceeds the allowed maximum {self.max_payment_amount:g}."
            )
        etype = (entry_type or "").strip().upper()
        if etype not in PAYMENT_ENTRY_TYPES:
            raise ValidationError("entry_type must be one of: " + ", ".join(PAYMENT_ENTRY_TYPES))
        try:
            entry_date = to_date_str(date)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        self.clients.require(client_id)

        with self.db.transaction() as conn:
            if target_invoice_id is not None:
                target = self.get(target_invoice_id)
                if target is None or target.client_id != client_id:
                    _log.warning(
                        "Payment rejected: invoice %s not found for client %s", target_invoice_id, client_id
                    )
                    raise InvoiceNotFoundError(f"Invoice {target_invoice_id} not found for this client.")
                invoices = [target]
                plan = allocate_targeted(value, self._plan_row(target))
            else:
                invoices = self.list_open_by_client(client_id)
                plan = allocate_oldest_first(value, [self._plan_row(i) for i in invoices])

            before = {i.id: i.status for i in invoices}
            for row in plan["rows"]:
                if not invoice_status.can_transition(before[row["invoice_id"]], row["status"]):
                    raise ConstraintViolationError(
                        f"Invoice {row['invoice_number']} cannot move from "
                        f"{before[row['invoice_id']]} to {row['status']}."
                    )

            ts = now_str()
            for row in plan["rows"]:
                conn.execute(
                    "UPDATE invoices SET amount_paid=?, amount_due=?, status=?, updated_at=? WHERE id=?",
                    (row["amount_paid"], row["amount_due"], row["status"], ts, row["invoice_id"]),
                )

            entry = self.clients.append_entry(
                client_id,
                entry_type=etype,
                description=normalize_text(description) or DEFAULT_PAYMENT_DESCRIPTION,
                credit=value,
                date=entry_date,
                invoice_id=target_invoice_id,
                notes=notes,
                receipt=True,
            )

        for w in plan["warnings"]:
            _log.info("Payment %s for client %s: %s", entry.id, client_id, w)
        allocations = [
            PaymentAllocation(
                invoice_id=row["invoice_id"],
                invoice_number=row["invoice_number"],
                applied=row["applied"],
                amount_due=row["amount_due"],
                status=row["status"],
            )
            for row in plan["rows"]
        ]
        _log.info(
            "Recorded payment %g for client %s across %d invoice(s)", value, client_id, len(allocations)
        )
        return PaymentReceipt(
            ledger_entry=entry,
            allocations=allocations,
            allocated_total=plan["allocated_total"],
            unallocated=plan["unallocated"],
        )

    @staticmethod
    def _plan_row(inv: Invoice) -> dict[str, Any]:
        return {
            "invoice_id": inv.id,
            "invoice_number": inv.invoice_number,
            "amount_paid": inv.amount_paid,
            "amount_due": inv.amount_due if inv.is_open else 0.0,
            "created_at": inv.created_at,
        }

    # ---- Mutations --------------------------------------------------------

    def update_notes(self, invoice_id: str, notes: str | None) -> Invoice:
        """The only edit an invoice accepts; amounts change through payments."""
        self.require(invoice_id)
        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE invoices SET notes=?, updated_at=? WHERE id=?",
                (normalize_text(notes), now_str(), invoice_id),
            )
        return self.require(invoice_id)
