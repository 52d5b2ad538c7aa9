# tests/test_cli.py
import pytest

from wholesale_ledger.__main__ import main
from wholesale_ledger.app import LedgerApp
from wholesale_ledger.database.repositories import InvoiceLine
from wholesale_ledger.modules.invoices import pdf_export


@pytest.fixture()
def shop(tmp_path):
    """A closed database with one low item, one client and one invoice."""
    path = tmp_path / "shop.db"
    with LedgerApp(path) as app:
        cat = app.categories.create("Grocery")
        app.stock.create(cat.id, "Basmati Rice", "RICE-01", sale_price=70, current_quantity=100, min_stock_level=10)
        app.stock.create(cat.id, "Jaggery", "JAG-01", current_quantity=3, min_stock_level=5, unit="kg")
        client = app.clients.create("Ravi Kumar", "9000000001", "Kumar Stores")
        rice = app.stock.get_by_sku("RICE-01")
        inv = app.invoices.create_invoice(client.id, [InvoiceLine(rice.id, 2, 70)])
    return {"path": str(path), "client_id": client.id, "invoice": inv}


def test_k1_init_creates_database(tmp_path, capsys):
    path = tmp_path / "new" / "ledger.db"
    assert main(["--db", str(path), "init"]) == 0
    assert path.exists()
    assert "Database ready" in capsys.readouterr().out


def test_k2_low_stock(shop, capsys):
    assert main(["--db", shop["path"], "low-stock"]) == 0
    out = capsys.readouterr().out
    assert "JAG-01" in out
    assert "RICE-01" not in out


def test_k3_low_stock_when_nothing_is_low(tmp_path, capsys):
    assert main(["--db", str(tmp_path / "empty.db"), "low-stock"]) == 0
    assert "No items at or below minimum stock." in capsys.readouterr().out


def test_k4_ledger(shop, capsys):
    assert main(["--db", shop["path"], "ledger", shop["client_id"]]) == 0
    out = capsys.readouterr().out
    assert "Kumar Stores (Ravi Kumar) balance 140.00" in out
    assert f"Invoice #{shop['invoice'].invoice_number}" in out

    assert main(["--db", shop["path"], "ledger", shop["client_id"], "--from", "2001-01-01", "--to", "2001-12-31"]) == 0
    assert "Invoice #" not in capsys.readouterr().out


def test_k5_unknown_ids_exit_with_error(shop):
    assert main(["--db", shop["path"], "ledger", "ghost"]) == 1
    assert main(["--db", shop["path"], "export-invoice", "ghost", "out.pdf"]) == 1


def test_k6_export_invoice(shop, tmp_path, monkeypatch, capsys):
    written = []
    monkeypatch.setattr(pdf_export, "_write_pdf", lambda html, out: written.append((html, out)))

    out = tmp_path / "inv.pdf"
    assert main(["--db", shop["path"], "export-invoice", shop["invoice"].id, str(out), "--with-ledger"]) == 0

    [(html, path)] = written
    assert path == out
    assert "Account Statement" in html
    assert f"Wrote {out}" in capsys.readouterr().out
