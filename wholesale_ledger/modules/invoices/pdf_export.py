"""
Invoice export: HTML via a Jinja2 template, PDF via WeasyPrint.

The HTML half is usable (and tested) without WeasyPrint's native
dependencies; `weasyprint` is imported only when a PDF is written.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Sequence

from jinja2 import Template

from ...config import TEMPLATES_DIR
from ...utils.helpers import fmt_money, now_str
from ..payments.payment_utilities import status as invoice_status

if TYPE_CHECKING:
    from ...database.repositories import AppSettings, Client, Invoice, LedgerEntry

_log = logging.getLogger(__name__)

INVOICE_TEMPLATE_NAME = "invoice.html"

INVOICE_PDF_CSS = '''
    @page {
        margin: 10mm;
        size: A4;
    }
    body {
        margin: 0 !important;
        padding: 0 !important;
        width: 100% !important;
    }
'''


def load_template(template_dir: Path | str | None = None) -> str:
    path = Path(template_dir or TEMPLATES_DIR) / INVOICE_TEMPLATE_NAME
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, OSError) as e:
        error_msg = f"Template file not found at: {path}. Please ensure the invoice template exists. Error: {e}"
        _log.error(error_msg)
        raise FileNotFoundError(error_msg) from e


def render_invoice_html(
    invoice: "Invoice",
    client: "Client",
    settings: "AppSettings",
    ledger: Optional[Sequence["LedgerEntry"]] = None,
    *,
    template_dir: Path | str | None = None,
) -> str:
    """Render one invoice (and optionally the client's ledger) to an HTML string."""
    currency = settings.currency

    def money(v) -> str:
        return fmt_money(v, currency=currency)

    template = Template(load_template(template_dir), autoescape=True)
    return template.render(
        business=settings,
        client=client,
        invoice=invoice,
        status_label=invoice_status.label(invoice.status),
        status_badge=invoice_status.badge(invoice.status),
        items=invoice.items,
        ledger=list(ledger or []),
        money=money,
        generated_at=now_str()[:19].replace("T", " "),
    )


def _write_pdf(html_content: str, out_path: Path) -> None:
    from weasyprint import CSS, HTML

    HTML(string=html_content).write_pdf(str(out_path), stylesheets=[CSS(string=INVOICE_PDF_CSS)])


def export_invoice_pdf(
    invoice: "Invoice",
    client: "Client",
    settings: "AppSettings",
    out_path: Path | str,
    ledger: Optional[Sequence["LedgerEntry"]] = None,
    *,
    template_dir: Path | str | None = None,
) -> Path:
    out = Path(out_path)
    out.parent.mkdir(parents=True, exist_ok=True)
    html_content = render_invoice_html(invoice, client, settings, ledger, template_dir=template_dir)
    _write_pdf(html_content, out)
    _log.info("Exported invoice %s to %s", invoice.invoice_number, out)
    return out
