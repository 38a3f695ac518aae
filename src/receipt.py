"""
Sales ticket rendering.

:func:`build_ticket` turns a finalized :class:`~dao.Sale` into a
:class:`Ticket`, a plain document model holding every formatted string in
the order it appears on paper.  Three thin adapters consume that model:

* :func:`render_text` - the on-screen rendition shown after a sale;
* :func:`print_ticket` - a PDF handed to the printer service;
* :func:`save_ticket` - a PDF written as ``sales_ticket_<saleId>.pdf``.

Product names are looked up in the catalog when the ticket is built, not
copied from the sale, so a product renamed or deleted after the sale shows
its current name (or an empty cell).

PDFs are produced with ReportLab's platypus layer in invariant mode, which
pins the creation date and document id so the same sale always renders to
the same bytes.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import List, Tuple
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from dao import ProductDAO, Sale

logger = logging.getLogger(__name__)

DEFAULT_STORE_NAME = "EASYTECH MASTER STOCK"
TICKET_LABEL = "Sales Ticket"
RETURN_POLICY = "Return Policy: Items can be returned within 30 days with receipt."
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ITEM_HEADERS = ("Product", "Quantity", "Price", "Total")


class RenderError(Exception):
    """Ticket could not be built, printed or saved."""


def money(amount: float) -> str:
    return f"${amount:.2f}"


def ticket_filename(sale_id: str) -> str:
    return f"sales_ticket_{sale_id}.pdf"


@dataclass(frozen=True)
class Ticket:
    sale_id: str
    header: Tuple[str, str]
    metadata: Tuple[Tuple[str, str], ...]
    items: Tuple[Tuple[str, str, str, str], ...]
    summary: Tuple[Tuple[str, str], ...]
    footer: str


def build_ticket(sale: Sale, catalog: ProductDAO, store_name: str = DEFAULT_STORE_NAME) -> Ticket:
    """Format ``sale`` into a :class:`Ticket`.  Pure apart from catalog reads."""
    try:
        rows = []
        for item in sale.items:
            product = catalog.get_product(item.product_id)
            rows.append((
                product.name if product else "",
                str(item.quantity),
                money(item.price),
                money(item.quantity * item.price),
            ))
        return Ticket(
            sale_id=sale.id,
            header=(store_name, TICKET_LABEL),
            metadata=(
                ("Transaction ID", sale.id),
                ("Date", sale.date.strftime(DATE_FORMAT)),
                ("Cashier", sale.cashier),
                ("Store", sale.store_location),
            ),
            items=tuple(rows),
            summary=(
                ("Subtotal", money(sale.subtotal)),
                ("Discount", money(sale.discount)),
                ("Total", money(sale.total)),
                ("Payment Received", money(sale.payment_received)),
                ("Change", money(sale.change)),
            ),
            footer=RETURN_POLICY,
        )
    except Exception as exc:
        raise RenderError(f"Could not build ticket for sale {sale.id}: {exc}") from exc


# ---------------------------------------------------------------------------
# On-screen rendition
# ---------------------------------------------------------------------------

def render_text(ticket: Ticket, width: int = 56) -> str:
    name_w = width - 30
    lines: List[str] = [
        ticket.header[0].center(width),
        ticket.header[1].center(width),
        "",
    ]
    lines.extend(f"{label}: {value}" for label, value in ticket.metadata)
    lines.append("-" * width)
    lines.append(f"{ITEM_HEADERS[0]:<{name_w}}{ITEM_HEADERS[1]:>8}{ITEM_HEADERS[2]:>11}{ITEM_HEADERS[3]:>11}")
    lines.append("-" * width)
    for name, qty, price, line_total in ticket.items:
        lines.append(f"{name[:name_w - 1]:<{name_w}}{qty:>8}{price:>11}{line_total:>11}")
    lines.append("-" * width)
    for label, value in ticket.summary:
        lines.append(f"{label + ':':<{width - 14}}{value:>14}")
    lines.append("")
    lines.append(ticket.footer)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# PDF rendition
# ---------------------------------------------------------------------------

def _table_style(body_rows: int) -> TableStyle:
    foot_start = body_rows + 1
    return TableStyle([
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("TOPPADDING", (0, 0), (-1, -1), 2),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 2),
        ("BACKGROUND", (0, 0), (-1, 0), colors.Color(66 / 255, 66 / 255, 66 / 255)),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
        ("BACKGROUND", (0, foot_start), (-1, -1), colors.Color(240 / 255, 240 / 255, 240 / 255)),
        ("FONTNAME", (0, foot_start), (-1, -1), "Helvetica-Bold"),
    ])


def render_pdf(ticket: Ticket) -> bytes:
    """Lay the ticket out as an A4 PDF and return the file contents."""
    try:
        buf = io.BytesIO()
        doc = SimpleDocTemplate(
            buf,
            pagesize=A4,
            leftMargin=14 * mm,
            rightMargin=14 * mm,
            topMargin=10 * mm,
            bottomMargin=14 * mm,
            title=f"{TICKET_LABEL} {ticket.sale_id}",
            author=ticket.header[0],
            invariant=1,
        )
        styles = getSampleStyleSheet()
        title = ParagraphStyle("TicketTitle", parent=styles["Title"], fontSize=18)
        subtitle = ParagraphStyle("TicketSubtitle", parent=styles["Normal"], fontSize=12, alignment=1)
        normal = ParagraphStyle("TicketBody", parent=styles["Normal"], fontSize=10)

        story = [
            Paragraph(escape(ticket.header[0]), title),
            Paragraph(ticket.header[1], subtitle),
            Spacer(1, 6 * mm),
        ]
        story.extend(Paragraph(escape(f"{label}: {value}"), normal) for label, value in ticket.metadata)
        story.append(Spacer(1, 5 * mm))

        data = [list(ITEM_HEADERS)]
        data.extend(list(row) for row in ticket.items)
        data.extend(["", "", f"{label}:", value] for label, value in ticket.summary)
        table = Table(data, repeatRows=1, hAlign="LEFT", colWidths=[80 * mm, 25 * mm, 35 * mm, 35 * mm])
        table.setStyle(_table_style(len(ticket.items)))
        story.append(table)
        story.append(Spacer(1, 10 * mm))
        story.append(Paragraph(escape(ticket.footer), normal))

        doc.build(story)
        return buf.getvalue()
    except Exception as exc:
        raise RenderError(f"Could not generate PDF for sale {ticket.sale_id}: {exc}") from exc


def save_ticket(ticket: Ticket, directory: str) -> str:
    """Write the ticket PDF into ``directory`` and return its path."""
    pdf = render_pdf(ticket)
    path = os.path.join(directory, ticket_filename(ticket.sale_id))
    try:
        os.makedirs(directory, exist_ok=True)
        with open(path, "wb") as f:
            f.write(pdf)
    except OSError as exc:
        raise RenderError(f"Could not save {path}: {exc}") from exc
    return path


def print_ticket(ticket: Ticket, printer) -> str:
    """Render the ticket to a PDF in the temp directory and hand it to ``printer``.

    The file is left in place for the print spooler or viewer to read.  Its
    name is fixed per sale, so reprinting overwrites it instead of adding
    another file.
    """
    pdf = render_pdf(ticket)
    path = os.path.join(tempfile.gettempdir(), ticket_filename(ticket.sale_id))
    try:
        with open(path, "wb") as f:
            f.write(pdf)
        printer.print_file(path)
    except Exception as exc:
        raise RenderError(f"Could not print ticket for sale {ticket.sale_id}: {exc}") from exc
    return path
