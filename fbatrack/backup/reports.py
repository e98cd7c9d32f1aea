"""
PDF logs bundled into the expense backup.

Both documents share one shape: a summary band at the top, then one block per
purchase order / ledger entry. Rendering only; every number is computed by
the caller.
"""
import io
from datetime import date
from typing import List, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import KeepTogether, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

BLUE = HexColor("#3b82f6")
SLATE = HexColor("#475569")
SLATE_LIGHT = HexColor("#64748b")
STRIPE = HexColor("#f8fafc")
GREEN = HexColor("#10b981")
RED = HexColor("#ef4444")
TEXT = HexColor("#1e293b")
WHITE = HexColor("#ffffff")
GRID = HexColor("#cbd5e1")

MARGIN = 10 * mm


def money(value) -> str:
    v = float(value or 0)
    sign = "-" if v < 0 else ""
    return f"{sign}${abs(v):,.2f}"


def human_date(d: Optional[date]) -> str:
    return d.strftime("%b %d, %Y") if d else "N/A"


def _styles():
    ss = getSampleStyleSheet()
    title = ss["Title"].clone("BackupTitle", textColor=BLUE, alignment=0, fontSize=20)
    cell = ss["BodyText"].clone("Cell", fontSize=8, leading=10, textColor=TEXT)
    small = ss["BodyText"].clone("Small", fontSize=8, leading=10, textColor=SLATE_LIGHT)
    return title, cell, small


def _tone(value: float):
    return GREEN if value >= 0 else RED


def _summary_band(headers: Sequence[str], values: Sequence[str], toned: dict) -> Table:
    t = Table([list(headers), list(values)], hAlign="LEFT")
    style = [
        ("FONTSIZE", (0, 0), (-1, -1), 10),
        ("FONTNAME", (0, 1), (-1, 1), "Helvetica-Bold"),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    for col, color in toned.items():
        style.append(("TEXTCOLOR", (col, 1), (col, 1), color))
    t.setStyle(TableStyle(style))
    return t


def _header_table(headers: Sequence[str], row: Sequence, widths: Sequence[float],
                  toned: dict, right: Sequence[int]) -> Table:
    t = Table([list(headers), list(row)], colWidths=[w * mm for w in widths], hAlign="LEFT")
    style = [
        ("BACKGROUND", (0, 0), (-1, 0), SLATE),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 7),
        ("FONTSIZE", (0, 1), (-1, 1), 8),
        ("GRID", (0, 0), (-1, -1), 0.25, GRID),
        ("TEXTCOLOR", (0, 1), (0, 1), BLUE),
        ("FONTNAME", (0, 1), (0, 1), "Helvetica-Bold"),
    ]
    for col in right:
        style.append(("ALIGN", (col, 0), (col, -1), "RIGHT"))
    for col, color in toned.items():
        style.append(("TEXTCOLOR", (col, 1), (col, 1), color))
    t.setStyle(TableStyle(style))
    return t


def _para(text, style) -> Paragraph:
    return Paragraph(escape(text or ""), style)


def _receipt_line(names: List[str], small) -> Paragraph:
    return Paragraph("<b>Associated Receipts:</b> " + escape(" | ".join(names)), small)


def _build(flowables) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        leftMargin=MARGIN, rightMargin=MARGIN, topMargin=MARGIN, bottomMargin=MARGIN,
    )
    doc.build(flowables)
    return buf.getvalue()


def build_order_log_pdf(reports, generated: date) -> bytes:
    """Purchase order log; ``reports`` are TransactionReport objects."""
    title, cell, small = _styles()
    total_spend = sum(r.total_cost for r in reports)
    total_profit = sum(r.profit for r in reports)
    avg_roi = (sum(r.roi for r in reports) / len(reports)) if reports else 0.0

    story = [
        Paragraph("Purchase Order Log", title),
        _summary_band(
            ["Generated:", "Total Transactions:", "Total Spend:", "Total Est. Profit:", "Avg ROI:"],
            [human_date(generated), str(len(reports)), money(total_spend), money(total_profit), f"{avg_roi:.1f}%"],
            {3: _tone(total_profit), 4: _tone(avg_roi)},
        ),
        Spacer(1, 6 * mm),
    ]

    for r in reports:
        t = r.transaction
        block = [_header_table(
            ["TXN ID", "ORDERED", "DELIVERY", "SUPPLIER", "CATEGORY", "PAYMENT", "TOTAL COST", "ROI"],
            [r.short_id, human_date(t.ordered_date), human_date(t.delivery_date),
             _para(r.supplier_name or "N/A", cell), t.category or "N/A", t.payment_method or "N/A",
             money(r.total_cost), f"{r.roi:.0f}%"],
            (18, 20, 20, 38, 20, 24, 26, 16),
            {7: _tone(r.roi)},
            right=(6, 7),
        )]
        if r.items:
            rows = [["TITLE", "CATEGORY", "ASIN", "QTY", "COG", "TOTAL"]]
            for it in r.items:
                details = it.asin_details
                rows.append([
                    _para(details.title if details is not None and details.title else "No Title", cell),
                    (details.category if details is not None else None) or "Other",
                    it.asin,
                    str(it.quantity),
                    money(it.buy_price),
                    money(it.cog + it.fees),
                ])
            items = Table(rows, hAlign="LEFT", colWidths=[70 * mm, 20 * mm, 28 * mm, 12 * mm, 20 * mm, 22 * mm])
            items.setStyle(TableStyle([
                ("BACKGROUND", (0, 0), (-1, 0), SLATE_LIGHT),
                ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, STRIPE]),
                ("ALIGN", (3, 0), (3, -1), "CENTER"),
                ("ALIGN", (4, 0), (-1, -1), "RIGHT"),
                ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
            ]))
            block += [Spacer(1, 2 * mm), items]
        if r.receipts:
            block += [Spacer(1, 2 * mm), _receipt_line(r.receipts, small)]
        story += [KeepTogether(block), Spacer(1, 5 * mm)]

    return _build(story)


def build_general_ledger_pdf(entries, generated: date) -> bytes:
    """General ledger log; ``entries`` are LedgerReport objects."""
    title, cell, small = _styles()
    income = sum(e.amount for e in entries if e.entry.type == "Income")
    expense = sum(e.amount for e in entries if e.entry.type != "Income")
    net = income - expense

    story = [
        Paragraph("General Ledger", title),
        _summary_band(
            ["Generated:", "Total Entries:", "Income:", "Expenses:", "Net:"],
            [human_date(generated), str(len(entries)), money(income), money(expense), money(net)],
            {4: _tone(net)},
        ),
        Spacer(1, 6 * mm),
    ]

    for e in entries:
        g = e.entry
        block = [_header_table(
            ["GL ID", "DATE", "CATEGORY", "TYPE", "STATUS", "PAYMENT", "DIRECTOR", "AMOUNT"],
            [e.short_id, human_date(g.date), _para(g.category or "N/A", cell), g.type,
             g.status or "N/A", g.payment_method or "N/A", g.director_name or "", money(e.amount)],
            (24, 20, 34, 16, 18, 24, 28, 24),
            {7: GREEN if g.type == "Income" else RED},
            right=(7,),
        )]
        details = []
        if g.txn_po:
            details.append("<b>TXN/PO:</b> " + escape(g.txn_po))
        if g.notes:
            details.append("<b>Notes:</b> " + escape(g.notes))
        if details:
            block += [Spacer(1, 1 * mm), Paragraph(" &nbsp; ".join(details), small)]
        if e.receipts:
            block += [Spacer(1, 2 * mm), _receipt_line(e.receipts, small)]
        story += [KeepTogether(block), Spacer(1, 5 * mm)]

    return _build(story)
