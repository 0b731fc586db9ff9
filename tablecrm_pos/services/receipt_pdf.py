from __future__ import annotations

import os
from datetime import datetime
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

from tablecrm_pos.config import settings
from tablecrm_pos.services.order_form import SaleRecord

# стандартный Helvetica не умеет кириллицу, поэтому ищем TTF
FONT_CANDIDATES = (
    os.getenv("PDF_FONT_PATH", ""),
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "C:\\Windows\\Fonts\\arial.ttf",
)


def _register_font() -> tuple[str, str]:
    for path in FONT_CANDIDATES:
        if path and os.path.exists(path):
            if "ReceiptFont" not in pdfmetrics.getRegisteredFontNames():
                pdfmetrics.registerFont(TTFont("ReceiptFont", path))
            return "ReceiptFont", "ReceiptFont"
    return "Helvetica", "Helvetica-Bold"


def generate_receipt_pdf(sale: SaleRecord, export_dir: Optional[str] = None) -> str:
    out_dir = export_dir or settings.export_dir
    os.makedirs(out_dir, exist_ok=True)

    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    path = os.path.join(out_dir, f"receipt_{sale.mode}_{ts}.pdf")

    font, font_bold = _register_font()
    c = canvas.Canvas(path, pagesize=A4)
    w, h = A4

    y = h - 50
    c.setFont(font_bold, 14)
    title = "SALE (posted)" if sale.mode == "complete" else "SALE (draft)"
    c.drawString(40, y, title)
    y -= 20

    c.setFont(font, 11)
    client = sale.client.name if sale.client else sale.payload.client_id
    c.drawString(40, y, f"Client: {client}")
    y -= 16
    c.drawString(40, y, f"Date: {sale.created_at}")
    y -= 16
    if sale.payload.comment:
        c.drawString(40, y, f"Comment: {sale.payload.comment[:80]}")
        y -= 16
    y -= 8

    # header
    c.setFont(font_bold, 10)
    c.drawString(40, y, "Item")
    c.drawString(300, y, "Qty")
    c.drawString(350, y, "Price")
    c.drawString(420, y, "Disc %")
    c.drawString(490, y, "Total")
    y -= 10
    c.line(40, y, 550, y)
    y -= 16

    c.setFont(font, 10)
    for it in sale.items:
        c.drawString(40, y, (it.name or it.id)[:42])
        c.drawRightString(330, y, str(it.quantity))
        c.drawRightString(400, y, f"{float(it.price or 0):.2f}")
        c.drawRightString(460, y, f"{float(it.discount):.0f}")
        c.drawRightString(550, y, f"{it.line_total:.2f}")
        y -= 14
        if y < 80:
            c.showPage()
            y = h - 50
            c.setFont(font, 10)

    y -= 10
    c.line(40, y, 550, y)
    y -= 18
    c.setFont(font_bold, 12)
    c.drawRightString(550, y, f"TOTAL: {sale.total_amount:.2f} {settings.currency} ({sale.total_quantity} pcs)")

    c.save()
    return path
