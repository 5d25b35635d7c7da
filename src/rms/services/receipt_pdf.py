from __future__ import annotations

import io
import logging
from typing import TYPE_CHECKING

from reportlab.lib.pagesizes import A4 as A4_PAGE
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen import canvas

if TYPE_CHECKING:
    from rms.services.receipt_service import ReceiptDocument

log = logging.getLogger(__name__)

FONT = "Courier"
MARGIN = 5 * mm
LOGO_BOX = 20 * mm


def render_pdf(document: "ReceiptDocument", font_size: float | None = None) -> bytes:
    """Draw each document page as a block of monospace text on one PDF page.

    Thermal layouts get a page sized to the text; A4 layouts use A4 paper.
    """
    is_a4 = document.layout.name == "a4"
    font_size = font_size or (10 if is_a4 else 8)
    page_w, page_h, leading = page_geometry(document, font_size)

    buffer = io.BytesIO()
    c = canvas.Canvas(buffer, pagesize=(page_w, page_h))
    c.setTitle(f"Receipt {document.receipt_number}")

    for index, page in enumerate(document.pages):
        y = page_h - MARGIN
        if index == 0 and document.logo:
            y = _draw_logo(c, document.logo, page_w, y)
        c.setFont(FONT, font_size)
        for line in page:
            y -= leading
            c.drawString(MARGIN, y, line)
        c.showPage()

    c.save()
    return buffer.getvalue()


def page_geometry(document: "ReceiptDocument", font_size: float) -> tuple[float, float, float]:
    """(page width, page height, line leading) in points.

    On A4 the leading shrinks when a full page of lines plus the logo would
    run into the bottom margin.
    """
    leading = font_size * 1.25
    logo_h = LOGO_BOX + 2 * mm if document.logo else 0
    if document.layout.name == "a4":
        page_w, page_h = A4_PAGE
        usable = page_h - 2 * MARGIN - logo_h
        leading = min(leading, usable / document.layout.lines_per_page)
        return page_w, page_h, leading

    char_width = stringWidth("M", FONT, font_size)
    tallest = max(len(page) for page in document.pages)
    page_w = document.layout.width * char_width + 2 * MARGIN
    page_h = tallest * leading + 2 * MARGIN + logo_h
    return page_w, page_h, leading


def _draw_logo(c: canvas.Canvas, logo: bytes, page_w: float, top: float) -> float:
    try:
        image = ImageReader(io.BytesIO(logo))
    except Exception as e:  # reportlab raises assorted errors for unreadable images
        log.warning("receipt_logo_skipped error=%s", e)
        return top
    c.drawImage(
        image,
        (page_w - LOGO_BOX) / 2,
        top - LOGO_BOX,
        width=LOGO_BOX,
        height=LOGO_BOX,
        preserveAspectRatio=True,
        mask="auto",
    )
    return top - LOGO_BOX - 2 * mm
