from __future__ import annotations

import io
import logging
import os
import re
import tempfile
import webbrowser
from pathlib import Path
from typing import Any, Callable, Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from storefront.config import settings
from storefront.models import OrderSnapshot
from storefront.services.raster import paginate, render_preview_image
from storefront.utils.formatters import money

logger = logging.getLogger(__name__)

PAGE_W, PAGE_H = A4
MARGIN_MM = 12
MARGIN = MARGIN_MM * mm
TOP = PAGE_H - MARGIN
BOTTOM = MARGIN + 10 * mm  # room for the page counter

COL_QTY = PAGE_W - MARGIN - 75 * mm  # centre of the Qty column
COL_PRICE = PAGE_W - MARGIN - 30 * mm  # right edge of Unit Price
COL_TOTAL = PAGE_W - MARGIN  # right edge of Line Total
PRODUCT_WIDTH = COL_QTY - 12 * mm - MARGIN

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
ROW_FONT_SIZE = 9
LEADING = 11


class _NumberedCanvas(canvas.Canvas):
    """Canvas that writes "Page N of M" on every page once the page count is known."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._saved_pages = []

    def showPage(self):
        self._saved_pages.append(dict(self.__dict__))
        self._startPage()

    def save(self):
        total = len(self._saved_pages)
        for state in self._saved_pages:
            self.__dict__.update(state)
            self.setFont(FONT, 8)
            self.drawRightString(PAGE_W - MARGIN, 6 * mm, f"Page {self._pageNumber} of {total}")
            super().showPage()
        super().save()


def _draw_table_header(c: canvas.Canvas, y: float) -> float:
    c.setFillGray(0.96)
    c.rect(MARGIN, y - 5 * mm, PAGE_W - 2 * MARGIN, 7 * mm, stroke=0, fill=1)
    c.setFillGray(0.08)
    c.setFont(FONT_BOLD, 10)
    ty = y - 3 * mm
    c.drawString(MARGIN + 2 * mm, ty, "Product")
    c.drawCentredString(COL_QTY, ty, "Qty")
    c.drawRightString(COL_PRICE, ty, "Unit Price")
    c.drawRightString(COL_TOTAL - 2 * mm, ty, "Line Total")
    return y - 9 * mm


def render_structured(snapshot: OrderSnapshot) -> bytes:
    """Build the order PDF from text and table primitives."""
    buf = io.BytesIO()
    c = _NumberedCanvas(buf, pagesize=A4)
    info = snapshot.company_info
    c.setTitle(f"Order - {info.name}")

    y = TOP
    c.setFont(FONT_BOLD, 16)
    c.drawString(MARGIN, y - 4 * mm, info.name)
    c.setFont(FONT_BOLD, 12)
    c.drawRightString(COL_TOTAL, y - 4 * mm, "ORDER")
    c.setFont(FONT, 9)
    c.drawRightString(COL_TOTAL, y - 9 * mm, f"Date: {snapshot.timestamp:%d/%m/%Y}")
    c.drawString(MARGIN, y - 10 * mm, info.address)
    c.drawString(MARGIN, y - 14 * mm, f"{info.email} | {info.phone}")
    y -= 22 * mm

    y = _draw_table_header(c, y)
    for it in snapshot.items:
        lines = simpleSplit(f"{it.name} ({it.variant_name})", FONT, ROW_FONT_SIZE, PRODUCT_WIDTH) or [""]
        row_h = len(lines) * LEADING + 2 * mm
        if y - row_h < BOTTOM:
            c.showPage()
            y = _draw_table_header(c, TOP)

        c.setFont(FONT, ROW_FONT_SIZE)
        ty = y - LEADING + 2
        for i, line in enumerate(lines):
            c.drawString(MARGIN + 2 * mm, ty - i * LEADING, line)
        c.drawCentredString(COL_QTY, ty, str(it.quantity))
        c.drawRightString(COL_PRICE, ty, money(it.price))
        c.drawRightString(COL_TOTAL - 2 * mm, ty, money(it.line_total))
        y -= row_h
        c.setStrokeGray(0.85)
        c.line(MARGIN, y + 1 * mm, PAGE_W - MARGIN, y + 1 * mm)

    if y - 20 * mm < BOTTOM:
        c.showPage()
        y = TOP

    y -= 8 * mm
    c.setFont(FONT_BOLD, 12)
    c.drawRightString(COL_TOTAL, y, f"TOTAL: {money(snapshot.total)}")
    c.setFont(FONT, 8)
    c.drawRightString(COL_TOTAL, y - 5 * mm, "Payment on delivery.")

    c.showPage()
    c.save()
    return buf.getvalue()


def render_raster(snapshot: OrderSnapshot) -> bytes:
    """Draw the preview as an image and lay it out in page-sized bands."""
    image = render_preview_image(snapshot)
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=A4)
    c.setTitle(f"Order - {snapshot.company_info.name}")

    printable_w_mm = PAGE_W / mm - 2 * MARGIN_MM
    printable_h_mm = PAGE_H / mm - 2 * MARGIN_MM
    px_per_mm = image.width / printable_w_mm
    band_px = int(printable_h_mm * px_per_mm)

    for i, (offset, height) in enumerate(paginate(image.height, band_px)):
        if i > 0:
            c.showPage()
        band = image.crop((0, offset, image.width, offset + height))
        band_h = height / px_per_mm * mm
        c.drawImage(ImageReader(band), MARGIN, TOP - band_h, width=printable_w_mm * mm, height=band_h)

    c.save()
    return buf.getvalue()


class OrderDocumentRenderer:
    """
    Turns an order snapshot into a PDF for preview or download.

    Rendering never raises: failures are logged and reported as ``None`` so
    the checkout can go on without a document.
    """

    def __init__(self, export_dir: Optional[str] = None, opener: Optional[Callable[[str], Any]] = None) -> None:
        self.export_dir = export_dir or settings.export_dir
        self.opener = opener if opener is not None else webbrowser.open_new_tab

    @staticmethod
    def filename(snapshot: OrderSnapshot) -> str:
        seller = re.sub(r"\s", "_", snapshot.company_info.name)
        return f"order-{seller}.pdf"

    def build_pdf(self, snapshot: OrderSnapshot) -> Optional[bytes]:
        try:
            return render_structured(snapshot)
        except Exception:
            logger.warning("structured PDF failed, falling back to raster", exc_info=True)
        try:
            return render_raster(snapshot)
        except Exception:
            logger.exception("could not generate the order PDF")
            return None

    def _write(self, data: bytes, directory: str, name: str) -> Optional[str]:
        try:
            os.makedirs(directory, exist_ok=True)
            path = os.path.join(directory, name)
            with open(path, "wb") as f:
                f.write(data)
            return path
        except OSError:
            logger.exception("could not write %s", name)
            return None

    def save_pdf(self, snapshot: OrderSnapshot, directory: Optional[str] = None) -> Optional[str]:
        data = self.build_pdf(snapshot)
        if data is None:
            return None
        return self._write(data, directory or self.export_dir, self.filename(snapshot))

    def open_preview(self, snapshot: OrderSnapshot) -> Optional[str]:
        """Open the PDF in a viewer; if that is not possible, save it to the export dir instead."""
        data = self.build_pdf(snapshot)
        if data is None:
            return None

        opened = False
        path = self._write(data, tempfile.gettempdir(), f"preview-{self.filename(snapshot)}")
        if path:
            try:
                opened = bool(self.opener(Path(path).as_uri()))
            except Exception:
                logger.warning("could not open the PDF preview", exc_info=True)
        if opened:
            return path

        logger.info("preview unavailable, downloading %s instead", self.filename(snapshot))
        return self._write(data, self.export_dir, self.filename(snapshot))
