"""
Bitmap rendering of the order preview, used when the structured PDF
cannot be built. The image is cut into page-sized bands with ``paginate``.
"""
from __future__ import annotations

from typing import List, Tuple

from PIL import Image, ImageDraw, ImageFont

from storefront.models import OrderSnapshot
from storefront.utils.formatters import money

PREVIEW_WIDTH = 1200
PADDING = 48
ROW_HEIGHT = 40
HEADER_HEIGHT = 230
FOOTER_HEIGHT = 150


def paginate(content_height: int, page_height: int) -> List[Tuple[int, int]]:
    """Split ``content_height`` into consecutive (offset, height) bands of at most ``page_height``."""
    if page_height <= 0:
        raise ValueError("page_height must be > 0")
    bands: List[Tuple[int, int]] = []
    offset = 0
    while offset < content_height:
        height = min(page_height, content_height - offset)
        bands.append((offset, height))
        offset += height
    return bands


def _font(size: int, bold: bool = False):
    name = "DejaVuSans-Bold.ttf" if bold else "DejaVuSans.ttf"
    try:
        return ImageFont.truetype(f"/usr/share/fonts/truetype/dejavu/{name}", size)
    except (OSError, IOError):
        try:
            return ImageFont.truetype(name, size)
        except (OSError, IOError):
            return ImageFont.load_default()


def _fit(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _text(draw: ImageDraw.ImageDraw, x: float, y: float, text: str, font, fill: str, align: str = "l") -> None:
    if align != "l":
        w = draw.textlength(text, font=font)
        x = x - w if align == "r" else x - w / 2
    draw.text((x, y), text, fill=fill, font=font)


def render_preview_image(snapshot: OrderSnapshot, width: int = PREVIEW_WIDTH) -> Image.Image:
    height = HEADER_HEIGHT + ROW_HEIGHT * (len(snapshot.items) + 1) + FOOTER_HEIGHT
    img = Image.new("RGB", (width, height), color="white")
    draw = ImageDraw.Draw(img)

    title, normal, small, bold = _font(34, bold=True), _font(20), _font(16), _font(20, bold=True)
    info = snapshot.company_info
    right = width - PADDING

    # seller block and order meta
    _text(draw, PADDING, PADDING, info.name, title, "#1f2937")
    _text(draw, PADDING, PADDING + 52, info.address, small, "#6b7280")
    _text(draw, PADDING, PADDING + 76, f"{info.email} | {info.phone}", small, "#6b7280")
    _text(draw, right, PADDING, "ORDER", bold, "#111827", align="r")
    _text(draw, right, PADDING + 30, f"Date: {snapshot.timestamp:%d/%m/%Y}", small, "#6b7280", align="r")

    cols = (PADDING + 12, int(width * 0.62), int(width * 0.80), right - 12)
    y = HEADER_HEIGHT - 40
    draw.rectangle((PADDING, y, right, y + ROW_HEIGHT), fill="#f3f4f6")
    ty = y + 10
    _text(draw, cols[0], ty, "Product", bold, "#111827")
    _text(draw, cols[1], ty, "Qty", bold, "#111827", align="c")
    _text(draw, cols[2], ty, "Unit Price", bold, "#111827", align="r")
    _text(draw, cols[3], ty, "Line Total", bold, "#111827", align="r")
    y += ROW_HEIGHT

    for it in snapshot.items:
        ty = y + 10
        _text(draw, cols[0], ty, _fit(f"{it.name} ({it.variant_name})", 52), normal, "#111827")
        _text(draw, cols[1], ty, str(it.quantity), normal, "#111827", align="c")
        _text(draw, cols[2], ty, money(it.price), normal, "#111827", align="r")
        _text(draw, cols[3], ty, money(it.line_total), normal, "#111827", align="r")
        y += ROW_HEIGHT
        draw.line((PADDING, y, right, y), fill="#e5e7eb", width=1)

    y += 40
    _text(draw, right, y, f"TOTAL: {money(snapshot.total)}", _font(28, bold=True), "#1f2937", align="r")
    _text(draw, right, y + 44, "Payment on delivery.", small, "#6b7280", align="r")
    return img
