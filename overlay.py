"""Draw translated answers onto the original form image and wrap it as a PDF."""
import logging
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Tuple

from PIL import Image, ImageColor, ImageDraw, ImageFont
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

import config

logger = logging.getLogger("formbridge.overlay")

FONT_CANDIDATES = (
    "DejaVuSans.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/Library/Fonts/Arial.ttf",
    "C:\\Windows\\Fonts\\arial.ttf",
)

DEBUG_OUTLINE = (255, 0, 0, 204)
DEBUG_LABEL = (255, 0, 0, 230)
BACKGROUND_FILL = (255, 255, 255, 230)
PDF_LONG_SIDE_MM = 297


@dataclass
class OverlayOptions:
    font_size: float = 14
    font_color: str = "#000000"
    show_background: bool = False
    debug_mode: bool = False
    vertical_offset: float = 0
    horizontal_offset: float = 0
    skip_prefilled: bool = True

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "OverlayOptions":
        """Build options from the camelCase request body keys."""
        defaults = cls()
        return cls(
            font_size=float(payload.get("fontSize") or defaults.font_size),
            font_color=payload.get("fontColor") or defaults.font_color,
            show_background=bool(payload.get("showBackground", defaults.show_background)),
            debug_mode=bool(payload.get("debugMode", defaults.debug_mode)),
            vertical_offset=float(payload.get("verticalOffset") or 0),
            horizontal_offset=float(payload.get("horizontalOffset") or 0),
            skip_prefilled=bool(payload.get("skipPrefilled", defaults.skip_prefilled)),
        )


@lru_cache(maxsize=64)
def load_font(size: int) -> ImageFont.ImageFont:
    paths = [config.FONT_PATH] if config.FONT_PATH else []
    for path in paths + list(FONT_CANDIDATES):
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    logger.debug("No TrueType font found, using Pillow default font")
    return ImageFont.load_default(size=size)


def text_width(font: ImageFont.ImageFont, text: str) -> float:
    return font.getlength(text)


def wrap_words(text: str, font: ImageFont.ImageFont, max_width: float) -> List[str]:
    """Greedy wrap on spaces. Words are never split; the first word always starts a line."""
    words = text.split(" ")
    lines: List[str] = []
    line = ""
    for n, word in enumerate(words):
        test_line = line + word + " "
        if text_width(font, test_line) > max_width and n > 0:
            lines.append(line.strip())
            line = word + " "
        else:
            line = test_line
    lines.append(line.strip())
    return lines


def _pixel_box(position: Dict[str, Any], size: Tuple[int, int], options: OverlayOptions) -> Tuple[float, float, float, float]:
    width, height = size
    px = (float(position["x"]) + options.horizontal_offset) / 100 * width
    py = (float(position["y"]) + options.vertical_offset) / 100 * height
    pw = float(position["width"]) / 100 * width
    ph = float(position["height"]) / 100 * height
    return px, py, pw, ph


def overlay_fields_on_image(
    image_bytes: bytes, fields: Iterable[Dict[str, Any]], options: Optional[OverlayOptions] = None
) -> bytes:
    """Render ``germanAnswer`` of every positioned field into its box; returns PNG bytes."""
    options = options or OverlayOptions()
    color = ImageColor.getrgb(options.font_color)

    with Image.open(BytesIO(image_bytes)) as source:
        img = source.convert("RGB")

    width, height = img.size
    draw = ImageDraw.Draw(img, "RGBA")

    scaled_font_size = max(12.0, options.font_size * (min(width, height) / 900))
    padding_scale = width / 1000
    padding_x = 5 * padding_scale

    drawn = 0
    for index, field in enumerate(fields):
        position = field.get("position")
        answer = field.get("germanAnswer")
        if not position or not answer:
            continue
        if options.skip_prefilled and field.get("prefilled") and field.get("existingValue"):
            continue

        px, py, pw, ph = _pixel_box(position, (width, height), options)

        if options.debug_mode:
            draw.rectangle([px, py, px + pw, py + ph], outline=DEBUG_OUTLINE, width=2)
            draw.text((px + 2, py - 4), f"#{index + 1}", font=load_font(12), fill=DEBUG_LABEL, anchor="ls")

        font_size = max(10.0, min(scaled_font_size, ph * 0.8))
        font = load_font(int(round(font_size)))
        text_x = px + padding_x
        max_text_width = max(0.0, pw - padding_x * 2)

        if options.show_background:
            draw.rectangle([px, py, px + pw, py + ph], fill=BACKGROUND_FILL)

        if text_width(font, answer) <= max_text_width:
            draw.text((text_x, py + ph / 2), answer, font=font, fill=color, anchor="lm")
        else:
            lines = wrap_words(answer, font, max_text_width)
            line_height = font_size * 1.2
            total_height = len(lines) * line_height
            current_y = py + (ph - total_height) / 2
            if total_height > ph:
                current_y = py + 2 * padding_scale
            for line in lines:
                draw.text((text_x, current_y), line, font=font, fill=color, anchor="la")
                current_y += line_height
        drawn += 1

    logger.info("Overlaid %d fields on %dx%d image", drawn, width, height)

    out = BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()


def pdf_page_size(width: int, height: int) -> Tuple[float, float]:
    """Page size in points: long side 297 mm, other side from the aspect ratio."""
    aspect_ratio = width / height
    if aspect_ratio > 1:
        page_width = PDF_LONG_SIDE_MM
        page_height = page_width / aspect_ratio
    else:
        page_height = PDF_LONG_SIDE_MM
        page_width = page_height * aspect_ratio
    return page_width * mm, page_height * mm


def generate_filled_form_pdf(png_bytes: bytes) -> bytes:
    with Image.open(BytesIO(png_bytes)) as img:
        width, height = img.size
    page_width, page_height = pdf_page_size(width, height)

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(page_width, page_height))
    c.drawImage(ImageReader(BytesIO(png_bytes)), 0, 0, width=page_width, height=page_height)
    c.showPage()
    c.save()
    return buffer.getvalue()


def default_filled_form_filename(day: Optional[date] = None) -> str:
    day = day or date.today()
    return f"ausgefuelltes_formular_{day.isoformat()}.pdf"
