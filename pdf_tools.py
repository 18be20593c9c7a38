"""Upload normalisation and the PDF documents the app hands back to users."""
import base64
import binascii
import logging
import re
from datetime import datetime
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple
from xml.sax.saxutils import escape

import fitz
from PIL import Image
from reportlab.lib import colors
from reportlab.lib.enums import TA_JUSTIFY
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer

import config

logger = logging.getLogger("formbridge.pdf")

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,(?P<data>.*)$", re.DOTALL)

PX_TO_PT = 0.75
PDF_RENDER_SCALE = 1.5
TEXT_BOX_PADDING_X = 6
TEXT_BOX_PADDING_Y = 4

GERMAN_MONTHS = (
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
)

ANSWERS_FOOTER = "Generiert mit FormBridge AI - Ihr intelligenter Formular-Assistent"


class UploadError(ValueError):
    """Rejected upload; ``code`` is an i18n key (invalidFormat, fileTooLarge)."""

    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


# ---------------------------------------------------------------------------
# Data URLs and uploads
# ---------------------------------------------------------------------------

def decode_data_url(data: str) -> Tuple[Optional[str], bytes]:
    """Split a ``data:<mime>;base64,...`` URL. Plain base64 yields ``(None, bytes)``."""
    if not data:
        raise ValueError("Empty image data")
    match = DATA_URL_RE.match(data.strip())
    mime = None
    payload = data
    if match:
        mime = match.group("mime")
        payload = match.group("data")
    try:
        return mime, base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError):
        raise ValueError("Invalid base64 image data")


def encode_data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def validate_image(content_type: Optional[str], size: int) -> Optional[str]:
    if (content_type or "").lower() not in config.ALLOWED_IMAGE_TYPES:
        return "invalidFormat"
    if size > config.MAX_UPLOAD_SIZE:
        return "fileTooLarge"
    return None


def pdf_first_page_to_png(pdf_bytes: bytes, scale: float = PDF_RENDER_SCALE) -> bytes:
    with fitz.open(stream=pdf_bytes, filetype="pdf") as doc:
        if doc.page_count == 0:
            raise ValueError("PDF has no pages")
        pix = doc[0].get_pixmap(matrix=fitz.Matrix(scale, scale))
        return pix.tobytes("png")


def normalize_upload(content_type: Optional[str], data: bytes) -> str:
    """Turn an uploaded image or PDF into an image data URL for the AI routes."""
    content_type = (content_type or "").lower()
    if content_type in config.ALLOWED_PDF_TYPES:
        if len(data) > config.MAX_UPLOAD_SIZE:
            raise UploadError("fileTooLarge")
        try:
            png = pdf_first_page_to_png(data)
        except (RuntimeError, ValueError) as e:
            logger.warning("Could not render PDF upload: %s", e)
            raise UploadError("invalidFormat")
        return encode_data_url(png, "image/png")

    error = validate_image(content_type, len(data))
    if error:
        raise UploadError(error)
    mime = "image/jpeg" if content_type == "image/jpg" else content_type
    return encode_data_url(data, mime)


# ---------------------------------------------------------------------------
# Image to PDF
# ---------------------------------------------------------------------------

_ROTATIONS = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def rotate_image(img: Image.Image, rotation: int) -> Image.Image:
    """Rotate clockwise by a multiple of 90 degrees."""
    if rotation % 90 != 0:
        raise ValueError("Rotation must be a multiple of 90 degrees")
    angle = rotation % 360
    if angle == 0:
        return img
    return img.transpose(_ROTATIONS[angle])


def crop_image(img: Image.Image, crop: Optional[Dict[str, Any]]) -> Image.Image:
    if not crop:
        return img
    width, height = img.size
    left = max(0, min(width, int(round(float(crop.get("x", 0))))))
    top = max(0, min(height, int(round(float(crop.get("y", 0))))))
    right = max(left, min(width, left + int(round(float(crop.get("width", width))))))
    bottom = max(top, min(height, top + int(round(float(crop.get("height", height))))))
    if right - left < 1 or bottom - top < 1:
        raise ValueError("Crop area is empty")
    return img.crop((left, top, right, bottom))


def image_to_pdf(image_bytes: bytes, rotation: int = 0, crop: Optional[Dict[str, Any]] = None) -> bytes:
    """Single-page PDF of the (rotated, cropped) image, page = pixels * 0.75 pt."""
    with Image.open(BytesIO(image_bytes)) as source:
        img = rotate_image(source.convert("RGB"), rotation)
    img = crop_image(img, crop)

    jpeg = BytesIO()
    img.save(jpeg, format="JPEG", quality=95)
    jpeg.seek(0)

    page_width = img.width * PX_TO_PT
    page_height = img.height * PX_TO_PT
    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(page_width, page_height))
    c.drawImage(ImageReader(jpeg), 0, 0, width=page_width, height=page_height)
    c.showPage()
    c.save()
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# PDF editor
# ---------------------------------------------------------------------------

def render_edited_pdf(image_bytes: bytes, boxes: List[Dict[str, Any]]) -> bytes:
    """Page image plus text and signature boxes. Box positions are percentages of the page."""
    with Image.open(BytesIO(image_bytes)) as img:
        width, height = img.size

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=(width, height))
    c.drawImage(ImageReader(BytesIO(image_bytes)), 0, 0, width=width, height=height)

    for box in boxes:
        x = float(box.get("x") or 0) / 100 * width
        y = float(box.get("y") or 0) / 100 * height

        if box.get("type") == "signature":
            if not box.get("imageUrl"):
                continue
            _, signature = decode_data_url(box["imageUrl"])
            w = float(box.get("width") or 0) / 100 * width
            h = float(box.get("height") or 0) / 100 * height
            c.drawImage(ImageReader(BytesIO(signature)), x, height - y - h, width=w, height=h, mask="auto")
            continue

        font_size = float(box.get("fontSize") or 14)
        text = box.get("text") or ""
        c.setFont("Helvetica", font_size)
        c.setFillColor(colors.black)

        baseline = y + font_size + TEXT_BOX_PADDING_Y
        lines = [text]
        if box.get("width"):
            max_width = float(box["width"]) / 100 * width - TEXT_BOX_PADDING_X * 2
            if max_width > 0:
                lines = simpleSplit(text, "Helvetica", font_size, max_width)
        for i, line in enumerate(lines):
            c.drawString(x + TEXT_BOX_PADDING_X, height - (baseline + i * font_size * 1.15), line)

    c.showPage()
    c.save()
    logger.info("Rendered edited PDF with %d boxes", len(boxes))
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# Answer summary
# ---------------------------------------------------------------------------

def format_german_datetime(value: datetime) -> str:
    return f"{value.day}. {GERMAN_MONTHS[value.month - 1]} {value.year} um {value:%H:%M}"


def generate_answers_pdf(
    fields: List[Dict[str, Any]],
    title: str = "Ausgefülltes Formular",
    subtitle: Optional[str] = None,
    generated_at: Optional[datetime] = None,
) -> bytes:
    """A4 summary of every question with its German answer."""
    generated_at = generated_at or datetime.now()
    page_width, page_height = A4
    margin = 20
    content_width = page_width / mm - margin * 2

    buffer = BytesIO()
    c = canvas.Canvas(buffer, pagesize=A4)
    c.setTitle(title)

    def at(x_mm: float, y_mm: float) -> Tuple[float, float]:
        # top-left origin in millimetres
        return x_mm * mm, page_height - y_mm * mm

    def footer(page: int) -> None:
        c.setFillColorRGB(148 / 255, 163 / 255, 184 / 255)
        c.setFont("Helvetica", 8)
        c.drawString(*at(margin, page_height / mm - 15), ANSWERS_FOOTER)
        c.drawString(*at(page_width / mm - margin - 15, page_height / mm - 15), f"Seite {page}")

    c.setFillColorRGB(15 / 255, 23 / 255, 42 / 255)
    c.rect(0, page_height - 40 * mm, page_width, 40 * mm, stroke=0, fill=1)
    c.setFillColor(colors.white)
    c.setFont("Helvetica-Bold", 20)
    c.drawString(*at(margin, 18), "FormBridge AI")
    c.setFont("Helvetica", 10)
    c.drawString(*at(margin, 28), title)
    if subtitle:
        c.drawString(*at(margin, 35), subtitle)

    y = 55
    c.setFillColorRGB(100 / 255, 116 / 255, 139 / 255)
    c.setFont("Helvetica", 9)
    c.drawString(*at(margin, y), f"Erstellt am: {format_german_datetime(generated_at)}")
    y += 15

    page = 1
    for index, field in enumerate(fields):
        if y > 260:
            footer(page)
            c.showPage()
            page += 1
            y = margin

        c.setFillColorRGB(0, 98 / 255, 230 / 255)
        c.circle(*at(margin + 4, y), 4 * mm, stroke=0, fill=1)
        c.setFillColor(colors.white)
        c.setFont("Helvetica", 8)
        c.drawString(*at(margin + 2.5, y + 1.5), str(index + 1))

        c.setFillColorRGB(100 / 255, 116 / 255, 139 / 255)
        c.setFont("Helvetica", 9)
        c.drawString(*at(margin + 12, y), str(field.get("germanQuestion") or ""))
        y += 6

        c.setFillColorRGB(30 / 255, 41 / 255, 59 / 255)
        c.setFont("Helvetica-Bold", 11)
        lines = simpleSplit(str(field.get("germanAnswer") or "—"), "Helvetica-Bold", 11, (content_width - 12) * mm)
        for i, line in enumerate(lines):
            c.drawString(*at(margin + 12, y + i * 5), line)
        y += len(lines) * 5 + 8

        c.setStrokeColorRGB(226 / 255, 232 / 255, 240 / 255)
        c.setLineWidth(0.2 * mm)
        c.line(*at(margin, y), *at(page_width / mm - margin, y))
        y += 8

    footer(page)
    c.showPage()
    c.save()
    return buffer.getvalue()


def generate_answers_text(fields: List[Dict[str, Any]]) -> str:
    return "\n\n".join(
        f"{i + 1}. {f.get('germanQuestion', '')}\n   Antwort: {f.get('germanAnswer', '')}"
        for i, f in enumerate(fields)
    )


def export_filename(extension: str, day: Optional[datetime] = None) -> str:
    day = day or datetime.now()
    return f"formular_{day:%Y-%m-%d}.{extension}"


# ---------------------------------------------------------------------------
# CV
# ---------------------------------------------------------------------------

def _cv_styles() -> Dict[str, ParagraphStyle]:
    base = getSampleStyleSheet()
    dark = colors.HexColor("#112233")
    return {
        "name": ParagraphStyle("CvName", parent=base["Normal"], fontName="Helvetica-Bold",
                               fontSize=24, leading=28, textColor=dark),
        "title": ParagraphStyle("CvTitle", parent=base["Normal"], fontSize=14, leading=18,
                                textColor=colors.HexColor("#556677")),
        "contact": ParagraphStyle("CvContact", parent=base["Normal"], fontSize=10, leading=13,
                                  textColor=colors.HexColor("#334455")),
        "section": ParagraphStyle("CvSection", parent=base["Normal"], fontName="Helvetica-Bold",
                                  fontSize=14, leading=18, spaceBefore=15, spaceAfter=2, textColor=dark),
        "entry": ParagraphStyle("CvEntry", parent=base["Normal"], fontName="Helvetica-Bold",
                                fontSize=12, leading=15, spaceBefore=8),
        "subtitle": ParagraphStyle("CvSubtitle", parent=base["Normal"], fontName="Helvetica-Oblique",
                                   fontSize=10, leading=13, textColor=colors.HexColor("#556677")),
        "date": ParagraphStyle("CvDate", parent=base["Normal"], fontSize=10, leading=13, spaceAfter=4,
                               textColor=colors.HexColor("#777777")),
        "text": ParagraphStyle("CvText", parent=base["Normal"], fontSize=10, leading=15, alignment=TA_JUSTIFY),
    }


def _p(text: Any, style: ParagraphStyle) -> Paragraph:
    return Paragraph(escape(str(text or "")).replace("\n", "<br/>"), style)


def _section(story: List[Any], title: str, styles: Dict[str, ParagraphStyle]) -> None:
    story.append(_p(title.upper(), styles["section"]))
    story.append(HRFlowable(width="100%", thickness=1, color=colors.HexColor("#CCCCCC"), spaceAfter=4))


def render_cv_pdf(cv: Dict[str, Any]) -> bytes:
    styles = _cv_styles()
    info = cv.get("personalInfo") or {}
    story: List[Any] = []

    full_name = f"{info.get('firstName', '')} {info.get('lastName', '')}".strip()
    story.append(_p(full_name.upper(), styles["name"]))
    if info.get("jobTitle"):
        story.append(_p(info["jobTitle"], styles["title"]))
    contact = [info.get(k) for k in ("email", "phone", "address", "linkedIn", "xing") if info.get(k)]
    if contact:
        story.append(_p(" | ".join(contact), styles["contact"]))
    story.append(HRFlowable(width="100%", thickness=1, color=colors.HexColor("#112233"), spaceBefore=10))

    if cv.get("summary"):
        _section(story, "Profil", styles)
        story.append(_p(cv["summary"], styles["text"]))

    _section(story, "Berufserfahrung", styles)
    for exp in cv.get("experience") or []:
        story.append(_p(exp.get("title"), styles["entry"]))
        story.append(_p(", ".join(v for v in (exp.get("company"), exp.get("location")) if v), styles["subtitle"]))
        story.append(_p(f"{exp.get('startDate', '')} - {exp.get('endDate', '')}", styles["date"]))
        if exp.get("description"):
            story.append(_p(exp["description"], styles["text"]))

    _section(story, "Ausbildung", styles)
    for edu in cv.get("education") or []:
        story.append(_p(edu.get("degree"), styles["entry"]))
        story.append(_p(", ".join(v for v in (edu.get("institution"), edu.get("location")) if v), styles["subtitle"]))
        story.append(_p(f"{edu.get('startDate', '')} - {edu.get('endDate', '')}", styles["date"]))
        if edu.get("description"):
            story.append(_p(edu["description"], styles["text"]))

    _section(story, "Kenntnisse & Fähigkeiten", styles)
    story.append(_p("  •  ".join(str(s) for s in cv.get("skills") or [] if s), styles["text"]))

    _section(story, "Sprachen", styles)
    languages = [
        f"{lang.get('language', '')} ({lang.get('level', '')})"
        for lang in cv.get("languages") or []
        if isinstance(lang, dict)
    ]
    story.append(_p("  •  ".join(languages), styles["text"]))
    story.append(Spacer(1, 6))

    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=A4, leftMargin=30, rightMargin=30, topMargin=30, bottomMargin=30,
        title=f"Lebenslauf {full_name}".strip(),
    )
    doc.build(story)
    return buffer.getvalue()


def cv_filename(cv: Dict[str, Any]) -> str:
    last_name = ((cv.get("personalInfo") or {}).get("lastName") or "").strip()
    safe = re.sub(r"[^A-Za-z0-9_-]+", "_", last_name).strip("_") or "CV"
    return f"{safe}_Lebenslauf.pdf"
