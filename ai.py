"""OpenAI-backed form analysis, answer translation, document explanation and CV writing.

All calls are synchronous; routes run them in a worker thread.
"""
import json
import logging
import math
import re
from typing import Any, Dict, List, Optional

import config

try:
    from openai import OpenAI, OpenAIError
    OPENAI_AVAILABLE = True
except ImportError:
    OPENAI_AVAILABLE = False

logger = logging.getLogger("formbridge.ai")

if not OPENAI_AVAILABLE:
    logger.warning("OpenAI not available. AI features will be disabled.")

_openai_client: Optional[Any] = None

DEFAULT_FORM_TITLE = "Deutsches Formular"
DEFAULT_FORM_TYPE = "Formular"
EXPLAIN_FALLBACK = "عذراً، ما قدرت افهم المستند."

CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class AIResponseError(Exception):
    """The model answered, but not with something we can use."""


class AIUnavailableError(Exception):
    """No API key or client library."""


def get_client() -> Any:
    global _openai_client
    if _openai_client is None:
        if not (OPENAI_AVAILABLE and config.OPENAI_API_KEY):
            raise AIUnavailableError("AI is not available. Set OPENAI_API_KEY to enable.")
        _openai_client = OpenAI(api_key=config.OPENAI_API_KEY)
    return _openai_client


def set_client(client: Any) -> None:
    """Swap the client (tests use an in-process fake)."""
    global _openai_client
    _openai_client = client


def is_available() -> bool:
    return _openai_client is not None or bool(OPENAI_AVAILABLE and config.OPENAI_API_KEY)


def _complete(messages: List[Dict[str, Any]], failure_message: str, **kwargs: Any) -> str:
    try:
        response = get_client().chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=messages,
            **kwargs,
        )
    except OpenAIError as exc:
        logger.error("OpenAI request failed: %s", exc)
        raise AIResponseError(failure_message) from exc
    if not response.choices:
        return ""
    return response.choices[0].message.content or ""


def extract_json(content: str, missing_message: str = "No JSON found in response",
                 invalid_message: str = "Invalid response format") -> Dict[str, Any]:
    """Pull the JSON object out of a model reply (optionally fenced in markdown)."""
    json_content = content
    fence = CODE_FENCE_RE.search(content)
    if fence:
        json_content = fence.group(1)

    match = JSON_OBJECT_RE.search(json_content)
    if not match:
        logger.error("No JSON found in response: %s", content[:500])
        raise AIResponseError(missing_message)

    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        logger.error("JSON parse error: %s", exc)
        raise AIResponseError(invalid_message)
    if not isinstance(parsed, dict):
        raise AIResponseError(invalid_message)
    return parsed


# ---------------------------------------------------------------------------
# Form analysis
# ---------------------------------------------------------------------------

ANALYZE_SYSTEM_PROMPT = """You are a German form analyzer with PRECISE field position detection capabilities.

## PRIMARY TASK
Analyze German form images to:
1. Detect all fillable fields (empty OR already filled)
2. Determine EXACT positions where text should be placed
3. Identify any existing content in pre-filled fields

## CRITICAL POSITIONING RULES

The image is divided into a 100x100 grid:
- TOP-LEFT corner = (0, 0)
- BOTTOM-RIGHT corner = (100, 100)
- x increases LEFT to RIGHT
- y increases TOP to BOTTOM

### MEASURING POSITIONS ACCURATELY

**For the INPUT FIELD (not the label!):**

1. **x (left edge)**: Where does the writable area BEGIN horizontally?
   - If field starts at left margin: x ≈ 2-5
   - If field starts after a short label "Name:": x ≈ 15-25
   - If field is in right half of form: x ≈ 50-60
   - If field starts after a long label: x ≈ 30-45

2. **y (top edge)**: Where does the field START vertically from page top?
   - First row of fields after header: y ≈ 12-20
   - Each subsequent row: add 4-8 to previous y
   - Fields near middle of page: y ≈ 40-60
   - Fields near bottom: y ≈ 70-90

3. **width**: How wide is the INPUT AREA (not including label)?
   - Small fields (date, phone): width ≈ 12-20
   - Medium fields (name, city): width ≈ 25-40
   - Large fields (full address): width ≈ 50-75
   - Full-width fields: width ≈ 85-95

4. **height**: How tall is the writable line/box?
   - Single line text: height ≈ 3-5
   - Two-line area: height ≈ 6-8
   - Multi-line textarea: height ≈ 10-20

## DETECTING PRE-FILLED FIELDS

Some fields may already contain handwritten or typed text.
If a field is pre-filled:
- Set "prefilled": true
- Set "existingValue": "the text you can read"

## FIELD TYPES
- "text", "textarea", "date" (DD.MM.YYYY), "checkbox", "number", "select"

## OUTPUT FORMAT

Return ONLY this JSON (no markdown, no extra text):
{
  "formTitle": "Title of the form",
  "formType": "Type (Anmeldung, Antrag, etc.)",
  "detectedFields": [
    {
      "id": "field_1",
      "germanLabel": "The German label/question",
      "arabicLabel": "Arabic translation",
      "fieldType": "text",
      "required": true,
      "prefilled": false,
      "existingValue": null,
      "inputPosition": {"x": 25, "y": 18, "width": 40, "height": 4},
      "confidence": "high"
    }
  ]
}

## CONFIDENCE LEVELS
- "high": Clear box/line visible, position is certain
- "medium": Field boundaries somewhat visible
- "low": Guessing based on form layout"""

ANALYZE_USER_PROMPT = """Analyze this German form image with EXTREME PRECISION.

## STEP 1: Understand the Form Layout
- Is it a single-column or multi-column form?
- Where are the labels positioned relative to input fields?
- Are there any already-filled fields?

## STEP 2: For EACH Fillable Field
1. IDENTIFY the INPUT AREA (the blank/filled space for writing, NOT the label)
2. MEASURE its position as percentages:
   - x: left edge (0=far left, 100=far right)
   - y: top edge (0=top, 100=bottom)
   - width: horizontal size
   - height: vertical size
3. CHECK if the field is already filled:
   - Look for handwritten or typed text inside the field
   - If filled, read the existing content

## STEP 3: Quality Check
- Are your x/y positions for the INPUT AREA, not the label?
- Did you include already-filled fields with their content?
- Are your widths accurate for each field type?

COMMON ERRORS TO AVOID:
- Placing position at the LABEL instead of the INPUT FIELD
- Making all fields the same width regardless of actual size
- Missing fields that are already filled in
- Wrong y-position (not measuring from actual input line)

Be extremely precise - these coordinates will overlay text directly on the image!"""


def _number_or(value: Any, default: float) -> float:
    """Numeric value, or ``default`` when missing, zero or not a number."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or number == 0:
        return default
    return number


def clamp_position(x: float, y: float, width: float, height: float) -> Dict[str, float]:
    """Keep a percentage box on the page."""
    x = max(0.0, min(95.0, x))
    y = max(0.0, min(95.0, y))
    width = max(5.0, min(95.0 - x, width))
    height = max(2.0, min(95.0 - y, min(25.0, height)))

    if x + width > 98:
        width = 98 - x
    if y + height > 98:
        height = 98 - y

    return {"x": x, "y": y, "width": width, "height": height}


def normalize_field(raw: Dict[str, Any], index: int) -> Dict[str, Any]:
    pos = raw.get("inputPosition") or raw.get("position") or {}
    if not isinstance(pos, dict):
        pos = {}

    position = clamp_position(
        _number_or(pos.get("x"), 5),
        _number_or(pos.get("y"), 15 + index * 7),
        _number_or(pos.get("width"), 40),
        _number_or(pos.get("height"), 4),
    )

    return {
        "id": raw.get("id") or f"field_{index + 1}",
        "germanQuestion": raw.get("germanLabel") or raw.get("germanQuestion") or f"Feld {index + 1}",
        "arabicQuestion": raw.get("arabicLabel") or raw.get("arabicQuestion") or f"الحقل {index + 1}",
        "fieldType": raw.get("fieldType") or "text",
        "required": raw.get("required") is not False,
        "prefilled": bool(raw.get("prefilled")),
        "existingValue": raw.get("existingValue") or None,
        "position": position,
        "confidence": raw.get("confidence") or "medium",
    }


def analyze_form(image_data_url: str) -> Dict[str, Any]:
    """Detect the fillable fields of a form image."""
    content = _complete(
        [
            {"role": "system", "content": ANALYZE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": ANALYZE_USER_PROMPT},
                    {"type": "image_url", "image_url": {"url": image_data_url, "detail": "high"}},
                ],
            },
        ],
        failure_message="Analysis failed",
        max_tokens=4000,
        temperature=0.02,
    )

    parsed = extract_json(
        content,
        missing_message="Failed to parse form structure",
        invalid_message="Invalid response format",
    )

    raw_fields = parsed.get("detectedFields") or parsed.get("fields") or []
    if not isinstance(raw_fields, list) or not raw_fields:
        raise AIResponseError("No fields detected in form")

    fields = [normalize_field(f if isinstance(f, dict) else {}, i) for i, f in enumerate(raw_fields)]
    logger.info("Detected %d fields (%d prefilled)", len(fields), sum(1 for f in fields if f["prefilled"]))

    return {
        "formTitle": parsed.get("formTitle") or DEFAULT_FORM_TITLE,
        "formType": parsed.get("formType") or DEFAULT_FORM_TYPE,
        "fields": fields,
    }


# ---------------------------------------------------------------------------
# Answer translation
# ---------------------------------------------------------------------------

TRANSLATE_SYSTEM_PROMPT = """You are a professional Arabic to German translator specialized in official German forms.

Your task: Translate user answers from Arabic to German accurately.

RULES:
1. Translate each Arabic answer to proper German
2. Keep names as they are (just transliterate if needed)
3. Use formal German suitable for official documents
4. For dates, use German format: DD.MM.YYYY
5. For addresses, use German format and conventions
6. Keep numbers as-is

Respond ONLY with valid JSON (no markdown, no explanation):
{
  "translations": [
    { "fieldId": "field_1", "germanAnswer": "German translation" },
    { "fieldId": "field_2", "germanAnswer": "German translation" }
  ]
}"""


def build_translation_prompt(answers: List[Dict[str, Any]]) -> str:
    lines = [
        f'FieldId: "{a.get("fieldId", "")}" | Question: "{a.get("germanQuestion", "")}" '
        f'| Arabic Answer: "{a.get("arabicAnswer", "")}"'
        for a in answers
    ]
    return "\n".join(lines)


def translate_answers(answers: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Arabic answers -> [{fieldId, germanAnswer}]."""
    content = _complete(
        [
            {"role": "system", "content": TRANSLATE_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": "Translate these Arabic form answers to German. Return EXACTLY the same "
                           f"fieldId in your response:\n\n{build_translation_prompt(answers)}",
            },
        ],
        failure_message="Translation failed",
        max_tokens=2000,
        temperature=0.1,
    )

    parsed = extract_json(content, missing_message="Translation failed", invalid_message="Translation failed")
    translations = parsed.get("translations")
    if not isinstance(translations, list):
        logger.error("No translations array in response")
        raise AIResponseError("Invalid translation format")

    return [
        {"fieldId": str(item.get("fieldId", "")), "germanAnswer": str(item.get("germanAnswer", ""))}
        for item in translations
        if isinstance(item, dict)
    ]


# ---------------------------------------------------------------------------
# Document explanation
# ---------------------------------------------------------------------------

EXPLAIN_SYSTEM_PROMPT = """You are a helpful and friendly assistant who explains German official documents in simple Syrian Arabic dialect (اللهجة السورية).

Your goal is to help Syrian refugees or immigrants in Germany understand their paperwork without stress.

Guidelines:
1.  **Language**: Use natural, simple Syrian Arabic. Avoid formal Classical Arabic (MSA) unless necessary for specific terms, but explain them.
2.  **Structure**:
    *   **Summary (الموضوع باختصار)**: One sentence saying what this document is.
    *   **Key Details (المهم)**: Bullet points of what they need to know (dates, money, deadlines).
    *   **Action Required (شو لازم تعمل)**: Clear instruction on what to do next.
3.  **Tone**: Reassuring, clear, and direct.
4.  If the document is unclear or partial, say so politely.

Analyze the provided image and generate this explanation."""


def explain_document(image_data_url: str) -> str:
    content = _complete(
        [
            {"role": "system", "content": EXPLAIN_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": "Explain this document to me in Syrian Arabic."},
                    {"type": "image_url", "image_url": {"url": image_data_url, "detail": "high"}},
                ],
            },
        ],
        failure_message="Explanation failed",
        max_tokens=1000,
        temperature=0.5,
    )
    return content or EXPLAIN_FALLBACK


# ---------------------------------------------------------------------------
# CV generation
# ---------------------------------------------------------------------------

CV_SYSTEM_PROMPT = """You are an expert CV writer and career consultant specializing in the German job market.
Your task is to take user input (provided in Arabic) and transform it into a professional, ATS-optimized German CV (Lebenslauf).

## Guidelines:
1.  **Language:** Translate all content from Arabic to professional business German.
2.  **Script:** Ensure ALL text is in Latin script. Transliterate proper names (e.g., "محمد" -> "Mohammed").
3.  **Formatting:** Ensure standard German CV formatting conventions (e.g., dates in MM/YYYY format).
4.  **Optimization:** Use strong action verbs and professional terminology suitable for ATS systems.
5.  **Structure:** Return the result as a strict JSON object.

## Output JSON Structure:
{
  "personalInfo": {
    "firstName": "string", "lastName": "string", "email": "string", "phone": "string",
    "address": "string", "linkedIn": "string (optional)", "xing": "string (optional)",
    "jobTitle": "string (target job title)"
  },
  "summary": "string (professional summary in German)",
  "experience": [
    {"title": "string", "company": "string", "location": "string",
     "startDate": "MM/YYYY", "endDate": "MM/YYYY or 'Aktuell'", "description": "string"}
  ],
  "education": [
    {"degree": "string", "institution": "string", "location": "string",
     "startDate": "string", "endDate": "string", "description": "string (optional)"}
  ],
  "skills": ["string"],
  "languages": [{"language": "string", "level": "string (e.g., Muttersprache, C1, B2)"}]
}

Ensure the JSON is valid and contains no markdown code blocks."""

CV_INPUT_KEYS = ("personalInfo", "summary", "experience", "education", "skills", "languages")


def generate_cv(payload: Dict[str, Any]) -> Dict[str, Any]:
    user_content = json.dumps({key: payload.get(key) for key in CV_INPUT_KEYS}, ensure_ascii=False)
    content = _complete(
        [
            {"role": "system", "content": CV_SYSTEM_PROMPT},
            {"role": "user", "content": f"Please create a professional German CV from this data:\n\n{user_content}"},
        ],
        failure_message="CV generation failed",
        temperature=0.3,
        response_format={"type": "json_object"},
    )

    try:
        cv_data = json.loads(content or "{}")
    except json.JSONDecodeError:
        logger.error("Failed to parse CV response: %s", content[:500])
        raise AIResponseError("Failed to generate valid JSON")
    if not isinstance(cv_data, dict):
        raise AIResponseError("Failed to generate valid JSON")
    return cv_data
