import asyncio
import logging
import os
import re
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException
import stripe
import uvicorn

import ai
import auth
import billing
import config
import db
import emails
import overlay
import pdf_tools
from translations import MESSAGES, detect_locale, t, text_direction

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
)
logger = logging.getLogger("formbridge")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
UPLOAD_EXTENSIONS = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}

app = FastAPI(title="FormBridge AI", version="1.0.0")
templates = Jinja2Templates(directory=str(config.TEMPLATES_DIR))

if config.STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(config.STATIC_DIR)), name="static")


# ---------------------------------------------------------------------------
# Request bodies. Fields are optional so that missing input gets the same
# 400 responses as the rest of the API instead of a validation error.
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    deviceId: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    photoUrl: Optional[str] = None


class DeductRequest(BaseModel):
    amount: Any = None


class ImageRequest(BaseModel):
    imageBase64: Optional[str] = None


class TranslateRequest(BaseModel):
    answers: Any = None


class CVRequest(BaseModel):
    personalInfo: Optional[Dict[str, Any]] = None
    summary: Optional[str] = None
    experience: Optional[List[Dict[str, Any]]] = None
    education: Optional[List[Dict[str, Any]]] = None
    skills: Optional[List[str]] = None
    languages: Optional[List[Dict[str, Any]]] = None


class CheckoutRequest(BaseModel):
    packageId: Optional[str] = None


# ---------------------------------------------------------------------------
# Lifecycle and error handling
# ---------------------------------------------------------------------------

@app.on_event("startup")
async def startup_event() -> None:
    logger.info("=== FormBridge AI Startup ===")
    logger.info(
        "Startup config: ENV=%s DEBUG=%s DATABASE_URL=%s JWT_SECRET=%s",
        config.ENV or "not set", config.DEBUG, bool(config.DATABASE_URL), bool(config.get_env("JWT_SECRET")),
    )

    await db.init_db()

    db_backend = db.get_db_backend_name()
    if not db_backend:
        logger.error("Database backend not initialized")
        raise RuntimeError("Database backend initialization failed")
    if config.IS_PRODUCTION and db_backend != "postgres":
        logger.error("CRITICAL: Production requires Postgres but backend is %s", db_backend)
        raise RuntimeError(f"Production requires Postgres backend, but {db_backend} is active")

    email_config = emails.get_email_config()
    logger.info(
        "Email configuration: RESEND_API_KEY=%s SMTP_configured=%s APP_URL=%s",
        email_config["resend_configured"], email_config["smtp_configured"], config.APP_URL,
    )
    if emails.is_mock_mode():
        logger.warning("No email transport configured; emails will only be logged.")

    if billing.configure():
        logger.info("Stripe API key configured.")

    logger.info("OpenAI configured: %s (model=%s)", ai.is_available(), config.OPENAI_MODEL)
    logger.info("FormBridge AI startup complete; DB backend: %s", db_backend)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    await db.close_db()


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning("HTTP error on %s: %s", request.url.path, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning("Invalid request body on %s: %s", request.url.path, exc.errors())
    return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})


@app.exception_handler(ai.AIResponseError)
async def ai_exception_handler(request: Request, exc: ai.AIResponseError):
    logger.error("AI error on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content={"success": False, "error": str(exc)})


def _attachment(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _log_history(
    user: Optional[Dict[str, Any]],
    action: str,
    details: str,
    status: str = "success",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Record activity for signed-in users. History is best effort."""
    if not user:
        return
    try:
        await db.log_user_history(user["id"], action, details, status=status, metadata=metadata)
    except Exception as e:
        logger.warning("Could not log %s history for %s: %s", action, user["id"], e)


async def _call_ai(func, *args: Any) -> Any:
    if not ai.is_available():
        raise HTTPException(status_code=503, detail="AI is not available. Set OPENAI_API_KEY to enable.")
    try:
        return await asyncio.to_thread(func, *args)
    except ai.AIUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid request body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid request body")
    return payload


def _decode_image(data: Optional[str]) -> bytes:
    try:
        _, content = pdf_tools.decode_data_url(data or "")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not content:
        raise HTTPException(status_code=400, detail="No image provided")
    return content


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

@app.get("/", response_class=HTMLResponse)
async def index(request: Request, user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)) -> HTMLResponse:
    locale = detect_locale(request)
    return templates.TemplateResponse(
        request,
        "index.html",
        {
            "locale": locale,
            "dir": text_direction(locale),
            "messages": MESSAGES[locale],
            "user": user,
            "packages": billing.packages_payload(),
        },
    )


@app.get("/health")
async def health() -> Dict[str, Any]:
    """Health check endpoint with database connectivity status."""
    db_available = db.is_db_available()
    db_connected = False
    db_backend = db.get_db_backend_name() or "unknown"

    if db_available:
        db_connected = await db.check_db_connectivity()

    if config.IS_PRODUCTION and db_backend != "postgres":
        logger.error("Health check: Production requires Postgres but backend is %s", db_backend)

    return {
        "ok": True,
        "status": "ok",
        "database": {
            "available": db_available,
            "connected": db_connected,
            "backend": db_backend,
        },
    }


@app.get("/api/config")
async def get_config() -> JSONResponse:
    """Get application configuration (feature flags, environment)."""
    return JSONResponse({
        "stripeEnabled": billing.is_configured(),
        "openaiEnabled": ai.is_available(),
        "emailMode": "mock" if emails.is_mock_mode() else "live",
        "env": "prod" if config.IS_PRODUCTION else "dev",
        "locales": list(MESSAGES),
        "creditCosts": {"form": config.FORM_CREDIT_COST, "cv": config.CV_CREDIT_COST},
    })


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------

@app.post("/api/auth/register")
async def register(body: RegisterRequest, request: Request) -> JSONResponse:
    locale = detect_locale(request)
    if not body.name or not body.email or not body.password:
        raise HTTPException(status_code=400, detail=t(locale, "errors.allFieldsRequired"))
    if len(body.password) < 6:
        raise HTTPException(status_code=400, detail=t(locale, "errors.passwordTooShort"))

    try:
        user = await db.create_user(body.name, body.email, auth.hash_password(body.password), body.deviceId)
    except db.DeviceAlreadyRegistered:
        raise HTTPException(status_code=403, detail=t(locale, "errors.deviceRegistered"))
    except Exception as e:
        logger.error("Register error for %s: %s", body.email, e, exc_info=True)
        raise HTTPException(status_code=500, detail=t(locale, "errors.registerFailed"))

    if not user:
        raise HTTPException(status_code=400, detail=t(locale, "errors.emailInUse"))

    await emails.send_verification_email(user["email"], user["verificationToken"])
    return JSONResponse({
        "success": True,
        "message": "Account created. Please verify your email.",
        "requiresVerification": True,
    })


@app.get("/api/auth/verify")
async def verify_account(token: Optional[str] = None) -> RedirectResponse:
    if not token:
        return RedirectResponse(url="/?error=missing_token")

    user = await db.verify_user_account(token)
    if not user:
        logger.info("Verification with unknown or used token")
        return RedirectResponse(url="/?error=invalid_token")

    if user.get("email") and user.get("name"):
        await emails.send_welcome_email(user["email"], user["name"])

    response = RedirectResponse(url="/?verified=true")
    auth.set_auth_cookie(response, auth.generate_token(user))
    return response


@app.post("/api/auth/login")
async def login(body: LoginRequest, request: Request) -> JSONResponse:
    locale = detect_locale(request)
    if not body.email or not body.password:
        raise HTTPException(status_code=400, detail=t(locale, "errors.emailPasswordRequired"))

    try:
        stored = await db.get_user_with_password(body.email)
    except Exception as e:
        logger.error("Login error for %s: %s", body.email, e, exc_info=True)
        raise HTTPException(status_code=500, detail=t(locale, "errors.loginFailed"))

    if not stored or not auth.verify_password(body.password, stored["passwordHash"]):
        raise HTTPException(status_code=401, detail=t(locale, "errors.invalidCredentials"))
    if not stored["isVerified"]:
        logger.warning("Login attempt for unverified user: %s", stored["email"])
        raise HTTPException(status_code=401, detail=t(locale, "errors.invalidCredentials"))

    user = {k: v for k, v in stored.items() if k != "passwordHash"}
    token = auth.generate_token(user)
    response = JSONResponse({"success": True, "user": user, "token": token})
    # Session cookie; ends with the browser session
    auth.set_auth_cookie(response, token)
    return response


@app.get("/api/auth/me")
async def me(user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)) -> JSONResponse:
    if not user:
        return JSONResponse({"success": False, "user": None})
    return JSONResponse({"success": True, "user": user})


@app.post("/api/auth/profile/update")
async def update_profile(
    body: ProfileUpdateRequest, request: Request, user: Dict[str, Any] = Depends(auth.require_user)
) -> JSONResponse:
    locale = detect_locale(request)
    if body.email and not EMAIL_RE.match(body.email):
        raise HTTPException(status_code=400, detail=t(locale, "errors.invalidEmail"))

    try:
        updated = await db.update_user_profile(
            user["email"], name=body.name, new_email=body.email, photo_url=body.photoUrl
        )
    except db.EmailAlreadyInUse:
        raise HTTPException(status_code=400, detail=t(locale, "errors.emailInUse"))
    if not updated:
        raise HTTPException(status_code=400, detail="Update failed")

    response = JSONResponse({"success": True, "user": updated})
    if updated["email"] != user["email"]:
        auth.set_auth_cookie(
            response,
            auth.generate_token(updated),
            max_age=config.JWT_EXPIRATION_DAYS * 24 * 60 * 60,
            samesite="strict",
        )
    return response


@app.post("/api/auth/logout")
async def logout() -> JSONResponse:
    response = JSONResponse({"success": True})
    auth.clear_auth_cookie(response)
    return response


# ---------------------------------------------------------------------------
# Credits and history
# ---------------------------------------------------------------------------

@app.post("/api/credits/deduct")
async def deduct_credits(
    body: DeductRequest, request: Request, user: Dict[str, Any] = Depends(auth.require_user)
) -> JSONResponse:
    locale = detect_locale(request)
    amount = body.amount
    if isinstance(amount, bool) or not isinstance(amount, (int, float)) or amount < 1:
        raise HTTPException(status_code=400, detail=t(locale, "errors.invalidAmount"))

    try:
        ok, credits = await db.deduct_user_credits(user["email"], int(amount))
    except Exception as e:
        logger.error("Deduct credits error for %s: %s", user["email"], e, exc_info=True)
        raise HTTPException(status_code=500, detail=t(locale, "errors.deductFailed"))
    if not ok:
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": t(locale, "errors.insufficientCredits"), "credits": credits},
        )

    logger.info("Deducted %d credits from %s, balance %d", int(amount), user["email"], credits)
    return JSONResponse({"success": True, "credits": credits, "user": await db.get_user_by_email(user["email"])})


@app.get("/api/history")
async def history(user: Dict[str, Any] = Depends(auth.require_user)) -> JSONResponse:
    items = await db.get_user_history(user["id"], config.HISTORY_LIMIT)
    return JSONResponse({"success": True, "history": items})


# ---------------------------------------------------------------------------
# AI
# ---------------------------------------------------------------------------

@app.post("/api/analyze")
async def analyze(body: ImageRequest, user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)) -> JSONResponse:
    if not body.imageBase64:
        raise HTTPException(status_code=400, detail="No image provided")

    try:
        result = await _call_ai(ai.analyze_form, body.imageBase64)
    except ai.AIResponseError as exc:
        await _log_history(user, "analyze", str(exc), status="failed")
        raise

    await _log_history(
        user, "analyze", result["formTitle"],
        metadata={"formType": result["formType"], "fieldCount": len(result["fields"])},
    )
    return JSONResponse({"success": True, **result})


@app.post("/api/translate")
async def translate(
    body: TranslateRequest, user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)
) -> JSONResponse:
    answers = body.answers
    if not isinstance(answers, list) or not answers or not all(isinstance(a, dict) for a in answers):
        raise HTTPException(status_code=400, detail="Invalid answers")

    try:
        translations = await _call_ai(ai.translate_answers, answers)
    except ai.AIResponseError as exc:
        await _log_history(user, "translate", str(exc), status="failed")
        raise

    await _log_history(user, "translate", f"{len(translations)} answers translated")
    return JSONResponse({"success": True, "translations": translations})


@app.post("/api/explain")
async def explain(body: ImageRequest, user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)) -> JSONResponse:
    if not body.imageBase64:
        raise HTTPException(status_code=400, detail="No image provided")

    try:
        explanation = await _call_ai(ai.explain_document, body.imageBase64)
    except ai.AIResponseError as exc:
        await _log_history(user, "explain", str(exc), status="failed")
        raise

    await _log_history(user, "explain", explanation[:120])
    return JSONResponse({"success": True, "explanation": explanation})


@app.post("/api/cv/generate")
async def cv_generate(body: CVRequest, user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)) -> JSONResponse:
    if not body.personalInfo:
        raise HTTPException(status_code=400, detail="Missing personal info")

    try:
        cv_data = await _call_ai(ai.generate_cv, body.model_dump())
    except ai.AIResponseError as exc:
        await _log_history(user, "generate_cv", str(exc), status="failed")
        raise

    info = cv_data.get("personalInfo") or {}
    name = f"{info.get('firstName', '')} {info.get('lastName', '')}".strip()
    await _log_history(user, "generate_cv", name or "CV", metadata={"jobTitle": info.get("jobTitle")})
    return JSONResponse({"success": True, "cvData": cv_data})


# ---------------------------------------------------------------------------
# Overlay and PDF tools
# ---------------------------------------------------------------------------

def _is_field_list(fields: Any) -> bool:
    return isinstance(fields, list) and all(isinstance(f, dict) for f in fields)


@app.post("/api/overlay")
async def overlay_image(request: Request) -> JSONResponse:
    payload = await _json_body(request)
    image = _decode_image(payload.get("imageBase64"))
    fields = payload.get("fields")
    if not _is_field_list(fields):
        raise HTTPException(status_code=400, detail="Invalid fields")

    try:
        options = overlay.OverlayOptions.from_payload(payload)
        png = await asyncio.to_thread(overlay.overlay_fields_on_image, image, fields, options)
    except (ValueError, TypeError, KeyError, OSError) as exc:
        logger.warning("Overlay failed: %s", exc)
        raise HTTPException(status_code=400, detail="Could not render answers on image")

    return JSONResponse({"success": True, "imageBase64": pdf_tools.encode_data_url(png, "image/png")})


@app.post("/api/overlay/pdf")
async def overlay_pdf(request: Request, user: Optional[Dict[str, Any]] = Depends(auth.get_current_user)) -> Response:
    payload = await _json_body(request)
    image = _decode_image(payload.get("imageBase64"))
    fields = payload.get("fields")
    if fields is not None and not _is_field_list(fields):
        raise HTTPException(status_code=400, detail="Invalid fields")

    try:
        if fields is not None:
            options = overlay.OverlayOptions.from_payload(payload)
            image = await asyncio.to_thread(overlay.overlay_fields_on_image, image, fields, options)
        pdf = await asyncio.to_thread(overlay.generate_filled_form_pdf, image)
    except (ValueError, TypeError, KeyError, OSError) as exc:
        logger.warning("Filled form PDF failed: %s", exc)
        await _log_history(user, "generate_pdf", "Filled form PDF failed", status="failed")
        raise HTTPException(status_code=400, detail="Could not create PDF")

    filename = payload.get("filename") or overlay.default_filled_form_filename()
    await _log_history(user, "generate_pdf", filename, metadata={"size": len(pdf)})
    return _attachment(pdf, "application/pdf", filename)


def _upload_content_type(upload: UploadFile) -> Optional[str]:
    content_type = (upload.content_type or "").lower()
    if content_type in config.ALLOWED_IMAGE_TYPES or content_type in config.ALLOWED_PDF_TYPES:
        return content_type
    name = (upload.filename or "").lower()
    for ext, mime in UPLOAD_EXTENSIONS.items():
        if name.endswith(ext):
            return mime
    return content_type or None


@app.post("/api/upload")
async def upload(request: Request, file: UploadFile = File(...)) -> JSONResponse:
    locale = detect_locale(request)
    content = await file.read()
    try:
        data_url = await asyncio.to_thread(pdf_tools.normalize_upload, _upload_content_type(file), content)
    except pdf_tools.UploadError as exc:
        raise HTTPException(status_code=400, detail=t(locale, f"errors.{exc.code}"))
    logger.info("Upload %s (%d bytes) normalized", file.filename, len(content))
    return JSONResponse({"success": True, "imageBase64": data_url})


@app.post("/api/image-to-pdf")
async def image_to_pdf(request: Request) -> Response:
    payload = await _json_body(request)
    image = _decode_image(payload.get("imageBase64"))
    crop = payload.get("crop")
    if crop is not None and not isinstance(crop, dict):
        raise HTTPException(status_code=400, detail="Invalid crop")
    try:
        pdf = await asyncio.to_thread(
            pdf_tools.image_to_pdf, image, int(payload.get("rotation") or 0), crop
        )
    except (ValueError, TypeError, OSError) as exc:
        logger.warning("Image to PDF failed: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc) or "Could not convert image")
    return _attachment(pdf, "application/pdf", "document.pdf")


@app.post("/api/pdf/edit")
async def pdf_edit(request: Request) -> Response:
    payload = await _json_body(request)
    image = _decode_image(payload.get("imageBase64"))
    boxes = payload.get("boxes") or []
    if not isinstance(boxes, list) or not all(isinstance(b, dict) for b in boxes):
        raise HTTPException(status_code=400, detail="Invalid boxes")
    try:
        pdf = await asyncio.to_thread(pdf_tools.render_edited_pdf, image, boxes)
    except (ValueError, TypeError, OSError) as exc:
        logger.warning("PDF edit failed: %s", exc)
        raise HTTPException(status_code=400, detail="Could not create PDF")
    return _attachment(pdf, "application/pdf", "edited-document.pdf")


def _export_fields(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    fields = payload.get("fields")
    if not isinstance(fields, list) or not all(isinstance(f, dict) for f in fields):
        raise HTTPException(status_code=400, detail="Invalid fields")
    return fields


@app.post("/api/export/pdf")
async def export_pdf(request: Request) -> Response:
    payload = await _json_body(request)
    fields = _export_fields(payload)
    try:
        pdf = await asyncio.to_thread(
            pdf_tools.generate_answers_pdf,
            fields,
            payload.get("title") or "Ausgefülltes Formular",
            payload.get("subtitle"),
        )
    except Exception as e:
        logger.error("Answer export failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Could not create PDF")
    return _attachment(pdf, "application/pdf", pdf_tools.export_filename("pdf"))


@app.post("/api/export/text")
async def export_text(request: Request) -> Response:
    payload = await _json_body(request)
    fields = _export_fields(payload)
    text = pdf_tools.generate_answers_text(fields)
    return _attachment(text.encode("utf-8"), "text/plain; charset=utf-8", pdf_tools.export_filename("txt"))


@app.post("/api/cv/pdf")
async def cv_pdf(request: Request) -> Response:
    payload = await _json_body(request)
    cv = payload.get("cv")
    if not isinstance(cv, dict) or not isinstance(cv.get("personalInfo"), dict):
        raise HTTPException(status_code=400, detail="Missing personal info")
    try:
        pdf = await asyncio.to_thread(pdf_tools.render_cv_pdf, cv)
    except Exception as e:
        logger.error("CV PDF failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Could not create PDF")
    return _attachment(pdf, "application/pdf", pdf_tools.cv_filename(cv))


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------

@app.get("/api/payments/packages")
async def payment_packages() -> JSONResponse:
    return JSONResponse({"success": True, "packages": billing.packages_payload()})


@app.post("/api/payments/checkout")
async def payment_checkout(body: CheckoutRequest, request: Request) -> JSONResponse:
    locale = detect_locale(request)
    if not request.cookies.get(config.AUTH_COOKIE_NAME):
        raise HTTPException(status_code=401, detail=t(locale, "errors.loginRequired"))
    claims = auth.get_token_claims(request)
    if not claims:
        raise HTTPException(status_code=401, detail=t(locale, "errors.invalidSession"))

    package = billing.get_package_by_id(body.packageId)
    if not package:
        raise HTTPException(status_code=400, detail=t(locale, "errors.invalidPackage"))
    if not billing.is_configured():
        logger.info("Checkout requested but Stripe is not configured.")
        raise HTTPException(status_code=503, detail=t(locale, "errors.paymentsUnavailable"))

    try:
        url = await asyncio.to_thread(billing.create_checkout_session, package, claims)
    except stripe.StripeError as exc:
        logger.warning("Error creating Stripe Checkout session: %s", exc)
        raise HTTPException(status_code=500, detail=t(locale, "errors.checkoutFailed"))

    return JSONResponse({"success": True, "url": url})


@app.post("/api/payments/webhook")
async def payment_webhook(request: Request) -> JSONResponse:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature or not config.STRIPE_WEBHOOK_SECRET:
        raise HTTPException(status_code=400, detail="Missing signature")

    try:
        event = billing.parse_webhook_event(payload, signature)
    except stripe.SignatureVerificationError:
        logger.warning("Invalid Stripe webhook signature.")
        raise HTTPException(status_code=400, detail="Invalid signature")
    except (ValueError, UnicodeDecodeError) as exc:
        logger.warning("Error parsing Stripe webhook: %s", exc)
        raise HTTPException(status_code=400, detail="Invalid payload")

    purchase = billing.completed_checkout_credits(event)
    if purchase:
        user = await db.get_user_by_email(purchase["email"])
        if not user:
            logger.warning("Checkout %s completed for unknown user %s", purchase["sessionId"], purchase["email"])
        else:
            applied, balance = await db.apply_payment(purchase["sessionId"], purchase["email"], purchase["credits"])
            if applied:
                logger.info("Added %d credits to user %s. New balance: %d", purchase["credits"], purchase["email"], balance)
            else:
                logger.info("Checkout %s already processed", purchase["sessionId"])

    return JSONResponse({"received": True})


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------

@app.get("/api/admin/send-blast")
async def send_blast(key: Optional[str] = None) -> JSONResponse:
    if not config.ADMIN_SECRET or key != config.ADMIN_SECRET:
        raise HTTPException(status_code=401, detail="Unauthorized")

    users = await db.get_all_users()
    logger.info("[Admin] Sending remarketing email to %d users", len(users))
    results = await asyncio.gather(
        *(emails.send_remarketing_email(u["email"]) for u in users if u.get("email")),
        return_exceptions=True,
    )
    sent = sum(1 for r in results if r is True)
    return JSONResponse({
        "success": True,
        "message": "Email blast completed" if users else "No users found",
        "totalUsers": len(users),
        "sent": sent,
        "errors": len(users) - sent,
    })


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=port,
        proxy_headers=True,
    )
