"""Outgoing mail: Resend HTTP API first, SMTP fallback, log-only mock otherwise."""
import asyncio
import html
import logging
import smtplib
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import parseaddr
from typing import Any, Dict, Optional, Tuple

import httpx

import config
from config import get_env

logger = logging.getLogger("formbridge.email")

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM = '"FormBridge AI" <noreply@formbridge.ai>'
SMTP_MAX_ATTEMPTS = 3
SMTP_RETRY_DELAY = 2

# smtplib is synchronous
_smtp_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="smtp")


def extract_email_from_string(email_str: Optional[str]) -> Optional[str]:
    """Extract email address from string, handling 'Name <email>' format."""
    if not email_str:
        return None
    _, email = parseaddr(email_str)
    return email if email else email_str


def get_smtp_config() -> Dict[str, Any]:
    """SMTP settings, read fresh from the environment.

    Accepts SMTP_USER/SMTP_USERNAME, SMTP_PASS/SMTP_PASSWORD and
    SMTP_FROM/EMAIL_FROM. SMTP_PORT defaults to 587.
    """
    host = get_env("SMTP_HOST")
    user = get_env("SMTP_USER") or get_env("SMTP_USERNAME")
    pass_val = get_env("SMTP_PASS") or get_env("SMTP_PASSWORD")
    from_raw = get_env("SMTP_FROM") or get_env("EMAIL_FROM")
    from_email = extract_email_from_string(from_raw)
    port = config.get_int_env("SMTP_PORT", 587)

    missing_keys = []
    if not host:
        missing_keys.append("SMTP_HOST")
    if not user:
        missing_keys.append("SMTP_USER or SMTP_USERNAME")
    if not pass_val:
        missing_keys.append("SMTP_PASS or SMTP_PASSWORD")
    if not from_email:
        missing_keys.append("SMTP_FROM or EMAIL_FROM")

    return {
        "host": host,
        "user": user,
        "pass": pass_val,
        "from_raw": from_raw,
        "from": from_email,
        "port": port,
        "configured": not missing_keys,
        "missing_keys": missing_keys,
    }


def get_email_config() -> Dict[str, Any]:
    resend_api_key = get_env("RESEND_API_KEY")
    smtp_config = get_smtp_config()
    from_raw = get_env("SMTP_FROM") or get_env("EMAIL_FROM") or DEFAULT_FROM
    return {
        "resend_configured": bool(resend_api_key),
        "resend_api_key": resend_api_key,
        "smtp_configured": smtp_config["configured"],
        "smtp_config": smtp_config,
        "from_raw": from_raw,
        "from_email": extract_email_from_string(from_raw),
    }


def is_mock_mode() -> bool:
    email_config = get_email_config()
    return not (email_config["resend_configured"] or email_config["smtp_configured"])


async def send_email_via_resend_api(
    to_email: str, subject: str, html_body: str, from_address: str, api_key: str
) -> Tuple[bool, Optional[str]]:
    """Send through the Resend HTTP API. Returns ``(success, error_message)``."""
    try:
        async with httpx.AsyncClient(timeout=10.0) as client:
            response = await client.post(
                RESEND_API_URL,
                headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                json={"from": from_address, "to": to_email, "subject": subject, "html": html_body},
            )
    except httpx.TimeoutException:
        logger.error("Resend API timeout")
        return (False, "Resend API timeout")
    except httpx.HTTPError as e:
        logger.error("Resend API error: %s", e)
        return (False, f"Resend API error: {str(e)[:100]}")

    if response.status_code == 200:
        logger.info("Email sent via Resend API to %s", to_email)
        return (True, None)

    error_detail = f"Resend API error: status {response.status_code}"
    try:
        error_data = response.json()
    except ValueError:
        error_data = None
    if isinstance(error_data, dict) and "message" in error_data:
        error_detail = f"Resend API error: {str(error_data['message'])[:100]}"
    logger.error("Resend API send failed: status=%d", response.status_code)
    return (False, error_detail)


async def send_email_via_smtp(
    to_email: str, subject: str, body: str, smtp_config: Optional[Dict[str, Any]] = None
) -> Tuple[bool, Optional[str]]:
    """Send via SMTP with STARTTLS, retrying up to three times."""
    if smtp_config is None:
        smtp_config = get_smtp_config()

    if not smtp_config["configured"]:
        missing_keys_str = ", ".join(smtp_config["missing_keys"])
        logger.warning("SMTP not configured: missing keys=%s", missing_keys_str)
        return (False, f"SMTP not configured: missing {missing_keys_str}")

    def _send_sync() -> None:
        msg = MIMEMultipart()
        msg["From"] = smtp_config["from_raw"] or smtp_config["from"]
        msg["To"] = to_email
        msg["Subject"] = subject
        msg.attach(MIMEText(body, "html"))

        with smtplib.SMTP(smtp_config["host"], smtp_config["port"], timeout=10) as server:
            server.starttls()
            server.login(smtp_config["user"], smtp_config["pass"])
            server.send_message(msg, from_addr=smtp_config["from"], to_addrs=[to_email])

    last_error = None
    for attempt in range(1, SMTP_MAX_ATTEMPTS + 1):
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(_smtp_executor, _send_sync)
            if attempt > 1:
                logger.info("SMTP email sent successfully to %s on attempt %d", to_email, attempt)
            else:
                logger.info("Email sent via SMTP to %s", to_email)
            return (True, None)
        except smtplib.SMTPException as e:
            last_error = f"SMTP error: {type(e).__name__}"
            smtp_code = getattr(e, "smtp_code", None)
            if smtp_code:
                last_error += f" (code {smtp_code})"
            logger.error(
                "SMTP error sending email to %s (attempt %d/%d): %s", to_email, attempt, SMTP_MAX_ATTEMPTS, e
            )
        except (ConnectionError, TimeoutError, OSError) as e:
            last_error = f"Connection error: {type(e).__name__}"
            if str(e):
                last_error += f": {str(e)[:100]}"
            logger.error(
                "Connection error sending email to %s (attempt %d/%d): %s", to_email, attempt, SMTP_MAX_ATTEMPTS, e
            )

        if attempt < SMTP_MAX_ATTEMPTS:
            logger.info("Retrying SMTP send to %s in %d seconds", to_email, SMTP_RETRY_DELAY)
            await asyncio.sleep(SMTP_RETRY_DELAY)

    logger.error("SMTP send failed to %s after %d attempts: %s", to_email, SMTP_MAX_ATTEMPTS, last_error)
    return (False, last_error or "Failed to send email after multiple attempts")


async def send_email(to_email: str, subject: str, html_body: str) -> Tuple[bool, Optional[str]]:
    """Deliver one message through whichever transport is configured."""
    email_config = get_email_config()

    if not email_config["resend_configured"] and not email_config["smtp_configured"]:
        logger.info("MOCK EMAIL SEND (configure RESEND_API_KEY or SMTP to send real emails)")
        logger.info("To: %s | Subject: %s", to_email, subject)
        return (True, None)

    error_msg = None
    if email_config["resend_configured"]:
        ok, error_msg = await send_email_via_resend_api(
            to_email, subject, html_body, email_config["from_raw"], email_config["resend_api_key"]
        )
        if ok:
            return (True, None)
        logger.warning("Resend failed for %s, trying SMTP: %s", to_email, error_msg)

    if email_config["smtp_configured"]:
        return await send_email_via_smtp(to_email, subject, html_body, email_config["smtp_config"])

    return (False, error_msg or "Failed to send email")


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def verification_link(token: str) -> str:
    return f"{config.APP_URL}/api/auth/verify?token={token}"


def render_verification_email(token: str) -> Tuple[str, str]:
    link = verification_link(token)
    body = f"""<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #eee; border-radius: 8px;">
  <h2 style="color: #4F46E5;">Welcome to FormBridge AI!</h2>
  <p>Please click the button below to verify your email address and activate your account.</p>
  <div style="text-align: center; margin: 30px 0;">
    <a href="{link}" style="background-color: #4F46E5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; font-weight: bold; display: inline-block;">Verify Email</a>
  </div>
  <p>If you didn't create an account, you can safely ignore this email.</p>
  <p style="font-size: 12px; color: #666; margin-top: 30px; border-top: 1px solid #eee; padding-top: 10px;">
    If the button doesn't work, copy and paste this link into your browser:<br><a href="{link}" style="color: #4F46E5;">{link}</a>
  </p>
</div>"""
    return "Verify your email address - FormBridge AI", body


def render_welcome_email(name: str) -> Tuple[str, str]:
    body = f"""<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px; border: 1px solid #eee; border-radius: 8px;">
  <h2 style="color: #4F46E5;">Welcome, {html.escape(name or "")}!</h2>
  <p>We're thrilled to have you on board. Your account has been successfully verified.</p>
  <p>With FormBridge AI, you can now:</p>
  <ul style="color: #444;">
    <li>Fill out complex forms with ease</li>
    <li>Get explanations for difficult documents</li>
    <li>Build professional CVs</li>
    <li>Edit and sign PDF documents</li>
  </ul>
  <p>You have free credits to get started. Log in now and try out our features!</p>
  <div style="text-align: center; margin: 30px 0;">
    <a href="{config.APP_URL}" style="background-color: #4F46E5; color: white; padding: 12px 24px; text-decoration: none; border-radius: 4px; font-weight: bold; display: inline-block;">Go to Dashboard</a>
  </div>
  <p style="font-size: 12px; color: #666; margin-top: 30px; border-top: 1px solid #eee; padding-top: 10px;">
    &copy; {datetime.now().year} FormBridge AI. All rights reserved.
  </p>
</div>"""
    return "Welcome to FormBridge AI!", body


def render_remarketing_email() -> Tuple[str, str]:
    body = f"""<div style="font-family: 'Segoe UI', Tahoma, sans-serif; max-width: 600px; margin: 20px auto; background-color: #ffffff; border-radius: 12px;">
  <div style="background: linear-gradient(135deg, #EF4444 0%, #F59E0B 100%); padding: 30px 20px; text-align: center;">
    <h1 style="color: white; margin: 0; font-size: 26px;">Don't Let Paperwork Stop You</h1>
  </div>
  <div style="padding: 30px 25px;">
    <h2>Ihre Dokumente warten...</h2>
    <p>Lassen Sie sich nicht von deutscher Bürokratie aufhalten. Sie haben noch unbenutzte Credits in Ihrem FormBridge AI-Konto!</p>
    <ul>
      <li>Übersetzen Sie komplexe Briefe in Sekunden.</li>
      <li>Füllen Sie Anträge fehlerfrei aus.</li>
      <li>Erstellen Sie den perfekten deutschen Lebenslauf.</li>
    </ul>
    <p style="text-align: center;"><a href="{config.APP_URL}">Meine Aufgaben erledigen &rarr;</a></p>
    <div dir="rtl" style="text-align: right; border-top: 1px solid #e5e7eb; padding-top: 20px;">
      <h2>هل ما زلت تعاني مع الأوراق؟</h2>
      <p>لا تدع البيروقراطية الألمانية توقف تقدمك. لديك رصيد غير مستخدم في حساب FormBridge AI الخاص بك!</p>
      <ul>
        <li>ترجم الرسائل المعقدة في ثوانٍ.</li>
        <li>املأ الطلبات الحكومية بدون أخطاء.</li>
        <li>أنشئ سيرة ذاتية ألمانية مثالية.</li>
      </ul>
      <p style="text-align: center;"><a href="{config.APP_URL}">إنجاز مهامي الآن &larr;</a></p>
    </div>
  </div>
</div>"""
    return "Ihre Dokumente warten | أوراقك بانتظارك", body


async def send_verification_email(email: str, token: str) -> bool:
    subject, body = render_verification_email(token)
    if is_mock_mode():
        logger.info("Verification link for %s: %s", email, verification_link(token))
    ok, error = await send_email(email, subject, body)
    if not ok:
        logger.error("Verification email to %s failed: %s", email, error)
    return ok


async def send_welcome_email(email: str, name: str) -> bool:
    subject, body = render_welcome_email(name)
    ok, error = await send_email(email, subject, body)
    if not ok:
        logger.error("Welcome email to %s failed: %s", email, error)
    return ok


async def send_remarketing_email(email: str) -> bool:
    subject, body = render_remarketing_email()
    ok, error = await send_email(email, subject, body)
    if not ok:
        logger.error("Remarketing email to %s failed: %s", email, error)
    return ok
