"""Credit packages and Stripe Checkout."""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import stripe

import config

logger = logging.getLogger("formbridge.billing")

CREDIT_PACKAGES: List[Dict[str, Any]] = [
    {
        "id": "starter",
        "name": "Starter",
        "nameAr": "المبتدئ",
        "credits": 10,
        "price": 499,
        "currency": "eur",
        "popular": False,
    },
    {
        "id": "popular",
        "name": "Popular",
        "nameAr": "الأكثر شعبية",
        "credits": 30,
        "price": 999,
        "currency": "eur",
        "popular": True,
    },
    {
        "id": "pro",
        "name": "Professional",
        "nameAr": "المحترف",
        "credits": 100,
        "price": 2499,
        "currency": "eur",
        "popular": False,
    },
]

CURRENCY_SYMBOLS = {"eur": "€", "usd": "$", "gbp": "£", "chf": "CHF"}


class BillingNotConfigured(Exception):
    pass


def configure() -> bool:
    """Point the stripe module at our secret key. Returns whether payments are enabled."""
    if not config.STRIPE_SECRET_KEY:
        logger.info("Stripe is not configured. Payments are disabled.")
        return False
    stripe.api_key = config.STRIPE_SECRET_KEY
    return True


def is_configured() -> bool:
    return bool(config.STRIPE_SECRET_KEY)


def get_package_by_id(package_id: Optional[str]) -> Optional[Dict[str, Any]]:
    for package in CREDIT_PACKAGES:
        if package["id"] == package_id:
            return package
    return None


def format_price(cents: int, currency: str = "eur") -> str:
    """German currency format, e.g. 499 -> '4,99 €'."""
    amount = (Decimal(cents) / 100).quantize(Decimal("0.01"))
    whole, _, fraction = f"{amount:,}".partition(".")
    formatted = f"{whole.replace(',', '.')},{fraction}"
    symbol = CURRENCY_SYMBOLS.get(currency.lower(), currency.upper())
    return f"{formatted} {symbol}"


def packages_payload() -> List[Dict[str, Any]]:
    return [dict(package, formattedPrice=format_price(package["price"], package["currency"])) for package in CREDIT_PACKAGES]


def create_checkout_session(package: Dict[str, Any], user: Dict[str, Any]) -> str:
    """Create a one-off Checkout session and return its hosted URL."""
    if not is_configured():
        raise BillingNotConfigured("STRIPE_SECRET_KEY is not set")

    session = stripe.checkout.Session.create(
        api_key=config.STRIPE_SECRET_KEY,
        payment_method_types=["card"],
        line_items=[
            {
                "price_data": {
                    "currency": package["currency"],
                    "product_data": {
                        "name": f"FormBridge AI - {package['name']}",
                        "description": f"{package['credits']} credits for form processing",
                    },
                    "unit_amount": package["price"],
                },
                "quantity": 1,
            }
        ],
        mode="payment",
        success_url=f"{config.APP_URL}/?payment=success&credits={package['credits']}",
        cancel_url=f"{config.APP_URL}/?payment=cancelled",
        metadata={
            "userId": user["id"],
            "userEmail": user["email"],
            "packageId": package["id"],
            "credits": str(package["credits"]),
        },
    )
    logger.info("Checkout session %s created for %s (%s)", session.id, user["email"], package["id"])
    return session.url


def parse_webhook_event(payload: bytes, signature: str) -> Dict[str, Any]:
    """Verify the Stripe-Signature header and decode the event.

    Raises ``stripe.SignatureVerificationError`` for a bad signature and
    ``ValueError`` for a payload that is not JSON.
    """
    if not config.STRIPE_WEBHOOK_SECRET:
        raise BillingNotConfigured("STRIPE_WEBHOOK_SECRET is not set")
    text = payload.decode("utf-8")
    stripe.WebhookSignature.verify_header(text, signature, config.STRIPE_WEBHOOK_SECRET)
    event = json.loads(text)
    if not isinstance(event, dict):
        raise ValueError("Webhook payload is not an object")
    return event


def completed_checkout_credits(event: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """``{sessionId, email, credits}`` for a completed checkout, else None."""
    if event.get("type") != "checkout.session.completed":
        return None
    session = (event.get("data") or {}).get("object") or {}
    metadata = session.get("metadata") or {}
    email = metadata.get("userEmail")
    try:
        credits = int(metadata.get("credits") or 0)
    except (TypeError, ValueError):
        logger.warning("Checkout session %s has invalid credits metadata", session.get("id"))
        return None
    if not email or credits <= 0:
        return None
    return {"sessionId": session.get("id") or event.get("id"), "email": email, "credits": credits}
