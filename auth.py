"""Password hashing, JWT cookie tokens and FastAPI auth dependencies."""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.responses import Response

import config
import db
from translations import detect_locale, t

logger = logging.getLogger("formbridge.auth")


# bcrypt only looks at the first 72 bytes; newer releases reject longer input.
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    """Hash a password with bcrypt (cost 10)."""
    hashed = bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt(rounds=10))
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(plain_password), hashed_password.encode("utf-8"))
    except ValueError as exc:
        logger.warning("Password hash check failed: %s", exc)
        return False


def generate_token(user: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Signed JWT carrying the user's id and email."""
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=config.JWT_EXPIRATION_DAYS))
    payload = {"id": user["id"], "email": user["email"], "exp": expire}
    return jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a JWT; None when missing, expired or tampered with."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.info("Expired auth token")
        return None
    except jwt.InvalidTokenError:
        logger.info("Invalid auth token")
        return None
    if not payload.get("email") or not payload.get("id"):
        return None
    return payload


def set_auth_cookie(
    response: Response, token: str, max_age: Optional[int] = None, samesite: str = "lax"
) -> None:
    """Without ``max_age`` the cookie lives until the browser closes."""
    response.set_cookie(
        key=config.AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=config.IS_PRODUCTION,
        samesite=samesite,
        path="/",
        max_age=max_age,
    )


def clear_auth_cookie(response: Response) -> None:
    response.delete_cookie(
        config.AUTH_COOKIE_NAME, httponly=True, secure=config.IS_PRODUCTION, samesite="lax", path="/"
    )


def get_token_claims(request: Request) -> Optional[Dict[str, Any]]:
    return verify_token(request.cookies.get(config.AUTH_COOKIE_NAME))


async def get_current_user(request: Request) -> Optional[Dict[str, Any]]:
    """FastAPI dependency: the signed-in user, or None."""
    claims = get_token_claims(request)
    if not claims:
        return None
    return await db.get_user_by_email(claims["email"])


async def require_user(
    request: Request, user: Optional[Dict[str, Any]] = Depends(get_current_user)
) -> Dict[str, Any]:
    """FastAPI dependency that requires authentication."""
    if not user:
        raise HTTPException(status_code=401, detail=t(detect_locale(request), "errors.unauthorized"))
    return user
