import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

from jose import jwt, JWTError, ExpiredSignatureError  # noqa: F401
from passlib.context import CryptContext

from marketplace.config import settings

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_ctx.hash(password)


def verify_password(plain: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return pwd_ctx.verify(plain, hashed)


def _encode(claims: Dict[str, Any], secret: str, expires: timedelta) -> str:
    to_encode = claims.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + expires
    return jwt.encode(to_encode, secret, algorithm=settings.ALGORITHM)


def _decode(token: str, secret: str) -> Dict[str, Any]:
    return jwt.decode(token, secret, algorithms=[settings.ALGORITHM])


# --- Session tokens ---
def create_access_token(user_id: str, expires_minutes: Optional[int] = None) -> str:
    minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES if expires_minutes is None else expires_minutes
    return _encode({"sub": user_id}, settings.ACCESS_TOKEN_SECRET, timedelta(minutes=minutes))


def create_refresh_token(user_id: str) -> str:
    return _encode(
        {"sub": user_id},
        settings.REFRESH_TOKEN_SECRET,
        timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
    )


def decode_access_token(token: str) -> Dict[str, Any]:
    return _decode(token, settings.ACCESS_TOKEN_SECRET)


def decode_refresh_token(token: str) -> Dict[str, Any]:
    return _decode(token, settings.REFRESH_TOKEN_SECRET)


# --- One-time codes ---
def generate_code() -> str:
    """Four digit numeric code mailed to the user."""
    return str(1000 + secrets.randbelow(9000))


def create_activation_token(user: Dict[str, Any]) -> Tuple[str, str]:
    code = generate_code()
    token = _encode(
        {"user": user, "activationCode": code},
        settings.ACTIVATION_SECRET,
        timedelta(minutes=settings.OTP_TOKEN_EXPIRE_MINUTES),
    )
    return token, code


def decode_activation_token(token: str) -> Dict[str, Any]:
    return _decode(token, settings.ACTIVATION_SECRET)


def create_otp_token(user_id: str, email: str) -> Tuple[str, str]:
    code = generate_code()
    token = _encode(
        {"sub": user_id, "email": email, "passwordResetCode": code, "purpose": "otp"},
        settings.FORGOT_SECRET,
        timedelta(minutes=settings.OTP_TOKEN_EXPIRE_MINUTES),
    )
    return token, code


def create_reset_token(user_id: str) -> str:
    return _encode(
        {"sub": user_id, "purpose": "reset"},
        settings.FORGOT_SECRET,
        timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES),
    )


def decode_forgot_token(token: str, purpose: str) -> Dict[str, Any]:
    payload = _decode(token, settings.FORGOT_SECRET)
    if payload.get("purpose") != purpose:
        raise JWTError("Token purpose mismatch")
    return payload
