import logging
from typing import Any, Dict, Optional, Tuple

from fastapi.concurrency import run_in_threadpool
from pymongo.errors import DuplicateKeyError

from marketplace.config import settings
from marketplace.core import security
from marketplace.core.errors import AppError, NotFoundError, UnauthorizedError, ValidationError
from marketplace.core.permissions import UserRole
from marketplace.db.cache import get_json, set_json
from marketplace.utils import public_user, to_object_id, utcnow

logger = logging.getLogger(__name__)


def new_user_document(name: str, email: str, password_hash: Optional[str] = None,
                      avatar: Optional[Dict[str, str]] = None, verified: bool = False) -> Dict[str, Any]:
    now = utcnow()
    return {
        "name": name,
        "email": email.lower(),
        "password": password_hash,
        "avatar": avatar or {},
        "role": UserRole.USER.value,
        "isVerified": verified,
        "orders": [],
        "transactions": [],
        "createdAt": now,
        "updatedAt": now,
    }


# --- Sessions ---
async def save_session(cache, user: Dict[str, Any]) -> Dict[str, Any]:
    session = public_user(user)
    await set_json(cache, session["_id"], session, ex=settings.SESSION_EXPIRE_SECONDS)
    return session


async def load_session(cache, user_id: str) -> Optional[Dict[str, Any]]:
    return await get_json(cache, user_id)


async def issue_tokens(cache, user: Dict[str, Any]) -> Dict[str, Any]:
    session = await save_session(cache, user)
    return {
        "user": session,
        "accessToken": security.create_access_token(session["_id"]),
        "refreshToken": security.create_refresh_token(session["_id"]),
    }


async def refresh_session(cache, refresh_token: Optional[str]) -> Dict[str, Any]:
    """Exchange a refresh token for the cached session and extend its expiry."""
    if not refresh_token:
        raise UnauthorizedError("Could not refresh token", 400)
    try:
        payload = security.decode_refresh_token(refresh_token)
    except security.JWTError:
        raise UnauthorizedError("Could not refresh token", 400)

    user_id = payload.get("sub")
    session = await load_session(cache, user_id) if user_id else None
    if not session:
        raise UnauthorizedError("Please login for access this resources!", 400)

    await set_json(cache, session["_id"], session, ex=settings.SESSION_EXPIRE_SECONDS)
    return session


async def logout(cache, user_id: str) -> None:
    await cache.delete(user_id)


# --- Registration ---
async def register(db, mailer, name: str, email: str, password: str, confirm_password: str) -> str:
    if password != confirm_password:
        raise ValidationError("Passwords do not match")
    if await db.users.find_one({"email": email.lower()}):
        raise ValidationError("Email already exist")

    pending = {"name": name, "email": email.lower(), "password": security.hash_password(password)}
    token, code = security.create_activation_token(pending)

    sent = await run_in_threadpool(
        mailer.send,
        pending["email"],
        "Activate your account",
        "activation_mail.html",
        {"user": {"name": name}, "activationCode": code},
    )
    if not sent:
        raise AppError("Failed to send activation email.")
    return token


async def activate(db, activation_token: str, activation_code: str) -> Dict[str, Any]:
    try:
        payload = security.decode_activation_token(activation_token)
    except security.JWTError:
        raise ValidationError("Invalid or expired activation token")

    if payload.get("activationCode") != activation_code:
        raise ValidationError("Invalid activation code")

    pending = payload["user"]
    if await db.users.find_one({"email": pending["email"]}):
        raise ValidationError("Email already exist")

    user = new_user_document(pending["name"], pending["email"], pending["password"], verified=True)
    try:
        result = await db.users.insert_one(user)
    except DuplicateKeyError:
        raise ValidationError("Email already exist")
    user["_id"] = result.inserted_id
    logger.info(f"User {user['_id']} activated")
    return user


# --- Login ---
async def login(db, cache, email: str, password: str) -> Dict[str, Any]:
    user = await db.users.find_one({"email": email.lower()})
    if not user or not security.verify_password(password, user.get("password")):
        raise ValidationError("Invalid email or password")
    return await issue_tokens(cache, user)


async def social_auth(db, cache, email: str, name: str, avatar: Optional[str]) -> Dict[str, Any]:
    user = await db.users.find_one({"email": email.lower()})
    if not user:
        user = new_user_document(name, email, avatar={"public_id": "", "url": avatar} if avatar else None,
                                 verified=True)
        result = await db.users.insert_one(user)
        user["_id"] = result.inserted_id
        logger.info(f"User {user['_id']} created through social sign-in")
    return await issue_tokens(cache, user)


# --- Password reset ---
async def forgot_password(db, mailer, email: str) -> str:
    user = await db.users.find_one({"email": email.lower()})
    if not user:
        raise NotFoundError("User not found")

    token, code = security.create_otp_token(str(user["_id"]), user["email"])
    sent = await run_in_threadpool(
        mailer.send,
        user["email"],
        "Your OTP for Password Reset",
        "forgot_password_otp_mail.html",
        {"user": {"name": user["name"]}, "passwordResetCode": code},
    )
    if not sent:
        raise AppError("Failed to send password reset email.")
    return token


async def verify_otp(db, forgot_token: str, forgot_code: str) -> Tuple[str, str]:
    try:
        payload = security.decode_forgot_token(forgot_token, "otp")
    except security.JWTError:
        raise ValidationError("Invalid or expired OTP token")

    if payload.get("passwordResetCode") != forgot_code:
        raise ValidationError("Invalid OTP code")

    user = await db.users.find_one({"_id": to_object_id(payload.get("sub"), "user id")})
    if not user:
        raise NotFoundError("User not found")
    user_id = str(user["_id"])
    return user_id, security.create_reset_token(user_id)


async def reset_password(db, cache, reset_token: str, new_password: str) -> None:
    try:
        payload = security.decode_forgot_token(reset_token, "reset")
    except security.JWTError:
        raise ValidationError("Invalid or expired reset token")

    user_id = to_object_id(payload.get("sub"), "user id")
    result = await db.users.update_one(
        {"_id": user_id},
        {"$set": {"password": security.hash_password(new_password), "updatedAt": utcnow()}},
    )
    if result.matched_count == 0:
        raise NotFoundError("User not found")
    # existing sessions must log in again with the new password
    await cache.delete(str(user_id))
