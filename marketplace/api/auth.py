from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status

from marketplace.api.deps import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_cache,
    get_current_user,
    get_db,
    get_mailer,
    refresh_token_from,
    set_auth_cookies,
)
from marketplace.core import security
from marketplace.models.schemas import (
    ActivationRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegistrationRequest,
    ResetPasswordRequest,
    SocialAuthRequest,
    VerifyOtpRequest,
)
from marketplace.services import auth_service
from marketplace.utils import public_user

router = APIRouter()


def _login_response(response: Response, tokens: dict) -> dict:
    set_auth_cookies(response, tokens["accessToken"], tokens["refreshToken"])
    return {"success": True, **tokens}


@router.post("/registration", status_code=status.HTTP_201_CREATED)
async def register(payload: RegistrationRequest, db=Depends(get_db), mailer=Depends(get_mailer)):
    token = await auth_service.register(
        db, mailer, payload.name, payload.email, payload.password, payload.confirmPassword
    )
    return {
        "success": True,
        "message": f"Please check your email: {payload.email} to activate your account!",
        "activationToken": token,
    }


@router.post("/activate-user", status_code=status.HTTP_201_CREATED)
async def activate_user(payload: ActivationRequest, db=Depends(get_db)):
    user = await auth_service.activate(db, payload.activation_token, payload.activation_code)
    return {"success": True, "user": public_user(user)}


@router.post("/login")
async def login(payload: LoginRequest, response: Response, db=Depends(get_db), cache=Depends(get_cache)):
    tokens = await auth_service.login(db, cache, payload.email, payload.password)
    return _login_response(response, tokens)


@router.post("/social-auth")
async def social_auth(payload: SocialAuthRequest, response: Response,
                      db=Depends(get_db), cache=Depends(get_cache)):
    tokens = await auth_service.social_auth(db, cache, payload.email, payload.name, payload.avatar)
    return _login_response(response, tokens)


@router.post("/refresh")
async def refresh(request: Request, response: Response, payload: Optional[RefreshTokenRequest] = None,
                  cache=Depends(get_cache)):
    token = (payload.refresh_token if payload else None) or refresh_token_from(request)
    session = await auth_service.refresh_session(cache, token)
    access_token = security.create_access_token(session["_id"])
    refresh_token = security.create_refresh_token(session["_id"])
    set_auth_cookies(response, access_token, refresh_token)
    return {"success": True, "accessToken": access_token, "refreshToken": refresh_token}


@router.get("/logout")
async def logout(response: Response, user=Depends(get_current_user), cache=Depends(get_cache)):
    await auth_service.logout(cache, user["_id"])
    response.delete_cookie(ACCESS_COOKIE)
    response.delete_cookie(REFRESH_COOKIE)
    return {"success": True, "message": "Logged out successfully"}


@router.post("/forgot-password")
async def forgot_password(payload: ForgotPasswordRequest, db=Depends(get_db), mailer=Depends(get_mailer)):
    token = await auth_service.forgot_password(db, mailer, payload.email)
    return {
        "success": True,
        "message": "Please check your email for the password reset code",
        "forgotToken": token,
    }


@router.post("/verify-otp")
async def verify_otp(payload: VerifyOtpRequest, db=Depends(get_db)):
    user_id, reset_token = await auth_service.verify_otp(db, payload.forgot_token, payload.forgot_code)
    return {"success": True, "userId": user_id, "resetToken": reset_token}


@router.post("/reset-password")
async def reset_password(payload: ResetPasswordRequest, db=Depends(get_db), cache=Depends(get_cache)):
    await auth_service.reset_password(db, cache, payload.reset_token, payload.newPassword)
    return {"success": True, "message": "Password reset successfully"}
