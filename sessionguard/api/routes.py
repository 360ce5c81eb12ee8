from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Request, Response

from sessionguard.api.error_handling import service_error_response
from sessionguard.api.schemas import (
    AuthResponse,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from sessionguard.logging import get_logger
from sessionguard.service.auth import SessionManager, TokenPair
from sessionguard.service.errors import AuthFailure, DependencyFailure
from sessionguard.service.runtime import Runtime
from sessionguard.storage.models import User

logger = get_logger(__name__)

router = APIRouter(prefix="/v1/auth", tags=["auth"])

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
_FORGOT_PASSWORD_MESSAGE = "If that email is registered, a reset link has been sent."


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


def get_manager(runtime: Runtime = Depends(get_runtime)) -> SessionManager:
    return runtime.manager


def _bearer_token(authorization: Optional[str], request: Request) -> Optional[str]:
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return request.cookies.get(ACCESS_COOKIE)


def _user_response(user: User) -> UserResponse:
    return UserResponse(id=user.id, email=user.email, name=user.name, created_at=user.created_at)


def _apply_token_cookies(response: Response, pair: TokenPair, runtime: Runtime) -> None:
    secure = runtime.settings.secure_cookies
    # Readable by the page so it can set the Authorization header itself
    response.set_cookie(
        ACCESS_COOKIE,
        pair.access_token,
        httponly=False,
        secure=secure,
        samesite="lax",
        max_age=runtime.signer.access_token_max_age(),
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        httponly=True,
        secure=secure,
        samesite="lax",
        max_age=runtime.signer.refresh_token_max_age(),
        path="/",
    )


def _clear_token_cookies(response: Response, runtime: Runtime) -> None:
    secure = runtime.settings.secure_cookies
    response.delete_cookie(ACCESS_COOKIE, path="/", secure=secure, samesite="lax")
    response.delete_cookie(
        REFRESH_COOKIE, path="/", secure=secure, httponly=True, samesite="lax"
    )


def _auth_envelope(pair: TokenPair) -> Envelope:
    return Envelope(
        status="ok",
        data=AuthResponse(
            user=_user_response(pair.user),
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            access_expires_at=pair.access_expires_at,
            refresh_expires_at=pair.refresh_expires_at,
        ),
    )


@router.post("/register", response_model=Envelope, status_code=201)
async def register(body: RegisterRequest, manager: SessionManager = Depends(get_manager)):
    """Create an account. Does not log the new user in.

    Raises:
        400: If the email, name or password is invalid
        409: If the email is already registered
    """
    user = await manager.register(body.email, body.password, body.name)
    return Envelope(status="ok", data=_user_response(user))


@router.post("/login", response_model=Envelope)
async def login(
    body: LoginRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Exchange email and password for an access token and a refresh token.

    Raises:
        401: If the credentials are invalid (unknown email or wrong password)
        503: If the user directory or token store is unavailable
    """
    pair = await runtime.manager.login(body.email, body.password)
    _apply_token_cookies(response, pair, runtime)
    return _auth_envelope(pair)


@router.post("/refresh", response_model=Envelope)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    runtime: Runtime = Depends(get_runtime),
):
    """Rotate the refresh token; the presented one is consumed.

    The token is read from the JSON body when given, otherwise from the
    HttpOnly cookie. Both cookies are cleared when rotation fails.
    """
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    try:
        pair = await runtime.manager.refresh(token or "")
    except AuthFailure as exc:
        failed = service_error_response(exc)
        _clear_token_cookies(failed, runtime)
        return failed
    _apply_token_cookies(response, pair, runtime)
    return _auth_envelope(pair)


@router.post("/logout", response_model=Envelope)
async def logout(
    request: Request,
    response: Response,
    body: Optional[LogoutRequest] = None,
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
):
    refresh_token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    access_token = _bearer_token(authorization, request)
    try:
        await runtime.manager.logout(refresh_token, access_token)
    except DependencyFailure as exc:
        failed = service_error_response(exc)
        _clear_token_cookies(failed, runtime)
        return failed
    _clear_token_cookies(response, runtime)
    return Envelope(status="ok", data=MessageResponse(message="logged out"))


@router.get("/me", response_model=Envelope)
async def me(
    request: Request,
    authorization: Optional[str] = Header(None),
    manager: SessionManager = Depends(get_manager),
):
    user = await manager.current_user(_bearer_token(authorization, request))
    return Envelope(status="ok", data=_user_response(user))


@router.post("/forgot-password", response_model=Envelope)
async def forgot_password(
    body: ForgotPasswordRequest,
    background_tasks: BackgroundTasks,
    manager: SessionManager = Depends(get_manager),
):
    """Request a password-reset email. The response never reveals whether the email exists."""
    await manager.forgot_password(body.email)
    background_tasks.add_task(manager.drain_notifications)
    return Envelope(status="ok", data=MessageResponse(message=_FORGOT_PASSWORD_MESSAGE))


@router.post("/reset-password", response_model=Envelope)
async def reset_password(
    body: ResetPasswordRequest,
    response: Response,
    runtime: Runtime = Depends(get_runtime),
):
    """Set a new password with a reset token; every session of the user is revoked.

    Raises:
        400: If the token is invalid or expired, or the password is rejected
    """
    await runtime.manager.reset_password(body.token, body.new_password)
    _clear_token_cookies(response, runtime)
    return Envelope(status="ok", data=MessageResponse(message="password has been reset"))
