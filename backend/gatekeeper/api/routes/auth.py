"""Authentication endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gatekeeper.core.config import Settings
from gatekeeper.core.dependencies import (
    get_app_settings,
    get_current_identity,
    get_db,
    get_notifier,
    get_oauth_client,
    get_oauth_state_signer,
    get_recovery_tokens,
    get_secret_manager,
    get_session_tokens,
)
from gatekeeper.core.exceptions import InvalidOrExpiredToken, OAuthError, UserNotFound
from gatekeeper.core.security import OAuthStateSigner, RecoveryTokenService, SecretManager, SessionTokenService
from gatekeeper.schemas.auth import (
    AuthResponse,
    AuthStatus,
    IdentityRead,
    LoginRequest,
    MessageResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    RegisterRequest,
    RegisterResponse,
    TokenVerification,
)
from gatekeeper.schemas.rbac import PermissionRef, RoleRef
from gatekeeper.schemas.user import UserRead
from gatekeeper.services import auth as auth_service
from gatekeeper.services import password_reset
from gatekeeper.services.notifications import NotificationError, NotificationProvider
from gatekeeper.services.oauth import GoogleOAuthClient
from gatekeeper.services.permissions import ResolvedAccess
from gatekeeper.services.users import users_exist

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

OAUTH_NONCE_COOKIE = "gatekeeper_oauth_nonce"
OAUTH_COOKIE_PATH = "/api/auth/google"


@router.get("/status", response_model=AuthStatus)
async def auth_status(session: AsyncSession = Depends(get_db)) -> AuthStatus:
    return AuthStatus(has_users=await users_exist(session))


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    session: AsyncSession = Depends(get_db),
    tokens: SessionTokenService = Depends(get_session_tokens),
) -> AuthResponse:
    result = await auth_service.login(session, payload.email, payload.password, tokens)
    return AuthResponse(user=UserRead.model_validate(result.user), token=result.token)


@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(
    payload: RegisterRequest,
    session: AsyncSession = Depends(get_db),
    tokens: SessionTokenService = Depends(get_session_tokens),
    notifier: NotificationProvider = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
) -> RegisterResponse:
    result = await auth_service.register(session, payload, tokens, settings)
    await session.commit()

    response = RegisterResponse(user=UserRead.model_validate(result.user), token=result.token)
    if result.generated_password:
        response.generated_password = result.generated_password
        try:
            await auth_service.send_welcome_email(
                notifier, result.user.email, result.generated_password, settings
            )
            response.password_message = "An email with the temporary password has been sent to the user"
        except NotificationError:
            # The account exists either way; the caller still holds the password.
            logger.warning("Welcome email for user %s was not delivered", result.user.id)
            response.password_message = "The temporary password could not be emailed; deliver it manually"
    return response


@router.post("/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    auth_service.logout()
    return MessageResponse(message="Signed out")


@router.get("/me", response_model=IdentityRead)
async def get_current_identity_info(access: ResolvedAccess = Depends(get_current_identity)) -> IdentityRead:
    return IdentityRead(
        user_id=access.user_id,
        email=access.email,
        role=RoleRef.model_validate(access.role) if access.role else None,
        permissions=[PermissionRef.model_validate(permission) for permission in access.permissions],
    )


@router.get("/google")
async def google_login(
    request: Request,
    oauth_client: GoogleOAuthClient = Depends(get_oauth_client),
    signer: OAuthStateSigner = Depends(get_oauth_state_signer),
) -> RedirectResponse:
    nonce = signer.new_nonce()
    response = RedirectResponse(oauth_client.authorization_url(signer.dumps(nonce)))
    response.set_cookie(
        OAUTH_NONCE_COOKIE,
        nonce,
        max_age=signer.max_age,
        path=OAUTH_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=request.url.scheme == "https",
    )
    return response


def _google_redirect(url: str) -> RedirectResponse:
    response = RedirectResponse(url)
    # The nonce is single-use; drop it whatever the outcome.
    response.delete_cookie(OAUTH_NONCE_COOKIE, path=OAUTH_COOKIE_PATH)
    return response


@router.get("/google/callback")
async def google_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    nonce: str | None = Cookie(default=None, alias=OAUTH_NONCE_COOKIE),
    session: AsyncSession = Depends(get_db),
    tokens: SessionTokenService = Depends(get_session_tokens),
    secret_manager: SecretManager = Depends(get_secret_manager),
    oauth_client: GoogleOAuthClient = Depends(get_oauth_client),
    signer: OAuthStateSigner = Depends(get_oauth_state_signer),
    settings: Settings = Depends(get_app_settings),
) -> RedirectResponse:
    login_url = f"{settings.frontend_url}/login"
    if error or not code or not state or not signer.verify(state, nonce):
        logger.info("Google sign-in aborted: %s", error or "missing code or state mismatch")
        return _google_redirect(login_url)

    try:
        profile = await oauth_client.exchange_code(code)
    except OAuthError as exc:
        logger.warning("Google sign-in failed: %s", exc.detail)
        return _google_redirect(login_url)

    result = await auth_service.oauth_login(session, profile, oauth_client.provider, tokens, secret_manager)
    await session.commit()
    return _google_redirect(f"{settings.frontend_url}/home?token={result.token}")


@router.post("/request-reset", response_model=MessageResponse)
async def request_password_reset(
    payload: PasswordResetRequest,
    session: AsyncSession = Depends(get_db),
    recovery_tokens: RecoveryTokenService = Depends(get_recovery_tokens),
    notifier: NotificationProvider = Depends(get_notifier),
    settings: Settings = Depends(get_app_settings),
) -> MessageResponse:
    try:
        await password_reset.request_reset(session, payload.email, recovery_tokens, notifier, settings)
    except NotificationError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Reset email could not be sent") from exc
    return MessageResponse(message="A reset link has been sent to the email address")


@router.get("/verify-token/{token}", response_model=TokenVerification)
async def verify_reset_token(
    token: str,
    session: AsyncSession = Depends(get_db),
    recovery_tokens: RecoveryTokenService = Depends(get_recovery_tokens),
) -> TokenVerification | JSONResponse:
    try:
        await password_reset.verify(session, token, recovery_tokens)
    except (InvalidOrExpiredToken, UserNotFound) as exc:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=TokenVerification(valid=False, message=exc.detail).model_dump(),
        )
    return TokenVerification(valid=True, message="Token is valid")


@router.post("/reset-password", response_model=MessageResponse)
async def reset_password(
    payload: PasswordResetConfirm,
    session: AsyncSession = Depends(get_db),
    recovery_tokens: RecoveryTokenService = Depends(get_recovery_tokens),
) -> MessageResponse:
    try:
        await password_reset.reset_password(session, payload.token, payload.new_password, recovery_tokens)
    except (InvalidOrExpiredToken, UserNotFound) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.detail) from exc
    return MessageResponse(message="Password updated")
