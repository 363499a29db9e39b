"""Auth API router — register, login, tokens, password and email flows."""

from fastapi import APIRouter, Depends, Request, status

from usermgmt.api.deps import get_auth_service
from usermgmt.core.config import settings
from usermgmt.core.guard import Principal
from usermgmt.core.rate_limiter import limiter
from usermgmt.core.security import get_current_principal, get_permission_graph
from usermgmt.schemas.schemas import (
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    TokenResponse,
    UserOut,
    VerifyEmailRequest,
)
from usermgmt.services.auth_service import AuthService
from usermgmt.services.permission_service import PermissionGraph
from usermgmt.services.user_service import serialize_user

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/register", response_model=UserOut, status_code=status.HTTP_201_CREATED)
@limiter.limit(settings.RATE_LIMIT_REGISTRATION)
async def register(
    request: Request,
    body: RegisterRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Register a new account with the default role."""
    user = auth.register(body.email, body.password, body.full_name)
    return serialize_user(user)


@router.post("/login", response_model=TokenResponse)
@limiter.limit(settings.RATE_LIMIT_AUTH)
async def login(
    request: Request,
    body: LoginRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Authenticate and return JWT tokens."""
    return auth.authenticate(body.email, body.password)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(body: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    """Exchange a refresh token for a new token pair."""
    return auth.refresh(body.refresh_token)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    principal: Principal = Depends(get_current_principal),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke all refresh tokens."""
    auth.logout(principal.id)
    return MessageResponse(message="Logged out successfully")


@router.get("/me")
async def get_me(
    principal: Principal = Depends(get_current_principal),
    auth: AuthService = Depends(get_auth_service),
    graph: PermissionGraph = Depends(get_permission_graph),
):
    """Current user plus the permissions held through their role."""
    user = auth.users.get(principal.id)
    data = serialize_user(user)
    data["permissions"] = sorted(f"{r}:{a}" for r, a in graph.get_permissions(principal.role))
    return data


@router.post("/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(principal.id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed; please log in again")


@router.post("/forgot-password", response_model=MessageResponse)
@limiter.limit(settings.RATE_LIMIT_PASSWORD_RESET)
async def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
):
    """Always succeeds so account existence is not disclosed."""
    auth.forgot_password(body.email)
    return MessageResponse(message="If the account exists, a reset code has been sent")


@router.post("/reset-password", response_model=MessageResponse)
@limiter.limit(settings.RATE_LIMIT_PASSWORD_RESET)
async def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    auth: AuthService = Depends(get_auth_service),
):
    auth.reset_password(body.token, body.new_password)
    return MessageResponse(message="Password has been reset")


@router.post("/verify-email", response_model=MessageResponse)
async def verify_email(body: VerifyEmailRequest, auth: AuthService = Depends(get_auth_service)):
    auth.verify_email(body.token)
    return MessageResponse(message="Email verified")


@router.post("/resend-verification", response_model=MessageResponse)
async def resend_verification(
    principal: Principal = Depends(get_current_principal),
    auth: AuthService = Depends(get_auth_service),
):
    auth.resend_verification(principal.id)
    return MessageResponse(message="Verification code sent")
