"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create an account; 201 with sanitized profile
  POST /api/v1/auth/login            -- email/password login; access + refresh tokens
  POST /api/v1/auth/refresh          -- exchange a refresh token for a new access token
  POST /api/v1/auth/logout           -- revoke a refresh token; always 200
  GET  /api/v1/auth/validate         -- verify the Bearer access token; returns claims
  POST /api/v1/auth/change-password  -- requires Bearer; revokes every refresh token
  POST /api/v1/auth/verify-email     -- consume an email verification token
  POST /api/v1/auth/resend-verification -- issue a new verification token; always 200

Security:
  POST /login, /register and /resend-verification are rate-limited per client IP.
  Login failures always return the same invalid_credentials envelope.
  Cache-Control: no-store on every response that carries a token.

Errors: handlers let AuthError propagate; api/main.py maps it onto the
ErrorResponse envelope using the error's code and status_code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.limiter import limiter, login_limit, register_limit
from api.models import (
    ChangePasswordBody,
    ClaimsResponse,
    LoginBody,
    LogoutBody,
    MessageResponse,
    RefreshBody,
    RegisterBody,
    ResendVerificationBody,
    TokenResponse,
    UserProfileResponse,
    VerifyEmailBody,
    VerifyEmailResponse,
)
from auth.dependencies import get_auth_service, get_current_claims
from auth.models import Claims, RegisterRequest
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/auth/register:         public, rate limited
# - POST /api/v1/auth/login:            public, rate limited
# - POST /api/v1/auth/refresh:          public -- the refresh token is the credential
# - POST /api/v1/auth/logout:           public -- revoking a token needs no prior auth
# - GET  /api/v1/auth/validate:         requires Bearer access token
# - POST /api/v1/auth/change-password:  requires Bearer access token
# - POST /api/v1/auth/verify-email:     public -- the verification token is the credential
# - POST /api/v1/auth/resend-verification: public, rate limited
router = APIRouter()


@limiter.limit(register_limit)
@router.post("/auth/register", response_model=UserProfileResponse, status_code=201)
async def register(
    request: Request,
    body: RegisterBody,
    service: AuthService = Depends(get_auth_service),
) -> UserProfileResponse:
    """Create an account. Returns the profile without any credential material."""
    profile = await service.register(
        RegisterRequest(
            email=body.email,
            user_name=body.user_name,
            password=body.password,
            confirm_password=body.confirm_password,
            first_name=body.first_name,
            last_name=body.last_name,
        )
    )
    return UserProfileResponse.from_profile(profile)


@limiter.limit(login_limit)
@router.post("/auth/login", response_model=TokenResponse)
async def login(
    request: Request,
    response: Response,
    body: LoginBody,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the identical 401
    invalid_credentials response.
    """
    tokens = await service.login(body.email, body.password)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse.from_tokens(tokens, service.clock())


@router.post("/auth/refresh", response_model=TokenResponse)
async def refresh(
    response: Response,
    body: RefreshBody,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """Issue a new access token. With rotation enabled the refresh token is replaced too."""
    tokens = await service.refresh(body.refresh_token)
    response.headers["Cache-Control"] = "no-store"
    return TokenResponse.from_tokens(tokens, service.clock())


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(
    body: LogoutBody,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Revoke a refresh token. Responds identically for unknown or already revoked tokens."""
    await service.logout(body.token)
    return MessageResponse(message="Logged out.")


@router.get("/auth/validate", response_model=ClaimsResponse)
async def validate(claims: Claims = Depends(get_current_claims)) -> ClaimsResponse:
    """Return the verified claims of the Bearer access token."""
    return ClaimsResponse.from_claims(claims)


@router.post("/auth/change-password", response_model=MessageResponse)
async def change_password(
    body: ChangePasswordBody,
    claims: Claims = Depends(get_current_claims),
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Change the caller's password and sign out every refresh session."""
    await service.change_password(claims.user_id, body.old_password, body.new_password)
    return MessageResponse(message="Password changed. All sessions have been signed out.")


@router.post("/auth/verify-email", response_model=VerifyEmailResponse)
async def verify_email(
    body: VerifyEmailBody,
    service: AuthService = Depends(get_auth_service),
) -> VerifyEmailResponse:
    """Mark the token owner's email verified. The token is single use."""
    profile = await service.verify_email(body.token)
    return VerifyEmailResponse(message="Email verified.", user_id=profile.id)


@limiter.limit(register_limit)
@router.post("/auth/resend-verification", response_model=MessageResponse)
async def resend_verification(
    request: Request,
    body: ResendVerificationBody,
    service: AuthService = Depends(get_auth_service),
) -> MessageResponse:
    """Send a new verification token. Responds identically for unknown and verified accounts."""
    await service.resend_verification(body.email)
    return MessageResponse(message="If the account exists and is unverified, a verification email has been sent.")
