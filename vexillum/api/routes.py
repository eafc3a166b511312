from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from vexillum.api.schemas import (
    AuthResponse,
    Envelope,
    LoginRequest,
    MagicLinkRequest,
    MagicLinkVerifyRequest,
    MessageResponse,
    PublicKeyResponse,
    RegisterRequest,
    UserResponse,
)
from vexillum.api.transport import clear_refresh_cookie, set_refresh_cookie
from vexillum.logging import get_correlation_id, get_logger
from vexillum.service.auth import IssuedTokens
from vexillum.service.errors import InternalError, RateLimitedError
from vexillum.service.principal import Principal
from vexillum.service.runtime import check_rate_limit, get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])

RATE_LIMIT_WINDOW_SECONDS = 60
MAGIC_LINK_SENT_MESSAGE = "Magic link sent to email"


def _ok(data: Any) -> Envelope:
    envelope = Envelope(status="ok", data=data)
    if get_correlation_id():
        envelope.request_id = get_correlation_id()
    return envelope


async def _enforce_rate_limit(runtime, key: str, limit: int) -> None:
    allowed, retry_after = await check_rate_limit(
        runtime, key, limit, RATE_LIMIT_WINDOW_SECONDS
    )
    if not allowed:
        logger.warning("rate_limited", bucket=key.split(":", 1)[0], retry_after=retry_after)
        raise RateLimitedError("rate limit exceeded", detail={"retry_after": retry_after})


def _auth_payload(response: Response, issued: IssuedTokens) -> AuthResponse:
    if issued.refresh_token:
        set_refresh_cookie(response, issued.refresh_token, max_age=issued.refresh_ttl_seconds)
    return AuthResponse(access_token=issued.access_token, expires_in=issued.access_ttl_seconds)


async def get_principal(authorization: Optional[str] = Header(None)) -> Principal:
    return get_runtime().principals.from_authorization(authorization)


async def get_refresh_principal(request: Request) -> Principal:
    return get_runtime().principals.from_cookie(request.cookies)


@router.post("/login", response_model=Envelope)
async def login(body: LoginRequest, response: Response):
    """Exchange email and password for an access token and a refresh cookie.

    ``remember_me`` selects the long-lived refresh token class.
    """
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, f"login:{body.email}", runtime.settings.login_rate_limit_per_minute
    )
    issued = await runtime.auth.login(body.email, body.password, remember_me=body.remember_me)
    return _ok(_auth_payload(response, issued))


@router.post("/register", response_model=Envelope, status_code=201)
async def register(body: RegisterRequest, response: Response):
    runtime = get_runtime()
    issued = await runtime.auth.register(body.email, body.password)
    return _ok(_auth_payload(response, issued))


@router.post("/magic-link/request", response_model=Envelope)
async def request_magic_link(body: MagicLinkRequest):
    """Issue a sign-in link; the response never reveals whether the email is known."""
    runtime = get_runtime()
    await _enforce_rate_limit(
        runtime, f"magic_link:{body.email}", runtime.settings.magic_link_rate_limit_per_minute
    )
    await runtime.auth.request_magic_link(body.email)
    return _ok(MessageResponse(message=MAGIC_LINK_SENT_MESSAGE))


@router.post("/magic-link/verify", response_model=Envelope)
async def verify_magic_link(body: MagicLinkVerifyRequest, response: Response):
    runtime = get_runtime()
    issued = await runtime.auth.verify_magic_link(body.token)
    return _ok(_auth_payload(response, issued))


@router.post("/refresh", response_model=Envelope)
async def refresh(principal: Principal = Depends(get_refresh_principal)):
    issued = get_runtime().auth.refresh(principal)
    # refresh token is not rotated, so the cookie is left as is
    return _ok(
        AuthResponse(access_token=issued.access_token, expires_in=issued.access_ttl_seconds)
    )


@router.post("/logout", response_model=Envelope)
async def logout(response: Response):
    clear_refresh_cookie(response)
    return _ok(MessageResponse(message="Successfully logged out"))


@router.get("/me", response_model=Envelope)
async def me(principal: Principal = Depends(get_principal)):
    user = get_runtime().auth.current_user(principal)
    return _ok(UserResponse(**user.public_dict()))


@router.get("/keys", response_model=Envelope)
async def public_keys():
    """Public verification key (PEM) for services that validate tokens locally."""
    pem = get_runtime().tokens.public_key_pem
    try:
        public_key = pem.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InternalError("Invalid public key format") from exc
    return _ok(PublicKeyResponse(public_key=public_key))
