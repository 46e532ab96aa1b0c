"""
api/routes/v1/auth.py -- Authentication and session REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; sets token cookies
  POST /api/v1/auth/login            -- password login; sets token cookies
  POST /api/v1/auth/change-password  -- verify old password, store new one
  POST /api/v1/auth/reset-password   -- generate + deliver a new password
  POST /api/v1/auth/session          -- verify the token pair; rotates it when needed
  GET  /api/v1/auth/me               -- current identity (cookie or header tokens)
  POST /api/v1/auth/logout           -- clears cookies

Errors are raised as auth.errors.AuthError subclasses and rendered by the
handler in api/main.py, so every route maps failures the same way.

Security:
  [E1] Login answers unknown e-mail and wrong password with the same 401.
  [T1] Cache-Control: no-store on every response that carries tokens.
  Handlers that call bcrypt are plain `def` so FastAPI runs them in the
  threadpool; hashing never blocks the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    ChangePasswordRequest,
    IdentityResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import (
    clear_token_cookies,
    get_current_identity,
    hand_back_rotated_pair,
    set_token_cookies,
    verify_request,
)
from auth.errors import Unauthenticated
from auth.models import Identity, TokenPair
from auth.service import AuthService

# Auth policy:
# - POST /auth/register, /auth/login, /auth/reset-password: public
# - POST /auth/change-password: public -- proves identity with the old password
# - POST /auth/session, GET /auth/me: token pair required
# - POST /auth/logout: public -- clearing cookies needs no prior auth
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _token_response(request: Request, identity: Identity, pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(status_code=200, content=IdentityResponse.from_identity(identity).model_dump())
    set_token_cookies(resp, pair, request.app.state.settings)  # sets no-store [T1]
    return resp


# ---------------------------------------------------------------------------
# Password endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=IdentityResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a new account and start a session.

    409 user_exists if the e-mail is already registered.
    """
    identity, pair = _service(request).register(body.email, body.password)
    return _token_response(request, identity, pair)


@router.post("/auth/login", response_model=IdentityResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with e-mail and password; set token cookies.

    Returns the same generic error for unknown e-mail and wrong password
    (invalid_credentials) to avoid leaking account existence [E1].
    """
    identity, pair = _service(request).login(body.email, body.password)
    return _token_response(request, identity, pair)


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(request: Request, body: ChangePasswordRequest) -> MessageResponse:
    _service(request).change_password(body.email, body.previous_password, body.new_password)
    return MessageResponse(message="password changed successfully")


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Replace the password with a generated one and send it to the user."""
    _service(request).reset_password(body.email)
    return MessageResponse(message="new password sent")


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/session", response_model=IdentityResponse)
def check_session(request: Request) -> JSONResponse:
    """Verify the presented token pair.

    200 with the identity when the access token is valid, or when it expired
    but the refresh token is still good -- in that case a brand-new pair is
    set on the response. 401 unauthenticated otherwise.
    """
    result = verify_request(request)
    if not result.authenticated:
        raise Unauthenticated()
    resp = JSONResponse(status_code=200, content=IdentityResponse.from_identity(result.identity).model_dump())
    if result.pair is not None:
        hand_back_rotated_pair(request, resp, result.pair)
    return resp


@router.get("/auth/me", response_model=IdentityResponse)
def me(identity: Identity = Depends(get_current_identity)) -> IdentityResponse:
    """Return the identity behind the current session."""
    return IdentityResponse.from_identity(identity)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Clear the token cookies and end the session on this client.

    There is no server-side revocation: a copied refresh token stays valid
    until it expires.
    """
    resp = JSONResponse(content=MessageResponse(message="success logout").model_dump())
    clear_token_cookies(resp, request.app.state.settings)
    return resp
