"""
auth/dependencies.py -- FastAPI Depends() helpers and cookie transport.

Tokens are read from, in priority order:
  1. Cookies "access_token" / "refresh_token" -- set by login/register.
  2. Authorization: Bearer <access> plus X-Refresh-Token: <refresh> -- for
     other services and API clients that do not keep cookies.

Whenever verification rotates the pair (access expired, refresh still valid),
the new pair MUST reach the client, over the same transport it arrived on:
set_token_cookies() for cookie clients, set_token_headers() (X-Access-Token +
X-Refresh-Token response headers) for header clients. Tokens are never mirrored
into headers for cookie clients, which would hand them to page scripts.

Cookie lifetime: both cookies live for the refresh TTL. The server enforces
the short access expiry itself; if the browser dropped the access cookie at
its TTL, the rotation step would have no claims to recover identity from.

Layer rule: auth/dependencies.py may import from fastapi (for Request/Response)
because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request, Response

from auth.errors import Unauthenticated
from auth.models import Identity, TokenPair, VerificationResult
from core.config import Settings

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
REFRESH_HEADER = "X-Refresh-Token"
ROTATED_ACCESS_HEADER = "X-Access-Token"


def read_token_pair(request: Request) -> tuple[str | None, str | None]:
    """Return (access, refresh) from cookies, falling back to headers."""
    access: str | None = request.cookies.get(ACCESS_COOKIE)
    if not access:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            access = auth_header[7:]
    refresh: str | None = request.cookies.get(REFRESH_COOKIE) or request.headers.get(REFRESH_HEADER)
    return access or None, refresh or None


def set_token_cookies(response: Response, pair: TokenPair, settings: Settings) -> None:
    """Write both tokens as httpOnly cookies on the response.

    httponly=True: JS cannot read the cookies (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (production).
    domain: COOKIE_DOMAIN lets sibling services on subdomains share the session.
    """
    for name, value in ((ACCESS_COOKIE, pair.access), (REFRESH_COOKIE, pair.refresh)):
        response.set_cookie(
            name,
            value=value,
            httponly=True,
            samesite="lax",
            secure=settings.secure_cookies,
            domain=settings.cookie_domain or None,
            max_age=settings.refresh_token_ttl_seconds,
            path="/",
        )
    response.headers["Cache-Control"] = "no-store"


def set_token_headers(response: Response, pair: TokenPair) -> None:
    """Hand a rotated pair back to a header-based client."""
    response.headers[ROTATED_ACCESS_HEADER] = pair.access
    response.headers[REFRESH_HEADER] = pair.refresh
    response.headers["Cache-Control"] = "no-store"


def clear_token_cookies(response: Response, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, domain=settings.cookie_domain or None, path="/")


def verify_request(request: Request) -> VerificationResult:
    """Run the token state machine on the request's tokens. Never raises."""
    access, refresh = read_token_pair(request)
    return request.app.state.token_verifier.verify(access, refresh)


def get_current_identity(request: Request, response: Response) -> Identity:
    """Require an authenticated session. Raises Unauthenticated (HTTP 401).

    Use as a FastAPI dependency on routes that return data (not a Response),
    so the rotated cookies set on `response` are merged into the reply:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    result = verify_request(request)
    if not result.authenticated:
        raise Unauthenticated()
    if result.pair is not None:
        hand_back_rotated_pair(request, response, result.pair)
    return result.identity


def hand_back_rotated_pair(request: Request, response: Response, pair: TokenPair) -> None:
    if request.cookies.get(ACCESS_COOKIE) or request.cookies.get(REFRESH_COOKIE):
        set_token_cookies(response, pair, request.app.state.settings)
    else:
        set_token_headers(response, pair)
