"""
CSRF Protection - Anti-forgery tokens and origin checks

Module: security.csrf
Date: 2025-12-02
Version: 0.2.0

CHANGELOG:
[2025-12-02 v0.2.0] Session-bound validation
  - Header token compared against the session's csrf_token
  - Cookie/header fallback when no session token is supplied
  - Session cookie helpers

[2025-11-28 v0.1.0] Initial implementation
  - Double-submit cookie tokens
  - Constant-time comparison
  - Origin / Referer allow-list

ARCHITECTURE:
Two validation modes, used together by the HTTP middleware:
  1. Cookie/header: the non-HTTP-only CSRF cookie must be echoed in the
     x-csrf-token header
  2. Session-bound: the header must equal the csrf_token stored on the
     resolved session
Origin checking is a secondary, independent control.

SECURITY NOTES:
- GET and HEAD never require a token; OPTIONS additionally skips origin checks
- Token comparison runs in time independent of the first mismatch position
- Missing Origin/Referer is tolerated only in development
"""

import hmac
import ipaddress
import logging
import secrets
from typing import Iterable, Optional

from aiohttp import web
from yarl import URL

from ..core.constants import (
    CSRF_COOKIE_MAX_AGE,
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    DEFAULT_ADMIN_DOMAINS,
    LOCAL_DOMAIN_SUFFIX,
    LOOPBACK_HOSTS,
    ORIGIN_SAFE_METHODS,
    SAFE_METHODS,
    SESSION_COOKIE_NAME,
    TOKEN_BYTES,
)
from .authentication.session_manager import SessionManager, SessionSettings

logger = logging.getLogger("security.csrf")

CSRF_ERROR_MESSAGE = "CSRF token validation failed"
ORIGIN_ERROR_MESSAGE = "Request origin not allowed"


def generate_csrf_token() -> str:
    """256-bit random token, hex-encoded"""
    return secrets.token_hex(TOKEN_BYTES)


def constant_time_equals(expected: Optional[str], provided: Optional[str]) -> bool:
    """
    Compare two tokens without leaking the position of the first mismatch

    Missing tokens and tokens of different length fail without comparing.
    """
    if not expected or not provided:
        return False
    if len(expected) != len(provided):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), provided.encode("utf-8"))


def set_csrf_cookie(
    response: web.StreamResponse,
    token: Optional[str] = None,
    secure: bool = False,
    max_age: int = CSRF_COOKIE_MAX_AGE,
) -> str:
    """
    Set the CSRF cookie (readable by client scripts)

    Args:
        response: Outgoing response
        token: Token to set (generated if omitted)
        secure: Mark the cookie Secure (production)
        max_age: Cookie lifetime in seconds

    Returns:
        The token that was set
    """
    token = token or generate_csrf_token()
    response.set_cookie(
        CSRF_COOKIE_NAME,
        token,
        max_age=max_age,
        path="/",
        secure=secure,
        httponly=False,
        samesite="Strict",
    )
    return token


def set_session_cookie(
    response: web.StreamResponse,
    token: str,
    remember_me: bool = False,
    settings: Optional[SessionSettings] = None,
    secure: bool = False,
    duration_hours: Optional[float] = None,
) -> None:
    """
    Set the HTTP-only session cookie with a lifetime matching the session

    Args:
        response: Outgoing response
        token: Session token
        remember_me: Use the remember-me lifetime
        settings: Session settings (defaults when omitted)
        secure: Mark the cookie Secure (production)
        duration_hours: Effective session duration, as returned by
            SessionManager.session_duration_hours(); falls back to the
            settings default
    """
    settings = settings or SessionSettings()
    if remember_me:
        max_age = settings.remember_me_duration.total_seconds()
    elif duration_hours is not None:
        max_age = duration_hours * 3600
    else:
        max_age = settings.default_duration_hours * 3600
    response.set_cookie(
        SESSION_COOKIE_NAME,
        token,
        max_age=int(max_age),
        path="/",
        secure=secure,
        httponly=True,
        samesite="Strict",
    )


def clear_session_cookie(response: web.StreamResponse) -> None:
    response.del_cookie(SESSION_COOKIE_NAME, path="/")


def validate_csrf_token_sync(request: web.BaseRequest) -> bool:
    """
    Cookie/header validation (stateless)

    Returns:
        True for GET/HEAD, otherwise True only if the header echoes the cookie
    """
    if request.method.upper() in SAFE_METHODS:
        return True
    header_token = request.headers.get(CSRF_HEADER_NAME)
    cookie_token = request.cookies.get(CSRF_COOKIE_NAME)
    return constant_time_equals(cookie_token, header_token)


def csrf_error_response() -> web.Response:
    return web.json_response({"error": CSRF_ERROR_MESSAGE}, status=403)


def origin_error_response() -> web.Response:
    return web.json_response({"error": ORIGIN_ERROR_MESSAGE}, status=403)


def _is_private_ipv4(host: str) -> bool:
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return False
    return address.version == 4 and address.is_private


class CSRFManager:
    """
    Validates anti-forgery tokens and request origins.

    Typical usage (inside HTTP middleware):
        if not csrf.validate_origin(request):
            return origin_error_response()
        if not await csrf.validate_csrf_token(request, session_token):
            return csrf_error_response()
    """

    def __init__(
        self,
        session_manager: SessionManager,
        is_development: bool = True,
        admin_domains: Iterable[str] = DEFAULT_ADMIN_DOMAINS,
    ):
        """
        Initialize CSRF manager

        Args:
            session_manager: Resolves session tokens for session-bound checks
            is_development: Tolerate requests without Origin/Referer
            admin_domains: Extra host names accepted as origins
        """
        self.logger = logger
        self.session_manager = session_manager
        self.is_development = is_development
        self.admin_domains = frozenset(d.lower() for d in admin_domains)

    async def validate_csrf_token(
        self,
        request: web.BaseRequest,
        session_token: Optional[str] = None,
    ) -> bool:
        """
        Validate the request's CSRF header

        With a session token the header must match that session's
        csrf_token; without one, the cookie/header check applies.

        Args:
            request: Incoming request
            session_token: Token from the session cookie, if any

        Returns:
            True if the request may proceed
        """
        if request.method.upper() in SAFE_METHODS:
            return True

        header_token = request.headers.get(CSRF_HEADER_NAME)
        if not header_token:
            self.logger.warning(f"CSRF header missing: {request.method} {request.path}")
            return False

        if session_token:
            session = await self.session_manager.get_session(session_token)
            if session is None:
                self.logger.warning(f"CSRF check against unknown session: {request.path}")
                return False
            valid = constant_time_equals(session.csrf_token, header_token)
        else:
            valid = validate_csrf_token_sync(request)

        if not valid:
            self.logger.warning(f"CSRF token mismatch: {request.method} {request.path}")
        return valid

    def validate_origin(self, request: web.BaseRequest) -> bool:
        """
        Check the Origin (or Referer) header against the allow-list

        Returns:
            True if the origin is allowed
        """
        if request.method.upper() in ORIGIN_SAFE_METHODS:
            return True

        origin = request.headers.get("Origin")
        if not origin:
            referer = request.headers.get("Referer")
            if referer:
                try:
                    url = URL(referer)
                    if url.is_absolute():
                        origin = str(url.origin())
                except ValueError:
                    self.logger.warning(f"Malformed Referer rejected: {request.path}")
                    return False

        if not origin:
            if not self.is_development:
                self.logger.warning(f"Request without origin rejected: {request.path}")
            return self.is_development

        allowed = self.is_allowed_origin(origin)
        if not allowed:
            self.logger.warning(f"Origin not allowed: {origin}")
        return allowed

    def is_allowed_origin(self, origin: str) -> bool:
        """True if origin's host is loopback, local network or an admin domain"""
        try:
            url = URL(origin)
            host = (url.host or "").lower().strip("[]")
        except ValueError:
            return False
        if not host or url.scheme not in ("http", "https"):
            return False

        return (
            host in LOOPBACK_HOSTS
            or host.endswith(LOCAL_DOMAIN_SUFFIX)
            or host in self.admin_domains
            or _is_private_ipv4(host)
        )
