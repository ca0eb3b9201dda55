"""
middleware/auth_middleware.py — Bearer-token identity decorators.

Tokens are issued by the external identity provider and signed with
IDENTITY_SECRET_KEY. This service never issues tokens; it only verifies them.

@require_identity_token
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Decodes and verifies the JWT (signature, expiry, optional issuer)
  3. Attaches the verified claims to flask.g.claims as {"user_id", "email"}
  Used only by POST /auth/session, where the user may not exist yet.

@require_auth
  Everything @require_identity_token does, then resolves the claims against
  the users table and attaches an Identity to flask.g.identity.

Strict responsibility boundary:
  - Middleware = authentication (401) and identity consistency (403
    IDENTITY_MISMATCH). Group-level authorization happens in services.
  - Services receive the Identity as an argument, never flask.g.

Error codes:
  TOKEN_MISSING        (401) — no Authorization header
  TOKEN_INVALID        (401) — malformed header, bad signature, missing claims
  TOKEN_EXPIRED        (401) — valid token but exp claim is in the past
  USER_NOT_REGISTERED  (401) — token is fine but no users row exists yet
  IDENTITY_MISMATCH    (403) — token email differs from the registered email
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.extensions import db
from groupledger.app.services.user_service import resolve_identity


def require_identity_token(f: Callable) -> Callable:
    """
    Route decorator that verifies the bearer token only.

    Attaches {"user_id": str, "email": str} to flask.g.claims.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        g.claims = _verify_bearer_token()
        return f(*args, **kwargs)

    return decorated


def require_auth(f: Callable) -> Callable:
    """
    Route decorator that enforces a verified, registered identity.

    Usage:
        @groups_bp.route("/", methods=["GET"])
        @require_auth
        def list_groups():
            identity = g.identity  # always an Identity when this runs
            ...
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        _authenticate_request()
        return f(*args, **kwargs)

    return decorated


def _authenticate_request() -> None:
    """
    Verifies the token and sets flask.g.claims and flask.g.identity.

    Raises AppError on any failure; the global error handler renders it.
    """
    claims = _verify_bearer_token()
    g.claims = claims
    g.identity = resolve_identity(claims["user_id"], claims["email"], db.session)


def _verify_bearer_token() -> dict:
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    raw_token = parts[1]

    # ── Step 3: Decode and verify the JWT ─────────────────────────────────
    issuer = current_app.config.get("IDENTITY_ISSUER") or None
    try:
        payload = jwt.decode(
            raw_token,
            current_app.config["IDENTITY_SECRET_KEY"],
            algorithms=[current_app.config.get("IDENTITY_ALGORITHM", "HS256")],
            issuer=issuer,
            options={"require": ["exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The identity token has expired. Sign in again.",
            401,
        )
    except jwt.InvalidTokenError:
        # Covers: bad signature, malformed token, wrong issuer, missing exp.
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The identity token is invalid or has been tampered with.",
            401,
        )

    # ── Step 4: Extract the user id and email claims ──────────────────────
    user_id = payload.get("uid") or payload.get("sub")
    email = payload.get("email")

    if not isinstance(user_id, str) or not user_id:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The identity token is missing the 'uid' or 'sub' claim.",
            401,
        )
    if not isinstance(email, str) or "@" not in email:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The identity token is missing a valid 'email' claim.",
            401,
        )

    return {"user_id": user_id, "email": email}
