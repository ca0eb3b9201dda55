"""
routes/auth.py — Session registration route handler.

Tokens are issued by the external identity provider. This endpoint is the
only one that accepts a valid token for a user that is not registered yet:
it creates the users row on first login and checks the email on later ones.

Endpoints (base url_prefix=/api/v1/auth):
  POST   /auth/session  → 200  register or confirm the caller; returns profile
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_identity_token
from groupledger.app.schemas.user_schema import SessionSchema
from groupledger.app.services.user_service import UserService

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/session", methods=["POST"])
@require_identity_token
def register_session():
    """POST /auth/session — First-login upsert from the verified token claims."""
    data = SessionSchema().load(request.get_json(silent=True) or {})
    result = UserService(db.session).register_session(
        user_id=g.claims["user_id"],
        email=g.claims["email"],
        full_name=data.get("full_name"),
        iban=data.get("iban"),
    )
    return jsonify({"data": result, "warnings": []}), 200
