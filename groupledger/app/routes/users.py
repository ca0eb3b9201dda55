"""
routes/users.py — Profile and device token route handlers.

Endpoints (base url_prefix=/api/v1/users):
  GET    /users/me                → 200  caller's profile
  PATCH  /users/me                → 200  update full name and/or IBAN
  PUT    /users/me/device-token   → 200  store the push token
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.schemas.user_schema import DeviceTokenSchema, UpdateProfileSchema
from groupledger.app.services.user_service import UserService

users_bp = Blueprint("users", __name__)


@users_bp.route("/me", methods=["GET"])
@require_auth
def get_me():
    result = UserService(db.session).get_profile(g.identity)
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/me", methods=["PATCH"])
@require_auth
def update_me():
    data = UpdateProfileSchema().load(request.get_json(force=True) or {})
    result = UserService(db.session).update_profile(
        g.identity,
        full_name=data.get("full_name"),
        iban=data.get("iban"),
    )
    return jsonify({"data": result, "warnings": []}), 200


@users_bp.route("/me/device-token", methods=["PUT"])
@require_auth
def save_device_token():
    data = DeviceTokenSchema().load(request.get_json(force=True) or {})
    UserService(db.session).save_device_token(g.identity, data["token"])
    return jsonify({"data": {"saved": True}, "warnings": []}), 200
