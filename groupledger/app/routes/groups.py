"""
routes/groups.py — Group registry and join-request creation route handlers.

Layer rules:
  - Parse, validate, call ONE service method, return envelope.
  - No business logic. No DB queries. No commits (services commit).

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups                  → 201  create group
  GET    /groups                  → 200  list caller's groups (full snapshots)
  POST   /groups/join             → 200  join by invite token
  GET    /groups/:id              → 200  group snapshot (members only)
  POST   /groups/:id/requests     → 201  invite a user by email
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.notifications import current_notifier
from groupledger.app.schemas.group_schema import (
    CreateGroupSchema,
    JoinByTokenSchema,
    SendJoinRequestSchema,
)
from groupledger.app.services.group_service import GroupRegistry
from groupledger.app.services.join_request_service import JoinRequestWorkflow

groups_bp = Blueprint("groups", __name__)


def _registry() -> GroupRegistry:
    return GroupRegistry(
        db.session,
        current_notifier(),
        invite_token_length=current_app.config.get("INVITE_TOKEN_LENGTH", 8),
    )


@groups_bp.route("/", methods=["POST"])
@require_auth
def create_group():
    """POST /groups — Create a group. Caller becomes creator and first member."""
    data = CreateGroupSchema().load(request.get_json(force=True) or {})
    result = _registry().create_group(g.identity, data["name"])
    return jsonify({"data": result, "warnings": []}), 201


@groups_bp.route("/", methods=["GET"])
@require_auth
def list_groups():
    """GET /groups — Snapshots of every group the caller belongs to."""
    result = _registry().list_groups_for_user(g.identity)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/join", methods=["POST"])
@require_auth
def join_by_token():
    """POST /groups/join — Join the group owning an invite token. Idempotent."""
    data = JoinByTokenSchema().load(request.get_json(force=True) or {})
    group_id = _registry().join_by_token(g.identity, data["token"])
    return jsonify({"data": {"group_id": group_id}, "warnings": []}), 200


@groups_bp.route("/<int:group_id>", methods=["GET"])
@require_auth
def get_group(group_id: int):
    """GET /groups/:id — Group snapshot. Caller must be a member."""
    result = _registry().get_group_snapshot(group_id, g.identity)
    return jsonify({"data": result, "warnings": []}), 200


@groups_bp.route("/<int:group_id>/requests", methods=["POST"])
@require_auth
def send_join_request(group_id: int):
    """POST /groups/:id/requests — Invite a registered user by email."""
    data = SendJoinRequestSchema().load(request.get_json(force=True) or {})
    workflow = JoinRequestWorkflow(db.session, current_notifier())
    result = workflow.send_request(group_id, data["email"], g.identity)
    return jsonify({"data": result, "warnings": []}), 201
