"""
routes/join_requests.py — Join request listing and resolution.

Endpoints (base url_prefix=/api/v1/requests):
  GET    /requests                 → 200  requests addressed to the caller
                                          (?status=pending|accepted|rejected)
  POST   /requests/:id/accept      → 200  accept; caller joins the group
  POST   /requests/:id/reject      → 200  reject
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.errors import AppError, ErrorCode
from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.models.join_request import JoinRequestStatus
from groupledger.app.notifications import current_notifier
from groupledger.app.services.join_request_service import JoinRequestWorkflow

join_requests_bp = Blueprint("join_requests", __name__)


def _workflow() -> JoinRequestWorkflow:
    return JoinRequestWorkflow(db.session, current_notifier())


@join_requests_bp.route("/", methods=["GET"])
@require_auth
def list_my_requests():
    """GET /requests — Requests addressed to the caller, newest first."""
    status_param = request.args.get("status")
    status = None

    if status_param is not None:
        try:
            status = JoinRequestStatus(status_param)
        except ValueError:
            raise AppError(
                ErrorCode.INVALID_FIELD,
                f"'{status_param}' is not a valid status. "
                f"Valid values: {', '.join(s.value for s in JoinRequestStatus)}.",
                400,
                field="status",
            )

    result = _workflow().list_my_requests(g.identity, status=status)
    return jsonify({"data": result, "warnings": []}), 200


@join_requests_bp.route("/<int:request_id>/accept", methods=["POST"])
@require_auth
def accept_request(request_id: int):
    """POST /requests/:id/accept — Only the invited user may accept."""
    _workflow().accept(request_id, g.identity)
    return jsonify({
        "data": {"id": request_id, "status": JoinRequestStatus.ACCEPTED.value},
        "warnings": [],
    }), 200


@join_requests_bp.route("/<int:request_id>/reject", methods=["POST"])
@require_auth
def reject_request(request_id: int):
    """POST /requests/:id/reject — Only the invited user may reject."""
    _workflow().reject(request_id, g.identity)
    return jsonify({
        "data": {"id": request_id, "status": JoinRequestStatus.REJECTED.value},
        "warnings": [],
    }), 200
