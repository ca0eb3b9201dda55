"""
routes/settlements.py — Pairwise settlement route handler.

Endpoints (base url_prefix=/api/v1/groups):
  POST   /groups/:id/settlements  → 200  mark all shares between caller and
                                         counterparty as paid
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.notifications import current_notifier
from groupledger.app.schemas.settlement_schema import SettlePairSchema
from groupledger.app.services import balance_service
from groupledger.app.services.expense_service import LedgerEngine

settlements_bp = Blueprint("settlements", __name__)


@settlements_bp.route("/<int:group_id>/settlements", methods=["POST"])
@require_auth
def settle_pair(group_id: int):
    """
    POST /groups/:id/settlements — Settle up with one other member.

    The response carries the number of shares flipped to paid and the
    caller's balances after the update.
    """
    data = SettlePairSchema().load(request.get_json(force=True) or {})
    updated = LedgerEngine(db.session, current_notifier()).settle_pair(
        group_id, data["counterparty_id"], g.identity,
    )
    balances = balance_service.get_user_balances(group_id, g.identity.user_id, db.session)
    return jsonify({
        "data": {
            "group_id": group_id,
            "counterparty_id": data["counterparty_id"],
            "updated": updated,
            **balances,
        },
        "warnings": [],
    }), 200
