"""
routes/expenses.py — Expense route handlers.

Registered at url_prefix=/api/v1 (not /api/v1/expenses) because this blueprint
owns BOTH the group-scoped path (/groups/:id/expenses) and the expense-ID
path (/expenses/:id).

Layer rules:
  - Parse, validate, call ONE service method, return envelope.
  - No business logic. No DB queries. No commits (the ledger engine commits).

Endpoints:
  POST   /groups/:id/expenses   → 201  create expense; returns payer's balances
  DELETE /expenses/:id          → 200  hard delete; returns requester's balances
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from groupledger.app.extensions import db
from groupledger.app.middleware.auth_middleware import require_auth
from groupledger.app.notifications import current_notifier
from groupledger.app.schemas.expense_schema import CreateExpenseSchema
from groupledger.app.services.expense_service import LedgerEngine

expenses_bp = Blueprint("expenses", __name__)


@expenses_bp.route("/groups/<int:group_id>/expenses", methods=["POST"])
@require_auth
def create_expense(group_id: int):
    """POST /groups/:id/expenses — Record an expense paid by the caller."""
    data = CreateExpenseSchema().load(request.get_json(force=True) or {})
    result = LedgerEngine(db.session, current_notifier()).create_expense(
        group_id, g.identity, data,
    )
    return jsonify({"data": result, "warnings": []}), 201


@expenses_bp.route("/expenses/<int:expense_id>", methods=["DELETE"])
@require_auth
def delete_expense(expense_id: int):
    """DELETE /expenses/:id — Payer or group creator only."""
    result = LedgerEngine(db.session, current_notifier()).delete_expense(
        expense_id, g.identity,
    )
    return jsonify({"data": result, "warnings": []}), 200
