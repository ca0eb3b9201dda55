"""
services/balance_service.py — Pairwise debt/credit derivation.

This file is the SINGLE SOURCE OF TRUTH for how a user's balances in a group
are derived. Balances are never stored and never cached; every call re-reads
the expense_participants rows.

For user U in group G:
  debts   = participant rows where U is the participant and someone else paid,
            grouped by payer.
  credits = participant rows where U paid and the participant is someone else,
            grouped by participant.

Symmetry: A's debt entry for B and B's credit entry for A are built from the
same rows, so amount, outstanding and status always agree.

Layer rules:
  - No Flask imports. No current_app, request, g, or HTTP knowledge.
  - Receives group_id, user_id and session as arguments.
  - Returns plain Python dicts and lists.
"""

from __future__ import annotations

from collections import OrderedDict
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.models.expense import Expense, PaymentStatus
from groupledger.app.models.expense_participant import ExpenseParticipant
from groupledger.app.models.user import User
from groupledger.app.services.access import get_group_or_404, require_member


# ── Data access helpers ────────────────────────────────────────────────────
# Each returns rows shaped (counterparty_id, expense_id, share_amount, status).

def get_debt_rows(group_id: int, user_id: str, session: Session) -> list[tuple]:
    """Rows where `user_id` owes the payer of the expense."""
    stmt = (
        select(
            Expense.payer_id,
            Expense.id,
            ExpenseParticipant.share_amount,
            ExpenseParticipant.payment_status,
        )
        .join(ExpenseParticipant, ExpenseParticipant.expense_id == Expense.id)
        .where(
            Expense.group_id == group_id,
            ExpenseParticipant.user_id == user_id,
            Expense.payer_id != user_id,
        )
        .order_by(Expense.created_at.asc(), Expense.id.asc())
    )
    return [tuple(row) for row in session.execute(stmt).all()]


def get_credit_rows(group_id: int, user_id: str, session: Session) -> list[tuple]:
    """Rows where other participants owe `user_id`, who paid the expense."""
    stmt = (
        select(
            ExpenseParticipant.user_id,
            Expense.id,
            ExpenseParticipant.share_amount,
            ExpenseParticipant.payment_status,
        )
        .join(ExpenseParticipant, ExpenseParticipant.expense_id == Expense.id)
        .where(
            Expense.group_id == group_id,
            Expense.payer_id == user_id,
            ExpenseParticipant.user_id != user_id,
        )
        .order_by(Expense.created_at.asc(), Expense.id.asc())
    )
    return [tuple(row) for row in session.execute(stmt).all()]


def get_users_by_id(user_ids: Iterable[str], session: Session) -> dict[str, User]:
    ids = set(user_ids)
    if not ids:
        return {}
    stmt = select(User).where(User.id.in_(ids))
    return {u.id: u for u in session.execute(stmt).scalars().all()}


# ── Core algorithm ─────────────────────────────────────────────────────────

def aggregate_by_counterparty(
        rows: Iterable[tuple],
        users: dict[str, User],
) -> list[dict]:
    """
    Groups (counterparty_id, expense_id, share_amount, status) rows into one
    entry per counterparty.

    Each entry:
      amount       sum of all shares with that counterparty
      outstanding  sum of the unpaid shares only
      status       'unpaid' if any row is unpaid, else 'paid'
      expenses     expense ids, in row order

    Entries are ordered by the counterparty's first appearance in `rows`.
    """
    entries: "OrderedDict[str, dict]" = OrderedDict()

    for counterparty_id, expense_id, share_amount, status in rows:
        entry = entries.get(counterparty_id)
        if entry is None:
            user = users.get(counterparty_id)
            entry = {
                "user_id": counterparty_id,
                "full_name": user.full_name if user is not None else None,
                "iban": user.iban if user is not None else None,
                "amount": Decimal("0.00"),
                "outstanding": Decimal("0.00"),
                "status": PaymentStatus.PAID.value,
                "expenses": [],
            }
            entries[counterparty_id] = entry

        entry["amount"] += share_amount
        if PaymentStatus(status) == PaymentStatus.UNPAID:
            entry["outstanding"] += share_amount
            entry["status"] = PaymentStatus.UNPAID.value
        entry["expenses"].append(expense_id)

    return list(entries.values())


def compute_debts(group_id: int, user_id: str, session: Session) -> list[dict]:
    """What `user_id` owes, one entry per payer."""
    rows = get_debt_rows(group_id, user_id, session)
    users = get_users_by_id((r[0] for r in rows), session)
    return aggregate_by_counterparty(rows, users)


def compute_credits(group_id: int, user_id: str, session: Session) -> list[dict]:
    """What others owe `user_id`, one entry per participant."""
    rows = get_credit_rows(group_id, user_id, session)
    users = get_users_by_id((r[0] for r in rows), session)
    return aggregate_by_counterparty(rows, users)


def get_user_balances(group_id: int, user_id: str, session: Session) -> dict:
    """Debts and credits of one user in one group. No authorization check."""
    return {
        "debts": compute_debts(group_id, user_id, session),
        "credits": compute_credits(group_id, user_id, session),
    }


def get_balance_response(group_id: int, caller_id: str, session: Session) -> dict:
    """
    Builds the payload for GET /groups/:id/balances.

    Raises:
        NotFound(GROUP_NOT_FOUND)  -- group does not exist.
        Forbidden                  -- caller is not a group member.
    """
    get_group_or_404(group_id, session)
    require_member(group_id, caller_id, session)

    return {
        "group_id": group_id,
        "user_id": caller_id,
        **get_user_balances(group_id, caller_id, session),
    }
