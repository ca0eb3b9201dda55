"""
services/expense_service.py — Ledger engine: expense lifecycle and settlement.

Rules enforced here:
  - sum(participant shares) == expense total, exactly, in Decimal (SHARE_SUM_MISMATCH)
  - every participant is a current group member (PARTICIPANT_NOT_MEMBER)
  - caller must be a group member to create or settle (FORBIDDEN)
  - only the payer or the group creator may delete an expense (FORBIDDEN)
  - an expense and its participant rows are written and removed together

Equal split computation:
  - When no participant carries a share_amount, the total is divided evenly
    using ROUND_DOWN to cents.
  - The leftover cents go to the payer's row when the payer participates,
    otherwise to the first participant.
  - A mix of given and missing shares is rejected (PARTIAL_SHARES).

Settlement:
  - settle_pair() flips every unpaid participant row between two users in a
    group to 'paid', in both directions, with one UPDATE. It does not net
    amounts across more than two users.

Transactions:
  - Every mutation runs in one atomic() block and commits there.
  - Notifications are dispatched only after the commit succeeded.
"""

from __future__ import annotations

import logging
from decimal import Decimal, ROUND_DOWN

from sqlalchemy import and_, or_, select, update
from sqlalchemy.orm import Session

from groupledger.app.errors import (
    AppError,
    ErrorCode,
    Forbidden,
    NotFound,
    ValidationError,
)
from groupledger.app.identity import Identity
from groupledger.app.models.expense import Expense, PaymentStatus
from groupledger.app.models.expense_participant import ExpenseParticipant
from groupledger.app.models.group import Group
from groupledger.app.models.user import User
from groupledger.app.notifications import notify_safely
from groupledger.app.services.access import (
    get_group_or_404,
    get_member_ids,
    is_member,
    require_member,
)
from groupledger.app.services.balance_service import get_user_balances
from groupledger.app.services.transaction import atomic

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


# ── Private helpers ────────────────────────────────────────────────────────

def _get_expense_or_404(expense_id: int, session: Session) -> Expense:
    """Returns the Expense or raises EXPENSE_NOT_FOUND (404)."""
    expense = session.get(Expense, expense_id)
    if expense is None:
        raise NotFound(
            ErrorCode.EXPENSE_NOT_FOUND,
            f"Expense {expense_id} does not exist.",
        )
    return expense


def _validate_amount(amount: Decimal, field: str) -> None:
    """Raises INVALID_AMOUNT (422) unless amount > 0 with at most 2 decimal places."""
    if amount <= Decimal("0"):
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            f"{field} must be greater than zero.",
            field=field,
        )
    if amount != amount.quantize(_CENT):
        raise ValidationError(
            ErrorCode.INVALID_AMOUNT,
            f"{field} must have at most 2 decimal places.",
            field=field,
        )


def _validate_participant_list(participants: list[dict]) -> list[str]:
    """Returns the participant ids, rejecting an empty list or duplicates."""
    if not participants:
        raise ValidationError(
            ErrorCode.EMPTY_PARTICIPANTS,
            "An expense needs at least one participant.",
            field="participants",
        )

    seen: set[str] = set()
    for p in participants:
        if p["user_id"] in seen:
            raise ValidationError(
                ErrorCode.DUPLICATE_PARTICIPANT,
                f"User {p['user_id']} appears more than once in participants.",
                field="participants",
            )
        seen.add(p["user_id"])

    return [p["user_id"] for p in participants]


def _validate_participants_are_members(
        participant_ids: list[str],
        group_id: int,
        member_ids: list[str],
) -> None:
    """Raises PARTICIPANT_NOT_MEMBER (422) for the first participant not in the group."""
    member_set = set(member_ids)
    for uid in participant_ids:
        if uid not in member_set:
            raise ValidationError(
                ErrorCode.PARTICIPANT_NOT_MEMBER,
                f"User {uid} is not a member of group {group_id}.",
                field="participants",
            )


def _validate_share_sum(shares: list[dict], total: Decimal) -> None:
    """
    Raises SHARE_SUM_MISMATCH (422) if sum(shares) != total.
    Uses Decimal arithmetic — never float. No tolerance.
    """
    computed = sum((s["amount"] for s in shares), Decimal("0.00"))
    if computed != total:
        raise ValidationError(
            ErrorCode.SHARE_SUM_MISMATCH,
            f"Shares ({computed}) do not equal the expense total ({total}).",
            field="participants",
        )


def _compute_equal_splits(
        amount: Decimal,
        participant_ids: list[str],
        payer_id: str,
) -> list[dict]:
    """
    Divides amount evenly among participants using ROUND_DOWN.

    The remainder cents are added to the payer's share, or to the first
    participant when the payer is not sharing the expense.
    Guarantees: sum(result amounts) == amount.

    Returns:
        List of {"user_id": str, "amount": Decimal} dicts, in participant order.
    """
    n = len(participant_ids)
    base = (amount / Decimal(n)).quantize(_CENT, rounding=ROUND_DOWN)

    if base == Decimal("0.00"):
        raise ValidationError(
            ErrorCode.AMOUNT_TOO_SMALL_TO_SPLIT,
            f"{amount} cannot be split between {n} participants.",
            field="total_amount",
        )

    remainder = amount - (base * n)

    splits = [{"user_id": uid, "amount": base} for uid in participant_ids]

    if remainder > Decimal("0"):
        payer_split = next(
            (s for s in splits if s["user_id"] == payer_id),
            splits[0],
        )
        payer_split["amount"] += remainder

    # Must always hold; a failure here is a programming error.
    computed_sum = sum(s["amount"] for s in splits)
    if computed_sum != amount:
        raise AppError(
            ErrorCode.INTERNAL_ERROR,
            f"Equal split computation produced sum {computed_sum} for amount {amount}. "
            f"This is a bug — please report it.",
            500,
        )

    return splits


def _resolve_shares(
        total: Decimal,
        participants: list[dict],
        payer_id: str,
) -> list[dict]:
    """
    Turns validated participant input into {"user_id", "amount"} rows.

    All shares given  → each must be a valid amount and they must sum to total.
    No share given    → even split.
    Some shares given → PARTIAL_SHARES.
    """
    given = [p.get("share_amount") is not None for p in participants]

    if all(given):
        shares = []
        for p in participants:
            _validate_amount(p["share_amount"], "share_amount")
            shares.append({"user_id": p["user_id"], "amount": p["share_amount"]})
        _validate_share_sum(shares, total)
        return shares

    if not any(given):
        return _compute_equal_splits(
            total,
            [p["user_id"] for p in participants],
            payer_id,
        )

    raise ValidationError(
        ErrorCode.PARTIAL_SHARES,
        "Give a share_amount for every participant, or for none of them.",
        field="participants",
    )


def serialize_expense(expense: Expense) -> dict:
    """Expense with payer and participant rows; participants oldest first."""
    return {
        "id": expense.id,
        "group_id": expense.group_id,
        "title": expense.title,
        "note": expense.note,
        "bill_image_url": expense.bill_image_url,
        "total_amount": expense.total_amount,
        "payer": {
            "id": expense.payer_id,
            "full_name": expense.payer.full_name if expense.payer else None,
        },
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
        "participants": [
            {
                "user_id": p.user_id,
                "full_name": p.user.full_name if p.user else None,
                "share_amount": p.share_amount,
                "payment_status": p.payment_status.value,
            }
            for p in expense.participants
        ],
    }


# ── Service ────────────────────────────────────────────────────────────────

class LedgerEngine:
    """
    Expense creation/deletion and pairwise settlement for one request.

    Args:
        session:  SQLAlchemy session shared with the rest of the request.
        notifier: Anything with send(user_id, title, body, data=None).
    """

    def __init__(self, session: Session, notifier=None) -> None:
        self._session = session
        self._notifier = notifier

    def create_expense(self, group_id: int, identity: Identity, data: dict) -> dict:
        """
        Records an expense paid by the caller.

        Args:
            data: Validated dict from CreateExpenseSchema:
                  total_amount, participants[{user_id, share_amount?}],
                  title, note, bill_image_url.

        Returns:
            {"expense": ..., "debts": [...], "credits": [...]} where the
            balances are the payer's in this group after the write.
        """
        session = self._session
        payer_id = identity.user_id
        total: Decimal = data["total_amount"]
        participants: list[dict] = data.get("participants") or []

        _validate_amount(total, "total_amount")
        participant_ids = _validate_participant_list(participants)

        with atomic(session):
            get_group_or_404(group_id, session)
            require_member(group_id, payer_id, session)

            member_ids = get_member_ids(group_id, session)
            _validate_participants_are_members(participant_ids, group_id, member_ids)

            shares = _resolve_shares(total, participants, payer_id)

            expense = Expense(
                group_id=group_id,
                payer_id=payer_id,
                total_amount=total,
                title=data["title"],
                note=data.get("note") or "",
                bill_image_url=data.get("bill_image_url"),
            )
            session.add(expense)
            session.flush()  # populate expense.id before creating participant rows

            for share in shares:
                session.add(ExpenseParticipant(
                    expense_id=expense.id,
                    user_id=share["user_id"],
                    share_amount=share["amount"],
                    payment_status=(
                        PaymentStatus.PAID
                        if share["user_id"] == payer_id
                        else PaymentStatus.UNPAID
                    ),
                ))
            session.flush()

            expense_id = expense.id
            title = expense.title

        logger.info(
            "Expense %s created in group %s by %s (%s, %d participants)",
            expense_id, group_id, payer_id, total, len(shares),
        )

        expense = session.get(Expense, expense_id)
        result = {
            "expense": serialize_expense(expense),
            **get_user_balances(group_id, payer_id, session),
        }

        payer = session.get(User, payer_id)
        payer_name = payer.full_name if payer else "Someone"
        for share in shares:
            if share["user_id"] == payer_id:
                continue
            notify_safely(
                self._notifier,
                share["user_id"],
                "New expense",
                f"{payer_name} added '{title}'. Your share is {share['amount']}.",
                {"type": "expense_created", "group_id": group_id, "expense_id": expense_id},
            )

        return result

    def delete_expense(self, expense_id: int, identity: Identity) -> dict:
        """
        Hard-deletes an expense and its participant rows.

        Only the payer or the group creator may delete. On FORBIDDEN nothing
        changes.

        Returns:
            The requester's balances in the expense's group after the delete.
        """
        session = self._session

        with atomic(session):
            expense = _get_expense_or_404(expense_id, session)
            group = session.get(Group, expense.group_id)

            is_payer = identity.user_id == expense.payer_id
            is_creator = group is not None and identity.user_id == group.creator_id
            if not (is_payer or is_creator):
                raise Forbidden("Only the payer or the group creator may delete this expense.")

            group_id = expense.group_id

            # Participant rows first, then the expense itself. Orphaned rows are
            # deleted by the flush, so the expense delete cascades to nothing.
            expense.participants.clear()
            session.flush()
            session.delete(expense)

        logger.info("Expense %s deleted from group %s by %s", expense_id, group_id, identity.user_id)

        return {
            "group_id": group_id,
            **get_user_balances(group_id, identity.user_id, session),
        }

    def settle_pair(self, group_id: int, counterparty_id: str, identity: Identity) -> int:
        """
        Marks every unpaid share between the caller and counterparty as paid.

        Both directions are covered: shares the caller owes on expenses the
        counterparty paid, and shares the counterparty owes on expenses the
        caller paid.

        Returns:
            Number of participant rows flipped to 'paid' (0 is a valid result).
        """
        session = self._session
        caller_id = identity.user_id

        if counterparty_id == caller_id:
            raise ValidationError(
                ErrorCode.SELF_SETTLEMENT,
                "You cannot settle with yourself.",
                field="counterparty_id",
            )

        with atomic(session):
            get_group_or_404(group_id, session)
            require_member(group_id, caller_id, session)

            if not is_member(group_id, counterparty_id, session):
                raise NotFound(
                    ErrorCode.USER_NOT_FOUND,
                    f"User {counterparty_id} is not a member of group {group_id}.",
                    field="counterparty_id",
                )

            paid_by_caller = select(Expense.id).where(
                Expense.group_id == group_id,
                Expense.payer_id == caller_id,
            )
            paid_by_counterparty = select(Expense.id).where(
                Expense.group_id == group_id,
                Expense.payer_id == counterparty_id,
            )

            result = session.execute(
                update(ExpenseParticipant)
                .where(
                    ExpenseParticipant.payment_status == PaymentStatus.UNPAID,
                    or_(
                        and_(
                            ExpenseParticipant.user_id == counterparty_id,
                            ExpenseParticipant.expense_id.in_(paid_by_caller),
                        ),
                        and_(
                            ExpenseParticipant.user_id == caller_id,
                            ExpenseParticipant.expense_id.in_(paid_by_counterparty),
                        ),
                    ),
                )
                .values(payment_status=PaymentStatus.PAID)
                .execution_options(synchronize_session=False)
            )
            flipped = result.rowcount

            caller = session.get(User, caller_id)
            caller_name = caller.full_name if caller else "Someone"

        logger.info(
            "Settled %d shares between %s and %s in group %s",
            flipped, caller_id, counterparty_id, group_id,
        )

        notify_safely(
            self._notifier,
            counterparty_id,
            "Balance settled",
            f"{caller_name} marked your shared expenses as settled.",
            {"type": "settlement", "group_id": group_id},
        )

        return flipped
