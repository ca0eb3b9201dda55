"""
services/group_service.py — Group registry: creation, invite tokens, snapshots.

Authorization rules:
  - Creating a group: any registered user; they become creator and first member.
  - Joining by token: anyone holding the token; repeat joins are no-ops.
  - Reading a snapshot: group members only (FORBIDDEN otherwise).

Invite tokens are `INVITE_TOKEN_LENGTH` random alphanumeric characters
followed by the Unix timestamp of creation, e.g. "a8Kq2ZxP1760874412".

Layer rules:
  - No Flask imports. Pure Python with a SQLAlchemy session.
  - Mutations commit through transaction.atomic().
"""

from __future__ import annotations

import logging
import secrets
import string
import time

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session

from groupledger.app.errors import ErrorCode, NotFound
from groupledger.app.identity import Identity
from groupledger.app.models.expense import Expense
from groupledger.app.models.group import Group
from groupledger.app.models.join_request import JoinRequest, JoinRequestStatus
from groupledger.app.models.membership import Membership
from groupledger.app.models.user import User
from groupledger.app.services.access import get_group_or_404, is_member, require_member
from groupledger.app.services.balance_service import get_user_balances
from groupledger.app.services.expense_service import serialize_expense
from groupledger.app.services.transaction import atomic

logger = logging.getLogger(__name__)

_TOKEN_ALPHABET = string.ascii_letters + string.digits

_UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


# ── Helpers ────────────────────────────────────────────────────────────────

def generate_invite_token(length: int = 8, now: float | None = None) -> str:
    """Random alphanumeric prefix of `length` chars + Unix timestamp suffix."""
    prefix = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))
    timestamp = int(time.time() if now is None else now)
    return f"{prefix}{timestamp}"


def add_membership_if_absent(group_id: int, user_id: str, session: Session) -> bool:
    """
    Inserts (group_id, user_id) unless it already exists.

    Returns True when a row was inserted. Uses INSERT ... ON CONFLICT DO
    NOTHING on PostgreSQL and SQLite so two concurrent joins cannot both
    fail; other dialects fall back to check-then-insert.
    """
    insert_fn = _UPSERT_INSERTS.get(session.get_bind().dialect.name)

    if insert_fn is not None:
        stmt = (
            insert_fn(Membership.__table__)
            .values(group_id=group_id, user_id=user_id)
            .on_conflict_do_nothing(index_elements=["group_id", "user_id"])
        )
        return session.execute(stmt).rowcount == 1

    if is_member(group_id, user_id, session):
        return False
    session.add(Membership(group_id=group_id, user_id=user_id))
    session.flush()
    return True


def _serialize_user(user: User | None) -> dict | None:
    if user is None:
        return None
    return {
        "id": user.id,
        "full_name": user.full_name,
        "email": user.email,
        "iban": user.iban,
    }


def build_group_snapshot(group: Group, user_id: str, session: Session) -> dict:
    """
    Full view of one group as seen by `user_id`.

    Contains the creator, members (join order), pending join requests,
    expenses (oldest first, and so are their participants) and the viewer's
    debts and credits.
    """
    members = session.execute(
        select(User)
        .join(Membership, User.id == Membership.user_id)
        .where(Membership.group_id == group.id)
        .order_by(Membership.joined_at.asc(), Membership.id.asc())
    ).scalars().all()

    pending = session.execute(
        select(JoinRequest)
        .where(
            JoinRequest.group_id == group.id,
            JoinRequest.status == JoinRequestStatus.PENDING,
        )
        .order_by(JoinRequest.requested_at.asc(), JoinRequest.id.asc())
    ).scalars().all()

    expenses = session.execute(
        select(Expense)
        .where(Expense.group_id == group.id)
        .order_by(Expense.created_at.asc(), Expense.id.asc())
    ).scalars().all()

    return {
        "id": group.id,
        "name": group.name,
        "invite_token": group.invite_token,
        "created_at": group.created_at.isoformat() if group.created_at else None,
        "is_admin": group.creator_id == user_id,
        "creator": _serialize_user(group.creator),
        "members": [_serialize_user(m) for m in members],
        "pending_requests": [
            {
                "id": r.id,
                "group_id": group.id,
                "group_name": group.name,
                "status": r.status.value,
                "target_user_id": r.target_user_id,
                "full_name": r.target.full_name if r.target else None,
                "email": r.target.email if r.target else None,
                "requester_id": r.requester_id,
                "requested_at": r.requested_at.isoformat() if r.requested_at else None,
            }
            for r in pending
        ],
        "expenses": [serialize_expense(e) for e in expenses],
        **get_user_balances(group.id, user_id, session),
    }


# ── Service ────────────────────────────────────────────────────────────────

class GroupRegistry:
    """
    Group creation, invite-token joins and group snapshots.

    Args:
        session:             SQLAlchemy session shared with the request.
        notifier:            Anything with send(user_id, title, body, data=None).
        invite_token_length: Length of the random part of new invite tokens.
    """

    def __init__(self, session: Session, notifier=None, invite_token_length: int = 8) -> None:
        self._session = session
        self._notifier = notifier
        self._invite_token_length = invite_token_length

    def create_group(self, identity: Identity, name: str) -> dict:
        """
        Creates a group with the caller as creator and sole member.

        The group row and the creator's membership are committed together;
        if either write fails neither exists (PersistenceError).
        """
        session = self._session

        with atomic(session):
            group = Group(
                name=name.strip(),
                creator_id=identity.user_id,
                invite_token=generate_invite_token(self._invite_token_length),
            )
            session.add(group)
            session.flush()  # populate group.id before creating membership

            session.add(Membership(group_id=group.id, user_id=identity.user_id))
            session.flush()

        logger.info("Group %s created by %s", group.id, identity.user_id)
        return build_group_snapshot(group, identity.user_id, session)

    def join_by_token(self, identity: Identity, token: str) -> int:
        """
        Adds the caller to the group owning `token`.

        Idempotent: joining a group you already belong to changes nothing.

        Returns: the group id.
        """
        session = self._session

        with atomic(session):
            group = session.execute(
                select(Group).where(Group.invite_token == token.strip())
            ).scalar_one_or_none()

            if group is None:
                raise NotFound(
                    ErrorCode.INVITE_TOKEN_NOT_FOUND,
                    "No group matches this invite token.",
                    field="token",
                )

            group_id = group.id
            inserted = add_membership_if_absent(group_id, identity.user_id, session)

        if inserted:
            logger.info("User %s joined group %s by invite token", identity.user_id, group_id)
        return group_id

    def list_groups_for_user(self, identity: Identity) -> list[dict]:
        """Snapshots of every group the caller belongs to, newest first."""
        session = self._session
        groups = session.execute(
            select(Group)
            .join(Membership, Group.id == Membership.group_id)
            .where(Membership.user_id == identity.user_id)
            .order_by(Group.created_at.desc(), Group.id.desc())
        ).scalars().all()

        return [build_group_snapshot(g, identity.user_id, session) for g in groups]

    def get_group_snapshot(self, group_id: int, identity: Identity) -> dict:
        """Snapshot of one group. Caller must be a member (FORBIDDEN)."""
        session = self._session
        group = get_group_or_404(group_id, session)
        require_member(group_id, identity.user_id, session)
        return build_group_snapshot(group, identity.user_id, session)
