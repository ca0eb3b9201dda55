"""
services/access.py — Lookup and membership guards shared by the services.

Rules:
  - Non-members of an existing group receive FORBIDDEN (403), not 404.
  - A missing group is GROUP_NOT_FOUND (404) and is checked first.

No Flask imports. Every helper takes the SQLAlchemy session explicitly.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import ErrorCode, Forbidden, NotFound
from groupledger.app.models.group import Group
from groupledger.app.models.membership import Membership
from groupledger.app.models.user import User


def get_group_or_404(group_id: int, session: Session) -> Group:
    """Returns the Group or raises GROUP_NOT_FOUND (404)."""
    group = session.get(Group, group_id)
    if group is None:
        raise NotFound(
            ErrorCode.GROUP_NOT_FOUND,
            f"Group {group_id} does not exist.",
        )
    return group


def get_user_or_404(user_id: str, session: Session) -> User:
    user = session.get(User, user_id)
    if user is None:
        raise NotFound(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} does not exist.",
        )
    return user


def is_member(group_id: int, user_id: str, session: Session) -> bool:
    membership = session.execute(
        select(Membership).where(
            Membership.group_id == group_id,
            Membership.user_id == user_id,
        )
    ).scalar_one_or_none()
    return membership is not None


def require_member(group_id: int, user_id: str, session: Session) -> None:
    """Raises FORBIDDEN (403) if user_id is not a member of group_id."""
    if not is_member(group_id, user_id, session):
        raise Forbidden(f"You are not a member of group {group_id}.")


def get_member_ids(group_id: int, session: Session) -> list[str]:
    """Returns the user_ids of all current members of a group."""
    stmt = select(Membership.user_id).where(Membership.group_id == group_id)
    return list(session.execute(stmt).scalars().all())
