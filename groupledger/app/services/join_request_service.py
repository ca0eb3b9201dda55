"""
services/join_request_service.py — Group join request workflow.

State machine:

    pending ──accept──▶ accepted   (membership inserted)
       │
       └────reject──▶ rejected

Resolved requests are terminal. At most one pending request exists per
(group, target user).

Race safety:
  accept()/reject() move a request out of 'pending' with a conditional
  UPDATE ... WHERE status = 'pending' and check the affected row count.
  Of two concurrent resolutions exactly one sees rowcount == 1; the other
  gets REQUEST_ALREADY_RESOLVED (409) and its transaction is rolled back.

Notifications are sent only after the transaction has committed, and their
failure never fails the operation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from groupledger.app.errors import Conflict, ErrorCode, Forbidden, NotFound
from groupledger.app.identity import Identity
from groupledger.app.models.group import Group
from groupledger.app.models.join_request import JoinRequest, JoinRequestStatus
from groupledger.app.models.user import User
from groupledger.app.notifications import notify_safely
from groupledger.app.services.access import get_group_or_404, is_member, require_member
from groupledger.app.services.group_service import add_membership_if_absent, build_group_snapshot
from groupledger.app.services.transaction import atomic

logger = logging.getLogger(__name__)


def _serialize_request(req: JoinRequest) -> dict:
    return {
        "id": req.id,
        "group_id": req.group_id,
        "group_name": req.group.name if req.group else None,
        "requester_id": req.requester_id,
        "requester_name": req.requester.full_name if req.requester else None,
        "target_user_id": req.target_user_id,
        "status": req.status.value,
        "requested_at": req.requested_at.isoformat() if req.requested_at else None,
        "resolved_at": req.resolved_at.isoformat() if req.resolved_at else None,
    }


class JoinRequestWorkflow:
    """
    Sending, listing and resolving group join requests.

    Args:
        session:  SQLAlchemy session shared with the request.
        notifier: Anything with send(user_id, title, body, data=None).
    """

    def __init__(self, session: Session, notifier=None) -> None:
        self._session = session
        self._notifier = notifier

    # ── Sending ────────────────────────────────────────────────────────────

    def send_request(self, group_id: int, target_email: str, identity: Identity) -> dict:
        """
        Invites the user registered under `target_email` into the group.

        Raises:
          NotFound(GROUP_NOT_FOUND)             — group does not exist
          Forbidden                             — requester is not a member
          NotFound(USER_NOT_FOUND)              — no user with that email
          Conflict(ALREADY_MEMBER)              — target already belongs to the group
          Conflict(DUPLICATE_PENDING_REQUEST)   — a pending request already exists

        Returns: the group snapshot as seen by the requester.
        """
        session = self._session
        email = target_email.strip().lower()

        with atomic(session):
            group = get_group_or_404(group_id, session)
            require_member(group_id, identity.user_id, session)

            target = session.execute(
                select(User).where(User.email == email)
            ).scalar_one_or_none()
            if target is None:
                raise NotFound(
                    ErrorCode.USER_NOT_FOUND,
                    f"No user is registered with email {email}.",
                    field="email",
                )

            if is_member(group_id, target.id, session):
                raise Conflict(
                    ErrorCode.ALREADY_MEMBER,
                    f"{email} is already a member of this group.",
                    field="email",
                )

            existing = session.execute(
                select(JoinRequest).where(
                    JoinRequest.group_id == group_id,
                    JoinRequest.target_user_id == target.id,
                    JoinRequest.status == JoinRequestStatus.PENDING,
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise Conflict(
                    ErrorCode.DUPLICATE_PENDING_REQUEST,
                    f"{email} already has a pending request for this group.",
                    field="email",
                )

            req = JoinRequest(
                group_id=group_id,
                target_user_id=target.id,
                requester_id=identity.user_id,
            )
            session.add(req)
            try:
                session.flush()
            except IntegrityError as exc:
                # A concurrent sender won the partial unique index.
                raise Conflict(
                    ErrorCode.DUPLICATE_PENDING_REQUEST,
                    f"{email} already has a pending request for this group.",
                    field="email",
                ) from exc

            request_id = req.id
            target_id = target.id
            group_name = group.name
            requester = session.get(User, identity.user_id)
            requester_name = requester.full_name if requester else "Someone"

        logger.info(
            "Join request %s: %s invited %s to group %s",
            request_id, identity.user_id, target_id, group_id,
        )

        notify_safely(
            self._notifier,
            target_id,
            "Group invitation",
            f"{requester_name} invited you to join {group_name}.",
            {"type": "join_request", "request_id": request_id, "group_id": group_id},
        )

        return build_group_snapshot(session.get(Group, group_id), identity.user_id, session)

    # ── Listing ────────────────────────────────────────────────────────────

    def list_my_requests(
            self,
            identity: Identity,
            status: JoinRequestStatus | None = None,
    ) -> list[dict]:
        """Requests targeting the caller, newest first, optionally filtered by status."""
        stmt = select(JoinRequest).where(JoinRequest.target_user_id == identity.user_id)
        if status is not None:
            stmt = stmt.where(JoinRequest.status == status)
        stmt = stmt.order_by(JoinRequest.requested_at.desc(), JoinRequest.id.desc())

        requests = self._session.execute(stmt).scalars().all()
        return [_serialize_request(r) for r in requests]

    # ── Resolving ──────────────────────────────────────────────────────────

    def accept(self, request_id: int, identity: Identity) -> None:
        """
        Accepts a pending request addressed to the caller and adds them to
        the group. Notifies the group creator.
        """
        session = self._session

        with atomic(session):
            req = self._get_pending_request_for(request_id, identity)
            group_id = req.group_id

            self._transition(request_id, JoinRequestStatus.ACCEPTED)
            # The user may have joined by invite token since the request was sent.
            add_membership_if_absent(group_id, identity.user_id, session)

            group = session.get(Group, group_id)
            creator_id = group.creator_id
            group_name = group.name
            member = session.get(User, identity.user_id)
            member_name = member.full_name if member else "Someone"

        logger.info("Join request %s accepted by %s", request_id, identity.user_id)

        if creator_id != identity.user_id:
            notify_safely(
                self._notifier,
                creator_id,
                "Invitation accepted",
                f"{member_name} joined {group_name}.",
                {"type": "join_request_accepted", "request_id": request_id, "group_id": group_id},
            )

    def reject(self, request_id: int, identity: Identity) -> None:
        """Rejects a pending request addressed to the caller. Notifies the requester."""
        session = self._session

        with atomic(session):
            req = self._get_pending_request_for(request_id, identity)
            group_id = req.group_id
            requester_id = req.requester_id

            self._transition(request_id, JoinRequestStatus.REJECTED)

            group_name = session.get(Group, group_id).name
            member = session.get(User, identity.user_id)
            member_name = member.full_name if member else "Someone"

        logger.info("Join request %s rejected by %s", request_id, identity.user_id)

        notify_safely(
            self._notifier,
            requester_id,
            "Invitation declined",
            f"{member_name} declined the invitation to {group_name}.",
            {"type": "join_request_rejected", "request_id": request_id, "group_id": group_id},
        )

    # ── Private ────────────────────────────────────────────────────────────

    def _get_pending_request_for(self, request_id: int, identity: Identity) -> JoinRequest:
        """
        Loads a request the caller may resolve.

        Order of checks: missing (404), not addressed to caller (403),
        already resolved (409).
        """
        req = self._session.get(JoinRequest, request_id)
        if req is None:
            raise NotFound(
                ErrorCode.REQUEST_NOT_FOUND,
                f"Join request {request_id} does not exist.",
            )
        if req.target_user_id != identity.user_id:
            raise Forbidden("Only the invited user may resolve this request.")
        if req.status != JoinRequestStatus.PENDING:
            raise Conflict(
                ErrorCode.REQUEST_ALREADY_RESOLVED,
                f"Join request {request_id} is already {req.status.value}.",
            )
        return req

    def _transition(self, request_id: int, new_status: JoinRequestStatus) -> None:
        """Conditional pending → new_status; zero affected rows means another caller won."""
        result = self._session.execute(
            update(JoinRequest)
            .where(
                JoinRequest.id == request_id,
                JoinRequest.status == JoinRequestStatus.PENDING,
            )
            .values(status=new_status, resolved_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict(
                ErrorCode.REQUEST_ALREADY_RESOLVED,
                f"Join request {request_id} was resolved by another request.",
            )
