"""
models/join_request.py — Group join request table definition.

No business logic. No imports from services or routes.

State machine: pending → accepted | rejected. Both outcomes are terminal.

The partial unique index allows any number of resolved requests for a
(group, target) pair but at most one pending one. join_request_service
checks for a pending duplicate first; the index catches the race between
two concurrent senders.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import DateTime, Enum, ForeignKey, Index, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupledger.app.extensions import db
from groupledger.app.models.expense import _enum_values


class JoinRequestStatus(str, enum.Enum):
    PENDING  = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class JoinRequest(db.Model):
    __tablename__ = "join_requests"

    __table_args__ = (
        Index(
            "uq_join_requests_pending",
            "group_id",
            "target_user_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    group_id: Mapped[int] = mapped_column(
        ForeignKey("groups.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # The user being invited; only they may accept or reject.
    target_user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    requester_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )

    status: Mapped[JoinRequestStatus] = mapped_column(
        Enum(
            JoinRequestStatus,
            name="join_request_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=JoinRequestStatus.PENDING,
        server_default=JoinRequestStatus.PENDING.value,
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    group: Mapped["Group"] = relationship(  # noqa: F821
        "Group",
        back_populates="join_requests",
    )

    target: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[target_user_id],
    )

    requester: Mapped["User"] = relationship(  # noqa: F821
        "User",
        foreign_keys=[requester_id],
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<JoinRequest id={self.id} "
            f"group_id={self.group_id} "
            f"target={self.target_user_id!r} "
            f"status={self.status.value}>"
        )
