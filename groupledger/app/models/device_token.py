"""
models/device_token.py — Push token store.

One row per user; saving a new token replaces the old one. Read by the
push notifier right before a message is queued.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupledger.app.extensions import db


class DeviceToken(db.Model):
    __tablename__ = "device_tokens"

    # ON DELETE CASCADE: the token is owned by the user.
    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )

    token: Mapped[str] = mapped_column(
        String(512),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="device_token",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<DeviceToken user_id={self.user_id!r}>"
