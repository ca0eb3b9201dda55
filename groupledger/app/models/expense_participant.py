"""
models/expense_participant.py — Per-participant share of an expense.

No business logic. No imports from services or routes.

  - `share_amount` uses Numeric(12, 2) — never Float.
  - UNIQUE(expense_id, user_id): a user appears at most once per expense.
  - The payer's own row is created with payment_status = 'paid'.
  - payment_status is only ever changed by expense_service.settle_pair().

sum(share_amount) == expenses.total_amount is enforced in expense_service.py
before the write, not here.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import CheckConstraint, Enum, ForeignKey, Numeric, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from groupledger.app.extensions import db
from groupledger.app.models.expense import PaymentStatus, _enum_values


class ExpenseParticipant(db.Model):
    __tablename__ = "expense_participants"

    __table_args__ = (
        UniqueConstraint("expense_id", "user_id", name="uq_expense_participants_expense_user"),
        CheckConstraint("share_amount > 0", name="ck_expense_participants_share_positive"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # ON DELETE CASCADE: participant rows are owned by their expense.
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    user_id: Mapped[str] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    share_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=PaymentStatus.UNPAID,
        server_default=PaymentStatus.UNPAID.value,
    )

    # ── Relationships ──────────────────────────────────────────────────────

    expense: Mapped["Expense"] = relationship(  # noqa: F821
        "Expense",
        back_populates="participants",
    )

    user: Mapped["User"] = relationship("User")  # noqa: F821

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<ExpenseParticipant id={self.id} "
            f"expense_id={self.expense_id} "
            f"user_id={self.user_id!r} "
            f"share_amount={self.share_amount} "
            f"status={self.payment_status.value}>"
        )
