"""
schemas/expense_schema.py — Marshmallow schemas for expense endpoints.

Validation responsibility:
  - This file:
      - Field types and lengths, decimal precision, positive amounts
      - Non-empty-after-trim enforcement for title
  - services/expense_service.py:
      - SHARE_SUM_MISMATCH / PARTIAL_SHARES (422)  — requires Decimal arithmetic
                                                     over the whole list
      - EMPTY_PARTICIPANTS / DUPLICATE_PARTICIPANT (422)
      - PARTICIPANT_NOT_MEMBER (422)               — requires DB membership lookup
      - Delete permission (FORBIDDEN, 403)         — requires DB record lookup

The payer is never part of the body: it is always the authenticated caller.

IMPORTANT: Inherits from marshmallow.Schema directly.
"""

from __future__ import annotations

from decimal import Decimal

from marshmallow import Schema, ValidationError, fields, validate

from groupledger.app.errors import ErrorCode


# ── Shared monetary amount validator ──────────────────────────────────────
#
# Input with more than 2 decimal places is REJECTED with
# INVALID_AMOUNT_PRECISION; it is never rounded or truncated.
# ──────────────────────────────────────────────────────────────────────────

def _validate_monetary_amount(value: Decimal) -> None:
    """
    Validates a monetary Decimal value:
      - Must be strictly greater than zero.
      - Must have at most 2 decimal places.
    """
    if value <= Decimal("0"):
        raise ValidationError("Amount must be greater than zero.")

    # Decimal("10.123").as_tuple().exponent == -3 → 3 dp → REJECT
    if value.as_tuple().exponent < -2:
        raise ValidationError(ErrorCode.INVALID_AMOUNT_PRECISION)


def _validate_non_empty_after_trim(value: str) -> None:
    """Mirrors the DB CHECK(LENGTH(TRIM(...)) > 0) constraint at the API layer."""
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


# ── Sub-schema: one entry in the `participants` array ─────────────────────

class ParticipantInputSchema(Schema):
    """
    One participant of a new expense.

    share_amount is optional: omit it for every participant to get an even
    split, or give it for every participant to split manually.
    """

    user_id = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=128),
    )

    share_amount = fields.Decimal(
        load_default=None,
        allow_none=True,
        validate=_validate_monetary_amount,
    )


# ── Create expense ─────────────────────────────────────────────────────────

class CreateExpenseSchema(Schema):
    """
    POST /groups/:id/expenses

    Checks NOT in this schema (belong in the service):
      - sum(share_amount) == total_amount
      - all-or-none share amounts
      - participants are group members, no duplicates, at least one
    """

    title = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=255,
                error="Title must be between 1 and 255 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )

    note = fields.Str(
        load_default="",
        validate=validate.Length(max=2000),
    )

    total_amount = fields.Decimal(
        required=True,
        validate=_validate_monetary_amount,
    )

    bill_image_url = fields.Url(
        load_default=None,
        allow_none=True,
        schemes={"http", "https"},
    )

    participants = fields.List(
        fields.Nested(ParticipantInputSchema),
        required=True,
    )
