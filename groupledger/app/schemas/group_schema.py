"""
schemas/group_schema.py — Marshmallow schemas for group and join request endpoints.

Validation responsibility:
  - This file: field types, string lengths, non-empty checks (including trim).
  - services/group_service.py and services/join_request_service.py:
      - FORBIDDEN (caller must be a member)
      - USER_NOT_FOUND / INVITE_TOKEN_NOT_FOUND / GROUP_NOT_FOUND (DB lookups)
      - ALREADY_MEMBER / DUPLICATE_PENDING_REQUEST (DB lookups)

IMPORTANT: Inherits from marshmallow.Schema directly.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate


def _validate_non_empty_after_trim(value: str) -> None:
    """
    Raises ValidationError if the string is blank or contains only whitespace.
    validate.Length(min=1) alone allows "   ".
    """
    if not value.strip():
        raise ValidationError("This field must not be blank or contain only whitespace.")


class CreateGroupSchema(Schema):
    """POST /groups — name is non-empty after trim, max 100 chars."""

    name = fields.Str(
        required=True,
        validate=[
            validate.Length(
                min=1,
                max=100,
                error="Group name must be between 1 and 100 characters.",
            ),
            _validate_non_empty_after_trim,
        ],
    )


class JoinByTokenSchema(Schema):
    """POST /groups/join"""

    token = fields.Str(
        required=True,
        validate=[
            validate.Length(min=1, max=64),
            _validate_non_empty_after_trim,
        ],
    )


class SendJoinRequestSchema(Schema):
    """
    POST /groups/:id/requests

    The invited user is addressed by email; whether an account exists for it
    is a DB concern (USER_NOT_FOUND, 404).
    """

    email = fields.Email(required=True)
