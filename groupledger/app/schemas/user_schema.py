"""
schemas/user_schema.py — Marshmallow schemas for session and profile endpoints.

Identity fields (id, email) never come from the body; they come from the
verified bearer token.

IMPORTANT: Inherits from marshmallow.Schema directly.
"""

from __future__ import annotations

from marshmallow import Schema, ValidationError, fields, validate, validates_schema

from groupledger.app.errors import ErrorCode


class SessionSchema(Schema):
    """POST /auth/session — optional profile data for first login."""

    full_name = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=100),
    )

    iban = fields.Str(
        load_default=None,
        allow_none=True,
        validate=validate.Length(max=34),
    )


class UpdateProfileSchema(Schema):
    """
    PATCH /users/me

    Both fields optional, at least one required. An empty iban clears it;
    full_name cannot be blank.
    """

    full_name = fields.Str(
        validate=validate.Length(
            min=1,
            max=100,
            error="Full name must be between 1 and 100 characters.",
        ),
    )

    iban = fields.Str(
        validate=validate.Length(max=34),
    )

    @validates_schema
    def validate_not_empty(self, data: dict, **kwargs) -> None:
        if "full_name" not in data and "iban" not in data:
            raise ValidationError(ErrorCode.NOTHING_TO_UPDATE)
        if "full_name" in data and not data["full_name"].strip():
            raise ValidationError(
                {"full_name": ["This field must not be blank or contain only whitespace."]}
            )


class DeviceTokenSchema(Schema):
    """PUT /users/me/device-token"""

    token = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=512),
    )
