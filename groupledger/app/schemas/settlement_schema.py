"""
schemas/settlement_schema.py — Marshmallow schema for the settlement endpoint.

Validation responsibility:
  - This file: field type and length of counterparty_id.
  - services/expense_service.py (LedgerEngine.settle_pair):
      - SELF_SETTLEMENT (422)  — needs the caller id from the auth context
      - USER_NOT_FOUND  (404)  — counterparty must be a group member
      - FORBIDDEN       (403)  — caller must be a group member

Settlement takes no amount: it marks every unpaid share between the two
users as paid.

IMPORTANT: Inherits from marshmallow.Schema directly.
"""

from __future__ import annotations

from marshmallow import Schema, fields, validate


class SettlePairSchema(Schema):
    """POST /groups/:id/settlements"""

    counterparty_id = fields.Str(
        required=True,
        validate=validate.Length(min=1, max=128),
    )
