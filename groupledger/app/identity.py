"""
identity.py — Verified caller identity.

The auth middleware builds one Identity per request after the bearer token
has been decoded AND matched against the users table, then stores it on
flask.g. Services receive it as an argument and never re-derive the caller
from raw claims.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Identity:
    user_id: str
    email: str
