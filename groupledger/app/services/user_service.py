"""
services/user_service.py — User profiles, device tokens and identity resolution.

Accounts are owned by the external identity provider. This service only
mirrors them: a users row is created the first time a verified token is
presented to POST /auth/session, and from then on every request's token
must match that row (same id, same email).

Layer rules:
  - No Flask imports. Claims arrive already verified by the middleware.
  - Mutations commit through transaction.atomic().
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from groupledger.app.errors import AppError, ErrorCode, Forbidden, ValidationError
from groupledger.app.identity import Identity
from groupledger.app.models.device_token import DeviceToken
from groupledger.app.models.user import User
from groupledger.app.services.access import get_user_or_404
from groupledger.app.services.transaction import atomic

logger = logging.getLogger(__name__)


def _normalise_email(email: str) -> str:
    return email.strip().lower()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "full_name": user.full_name,
        "iban": user.iban,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }


def resolve_identity(user_id: str, email: str, session: Session) -> Identity:
    """
    Turns verified token claims into an Identity.

    Raises:
      AppError(USER_NOT_REGISTERED, 401) — no users row for this id yet
      Forbidden(IDENTITY_MISMATCH)       — the registered email differs
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_REGISTERED,
            "This account is not registered yet. Call POST /auth/session first.",
            401,
        )
    if user.email != _normalise_email(email):
        raise Forbidden(
            "The token email does not match the registered account.",
            code=ErrorCode.IDENTITY_MISMATCH,
        )
    return Identity(user_id=user.id, email=user.email)


class UserService:

    def __init__(self, session: Session) -> None:
        self._session = session

    def register_session(
            self,
            user_id: str,
            email: str,
            full_name: str | None = None,
            iban: str | None = None,
    ) -> dict:
        """
        First-login upsert from verified token claims.

        Creates the user if absent. For an existing user the stored email
        must match the token email (IDENTITY_MISMATCH). An email already
        registered under a different id is rejected the same way.
        Profile fields of an existing user are left untouched.
        """
        session = self._session
        email = _normalise_email(email)

        with atomic(session):
            user = session.get(User, user_id)

            if user is None:
                other = session.execute(
                    select(User).where(User.email == email)
                ).scalar_one_or_none()
                if other is not None:
                    raise Forbidden(
                        "This email is registered to a different account.",
                        code=ErrorCode.IDENTITY_MISMATCH,
                    )

                user = User(
                    id=user_id,
                    email=email,
                    full_name=(full_name or "").strip() or email.split("@")[0],
                    iban=(iban or "").strip() or None,
                )
                session.add(user)
                logger.info("Registered user %s", user_id)

            elif user.email != email:
                raise Forbidden(
                    "The token email does not match the registered account.",
                    code=ErrorCode.IDENTITY_MISMATCH,
                )

        return serialize_user(session.get(User, user_id))

    def get_profile(self, identity: Identity) -> dict:
        return serialize_user(get_user_or_404(identity.user_id, self._session))

    def update_profile(
            self,
            identity: Identity,
            full_name: str | None = None,
            iban: str | None = None,
    ) -> dict:
        """
        Updates full name and/or IBAN of the caller.

        An empty IBAN clears it. At least one field is required
        (NOTHING_TO_UPDATE).
        """
        if full_name is None and iban is None:
            raise ValidationError(
                ErrorCode.NOTHING_TO_UPDATE,
                "Provide full_name or iban.",
            )

        session = self._session
        with atomic(session):
            user = get_user_or_404(identity.user_id, session)
            if full_name is not None:
                user.full_name = full_name.strip()
            if iban is not None:
                user.iban = iban.strip() or None

        return serialize_user(session.get(User, identity.user_id))

    def save_device_token(self, identity: Identity, token: str) -> None:
        """Stores the caller's push token, replacing any previous one."""
        session = self._session
        with atomic(session):
            record = session.get(DeviceToken, identity.user_id)
            if record is None:
                session.add(DeviceToken(user_id=identity.user_id, token=token))
            else:
                record.token = token
                record.updated_at = datetime.now(timezone.utc)

        logger.debug("Device token saved for user %s", identity.user_id)
