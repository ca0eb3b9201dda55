"""
notifications.py — Best-effort push notification dispatcher.

The dispatcher is consumed by the service layer AFTER a ledger or workflow
mutation has committed. It never raises into the caller: every failure
(token lookup, transport error, timeout) is logged and swallowed; the operation
that triggered it has already committed.

Delivery is fire-and-forget: the HTTP push runs on a small thread pool so
the request that triggered it does not wait on the push provider. Each push
is bounded by PUSH_TIMEOUT_SECONDS.

Pattern (same as the other extensions in extensions.py):
    notifier = PushNotifier()      # module-level, no app attached
    notifier.init_app(app)         # inside create_app()
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor

import requests
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class PushNotifier:
    """Sends push messages to a user's registered device token."""

    def __init__(self, app=None) -> None:
        self._enabled: bool = False
        self._endpoint: str = ""
        self._server_key: str = ""
        self._timeout: float = 5.0
        self._executor: ThreadPoolExecutor | None = None
        if app is not None:
            self.init_app(app)

    def init_app(self, app) -> None:
        self._endpoint = app.config.get("PUSH_ENDPOINT_URL", "")
        self._server_key = app.config.get("PUSH_SERVER_KEY", "")
        self._timeout = app.config.get("PUSH_TIMEOUT_SECONDS", 5.0)
        self._enabled = bool(app.config.get("NOTIFICATIONS_ENABLED")) and bool(self._endpoint)

        if self._enabled and self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=app.config.get("NOTIFICATION_WORKERS", 4),
                thread_name_prefix="push-notifier",
            )

        app.extensions["push_notifier"] = self

    @property
    def enabled(self) -> bool:
        return self._enabled

    def send(
            self,
            user_id: str,
            title: str,
            body: str,
            data: dict | None = None,
    ) -> None:
        """
        Queues a push message for `user_id`.

        Must be called from inside an app context (the device token is read
        through the request's session before the message is queued).
        """
        if not self._enabled:
            logger.info("Push disabled; dropping notification %r for user %s", title, user_id)
            return

        try:
            token = _lookup_device_token(user_id)
        except SQLAlchemyError:
            logger.warning("Device token lookup failed for user %s", user_id, exc_info=True)
            return

        if not token:
            logger.info("No device token for user %s; notification %r not sent", user_id, title)
            return

        message = _build_message(token, title, body, data)
        self._executor.submit(self._deliver, user_id, message)

    def _deliver(self, user_id: str, message: dict) -> None:
        headers = {"Content-Type": "application/json"}
        if self._server_key:
            headers["Authorization"] = f"Bearer {self._server_key}"

        try:
            response = requests.post(
                self._endpoint,
                json=message,
                headers=headers,
                timeout=self._timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            logger.warning("Push notification to user %s failed: %s", user_id, exc)
            return

        logger.info("Push notification delivered to user %s", user_id)


def _lookup_device_token(user_id: str) -> str | None:
    # Local imports: extensions.py imports this module at load time.
    from groupledger.app.extensions import db
    from groupledger.app.models.device_token import DeviceToken

    record = db.session.get(DeviceToken, user_id)
    return record.token if record is not None else None


def _build_message(token: str, title: str, body: str, data: dict | None) -> dict:
    return {
        "to": token,
        "priority": "high",
        "notification": {
            "title": title,
            "body": body,
            "sound": "default",
            "badge": 1,
        },
        # Push data payloads are string-to-string maps.
        "data": {str(k): str(v) for k, v in (data or {}).items()},
    }


def current_notifier():
    """The notifier registered on the current app; routes pass it to services."""
    return current_app.extensions.get("push_notifier")


def notify_safely(
        notifier,
        user_id: str,
        title: str,
        body: str,
        data: dict | None = None,
) -> None:
    """
    Calls notifier.send() and logs instead of raising.

    Services call this after commit. Any notifier (including test doubles)
    may fail; a failed notification never fails the operation.
    """
    if notifier is None:
        return
    try:
        notifier.send(user_id, title, body, data)
    except Exception:  # noqa: BLE001
        logger.warning("Notification %r to user %s failed", title, user_id, exc_info=True)
