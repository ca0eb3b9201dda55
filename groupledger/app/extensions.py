"""
extensions.py — Flask extension singletons.

Initialises SQLAlchemy and the push notifier as module-level objects so they
can be imported anywhere without creating circular dependencies.

Pattern:
    1. Create the extension object here (no app attached yet).
    2. Call init_app(app) inside the app factory in app/__init__.py.
    3. Import `db` or `notifier` from here wherever needed.

    from groupledger.app.extensions import db, notifier

Do not pass the app object directly to SQLAlchemy() or PushNotifier() at
import time — that would prevent running tests with a separate test app
instance.

Services never import `notifier` directly. Routes look it up through
notifications.current_notifier() (app.extensions["push_notifier"]) and hand
it to the service constructors, so tests can substitute a recording double.
"""

from flask_sqlalchemy import SQLAlchemy

from groupledger.app.notifications import PushNotifier

db = SQLAlchemy()

notifier = PushNotifier()
