import logging
import re
from datetime import datetime, timezone
from flask import current_app
from flask_mail import Message
from flask_jwt_extended import get_jwt_identity
from extensions import db, mail, socketio
from errors import ValidationError

logger = logging.getLogger(__name__)


def utcnow():
    """ Naive UTC timestamp; every DateTime column stores naive UTC. """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def slugify(name):
    slug = re.sub(r'[^a-z0-9]+', '-', name.lower())
    return slug.strip('-')


def get_current_user():
    """ Loads the User behind the JWT identity of the current request. """
    # Imported here to avoid a circular import (models -> utils)
    from models import User

    current_user_id = get_jwt_identity()
    if current_user_id is None:
        return None
    return db.session.get(User, int(current_user_id))


def log_activity(user_id, action, details):
    """ Writes an AuditLog row. Never raises: audit trail is best-effort. """
    from models import AuditLog

    try:
        new_log = AuditLog(user_id=user_id, action=action, details=details[:255])
        db.session.add(new_log)
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.warning("Audit logging failed for %s: %s", action, e)


def send_notification(subject, recipients, body):
    """ Best-effort e-mail. Failures are logged, never surfaced to the caller. """
    recipients = [r for r in recipients if r]
    if not recipients:
        return False

    try:
        msg = Message(subject, recipients=recipients)
        msg.body = body
        mail.send(msg)
        return True
    except Exception as e:
        logger.warning("Failed to send '%s' to %s: %s", subject, recipients, e)
        return False


def emit_event(event, payload):
    """ Pushes a realtime event to connected dashboards. """
    try:
        socketio.emit(event, payload)
    except Exception as e:
        logger.warning("Socket emit '%s' failed: %s", event, e)


def parse_datetime(value, field):
    """ Parses an ISO-8601 string into naive UTC. Raises ValidationError. """
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            raise ValidationError(f'Invalid date format for {field}. Use ISO-8601.')

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def frontend_url():
    return current_app.config.get('FRONTEND_URL', 'http://localhost:3000')
