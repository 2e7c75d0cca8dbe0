# salesflow/notifications.py
"""Client and team notification emails.

:func:`send_notification` is the primary operation behind the notify
endpoint and lets every failure surface.  :func:`dispatch` is the
best-effort variant used after a workflow step has committed: it runs inline
or on a background thread (``NOTIFY_ASYNC``) and only logs failures.
"""

import logging
import threading
from datetime import date

from flask import current_app, render_template

from salesflow import db
from salesflow.errors import NotFound, UpstreamFailure, ValidationFailed
from salesflow.models import Estimate, SalesSession

logger = logging.getLogger(__name__)

ESTIMATE = 'estimate'
CONTRACT_READY = 'contract_ready'
CONTRACT_SIGNED = 'contract_signed'
PROJECT_COMPLETE = 'project_complete'
TEAM_NOTIFICATION = 'team_notification'

SUBJECTS = {
    ESTIMATE: 'Your Landscaping Estimate - {name}',
    CONTRACT_READY: 'Your Landscaping Contract is Ready - {name}',
    CONTRACT_SIGNED: 'Contract Signed - Thank You! - {name}',
    PROJECT_COMPLETE: 'Project Complete - Thank You! - {name}',
    TEAM_NOTIFICATION: 'New Contract Signed - {name}',
}

KINDS = tuple(SUBJECTS)


def build_message(kind, session, estimate=None, recipient_email=None):
    """Return ``(to, subject, html)`` for a notification of ``kind``."""
    if kind not in SUBJECTS:
        raise ValidationFailed(f"Invalid email type {kind!r}")
    if kind == ESTIMATE and estimate is None:
        raise NotFound('Estimate not found for this session')

    if kind == TEAM_NOTIFICATION:
        to = recipient_email or current_app.config['TEAM_EMAIL']
    else:
        to = recipient_email or session.client_email
    if not to:
        raise ValidationFailed('No recipient email address for this notification')

    html = render_template(
        f"emails/{kind}.html",
        session=session,
        estimate=estimate,
        company=current_app.config['COMPANY_NAME'],
        today=date.today().strftime('%m/%d/%Y'),
    )
    return to, SUBJECTS[kind].format(name=session.client_name), html


def send_notification(kind, session_id, recipient_email=None, mailer=None):
    session = db.session.get(SalesSession, session_id)
    if session is None:
        raise NotFound(f"Session {session_id} not found")
    estimate = Estimate.query.filter_by(session_id=session_id).first()
    to, subject, html = build_message(kind, session, estimate, recipient_email)
    if mailer is None:
        from salesflow.integrations import collaborator
        mailer = collaborator('mailer')
    message_id = mailer.send(to, subject, html)
    logger.info("sent %s email for session %s to %s (%s)", kind, session_id, to, message_id)
    return message_id


def _deliver(app, kinds, session_id, mailer):
    with app.app_context():
        for kind in kinds:
            try:
                send_notification(kind, session_id, mailer=mailer)
            except (UpstreamFailure, ValidationFailed, NotFound) as e:
                logger.warning("%s email for session %s not sent: %s", kind, session_id, e)
            except Exception:  # pragma: no cover
                logger.exception("%s email for session %s failed", kind, session_id)


def dispatch(kinds, session_id, mailer=None):
    """Fire-and-forget delivery of ``kinds``; never raises.

    Returns the worker thread when delivery runs in the background.
    """
    app = current_app._get_current_object()
    if isinstance(kinds, str):
        kinds = [kinds]
    if app.config.get('NOTIFY_ASYNC'):
        worker = threading.Thread(
            target=_deliver, args=(app, list(kinds), session_id, mailer), daemon=True
        )
        worker.start()
        return worker
    _deliver(app, list(kinds), session_id, mailer)
    return None
