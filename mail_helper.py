import logging

from flask_mail import Message

from app_factory import mail

logger = logging.getLogger(__name__)


def send_email(to, subject, body, html=False):
    recipients = [to] if isinstance(to, str) else list(to)
    msg = Message(subject, recipients=recipients)

    if html:
        msg.html = body
    else:
        msg.body = body

    mail.send(msg)
    logger.info("Sent %r to %s", subject, ", ".join(recipients))
