"""SES delivery of the digest as a raw MIME email."""
import logging
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import List, Optional

from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


def render_body(template: str, report: str) -> str:
    return template.format(report=report)


def compose_message(sender: str, recipients: List[str], subject: str, body: str) -> bytes:
    """
    multipart/mixed
      multipart/alternative
        text/plain; charset=UTF-8
    """
    message = MIMEMultipart("mixed")
    message["Subject"] = subject
    message["From"] = sender
    message["To"] = ", ".join(recipients)

    alternative = MIMEMultipart("alternative")
    alternative.attach(MIMEText(body, "plain", "utf-8"))
    message.attach(alternative)
    return message.as_bytes()


def send_notification(ses, config, subject: str, report: str) -> Optional[str]:
    """Send the report; returns the SES MessageId, or None when anything failed."""
    recipients = config.recipients
    if not config.ses_from or not recipients:
        logger.error("Notification skipped: ses_from and ses_send must both be set")
        return None
    try:
        body = render_body(config.email_template, report)
        raw = compose_message(config.ses_from, recipients, subject, body)
    except (AttributeError, KeyError, IndexError, ValueError) as e:
        logger.error(f"Email composition failed: {e}")
        return None

    try:
        resp = ses.send_raw_email(
            Source=config.ses_from,
            Destinations=recipients,
            RawMessage={"Data": raw},
        )
    except (ClientError, BotoCoreError) as e:
        logger.error(f"SES send failed: {e}")
        return None
    message_id = resp.get("MessageId")
    logger.info(f"Sending email to {config.ses_send}: MessageId={message_id}")
    return message_id
