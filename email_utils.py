import logging
from flask_mail import Mail, Message
from flask import current_app

# Initialize Mail globally; attach it with mail.init_app(app)
mail = Mail()

logger = logging.getLogger(__name__)


def send_email_with_attachment(
    recipient: str,
    subject: str,
    body: str,
    attachments: list = None,
    is_html: bool = False
) -> bool:
    """
    Send an email with HTML or plain text content and optional attachments.

    `attachments` should be a list of dicts with keys:
    - 'filename': str
    - 'content_type': str (e.g., 'image/png')
    - 'content': bytes

    Returns False instead of raising so callers can treat delivery as best effort.
    """
    try:
        msg = Message(
            subject=subject,
            recipients=[recipient],
            sender=current_app.config.get("MAIL_DEFAULT_SENDER")
        )

        if is_html:
            msg.html = body
        else:
            msg.body = body

        for item in attachments or []:
            try:
                msg.attach(
                    filename=item['filename'],
                    content_type=item['content_type'],
                    data=item['content']
                )
            except KeyError as ke:
                logger.warning(f"Attachment missing key: {ke}, skipped")

        mail.send(msg)
        logger.info(f"Email with {len(attachments or [])} attachment(s) sent to {recipient}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {recipient}: {e}")
        return False
