"""
Ticket QR payloads.

A payload is the ASCII string ``EVENTKEY-<event_id>-<user_id>-<token>``. The
token is 128 random bits, which is the only thing that makes a payload hard
to guess; the payload carries no signature and is checked against the ledger
at scan time.
"""
from io import BytesIO
import logging
import uuid

import qrcode

logger = logging.getLogger(__name__)

QR_TAG = "EVENTKEY"
DELIMITER = "-"


def _check_identifier(name, value):
    value = str(value) if value is not None else ""
    if not value:
        raise ValueError(f"{name} is required")
    if DELIMITER in value:
        raise ValueError(f"{name} must not contain '{DELIMITER}'")
    return value


def encode(event_id, user_id) -> str:
    """Build a fresh payload for the (event, user) pair."""
    event_id = _check_identifier("event_id", event_id)
    user_id = _check_identifier("user_id", user_id)
    token = uuid.uuid4().hex
    return DELIMITER.join([QR_TAG, event_id, user_id, token])


def decode(code):
    """Return ``{"event_id", "user_id", "ticket_id"}`` or None when malformed."""
    if not isinstance(code, str):
        return None

    parts = code.strip().split(DELIMITER)
    if len(parts) != 4 or parts[0] != QR_TAG or not all(parts):
        return None

    return {
        "event_id": parts[1],
        "user_id": parts[2],
        "ticket_id": parts[3],
    }


def render_png(code: str, box_size: int = 10, border: int = 4) -> bytes:
    """Draw a payload as a PNG image."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(code)
    qr.make(fit=True)

    img = qr.make_image(fill_color="#1a1a1a", back_color="#ffffff")

    buffer = BytesIO()
    img.save(buffer, format="PNG")
    logger.debug(f"Rendered QR image for payload {code[:20]}...")
    return buffer.getvalue()
