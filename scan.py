from flask import request, current_app
from flask_restful import Resource
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime
from model import db, Ticket, Scan, User, Event
from auth import current_user, roles_required
import qr_utils
import logging

logger = logging.getLogger(__name__)
security_logger = logging.getLogger('security')

# Attached via limiter.init_app(app); limits only the routes decorated below
limiter = Limiter(key_func=get_remote_address)

INVALID_FORMAT = "Invalid QR code format"
TICKET_NOT_FOUND = "Ticket not found"
ALREADY_USED = "Ticket already used"
CHECK_IN_SUCCESSFUL = "Check-in successful"
VALIDATION_FAILED = "Validation failed - please try again"


def find_ticket_by_qr_code(qr_code):
    return Ticket.query.filter_by(qr_code=qr_code).first()


def claim_check_in(ticket_id, checked_in_at):
    """Flip checked_in false->true in one conditional UPDATE.

    Returns True only for the caller whose UPDATE matched the row; anyone who
    arrives after the flag is set matches nothing and gets False.
    """
    result = db.session.execute(
        update(Ticket)
        .where(Ticket.id == ticket_id, Ticket.checked_in == False)
        .values(checked_in=True, checked_in_at=checked_in_at)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def record_scan(qr_code, result, ticket=None, scanned_by=None):
    scan = Scan(
        ticket_id=ticket.id if ticket else None,
        event_id=ticket.event_id if ticket else None,
        qr_code=qr_code[:255],
        valid=result["valid"],
        message=result["message"],
        scanned_by=scanned_by
    )
    db.session.add(scan)
    return scan


def _already_used(ticket):
    return {
        "valid": False,
        "message": ALREADY_USED,
        "ticket": ticket.as_dict(),
        "event": ticket.event.as_dict() if ticket.event else None
    }


def validate_and_check_in(qr_code, scanned_by=None):
    """Validate a scanned code and check its ticket in.

    Always returns a result dict ``{valid, message, ticket?, event?, user?}``;
    malformed codes, unknown tickets, reuse and database failures are all
    reported through ``valid``/``message`` rather than raised. Every attempt
    except a database failure leaves a Scan record.
    """
    # Keyboard-wedge scanners append a newline; decode and lookup see the same value
    if isinstance(qr_code, str):
        qr_code = qr_code.strip()

    if qr_utils.decode(qr_code) is None:
        result = {"valid": False, "message": INVALID_FORMAT}
        try:
            # Logged for the scanner's history; no ticket lookup
            record_scan(qr_code if isinstance(qr_code, str) else repr(qr_code), result, None, scanned_by)
            db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error recording rejected scan: {e}", exc_info=True)
        security_logger.info(f"SCANNER:{scanned_by} | RESULT:invalid_format")
        return result

    try:
        ticket = find_ticket_by_qr_code(qr_code)

        if not ticket:
            result = {"valid": False, "message": TICKET_NOT_FOUND}
        elif ticket.checked_in:
            result = _already_used(ticket)
        else:
            event = db.session.get(Event, ticket.event_id)
            holder = db.session.get(User, ticket.user_id)

            if claim_check_in(ticket.id, datetime.utcnow()):
                db.session.refresh(ticket)
                result = {
                    "valid": True,
                    "message": CHECK_IN_SUCCESSFUL,
                    "ticket": ticket.as_dict(),
                    "event": event.as_dict() if event else None,
                    "user": holder.as_dict() if holder else None
                }
            else:
                # Another scan checked this ticket in after we read it
                db.session.refresh(ticket)
                result = _already_used(ticket)

        record_scan(qr_code, result, ticket, scanned_by)
        db.session.commit()

    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Error validating ticket: {e}", exc_info=True)
        return {"valid": False, "message": VALIDATION_FAILED}

    ticket_id = result["ticket"]["id"] if result.get("ticket") else None
    security_logger.info(
        f"SCANNER:{scanned_by} | TICKET:{ticket_id} | VALID:{result['valid']} | RESULT:{result['message']}"
    )
    return result


def recent_scans(scanned_by, limit=10):
    return Scan.query.filter_by(scanned_by=scanned_by).order_by(
        Scan.scanned_at.desc(), Scan.id.desc()
    ).limit(limit).all()


class TicketValidationResource(Resource):
    decorators = [limiter.limit(lambda: current_app.config["SCAN_RATE_LIMIT"])]

    @roles_required("SCANNER_ROLES")
    def post(self):
        """
        Validate a QR code and check the ticket in.
        The outcome is always HTTP 200; see "valid" and "message".
        """
        data = request.get_json(silent=True) or {}
        qr_code = data.get("qr_code") or data.get("qrCode")
        if not qr_code or not isinstance(qr_code, str):
            return {"message": "QR code data is required"}, 400

        user = current_user()
        return validate_and_check_in(qr_code, scanned_by=user.id), 200


class ScanHistoryResource(Resource):

    @roles_required("SCANNER_ROLES")
    def get(self):
        """The caller's most recent scans, newest first."""
        user = current_user()
        limit = request.args.get("limit", type=int) or current_app.config.get("SCAN_HISTORY_LIMIT", 10)
        limit = max(1, min(limit, 100))
        return {"scans": [scan.as_dict() for scan in recent_scans(user.id, limit)]}, 200


def register_ticket_validation_resources(api):
    """Registers the ticket validation resources with Flask-RESTful API."""
    api.add_resource(TicketValidationResource, "/tickets/validate", endpoint="validate_ticket")
    api.add_resource(ScanHistoryResource, "/scans", endpoint="scan_history")
