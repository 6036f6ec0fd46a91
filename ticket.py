from flask import request, current_app, send_file
from flask_restful import Resource
from flask_jwt_extended import jwt_required
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from model import db, Ticket, Event
from auth import current_user
from email_utils import send_email_with_attachment
from stats import compute_stats, with_rate, count_upcoming
import qr_utils
import logging
from io import BytesIO

logger = logging.getLogger(__name__)


def find_existing_ticket(user_id, event_id):
    return Ticket.query.filter_by(user_id=user_id, event_id=event_id).first()


def issue_ticket(user_id, event_id):
    """Issue the user's ticket for an event, or return the one they already hold.

    Returns ``(ticket, created)``. Raises ValueError when the event does not exist.
    The (user_id, event_id) unique constraint settles concurrent requests: the
    losing insert rolls back and returns the winner's ticket.
    """
    event = db.session.get(Event, event_id)
    if not event:
        raise ValueError("Event not found")

    existing = find_existing_ticket(user_id, event.id)
    if existing:
        logger.info(f"User {user_id} already holds ticket {existing.id} for event {event.id}")
        return existing, False

    ticket = Ticket(
        user_id=user_id,
        event_id=event.id,
        qr_code=qr_utils.encode(event.id, user_id),
        checked_in=False
    )
    db.session.add(ticket)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        existing = find_existing_ticket(user_id, event.id)
        if not existing:
            raise
        logger.warning(f"Concurrent issuance for user {user_id} / event {event.id}; returning ticket {existing.id}")
        return existing, False

    logger.info(f"Issued ticket {ticket.id} to user {user_id} for event {event.id}")
    return ticket, True


def get_user_tickets(user_id):
    return Ticket.query.filter_by(user_id=user_id).order_by(Ticket.created_at.desc()).all()


def get_event_attendees(event_id, since=None):
    """Tickets for an event; with ``since``, only those issued or checked in after it."""
    query = Ticket.query.filter_by(event_id=event_id)
    if since is not None:
        query = query.filter(or_(Ticket.created_at > since, Ticket.checked_in_at > since))
    return query.order_by(Ticket.created_at.asc()).all()


def ticket_qr_png(ticket):
    return qr_utils.render_png(
        ticket.qr_code,
        box_size=current_app.config.get("QR_BOX_SIZE", 10),
        border=current_app.config.get("QR_BORDER", 4)
    )


def send_ticket_email(user, ticket, event):
    """Email the ticket's QR code to its holder. Best effort; never raises."""
    if not current_app.config.get("SEND_TICKET_EMAILS"):
        return False
    if not user or not user.email:
        logger.info(f"Ticket {ticket.id}: holder has no email address, skipping confirmation")
        return False

    try:
        qr_png = ticket_qr_png(ticket)
    except Exception as e:
        logger.error(f"QR generation failed for ticket {ticket.id}: {e}")
        return False

    event_date = event.date.strftime('%A, %B %d, %Y %H:%M') if event.date else "TBD"
    subject = f"Your ticket for {event.title}"
    body = f"""Hi {user.name or 'there'},

You're registered for {event.title}.

Date: {event_date}
Location: {event.location}
Ticket ID: {ticket.id}

Your QR code is attached. Show it at the entrance; it can be scanned once.

See you at the event!"""

    return send_email_with_attachment(
        recipient=user.email,
        subject=subject,
        body=body,
        attachments=[{
            'filename': f"ticket_{ticket.id}.png",
            'content_type': 'image/png',
            'content': qr_png
        }]
    )


class TicketResource(Resource):

    @jwt_required()
    def get(self, ticket_id=None):
        """Get the caller's tickets, or one of them by id."""
        try:
            user = current_user()
            if not user:
                return {"error": "User not found"}, 404

            if ticket_id:
                ticket = Ticket.query.filter_by(id=ticket_id, user_id=user.id).first()
                if not ticket:
                    return {"error": "Ticket not found or does not belong to you"}, 404
                return {"ticket": ticket.as_dict(), "event": ticket.event.as_dict()}, 200

            tickets = get_user_tickets(user.id)
            return {
                "tickets": [
                    {**ticket.as_dict(), "event": ticket.event.as_dict()}
                    for ticket in tickets
                ],
                "stats": {**with_rate(compute_stats(tickets)), "upcoming": count_upcoming(tickets)}
            }, 200

        except Exception as e:
            logger.error(f"Error retrieving tickets: {e}", exc_info=True)
            return {"error": "An internal error occurred"}, 500

    @jwt_required()
    def post(self):
        """Register the caller for an event and return their ticket."""
        user = current_user()
        if not user:
            return {"error": "User not found"}, 404

        data = request.get_json(silent=True) or {}
        event_id = data.get("event_id", data.get("eventId"))
        if event_id is None:
            return {"error": "event_id is required"}, 400

        requested_user_id = data.get("user_id", data.get("userId", user.id))
        if str(requested_user_id) != str(user.id):
            return {"message": "You can only register yourself for an event"}, 403

        try:
            event_id = int(event_id)
        except (TypeError, ValueError):
            return {"error": "event_id must be an integer"}, 400

        try:
            ticket, created = issue_ticket(user.id, event_id)
        except ValueError as e:
            return {"error": str(e)}, 404
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Database error while issuing ticket: {e}", exc_info=True)
            return {"error": "An internal error occurred"}, 500

        if created:
            send_ticket_email(user, ticket, ticket.event)

        return {"ticket": ticket.as_dict(), "created": created}, 201 if created else 200


class TicketQRCodeResource(Resource):

    @jwt_required()
    def get(self, ticket_id):
        """Download the caller's ticket QR code as a PNG."""
        user = current_user()
        if not user:
            return {"error": "User not found"}, 404

        ticket = Ticket.query.filter_by(id=ticket_id, user_id=user.id).first()
        if not ticket:
            return {"error": "Ticket not found or does not belong to you"}, 404

        try:
            png = ticket_qr_png(ticket)
        except Exception as e:
            logger.error(f"QR generation failed for ticket {ticket.id}: {e}", exc_info=True)
            return {"error": "Failed to generate QR code"}, 500

        return send_file(
            BytesIO(png),
            mimetype="image/png",
            as_attachment=request.args.get("download", "false").lower() == "true",
            download_name=f"ticket_{ticket.id}.png"
        )


def register_ticket_resources(api):
    """Registers ticket-related resources with Flask-RESTful API."""
    api.add_resource(TicketResource, "/tickets", "/tickets/<int:ticket_id>")
    api.add_resource(TicketQRCodeResource, "/tickets/<int:ticket_id>/qr")
