from flask import request, current_app
from flask_restful import Resource
from flask_jwt_extended import jwt_required
from sqlalchemy.exc import SQLAlchemyError
from datetime import datetime, timedelta, timezone
from model import db, Event, User
from auth import current_user, roles_required
from ticket import get_event_attendees
from stats import compute_stats, event_ticket_stats, summarize, with_rate
import logging

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "location")


def parse_event_date(value):
    """Parse an ISO 8601 date or datetime into a naive UTC datetime."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            raise ValueError("Invalid date format. Use ISO 8601, e.g. 2025-06-01T18:00:00")
    else:
        raise ValueError("date is required")

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _owned_event(event_id, user):
    """Returns (event, error_response)."""
    event = db.session.get(Event, event_id)
    if not event:
        return None, ({"error": "Event not found"}, 404)
    if event.organizer_id != user.id:
        return None, ({"message": "Only the event creator can access this event"}, 403)
    return event, None


class EventResource(Resource):

    def get(self, event_id=None):
        """Get one event, or all events ordered by date."""
        if event_id:
            event = db.session.get(Event, event_id)
            if not event:
                return {"error": "Event not found"}, 404
            return event.as_dict(), 200

        events = Event.query.order_by(Event.date.asc(), Event.id.asc()).all()
        return [event.as_dict() for event in events], 200

    @roles_required("EVENT_CREATOR_ROLES")
    def post(self):
        """Create a new event owned by the caller."""
        user = current_user()
        data = request.get_json(silent=True) or {}

        required_fields = ["title", "description", "location", "date"]
        for field in required_fields:
            if field not in data:
                return {"error": f"Missing field: {field}"}, 400

        try:
            event = Event(
                title=data["title"],
                description=data["description"],
                location=data["location"],
                date=parse_event_date(data["date"]),
                organizer_id=user.id
            )
            db.session.add(event)
            db.session.commit()
        except ValueError as e:
            return {"error": str(e)}, 400
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error creating event: {e}", exc_info=True)
            return {"error": "An internal error occurred"}, 500

        logger.info(f"User {user.id} created event {event.id}")
        return {"message": "Event created successfully", "event": event.as_dict(), "id": event.id}, 201

    @jwt_required()
    def put(self, event_id):
        """Update an existing event. Only the event's creator can update it."""
        user = current_user()
        if not user:
            return {"error": "User not found"}, 404

        event, error = _owned_event(event_id, user)
        if error:
            return error

        data = request.get_json(silent=True)
        if not data:
            return {"error": "No data provided"}, 400

        try:
            for field in EDITABLE_FIELDS:
                if field in data:
                    setattr(event, field, Event.validate_text(field, data[field]))

            if "date" in data:
                event.date = parse_event_date(data["date"])
                event.validate_date()

            event.updated_at = datetime.utcnow()
            db.session.commit()
        except ValueError as e:
            db.session.rollback()
            return {"error": str(e)}, 400
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"Error updating event {event_id}: {e}", exc_info=True)
            return {"error": "An internal error occurred"}, 500

        return {"message": "Update successful", "event": event.as_dict()}, 200


class OrganizerEventsResource(Resource):

    @jwt_required()
    def get(self):
        """The caller's events with ticket stats, plus totals across them."""
        user = current_user()
        if not user:
            return {"error": "User not found"}, 404

        events = Event.query.filter_by(organizer_id=user.id).order_by(Event.date.asc()).all()
        stats = event_ticket_stats(event.id for event in events)
        logger.info(f"Fetched events for organizer {user.id}: {len(events)} events")

        return {
            "events": [
                {**event.as_dict(), "stats": with_rate(stats[event.id])}
                for event in events
            ],
            "totals": summarize(stats.values())
        }, 200


class EventAttendeesResource(Resource):

    @jwt_required()
    def get(self, event_id):
        """
        Tickets for one of the caller's events, with holder details.
        Pass the returned cursor as ?since= to fetch later changes. The cursor
        trails server_time, so rows may repeat across polls; merge them by id.
        """
        user = current_user()
        if not user:
            return {"error": "User not found"}, 404

        event, error = _owned_event(event_id, user)
        if error:
            return error

        since = None
        if request.args.get("since"):
            try:
                since = parse_event_date(request.args["since"])
            except ValueError:
                return {"error": "Invalid since timestamp"}, 400

        server_time = datetime.utcnow()
        # Check-ins are stamped before they commit; overlap so late commits are not skipped
        cursor = server_time - timedelta(seconds=current_app.config.get("ATTENDEE_POLL_OVERLAP_SECONDS", 30))
        tickets = get_event_attendees(event.id, since=since)
        holders = {}
        if tickets:
            holders = {
                holder.id: holder
                for holder in User.query.filter(User.id.in_({t.user_id for t in tickets})).all()
            }

        attendees = []
        for ticket in tickets:
            holder = holders.get(ticket.user_id)
            attendees.append({
                **ticket.as_dict(),
                "holder_name": holder.name if holder else None,
                "holder_email": holder.email if holder else None
            })

        # Stats always cover the whole event, not just the delta
        all_tickets = tickets if since is None else get_event_attendees(event.id)
        return {
            "event": event.as_dict(),
            "attendees": attendees,
            "stats": with_rate(compute_stats(all_tickets)),
            "server_time": server_time.isoformat(),
            "cursor": cursor.isoformat()
        }, 200


def register_event_resources(api):
    """Registers event resources with Flask-RESTful API."""
    api.add_resource(EventResource, "/events", "/events/<int:event_id>")
    api.add_resource(OrganizerEventsResource, "/api/organizer/events")
    api.add_resource(EventAttendeesResource, "/events/<int:event_id>/attendees")
