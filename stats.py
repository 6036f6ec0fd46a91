from sqlalchemy import func, case
from datetime import datetime
from model import db, Ticket
import logging

logger = logging.getLogger(__name__)


def compute_stats(tickets):
    """Count tickets and how many of them have been checked in."""
    total = 0
    checked_in = 0
    for ticket in tickets:
        total += 1
        if ticket.checked_in:
            checked_in += 1
    return {"total": total, "checked_in": checked_in}


def check_in_rate(stats):
    """Fraction of tickets checked in; 0.0 when there are no tickets."""
    total = stats.get("total", 0)
    if total <= 0:
        return 0.0
    return stats.get("checked_in", 0) / total


def with_rate(stats):
    """Stats dict plus the check-in rate as a whole percentage."""
    return {**stats, "check_in_rate": round(check_in_rate(stats) * 100)}


def event_ticket_stats(event_ids):
    """Grouped ticket counts per event id, zero-filled for events without tickets."""
    event_ids = list(event_ids)
    stats = {event_id: {"total": 0, "checked_in": 0} for event_id in event_ids}
    if not event_ids:
        return stats

    rows = db.session.query(
        Ticket.event_id,
        func.count(Ticket.id).label('total'),
        func.sum(case((Ticket.checked_in == True, 1), else_=0)).label('checked_in')
    ).filter(
        Ticket.event_id.in_(event_ids)
    ).group_by(
        Ticket.event_id
    ).all()

    for row in rows:
        stats[row.event_id] = {"total": row.total, "checked_in": int(row.checked_in or 0)}

    logger.debug(f"Computed ticket stats for {len(event_ids)} events")
    return stats


def summarize(per_event_stats):
    """Totals across several events' stats."""
    total = sum(s["total"] for s in per_event_stats)
    checked_in = sum(s["checked_in"] for s in per_event_stats)
    return with_rate({"total": total, "checked_in": checked_in})


def count_upcoming(tickets, now=None):
    """Tickets whose event has not started yet."""
    now = now or datetime.utcnow()
    return sum(1 for ticket in tickets if ticket.event and ticket.event.date >= now)
