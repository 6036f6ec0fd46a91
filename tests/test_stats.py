from datetime import datetime, timedelta
from types import SimpleNamespace

from model import db, Ticket
from stats import compute_stats, check_in_rate, with_rate, event_ticket_stats, summarize, count_upcoming
import qr_utils


def _tickets(*flags):
    return [SimpleNamespace(checked_in=flag) for flag in flags]


def test_empty_stats_have_zero_rate():
    stats = compute_stats([])

    assert stats == {"total": 0, "checked_in": 0}
    assert check_in_rate(stats) == 0.0
    assert with_rate(stats)["check_in_rate"] == 0


def test_compute_stats_counts_checked_in():
    stats = compute_stats(_tickets(True, False, True))

    assert stats == {"total": 3, "checked_in": 2}
    assert with_rate(stats)["check_in_rate"] == 67


def test_summarize_totals_across_events():
    totals = summarize([{"total": 4, "checked_in": 1}, {"total": 0, "checked_in": 0}])

    assert totals == {"total": 4, "checked_in": 1, "check_in_rate": 25}


def test_event_ticket_stats_zero_fills_events_without_tickets(organizer, attendee, scanner, make_event):
    busy = make_event(organizer, title="Busy")
    quiet = make_event(organizer, title="Quiet")
    for holder, checked_in in ((attendee, True), (scanner, False)):
        db.session.add(Ticket(
            user_id=holder.id,
            event_id=busy.id,
            qr_code=qr_utils.encode(busy.id, holder.id),
            checked_in=checked_in
        ))
    db.session.commit()

    stats = event_ticket_stats([busy.id, quiet.id])

    assert stats[busy.id] == {"total": 2, "checked_in": 1}
    assert stats[quiet.id] == {"total": 0, "checked_in": 0}
    assert event_ticket_stats([]) == {}


def test_count_upcoming_skips_past_events():
    now = datetime(2030, 1, 1, 12, 0)
    tickets = [
        SimpleNamespace(event=SimpleNamespace(date=now + timedelta(days=1))),
        SimpleNamespace(event=SimpleNamespace(date=now)),
        SimpleNamespace(event=SimpleNamespace(date=now - timedelta(hours=1))),
    ]

    assert count_upcoming(tickets, now=now) == 2
    assert count_upcoming([], now=now) == 0
