from sqlalchemy.exc import OperationalError

import qr_utils
import scan as scan_module
from model import db, Scan, UserRole
from scan import validate_and_check_in, recent_scans
from ticket import issue_ticket


def test_valid_ticket_checks_in(attendee, scanner, organizer, make_event):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)

    result = validate_and_check_in(ticket.qr_code, scanned_by=scanner.id)

    assert result["valid"] is True
    assert result["message"] == "Check-in successful"
    assert result["ticket"]["checked_in"] is True
    assert result["ticket"]["checked_in_at"] is not None
    assert result["event"]["id"] == event.id
    assert result["user"]["id"] == attendee.id
    db.session.refresh(ticket)
    assert ticket.checked_in is True


def test_second_scan_reports_already_used(attendee, scanner, organizer, make_event):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)
    validate_and_check_in(ticket.qr_code, scanned_by=scanner.id)
    db.session.refresh(ticket)
    first_checked_in_at = ticket.checked_in_at

    result = validate_and_check_in(ticket.qr_code, scanned_by=scanner.id)

    assert result["valid"] is False
    assert result["message"] == "Ticket already used"
    assert result["ticket"]["id"] == ticket.id
    assert result["event"]["id"] == event.id
    assert "user" not in result
    db.session.refresh(ticket)
    assert ticket.checked_in is True
    assert ticket.checked_in_at == first_checked_in_at


def test_unknown_code(scanner):
    result = validate_and_check_in(qr_utils.encode(1, 1), scanned_by=scanner.id)

    assert result == {"valid": False, "message": "Ticket not found"}
    logged = Scan.query.one()
    assert logged.valid is False
    assert logged.ticket_id is None


def test_malformed_code_is_logged_without_lookup(scanner, monkeypatch):
    def fail_lookup(qr_code):
        raise AssertionError("lookup should not run for malformed codes")

    monkeypatch.setattr(scan_module, "find_ticket_by_qr_code", fail_lookup)

    result = validate_and_check_in("not-a-ticket", scanned_by=scanner.id)

    assert result == {"valid": False, "message": "Invalid QR code format"}
    history = recent_scans(scanner.id)
    assert len(history) == 1
    assert history[0].valid is False
    assert history[0].ticket_id is None
    assert history[0].message == "Invalid QR code format"
    assert history[0].qr_code == "not-a-ticket"


def test_scanner_suffix_whitespace_is_ignored(attendee, scanner, organizer, make_event):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)

    result = validate_and_check_in(ticket.qr_code + "\r\n", scanned_by=scanner.id)

    assert result["valid"] is True
    assert result["ticket"]["id"] == ticket.id
    assert recent_scans(scanner.id)[0].qr_code == ticket.qr_code


def test_database_failure_returns_retry_message(attendee, scanner, organizer, make_event, monkeypatch):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)

    def broken_lookup(qr_code):
        raise OperationalError("SELECT ticket", {}, Exception("database is unavailable"))

    monkeypatch.setattr(scan_module, "find_ticket_by_qr_code", broken_lookup)

    result = validate_and_check_in(ticket.qr_code, scanned_by=scanner.id)

    assert result == {"valid": False, "message": "Validation failed - please try again"}
    assert Scan.query.count() == 0
    db.session.refresh(ticket)
    assert ticket.checked_in is False


def test_concurrent_check_in_admits_exactly_one(attendee, scanner, organizer, make_event, monkeypatch):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)
    code = ticket.qr_code

    real_claim = scan_module.claim_check_in
    state = {"interleaved": False}
    inner_results = []

    def claim_after_competing_scan(ticket_id, checked_in_at):
        # A second device scans the same ticket between our read and our write
        if not state["interleaved"]:
            state["interleaved"] = True
            inner_results.append(validate_and_check_in(code, scanned_by=scanner.id))
        return real_claim(ticket_id, checked_in_at)

    monkeypatch.setattr(scan_module, "claim_check_in", claim_after_competing_scan)

    outer = validate_and_check_in(code, scanned_by=scanner.id)

    inner = inner_results[0]
    assert inner["valid"] is True
    assert outer["valid"] is False
    assert outer["message"] == "Ticket already used"
    assert outer["ticket"]["checked_in_at"] == inner["ticket"]["checked_in_at"]
    assert Scan.query.filter_by(valid=True).count() == 1


def test_scans_are_logged_newest_first(attendee, scanner, organizer, make_event):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)

    validate_and_check_in(ticket.qr_code, scanned_by=scanner.id)
    validate_and_check_in(ticket.qr_code, scanned_by=scanner.id)

    scans = recent_scans(scanner.id)
    assert [s.message for s in scans] == ["Ticket already used", "Check-in successful"]
    assert scans[0].as_dict()["event_title"] == event.title
    assert recent_scans(scanner.id, limit=1)[0].id == scans[0].id


def test_validate_endpoint_always_returns_200(client, attendee, scanner, organizer, make_event, auth_headers):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)
    headers = auth_headers(scanner)

    ok = client.post("/tickets/validate", json={"qr_code": ticket.qr_code}, headers=headers)
    reused = client.post("/tickets/validate", json={"qrCode": ticket.qr_code}, headers=headers)
    garbage = client.post("/tickets/validate", json={"qr_code": "hello"}, headers=headers)

    assert ok.status_code == 200
    assert ok.get_json()["valid"] is True
    assert reused.status_code == 200
    assert reused.get_json()["message"] == "Ticket already used"
    assert garbage.status_code == 200
    assert garbage.get_json()["message"] == "Invalid QR code format"


def test_validate_endpoint_requires_code(client, scanner, auth_headers):
    response = client.post("/tickets/validate", json={}, headers=auth_headers(scanner))

    assert response.status_code == 400


def test_validate_endpoint_rejects_attendees(client, attendee, organizer, make_event, auth_headers):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)

    response = client.post("/tickets/validate", json={"qr_code": ticket.qr_code}, headers=auth_headers(attendee))

    assert response.status_code == 403
    db.session.refresh(ticket)
    assert ticket.checked_in is False


def test_organizers_can_scan(client, attendee, organizer, make_event, auth_headers):
    assert organizer.role == UserRole.ORGANIZER
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)

    response = client.post("/tickets/validate", json={"qr_code": ticket.qr_code}, headers=auth_headers(organizer))

    assert response.get_json()["valid"] is True


def test_scan_history_endpoint(client, attendee, scanner, organizer, make_event, auth_headers):
    event = make_event(organizer)
    ticket, _ = issue_ticket(attendee.id, event.id)
    headers = auth_headers(scanner)
    client.post("/tickets/validate", json={"qr_code": ticket.qr_code}, headers=headers)
    client.post("/tickets/validate", json={"qr_code": ticket.qr_code}, headers=headers)

    response = client.get("/scans?limit=1", headers=headers)

    scans = response.get_json()["scans"]
    assert response.status_code == 200
    assert len(scans) == 1
    assert scans[0]["message"] == "Ticket already used"
