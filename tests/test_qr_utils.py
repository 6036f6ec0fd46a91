import pytest

import qr_utils


def test_encode_decode_round_trip():
    code = qr_utils.encode(3, 7)

    decoded = qr_utils.decode(code)

    assert decoded["event_id"] == "3"
    assert decoded["user_id"] == "7"
    assert len(decoded["ticket_id"]) == 32
    assert code.startswith("EVENTKEY-3-7-")


def test_encode_is_unique_per_call():
    assert qr_utils.encode(1, 1) != qr_utils.encode(1, 1)


@pytest.mark.parametrize("event_id, user_id", [("", 1), (1, None), ("a-b", 1), (1, "x-y")])
def test_encode_rejects_unusable_identifiers(event_id, user_id):
    with pytest.raises(ValueError):
        qr_utils.encode(event_id, user_id)


@pytest.mark.parametrize("code", [
    "",
    "garbage",
    "EVENTKEY-1-2",
    "EVENTKEY-1-2-abc-def",
    "TICKET-1-2-abc",
    "EVENTKEY--2-abc",
    "EVENTKEY-1-2-",
    None,
    12345,
])
def test_decode_rejects_malformed_codes(code):
    assert qr_utils.decode(code) is None


def test_render_png_produces_png_bytes():
    png = qr_utils.render_png(qr_utils.encode(1, 2), box_size=4, border=2)

    assert png.startswith(b"\x89PNG\r\n\x1a\n")
