import json
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from services.ticketing.models.ticket import TicketIdentity, TicketRecord, TicketType
from services.ticketing.services import qr_payload
from shared.errors import MalformedPayloadError, MissingRequiredFieldError


def _ticket():
    return TicketRecord(
        id="6f1c2d1e-aaaa-bbbb-cccc-000000000001",
        event_id="evt-1",
        owner_user_id="org-1",
        ticket_number="TKT-20261120193000-1234",
        ticket_type=TicketType.VIP,
        price=Decimal("150.00"),
    )


def test_encode_contains_identity_and_event_fields(event_meta):
    generated_at = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    payload = qr_payload.encode(_ticket(), event_meta, generated_at)
    data = json.loads(payload)

    assert data["ticketId"] == "6f1c2d1e-aaaa-bbbb-cccc-000000000001"
    assert data["eventName"] == "Expo Tech"
    assert data["eventDate"] == "2026-11-20"
    assert data["eventTime"] == "19:30"
    assert data["eventLocation"] == "Centro de Convenciones"
    assert data["organizerName"] == "Ana Pérez"
    assert data["organizerEmail"] == "ana@example.com"
    assert data["ticketType"] == "VIP"
    assert Decimal(data["ticketPrice"]) == Decimal("150.00")
    assert data["generatedAt"].startswith("2026-10-01T12:00:00")


def test_encode_is_deterministic(event_meta):
    generated_at = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    first = qr_payload.encode(_ticket(), event_meta, generated_at)
    second = qr_payload.encode(_ticket(), event_meta, generated_at)
    assert first == second
    assert ", " not in first and ": " not in first


def test_decode_restores_encoded_identity(event_meta):
    generated_at = datetime(2026, 10, 1, 12, 0, tzinfo=timezone.utc)
    ticket = _ticket()
    expected = qr_payload.build_identity(ticket, event_meta, generated_at)

    decoded = qr_payload.decode(qr_payload.encode(ticket, event_meta, generated_at))

    assert decoded == expected


def test_decode_minimal_payload():
    decoded = qr_payload.decode('{"ticketId":"T1","eventName":"Expo"}')
    assert decoded.ticket_id == "T1"
    assert decoded.event_name == "Expo"
    assert decoded.ticket_type is None


def test_decode_accepts_numeric_ticket_id():
    decoded = qr_payload.decode('{"ticketId": 42, "eventName": "Expo"}')
    assert decoded.ticket_id == "42"


def test_decode_missing_event_name():
    with pytest.raises(MissingRequiredFieldError) as exc:
        qr_payload.decode('{"ticketId":"T1"}')
    assert exc.value.field == "eventName"


def test_decode_blank_ticket_id():
    with pytest.raises(MissingRequiredFieldError) as exc:
        qr_payload.decode('{"ticketId":"  ","eventName":"Expo"}')
    assert exc.value.field == "ticketId"


@pytest.mark.parametrize("payload", ["not json", "[1, 2]", '"texto"'])
def test_decode_malformed(payload):
    with pytest.raises(MalformedPayloadError):
        qr_payload.decode(payload)


def test_decode_invalid_field_type_is_malformed():
    with pytest.raises(MalformedPayloadError):
        qr_payload.decode('{"ticketId":"T1","eventName":"Expo","ticketPrice":"gratis"}')


def test_decode_scanned_raw_string_fallback():
    assert qr_payload.decode_scanned("  LEGACY-0001 \n") == "LEGACY-0001"


def test_decode_scanned_json_still_validated():
    with pytest.raises(MissingRequiredFieldError):
        qr_payload.decode_scanned('{"ticketId":"T1"}')


def test_decode_scanned_structured():
    decoded = qr_payload.decode_scanned('{"ticketId":"T1","eventName":"Expo"}')
    assert isinstance(decoded, TicketIdentity)


def test_decode_scanned_empty():
    with pytest.raises(MalformedPayloadError):
        qr_payload.decode_scanned("   ")
