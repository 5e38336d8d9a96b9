from datetime import datetime, timezone
from decimal import Decimal

import pytest

from services.ticketing.models.ticket import EventMeta, TicketFilter, TicketRecord, TicketRequest, TicketStatus, TicketType
from services.ticketing.services import qr_payload
from services.ticketing.services.issuer_service import TicketIssuer
from services.ticketing.stores.sql_store import SqlTicketStore
from shared.errors import StorageConflictError


def _record(number, ticket_id=None, ticket_type=TicketType.STANDARD, price="20", event_id="evt-1"):
    return TicketRecord(
        id=ticket_id or f"id-{number}",
        event_id=event_id,
        owner_user_id="org-1",
        ticket_number=f"TKT-20261019080000-{number}",
        ticket_type=ticket_type,
        price=Decimal(price),
        qr_payload='{"ticketId":"x","eventName":"Expo"}',
    )


async def test_create_and_read_back(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.create_many([_record(1001), _record(1002, ticket_type=TicketType.VIP)])

        ticket = await store.get_by_id("id-1002")
        assert ticket.ticket_type == TicketType.VIP
        assert ticket.status == TicketStatus.AVAILABLE
        assert ticket.is_active is True
        assert ticket.qr_payload.startswith("{")

        tickets = await store.get_by_event("evt-1")
        assert [t.ticket_number for t in tickets] == [
            "TKT-20261019080000-1001",
            "TKT-20261019080000-1002",
        ]
        assert await store.get_by_id("missing") is None


async def test_duplicate_ticket_number_rejects_whole_batch(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.create_many([_record(1001)])

        with pytest.raises(StorageConflictError):
            await store.create_many([_record(2001), _record(1001, ticket_id="other-id")])

        tickets = await store.get_by_event("evt-1")
        assert [t.id for t in tickets] == ["id-1001"]


async def test_conditional_update_is_compare_and_swap(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.create_many([_record(1001)])
        fields = {
            "status": TicketStatus.SOLD,
            "is_purchased": True,
            "purchased_by_user_id": "buyer-1",
            "purchase_date": datetime.now(timezone.utc),
        }

        assert await store.conditional_update_status("id-1001", TicketStatus.AVAILABLE, fields) is True
        assert await store.conditional_update_status("id-1001", TicketStatus.AVAILABLE, fields) is False

        ticket = await store.get_by_id("id-1001")
        assert ticket.status == TicketStatus.SOLD
        assert ticket.purchased_by_user_id == "buyer-1"


async def test_conditional_update_rejects_immutable_fields(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.create_many([_record(1001)])
        with pytest.raises(ValueError):
            await store.conditional_update_status("id-1001", TicketStatus.AVAILABLE, {"qr_payload": "x"})


async def test_filters_and_soft_delete(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.create_many([
            _record(1001),
            _record(1002, ticket_type=TicketType.VIP),
            _record(1003, ticket_type=TicketType.STUDENT),
            _record(1004, event_id="evt-2"),
        ])
        assert await store.deactivate("id-1003") is True
        assert await store.deactivate("id-1003") is False

        active = await store.get_by_event("evt-1")
        assert [t.id for t in active] == ["id-1001", "id-1002"]

        everything = await store.get_by_event("evt-1", TicketFilter(is_active=None))
        assert len(everything) == 3

        vip = await store.get_by_event("evt-1", TicketFilter(ticket_type=TicketType.VIP))
        assert [t.id for t in vip] == ["id-1002"]

        by_number = await store.get_by_event("evt-1", TicketFilter(ticket_number="-1001"))
        assert [t.id for t in by_number] == ["id-1001"]

        by_text = await store.get_by_event("evt-1", TicketFilter(query="VIP"))
        assert [t.id for t in by_text] == ["id-1002"]

        # Los tickets inactivos no se pueden comprar
        assert await store.conditional_update_status(
            "id-1003", TicketStatus.AVAILABLE, {"status": TicketStatus.SOLD}
        ) is False


async def test_list_by_purchaser_most_recent_first(session_maker):
    async with session_maker() as db:
        store = SqlTicketStore(db)
        await store.create_many([_record(1001), _record(1002), _record(1003)])
        for ticket_id, day in (("id-1001", 1), ("id-1002", 3)):
            await store.conditional_update_status(ticket_id, TicketStatus.AVAILABLE, {
                "status": TicketStatus.SOLD,
                "is_purchased": True,
                "purchased_by_user_id": "buyer-1",
                "purchase_date": datetime(2026, 10, day, tzinfo=timezone.utc),
            })

        purchases = await store.list_by_purchaser("buyer-1")
        assert [t.id for t in purchases] == ["id-1002", "id-1001"]
        assert await store.list_by_purchaser("buyer-2") == []


async def test_issued_price_survives_storage_unchanged(session_maker):
    async with session_maker() as db:
        issued = await TicketIssuer(SqlTicketStore(db)).issue(
            "evt-1",
            "org-1",
            [TicketRequest(ticket_type="VIP", price=Decimal("20.5"), quantity=1)],
            EventMeta(name="Expo"),
        )

    async with session_maker() as db:
        stored = await SqlTicketStore(db).get_by_id(issued[0].id)

    payload_price = qr_payload.decode(stored.qr_payload).ticket_price
    assert str(issued[0].price) == str(stored.price) == str(payload_price) == "20.50"
