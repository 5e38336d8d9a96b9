import logging
import sys
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from shared.database.connection import Base
from shared.database import models  # noqa: F401  registra las tablas en Base.metadata
from shared.utils.rate_limiter import limiter
from services.checkin.services import checkin_service
from services.checkin.stores.ledger import InMemoryCheckInLedger
from services.ticketing.models.ticket import EventMeta, TicketRequest
from services.ticketing.services import qr_image_service
from services.ticketing.services.issuer_service import TicketIssuer
from services.ticketing.stores.memory_store import InMemoryTicketStore


@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    if not any(getattr(h, "stream", None) is sys.stdout for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(handler)
    root.setLevel(logging.INFO)


@pytest.fixture(autouse=True)
def _disable_rate_limits():
    limiter.enabled = False
    yield
    limiter.enabled = True


class FakeCache:
    """Reemplazo en memoria de cache_get/cache_set/cache_delete"""

    def __init__(self):
        self.data = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise ConnectionError("redis caído")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value, expire=3600):
        self._check()
        self.data[key] = value

    async def delete(self, *keys):
        self._check()
        return sum(self.data.pop(key, None) is not None for key in keys)


@pytest.fixture(autouse=True)
def fake_cache(monkeypatch):
    cache = FakeCache()
    for module in (checkin_service, qr_image_service):
        monkeypatch.setattr(module, "cache_get", cache.get)
        monkeypatch.setattr(module, "cache_set", cache.set)
        monkeypatch.setattr(module, "cache_delete", cache.delete, raising=False)
    return cache


@pytest.fixture
def event_meta():
    return EventMeta(
        event_id="evt-1",
        name="Expo Tech",
        starts_at=datetime(2026, 11, 20, 19, 30, tzinfo=timezone.utc),
        location="Centro de Convenciones",
        organizer_name="Ana Pérez",
        organizer_email="ana@example.com",
    )


@pytest.fixture
def memory_store():
    return InMemoryTicketStore()


@pytest.fixture
def memory_ledger():
    return InMemoryCheckInLedger()


@pytest.fixture
def issue_standard(memory_store, event_meta):
    """Emitir N tickets Standard a 20 en el store en memoria"""

    async def _issue(quantity=3, event_id="evt-1", price="20", ticket_type="Standard"):
        issuer = TicketIssuer(memory_store)
        return await issuer.issue(
            event_id,
            "org-1",
            [TicketRequest(ticket_type=ticket_type, price=Decimal(price), quantity=quantity)],
            event_meta,
        )

    return _issue


@pytest.fixture
async def session_maker(tmp_path):
    """Base SQLite temporaria en archivo (varias conexiones ven los mismos datos)"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'eventun-test.db'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()
