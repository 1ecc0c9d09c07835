"""
Shared fixtures: asyncio backend, a throwaway SQLite database per test, and
a populated FakeGateway.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from budgetbot.database import init_db, make_engine, make_session_factory
from budgetbot.schemas import Account

from fakes import FakeGateway

SYDNEY = ZoneInfo("Australia/Sydney")


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'budgetbot.db'}"


@pytest.fixture
async def engine(db_url):
    engine = make_engine(db_url)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def now():
    """Wednesday afternoon, business-local."""
    return datetime(2026, 10, 14, 15, 30, tzinfo=SYDNEY)


@pytest.fixture
def account():
    return Account(
        crm_id="4001",
        name="Acme Plumbing",
        ad_platform_ids=["1112223333", "4445556666"],
        call_tracking_id="77",
        wa_phone="+61 400-111-222",
        feature_flags={"cf_budget_recommendation", "cf_whatsapp_hourly_updates"},
    )


@pytest.fixture
def gateway(account):
    gw = FakeGateway()
    gw.add_account(account, phone="0400 111 222")
    gw.add_campaign("1112223333", "c1", "b1", "Brand", 50)
    gw.add_campaign("1112223333", "c2", "b2", "Search A", 30)
    gw.add_campaign("1112223333", "c3", "b2", "Search B", 30)
    gw.add_campaign("1112223333", "c4", "b3", "YouTube", 40, channel="VIDEO")
    gw.add_campaign("4445556666", "c5", "b4", "Already Paused", 1)
    gw.add_campaign("4445556666", "c6", "b5", "Remarketing", 20, channel="DISPLAY")
    return gw
