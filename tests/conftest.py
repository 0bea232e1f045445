import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from device_fsm.core.vending import build_vending_machine
from device_fsm.db.database import init_db


@pytest.fixture
def effect_log():
    """Names of effects in the order the device ran them"""
    return []


@pytest.fixture
def make_machine(effect_log):
    def _make(inventory=3, **kwargs):
        return build_vending_machine(
            inventory,
            on_refund=lambda m: effect_log.append("refund"),
            on_dispense=lambda m: effect_log.append("dispense"),
            **kwargs,
        )
    return _make


@pytest.fixture
def machine(make_machine):
    return make_machine(3)


@pytest.fixture
def session_factory(tmp_path):
    # NullPool: every checkout opens a fresh connection in whichever loop asks
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'devices.db'}", poolclass=NullPool)
    asyncio.run(init_db(engine))
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    asyncio.run(engine.dispose())
