"""
# @Time    : 2025/11/16 9:02
# @Author  : Pedro
# @File    : conftest.py
# @Software: PyCharm
"""
import os

os.environ.setdefault("APP_ENV", "test")

from datetime import datetime, timedelta, timezone

import pytest

from app.api.v1.schema.voucher import VoucherDefinition
from app.api.v1.services.voucher import build_voucher_services
from app.pedro.config import Settings
from app.pedro.enums import DiscountType
from app.extension.eventbus.base import EventBus
from app.extension.store.memory_store import MemoryVoucherStore


class FrozenClock:
    """可控的服务器时间"""

    def __init__(self, now: datetime = datetime(2025, 11, 15, 8, 0, tzinfo=timezone.utc)):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def settings():
    return Settings.load("test")


@pytest.fixture
def store():
    return MemoryVoucherStore()


@pytest.fixture
def eventbus():
    return EventBus()


@pytest.fixture
def services(settings, store, eventbus, clock):
    return build_voucher_services(settings, store=store, eventbus=eventbus, clock=clock)


@pytest.fixture
def catalog(services):
    return services.catalog


@pytest.fixture
def promos(services):
    return services.promos


@pytest.fixture
def redemption(services):
    return services.redemption


@pytest.fixture
def definition(clock):
    def _definition(**overrides) -> VoucherDefinition:
        data = dict(
            description="Autumn sale",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=20,
            expiry_date=clock.now + timedelta(days=30),
        )
        data.update(overrides)
        return VoucherDefinition(**data)

    return _definition


@pytest.fixture
def make_voucher(catalog, definition):
    async def _make(**overrides):
        return await catalog.create(definition(**overrides))

    return _make
