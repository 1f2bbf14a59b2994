import itertools
import random
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from paygate.config import Settings
from paygate.db import init_db, make_engine
from paygate.models import ORDER_SETTLED, Channel
from paygate.services import build_services

# 12:00 on 2026-10-19 at UTC+8
FIXED_NOW = datetime(2026, 10, 19, 4, 0, tzinfo=timezone.utc)


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", app_env="test", quota_utc_offset_hours=8)


@pytest.fixture
def engine(settings):
    engine = make_engine(settings.database_url, echo=False)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def svc(engine, settings):
    return build_services(engine, settings=settings, rng=random.Random(1234), clock=lambda: FIXED_NOW)


@pytest.fixture
def add_channel(svc):
    def _add(channel_id, pay_types="alipay", **fields):
        fields.setdefault("plugin", "sandbox")
        return svc.channels.save_channel(Channel(id=channel_id, pay_types=pay_types, **fields))

    return _add


@pytest.fixture
def add_order(svc):
    counter = itertools.count(1)

    def _add(channel_id, amount, created_at=FIXED_NOW, status=ORDER_SETTLED):
        n = next(counter)
        return svc.orders.create_order(
            trade_no=f"T{n:04d}",
            out_trade_no=f"O{n:04d}",
            merchant_id="seed",
            channel_id=channel_id,
            pay_type_id=1,
            amount=Decimal(str(amount)),
            status=status,
            created_at=created_at,
        )

    return _add
