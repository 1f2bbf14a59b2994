from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from paygate.errors import StoreError
from paygate.db import make_engine, make_session_factory
from paygate.models import ORDER_PENDING
from paygate.quota import QuotaAccountant

from conftest import FIXED_NOW


def test_day_window_is_taken_at_fixed_offset(svc):
    start, end = svc.quota.day_window()
    assert start == datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc)
    assert end == datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc)


def test_day_window_other_offset(svc):
    quota = QuotaAccountant(None, utc_offset_hours=0)
    start, end = quota.day_window(FIXED_NOW)
    assert start == datetime(2026, 10, 19, 0, 0, tzinfo=timezone.utc)
    assert end - start == timedelta(days=1)


def test_consumed_today_sums_settled_orders_of_the_channel(svc, add_channel, add_order):
    add_channel(1)
    add_channel(2)
    add_order(1, "300")
    add_order(1, "180.50")
    add_order(1, "999", status=ORDER_PENDING)
    add_order(2, "50")

    assert svc.quota.consumed_today(1) == Decimal("480.50")
    assert svc.quota.consumed_today(2) == Decimal("50")
    assert svc.quota.consumed_today(3) == Decimal("0")


def test_consumed_today_respects_local_day_boundaries(svc, add_channel, add_order):
    add_channel(1)
    # 23:59 on the previous local day
    add_order(1, "100", created_at=datetime(2026, 10, 18, 15, 59, tzinfo=timezone.utc))
    # 00:00 local
    add_order(1, "10", created_at=datetime(2026, 10, 18, 16, 0, tzinfo=timezone.utc))
    # 23:59 local, given in another offset
    add_order(1, "1", created_at=datetime(2026, 10, 19, 23, 59, tzinfo=timezone(timedelta(hours=8))))
    # next local day
    add_order(1, "1000", created_at=datetime(2026, 10, 19, 16, 0, tzinfo=timezone.utc))

    assert svc.quota.consumed_today(1) == Decimal("11")


def test_store_failure_is_retryable_store_error():
    engine = make_engine("sqlite://", echo=False)  # no tables
    quota = QuotaAccountant(make_session_factory(engine), clock=lambda: FIXED_NOW)
    with pytest.raises(StoreError) as excinfo:
        quota.consumed_today(1)
    assert excinfo.value.retryable
