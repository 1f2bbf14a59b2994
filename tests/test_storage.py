from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from paygate.db import init_db, make_engine, make_session_factory
from paygate.errors import AdminError, StoreError
from paygate.models import ChannelGroupIn, DisabledRule, PayGroupIn, SequentialRule
from paygate.storage import ChannelFilter, ChannelStore, IdempotencyStore, PayGroupStore


def test_list_channels_filters(svc, add_channel):
    add_channel(1)
    add_channel(2, status="inactive")
    add_channel(3, is_deleted=True)
    add_channel(4, "wxpay")
    assert [c.id for c in svc.channels.list_channels()] == [1, 4]
    assert [c.id for c in svc.channels.list_channels(ChannelFilter(usable_only=False))] == [1, 2, 3, 4]
    assert [c.id for c in svc.channels.list_channels(ChannelFilter(ids=[2, 4]))] == [4]
    assert svc.channels.list_channels(ChannelFilter(ids=[])) == []


def test_save_channel_round_trip(svc, add_channel):
    add_channel(5, "alipay,wxpay", min_amount=Decimal("1"), day_limit=Decimal("500"), fee_rate=Decimal("0.6"),
                config={"appid": "x"})
    channel = svc.channels.get_channel(5)
    assert channel.pay_types == ["alipay", "wxpay"]
    assert channel.min_amount == Decimal("1")
    assert channel.max_amount == 0
    assert channel.day_limit == Decimal("500")
    assert channel.fee_rate == Decimal("0.6")
    assert channel.config == {"appid": "x"}
    assert svc.channels.get_channel(6) is None


def test_channel_status_and_soft_delete(svc, add_channel):
    add_channel(1)
    assert svc.channels.set_channel_status(1, "inactive")
    assert svc.channels.get_channel(1).status == "inactive"
    assert not svc.channels.set_channel_status(1, "broken")
    assert not svc.channels.set_channel_status(2, "active")

    assert svc.channels.soft_delete_channel(1)
    assert svc.channels.get_channel(1).is_deleted
    assert not svc.channels.set_channel_status(1, "active")


def test_single_default_pay_group(svc):
    a = svc.pay_groups.create_pay_group(PayGroupIn(name="a", is_default=True))
    b = svc.pay_groups.create_pay_group(PayGroupIn(name="b", is_default=True))
    assert svc.pay_groups.get_default_pay_group().id == b.id
    assert not svc.pay_groups.get_pay_group(a.id).is_default

    svc.pay_groups.set_default(a.id)
    assert [g.id for g in svc.pay_groups.list_pay_groups() if g.is_default] == [a.id]

    svc.pay_groups.update_pay_group(b.id, is_default=True)
    assert [g.id for g in svc.pay_groups.list_pay_groups() if g.is_default] == [b.id]


def test_update_pay_group_rules(svc):
    group = svc.pay_groups.create_pay_group(PayGroupIn(name="a"))
    updated = svc.pay_groups.update_pay_group(group.id, name="renamed", rules={2: DisabledRule()})
    assert updated.name == "renamed"
    assert svc.pay_groups.get_pay_group(group.id).rules == {2: DisabledRule()}
    with pytest.raises(AdminError):
        svc.pay_groups.update_pay_group(404, name="x")


def test_delete_pay_group_guards(svc):
    default = svc.pay_groups.create_pay_group(PayGroupIn(name="default", is_default=True))
    used = svc.pay_groups.create_pay_group(PayGroupIn(name="used"))
    spare = svc.pay_groups.create_pay_group(PayGroupIn(name="spare"))
    svc.pay_groups.set_merchant_pay_group("m1", used.id)

    with pytest.raises(AdminError):
        svc.pay_groups.delete_pay_group(default.id)
    with pytest.raises(AdminError):
        svc.pay_groups.delete_pay_group(used.id)
    svc.pay_groups.delete_pay_group(spare.id)
    assert svc.pay_groups.get_pay_group(spare.id) is None


def test_merchant_assignment(svc):
    group = svc.pay_groups.create_pay_group(PayGroupIn(name="g"))
    assert svc.pay_groups.get_merchant_pay_group_id("m1") is None
    svc.pay_groups.set_merchant_pay_group("m1", group.id)
    assert svc.pay_groups.get_merchant_pay_group_id("m1") == group.id
    svc.pay_groups.set_merchant_pay_group("m1", None)
    assert svc.pay_groups.get_merchant_pay_group_id("m1") is None
    with pytest.raises(AdminError):
        svc.pay_groups.set_merchant_pay_group("m1", 404)


def test_pay_group_cursor_advance_claims_old_position(svc):
    group = svc.pay_groups.create_pay_group(PayGroupIn(name="g", rules={1: SequentialRule()}))
    assert [svc.pay_groups.advance_pay_group_cursor(group.id, 3) for _ in range(4)] == [0, 1, 2, 0]
    assert svc.pay_groups.get_pay_group(group.id).sequential_index == 1

    svc.pay_groups.update_pay_group_cursor(group.id, 7)
    # 7 mod 3
    assert svc.pay_groups.advance_pay_group_cursor(group.id, 3) == 1
    assert svc.pay_groups.advance_pay_group_cursor(404, 3) is None


def test_channel_group_crud_and_cursor(svc):
    group = svc.channels.create_channel_group(
        ChannelGroupIn(name="g", pay_type_id=1, members=[{"id": 1, "weight": 2}], strategy="weighted_random")
    )
    assert svc.channels.get_channel_group(group.id).members[0].weight == 2
    assert [g.id for g in svc.channels.list_channel_groups(pay_type_id=1)] == [group.id]
    assert svc.channels.list_channel_groups(pay_type_id=2) == []

    updated = svc.channels.update_channel_group(
        group.id, ChannelGroupIn(name="g2", members=[{"id": 1}, {"id": 2}], status="inactive")
    )
    assert updated.strategy == "sequential"
    assert updated.status == "inactive"

    svc.channels.update_channel_group_cursor(group.id, 5)
    assert svc.channels.advance_channel_group_cursor(group.id, 2) == 1
    assert svc.channels.get_channel_group(group.id).cursor == 0

    svc.channels.delete_channel_group(group.id)
    assert svc.channels.get_channel_group(group.id) is None
    with pytest.raises(AdminError):
        svc.channels.delete_channel_group(group.id)


@pytest.fixture
def file_sessions(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'cursor.db'}", echo=False)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


def _advance_concurrently(advance, group_id, size, calls=400):
    with ThreadPoolExecutor(max_workers=8) as pool:
        return Counter(pool.map(lambda _: advance(group_id, size), range(calls)))


def test_concurrent_pay_group_cursor_advances_are_not_lost(file_sessions):
    store = PayGroupStore(file_sessions)
    group = store.create_pay_group(PayGroupIn(name="g", rules={1: SequentialRule()}))
    counts = _advance_concurrently(store.advance_pay_group_cursor, group.id, 4)
    assert counts == {0: 100, 1: 100, 2: 100, 3: 100}
    assert store.get_pay_group(group.id).sequential_index == 0


def test_concurrent_channel_group_cursor_advances_are_not_lost(file_sessions):
    store = ChannelStore(file_sessions)
    group = store.create_channel_group(ChannelGroupIn(name="g", members=[{"id": n} for n in range(1, 5)]))
    counts = _advance_concurrently(store.advance_channel_group_cursor, group.id, 4)
    assert counts == {0: 100, 1: 100, 2: 100, 3: 100}
    assert store.get_channel_group(group.id).cursor == 0


def test_store_errors_are_wrapped():
    store = ChannelStore(make_session_factory(make_engine("sqlite://", echo=False)))
    with pytest.raises(StoreError):
        store.list_channels()
    with pytest.raises(StoreError):
        store.get_channel_group(1)


def test_idempotency_store():
    store = IdempotencyStore()
    assert store.get("k") is None
    store.put("k", "decision")
    assert store.get("k") == "decision"
    store.clear()
    assert store.get("k") is None
