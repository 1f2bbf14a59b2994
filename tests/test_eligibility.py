from decimal import Decimal

from paygate.eligibility import compatible
from paygate.models import Channel


def test_quota_scenario(svc, add_channel, add_order):
    channel = add_channel(1, "alipay", min_amount=Decimal("1"), max_amount=Decimal("1000"), day_limit=Decimal("500"))
    add_order(1, "480")

    elig = svc.eligibility
    assert elig.eligible([channel], "alipay", Decimal("25")) == []
    assert elig.eligible([channel], "alipay", Decimal("15")) == [channel]
    assert elig.eligible([channel], "alipay", Decimal("20")) == [channel]


def test_quota_monotonicity(svc, add_channel, add_order):
    channel = add_channel(1, day_limit=Decimal("100"))
    add_order(1, "60")
    elig = svc.eligibility
    for amount in range(1, 80):
        selected = elig.eligible([channel], "alipay", Decimal(amount))
        assert (selected == [channel]) == (amount <= 40)


def test_zero_quota_is_unbounded(svc, add_channel, add_order):
    channel = add_channel(1, day_limit=Decimal("0"))
    add_order(1, "1000000")
    assert svc.eligibility.eligible([channel], "alipay", Decimal("5000")) == [channel]


def test_amount_bounds_never_violated(svc, add_channel):
    channels = [
        add_channel(1, min_amount=Decimal("10")),
        add_channel(2, max_amount=Decimal("100")),
        add_channel(3, min_amount=Decimal("50"), max_amount=Decimal("60")),
        add_channel(4),
    ]
    elig = svc.eligibility
    for amount in ["0.01", "9.99", "10", "50", "60", "60.01", "100", "100.01", "5000"]:
        amount = Decimal(amount)
        for c in elig.eligible(channels, "alipay", amount):
            assert c.min_amount == 0 or amount >= c.min_amount
            assert c.max_amount == 0 or amount <= c.max_amount
    assert [c.id for c in elig.eligible(channels, "alipay", Decimal("55"))] == [1, 2, 3, 4]
    assert [c.id for c in elig.eligible(channels, "alipay", Decimal("5"))] == [2, 4]
    assert [c.id for c in elig.eligible(channels, "alipay", Decimal("200"))] == [1, 4]


def test_type_membership_and_status(svc, add_channel):
    channels = [
        add_channel(1, "alipay,wxpay"),
        add_channel(2, "wxpay"),
        add_channel(3, "alipay", status="inactive"),
        add_channel(4, "alipay", is_deleted=True),
    ]
    elig = svc.eligibility
    assert [c.id for c in elig.eligible(channels, "alipay", Decimal("1"))] == [1]
    assert [c.id for c in elig.eligible(channels, "wxpay", Decimal("1"))] == [1, 2]
    # no type given: group members are not type-checked
    assert [c.id for c in elig.eligible(channels, None, Decimal("1"))] == [1, 2]


def test_compatible_reports_reasons():
    channel = Channel(id=1, plugin="x", pay_types="wxpay", status="inactive", max_amount=Decimal("5"))
    ok, reasons = compatible(channel, "alipay", Decimal("10"))
    assert not ok
    assert reasons == ["inactive", "type", "amount"]
