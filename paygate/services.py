import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from .adapters import AdapterRegistry, SandboxAdapter
from .catalog import PayTypeRegistry
from .checkout import CheckoutService
from .config import Settings, get_settings
from .db import make_session_factory, utcnow
from .eligibility import EligibilityFilter
from .quota import QuotaAccountant
from .routing import Router
from .storage import ChannelStore, IdempotencyStore, OrderStore, PayGroupStore
from .strategies import StrategySelector


@dataclass
class Services:
    engine: Engine
    catalog: PayTypeRegistry
    channels: ChannelStore
    pay_groups: PayGroupStore
    orders: OrderStore
    quota: QuotaAccountant
    eligibility: EligibilityFilter
    selector: StrategySelector
    router: Router
    adapters: AdapterRegistry
    checkout: CheckoutService
    idempotency: IdempotencyStore


def build_services(
    engine: Engine,
    settings: Optional[Settings] = None,
    rng: Optional[random.Random] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Services:
    settings = settings or get_settings()
    sessions = make_session_factory(engine)

    catalog = PayTypeRegistry(path=settings.pay_types_path)
    channels = ChannelStore(sessions)
    pay_groups = PayGroupStore(sessions)
    orders = OrderStore(sessions)
    quota = QuotaAccountant(sessions, utc_offset_hours=settings.quota_utc_offset_hours, clock=clock)
    eligibility = EligibilityFilter(quota)
    selector = StrategySelector(channels, pay_groups, eligibility, rng=rng)
    router = Router(catalog, channels, pay_groups, eligibility, selector)

    adapters = AdapterRegistry()
    adapters.register(SandboxAdapter())
    adapters.load_entry_points()

    return Services(
        engine=engine,
        catalog=catalog,
        channels=channels,
        pay_groups=pay_groups,
        orders=orders,
        quota=quota,
        eligibility=eligibility,
        selector=selector,
        router=router,
        adapters=adapters,
        checkout=CheckoutService(router, orders, adapters),
        idempotency=IdempotencyStore(),
    )
