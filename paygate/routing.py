from decimal import Decimal
from typing import List, Optional

from .catalog import PayTypeRegistry
from .eligibility import EligibilityFilter
from .log import get_logger
from .models import (
    AvailableMethod,
    Channel,
    DirectRule,
    DisabledRule,
    GroupRule,
    PayGroup,
    PaymentMethodType,
    RandomRule,
    RouteResult,
    TypeRule,
)
from .storage import ChannelFilter, ChannelStore, PayGroupStore
from .strategies import SelectionContext, StrategySelector

logger = get_logger(__name__)


class Router:
    """Picks the channel that processes a payment request.

    A ``None`` result is definitive for the request: there is no retry and no
    fallback to another strategy.
    """

    def __init__(
        self,
        catalog: PayTypeRegistry,
        channels: ChannelStore,
        pay_groups: PayGroupStore,
        eligibility: EligibilityFilter,
        selector: StrategySelector,
    ) -> None:
        self._catalog = catalog
        self._channels = channels
        self._pay_groups = pay_groups
        self._eligibility = eligibility
        self._selector = selector

    def resolve_pay_group(self, merchant_id: str) -> Optional[PayGroup]:
        group_id = self._pay_groups.get_merchant_pay_group_id(merchant_id)
        if group_id:
            group = self._pay_groups.get_pay_group(group_id)
            if group is not None:
                return group
            logger.info("merchant_pay_group_missing", merchant_id=merchant_id, pay_group_id=group_id)
        return self._pay_groups.get_default_pay_group()

    def _rule_for(self, pay_group: Optional[PayGroup], method: PaymentMethodType) -> TypeRule:
        if pay_group is None:
            return RandomRule()
        return pay_group.rule_for(method.id)

    def _candidates(self, rule: TypeRule) -> List[Channel]:
        if isinstance(rule, DirectRule):
            channel = self._channels.get_channel(rule.channel_id)
            return [channel] if channel is not None else []
        if isinstance(rule, GroupRule):
            # group members are loaded by the selector
            return []
        return self._channels.list_channels(ChannelFilter())

    def route(
        self, method_type: str, merchant_id: str, amount: Decimal, device: str = "pc"
    ) -> Optional[RouteResult]:
        log = logger.bind(method_type=method_type, merchant_id=merchant_id, amount=str(amount), device=device)

        method = self._catalog.find(method_type, device)
        if method is None:
            log.info("route_unknown_method")
            return None

        pay_group = self.resolve_pay_group(merchant_id)
        if pay_group is None:
            log.info("pay_group_fallback")
        rule = self._rule_for(pay_group, method)
        if isinstance(rule, DisabledRule):
            log.info("route_method_disabled", pay_group_id=pay_group.id if pay_group else None)
            return None

        eligible = self._eligibility.eligible(self._candidates(rule), method.name, amount)
        ctx = SelectionContext(amount=amount, pay_group_id=pay_group.id if pay_group else None)
        channel = self._selector.select(eligible, rule, ctx)
        if channel is None:
            log.info("route_no_channel", mode=rule.mode, pay_group_id=ctx.pay_group_id)
            return None

        if rule.rate is not None:
            rate = rule.rate
        elif channel.fee_rate is not None:
            rate = channel.fee_rate
        else:
            rate = Decimal("0")
        log.info("route_selected", mode=rule.mode, channel_id=channel.id, plugin=channel.plugin, rate=str(rate))
        return RouteResult(channel=channel, method_type=method, rate=rate)

    def _has_channel(self, method: PaymentMethodType, rule: TypeRule) -> bool:
        if isinstance(rule, DirectRule):
            channel = self._channels.get_channel(rule.channel_id)
            return channel is not None and channel.usable
        if isinstance(rule, GroupRule):
            group = self._channels.get_channel_group(rule.group_id)
            return group is not None and group.status == "active"
        return any(c.supports(method.name) for c in self._channels.list_channels(ChannelFilter()))

    def available_methods(self, merchant_id: str, device: str = "pc") -> List[AvailableMethod]:
        """Method types the merchant can currently offer, in display order.

        Amount bounds and quota are not evaluated here; they depend on the order.
        """
        pay_group = self.resolve_pay_group(merchant_id)
        result = []
        for method in self._catalog.list(device):
            rule = self._rule_for(pay_group, method)
            if isinstance(rule, DisabledRule):
                continue
            if self._has_channel(method, rule):
                result.append(
                    AvailableMethod(id=method.id, name=method.name, showname=method.showname, rate=rule.rate)
                )
        return result
