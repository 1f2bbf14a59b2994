"""
Channel selection strategies.

Every strategy works on an already-eligible channel list. The sequential
strategies keep a persisted cursor (on the pay group for type-level rotation,
on the channel group for grouped rotation). The cursor is a position in the
*current* eligible ordering: when channels become eligible or ineligible the
modulus changes and the rotation shifts relative to individual channels.
"""
import random
from decimal import Decimal
from typing import List, Optional, Sequence

from pydantic import BaseModel

from .eligibility import EligibilityFilter
from .log import get_logger
from .models import (
    Channel,
    DirectRule,
    DisabledRule,
    FirstAvailableRule,
    GroupMember,
    GroupRule,
    SequentialRule,
    TypeRule,
)
from .storage import ChannelFilter, ChannelStore, PayGroupStore

logger = get_logger(__name__)


class SelectionContext(BaseModel):
    amount: Decimal
    pay_group_id: Optional[int] = None


def by_priority(channels: Sequence[Channel]) -> List[Channel]:
    return sorted(channels, key=lambda c: (-c.priority, c.id))


class StrategySelector:
    def __init__(
        self,
        channels: ChannelStore,
        pay_groups: PayGroupStore,
        eligibility: EligibilityFilter,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._channels = channels
        self._pay_groups = pay_groups
        self._eligibility = eligibility
        self._rng = rng or random.Random()

    def select(self, eligible: Sequence[Channel], rule: TypeRule, ctx: SelectionContext) -> Optional[Channel]:
        if isinstance(rule, DisabledRule):
            return None
        if isinstance(rule, GroupRule):
            return self.select_from_group(rule.group_id, ctx.amount)
        if isinstance(rule, DirectRule):
            return next((c for c in eligible if c.id == rule.channel_id), None)
        if not eligible:
            return None
        if isinstance(rule, SequentialRule):
            return self._sequential(eligible, ctx.pay_group_id)
        if isinstance(rule, FirstAvailableRule):
            return self._first_available(eligible, ctx.amount)
        return self._random(eligible)

    def _random(self, eligible: Sequence[Channel]) -> Channel:
        return eligible[self._rng.randrange(len(eligible))]

    def _sequential(self, eligible: Sequence[Channel], pay_group_id: Optional[int]) -> Optional[Channel]:
        ordered = by_priority(eligible)
        if pay_group_id is None:
            # nowhere to keep a cursor
            return ordered[0]
        position = self._pay_groups.advance_pay_group_cursor(pay_group_id, len(ordered))
        if position is None:
            return None
        return ordered[position]

    def _first_available(self, eligible: Sequence[Channel], amount: Decimal) -> Optional[Channel]:
        # quota is re-read per channel: consumption may have moved since the bulk filter
        for channel in by_priority(eligible):
            if self._eligibility.quota_ok(channel, amount):
                return channel
        return None

    def _weighted(self, members: Sequence[GroupMember]) -> GroupMember:
        weights = [m.effective_weight for m in members]
        return self._rng.choices(members, weights=weights, k=1)[0]

    def select_from_group(self, group_id: int, amount: Decimal) -> Optional[Channel]:
        group = self._channels.get_channel_group(group_id)
        if group is None or group.status != "active" or not group.members:
            logger.info("channel_group_unavailable", group_id=group_id)
            return None

        pool = self._channels.list_channels(ChannelFilter(ids=[m.channel_id for m in group.members]))
        available = {c.id: c for c in self._eligibility.eligible(pool, None, amount)}
        members = [m for m in group.members if m.channel_id in available]
        if not members:
            return None

        if group.strategy == "weighted_random":
            member = self._weighted(members)
        elif group.strategy == "first_available":
            member = members[0]
        else:
            position = self._channels.advance_channel_group_cursor(group.id, len(members))
            if position is None:
                return None
            member = members[position]
        return available[member.channel_id]
