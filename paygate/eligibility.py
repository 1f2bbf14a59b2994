from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .log import get_logger
from .models import Channel
from .quota import QuotaAccountant

logger = get_logger(__name__)


def compatible(channel: Channel, method_type: Optional[str], amount: Decimal) -> Tuple[bool, List[str]]:
    """Static checks that need no store access. ``method_type=None`` skips type membership."""
    reasons = []
    if channel.status != "active":
        reasons.append("inactive")
    if channel.is_deleted:
        reasons.append("deleted")
    if method_type is not None and not channel.supports(method_type):
        reasons.append("type")
    if not channel.accepts_amount(amount):
        reasons.append("amount")
    return (len(reasons) == 0, reasons)


class EligibilityFilter:
    def __init__(self, quota: QuotaAccountant) -> None:
        self._quota = quota

    def quota_ok(self, channel: Channel, amount: Decimal) -> bool:
        if channel.day_limit == 0:
            return True
        used = self._quota.consumed_today(channel.id)
        return used + amount <= channel.day_limit

    def eligible(
        self, channels: Iterable[Channel], method_type: Optional[str], amount: Decimal
    ) -> List[Channel]:
        """Channels that may take ``amount`` right now, in input order.

        An empty list is a normal outcome; store failures raise StoreError.
        """
        result = []
        for channel in channels:
            ok, reasons = compatible(channel, method_type, amount)
            if not ok:
                logger.debug("channel_rejected", channel_id=channel.id, reasons=reasons)
                continue
            if not self.quota_ok(channel, amount):
                logger.debug("channel_rejected", channel_id=channel.id, reasons=["quota"])
                continue
            result.append(channel)
        return result
