"""
Daily quota accounting.

A channel's consumption is the sum of its settled orders created during the
current calendar day. The calendar day is taken at a fixed UTC offset from
settings (UTC+8 by default) rather than from the database server's clock, so
the window does not move when the database runs in another time zone.

The check is a soft quota: the order that will consume quota for the current
request does not exist yet, so concurrent requests can each pass the check and
jointly overshoot the limit once they settle.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import OrderRow, utcnow
from .errors import StoreError
from .log import get_logger
from .models import ORDER_SETTLED

logger = get_logger(__name__)


class QuotaAccountant:
    def __init__(
        self,
        sessions: sessionmaker,
        utc_offset_hours: int = 8,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._sessions = sessions
        self._tz = timezone(timedelta(hours=utc_offset_hours))
        self._clock = clock

    def day_window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """UTC bounds ``[start, end)`` of the quota day containing ``now``."""
        local = (now or self._clock()).astimezone(self._tz)
        start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        end = start + timedelta(days=1)
        return start.astimezone(timezone.utc), end.astimezone(timezone.utc)

    def consumed_today(self, channel_id: int) -> Decimal:
        start, end = self.day_window()
        stmt = select(func.coalesce(func.sum(OrderRow.money), 0)).where(
            OrderRow.channel_id == channel_id,
            OrderRow.status == ORDER_SETTLED,
            OrderRow.created_at >= start,
            OrderRow.created_at < end,
        )
        try:
            with self._sessions() as session:
                used = session.scalar(stmt)
        except SQLAlchemyError as exc:
            logger.warning("store_error", op="consumed_today", channel_id=channel_id, error=str(exc))
            raise StoreError(f"consumed_today failed: {exc}") from exc
        return Decimal(str(used or 0))
