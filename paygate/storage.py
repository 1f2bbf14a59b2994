from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional

from pydantic import BaseModel
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import ChannelGroupRow, ChannelRow, MerchantRow, OrderRow, PayGroupRow, utcnow
from .errors import AdminError, DuplicateOrder, StoreError
from .log import get_logger
from .models import (
    ORDER_PENDING,
    ORDER_SETTLED,
    Channel,
    ChannelGroup,
    ChannelGroupIn,
    Order,
    PayGroup,
    PayGroupIn,
    RouteDecision,
    TypeRule,
)

logger = get_logger(__name__)


class ChannelFilter(BaseModel):
    ids: Optional[List[int]] = None
    usable_only: bool = True


def _channel(row: ChannelRow) -> Channel:
    return Channel(
        id=row.id,
        name=row.channel_name,
        pay_types=row.pay_type,
        plugin=row.plugin_name,
        min_amount=row.min_money,
        max_amount=row.max_money,
        day_limit=row.day_limit,
        priority=row.priority,
        weight=row.weight,
        status="active" if row.status == 1 else "inactive",
        is_deleted=bool(row.is_deleted),
        fee_rate=row.fee_rate,
        config=row.config or {},
    )


def _channel_group(row: ChannelGroupRow) -> ChannelGroup:
    return ChannelGroup(
        id=row.id,
        name=row.name,
        status="active" if row.status == 1 else "inactive",
        pay_type_id=row.pay_type_id,
        members=row.channels or [],
        strategy=row.mode,
        cursor=row.current_index,
    )


def _pay_group(row: PayGroupRow) -> PayGroup:
    return PayGroup(
        id=row.id,
        name=row.name,
        is_default=row.is_default,
        rules=row.config or {},
        sequential_index=row.sequential_index,
    )


def _order(row: OrderRow) -> Order:
    return Order(
        trade_no=row.trade_no,
        out_trade_no=row.out_trade_no,
        merchant_id=row.merchant_id,
        channel_id=row.channel_id,
        pay_type_id=row.pay_type_id,
        amount=row.money,
        rate=row.rate,
        status=row.status,
        created_at=row.created_at,
    )


class _Store:
    def __init__(self, sessions: sessionmaker) -> None:
        self._sessions = sessions

    @contextmanager
    def _tx(self, op: str) -> Iterator[Session]:
        """One short transaction per store call; driver errors surface as StoreError."""
        try:
            with self._sessions.begin() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.warning("store_error", op=op, error=str(exc))
            raise StoreError(f"{op} failed: {exc}") from exc

    @staticmethod
    def _advance(session: Session, row_type: Any, column: Any, row_id: int, size: int) -> Optional[int]:
        # Single-row atomic increment; the row lock serializes concurrent advances.
        # The claimed position is (new - 1) mod size, i.e. old mod size.
        result = session.execute(
            update(row_type)
            .where(row_type.id == row_id)
            .values({column: (column + 1) % size})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        new = session.scalar(select(column).where(row_type.id == row_id))
        return (new - 1) % size


class ChannelStore(_Store):
    def list_channels(self, flt: Optional[ChannelFilter] = None) -> List[Channel]:
        flt = flt or ChannelFilter()
        stmt = select(ChannelRow).order_by(ChannelRow.id)
        if flt.ids is not None:
            if not flt.ids:
                return []
            stmt = stmt.where(ChannelRow.id.in_(flt.ids))
        if flt.usable_only:
            stmt = stmt.where(ChannelRow.status == 1, ChannelRow.is_deleted.is_(False))
        with self._tx("list_channels") as session:
            return [_channel(row) for row in session.scalars(stmt)]

    def get_channel(self, channel_id: int) -> Optional[Channel]:
        with self._tx("get_channel") as session:
            row = session.get(ChannelRow, channel_id)
            return _channel(row) if row else None

    def save_channel(self, channel: Channel) -> Channel:
        with self._tx("save_channel") as session:
            row = session.get(ChannelRow, channel.id) or ChannelRow(id=channel.id)
            row.channel_name = channel.name
            row.pay_type = ",".join(channel.pay_types)
            row.plugin_name = channel.plugin
            row.min_money = channel.min_amount
            row.max_money = channel.max_amount
            row.day_limit = channel.day_limit
            row.priority = channel.priority
            row.weight = channel.weight
            row.status = 1 if channel.status == "active" else 0
            row.is_deleted = channel.is_deleted
            row.fee_rate = channel.fee_rate
            row.config = channel.config
            session.add(row)
            session.flush()
            return _channel(row)

    def set_channel_status(self, channel_id: int, status: str) -> bool:
        if status not in ("active", "inactive"):
            return False
        with self._tx("set_channel_status") as session:
            row = session.get(ChannelRow, channel_id)
            if row is None or row.is_deleted:
                return False
            row.status = 1 if status == "active" else 0
            return True

    def soft_delete_channel(self, channel_id: int) -> bool:
        with self._tx("soft_delete_channel") as session:
            row = session.get(ChannelRow, channel_id)
            if row is None:
                return False
            row.is_deleted = True
            return True

    # channel groups

    def get_channel_group(self, group_id: int) -> Optional[ChannelGroup]:
        with self._tx("get_channel_group") as session:
            row = session.get(ChannelGroupRow, group_id)
            return _channel_group(row) if row else None

    def list_channel_groups(self, pay_type_id: Optional[int] = None) -> List[ChannelGroup]:
        stmt = select(ChannelGroupRow).order_by(ChannelGroupRow.id.desc())
        if pay_type_id is not None:
            stmt = stmt.where(ChannelGroupRow.pay_type_id == pay_type_id)
        with self._tx("list_channel_groups") as session:
            return [_channel_group(row) for row in session.scalars(stmt)]

    def create_channel_group(self, data: ChannelGroupIn) -> ChannelGroup:
        with self._tx("create_channel_group") as session:
            row = ChannelGroupRow(
                name=data.name,
                pay_type_id=data.pay_type_id,
                mode=data.strategy,
                channels=[m.model_dump() for m in data.members],
                status=1 if data.status == "active" else 0,
                current_index=0,
            )
            session.add(row)
            session.flush()
            return _channel_group(row)

    def update_channel_group(self, group_id: int, data: ChannelGroupIn) -> ChannelGroup:
        with self._tx("update_channel_group") as session:
            row = session.get(ChannelGroupRow, group_id)
            if row is None:
                raise AdminError(f"Channel group {group_id} does not exist")
            row.name = data.name
            row.pay_type_id = data.pay_type_id
            row.mode = data.strategy
            row.channels = [m.model_dump() for m in data.members]
            row.status = 1 if data.status == "active" else 0
            session.flush()
            return _channel_group(row)

    def delete_channel_group(self, group_id: int) -> None:
        with self._tx("delete_channel_group") as session:
            row = session.get(ChannelGroupRow, group_id)
            if row is None:
                raise AdminError(f"Channel group {group_id} does not exist")
            session.delete(row)

    def update_channel_group_cursor(self, group_id: int, cursor: int) -> None:
        with self._tx("update_channel_group_cursor") as session:
            session.execute(
                update(ChannelGroupRow)
                .where(ChannelGroupRow.id == group_id)
                .values(current_index=cursor)
                .execution_options(synchronize_session=False)
            )

    def advance_channel_group_cursor(self, group_id: int, size: int) -> Optional[int]:
        """Advance the group's rotation cursor modulo ``size``; returns the claimed position."""
        with self._tx("advance_channel_group_cursor") as session:
            position = self._advance(session, ChannelGroupRow, ChannelGroupRow.current_index, group_id, size)
        logger.debug("cursor_advanced", scope="channel_group", group_id=group_id, position=position, size=size)
        return position


class PayGroupStore(_Store):
    def get_merchant_pay_group_id(self, merchant_id: str) -> Optional[int]:
        with self._tx("get_merchant_pay_group_id") as session:
            return session.scalar(
                select(MerchantRow.pay_group_id).where(MerchantRow.user_id == merchant_id)
            )

    def get_default_pay_group(self) -> Optional[PayGroup]:
        stmt = select(PayGroupRow).where(PayGroupRow.is_default.is_(True)).order_by(PayGroupRow.id).limit(1)
        with self._tx("get_default_pay_group") as session:
            row = session.scalars(stmt).first()
            return _pay_group(row) if row else None

    def get_pay_group(self, group_id: int) -> Optional[PayGroup]:
        with self._tx("get_pay_group") as session:
            row = session.get(PayGroupRow, group_id)
            return _pay_group(row) if row else None

    def list_pay_groups(self) -> List[PayGroup]:
        stmt = select(PayGroupRow).order_by(PayGroupRow.is_default.desc(), PayGroupRow.id)
        with self._tx("list_pay_groups") as session:
            return [_pay_group(row) for row in session.scalars(stmt)]

    @staticmethod
    def _clear_default(session: Session) -> None:
        session.execute(
            update(PayGroupRow)
            .where(PayGroupRow.is_default.is_(True))
            .values(is_default=False)
            .execution_options(synchronize_session=False)
        )

    def create_pay_group(self, data: PayGroupIn) -> PayGroup:
        with self._tx("create_pay_group") as session:
            if data.is_default:
                self._clear_default(session)
            row = PayGroupRow(
                name=data.name,
                is_default=data.is_default,
                config=PayGroup(id=0, rules=data.rules).rules_json(),
                sequential_index=0,
            )
            session.add(row)
            session.flush()
            return _pay_group(row)

    def update_pay_group(
        self,
        group_id: int,
        name: Optional[str] = None,
        is_default: Optional[bool] = None,
        rules: Optional[Dict[int, TypeRule]] = None,
    ) -> PayGroup:
        with self._tx("update_pay_group") as session:
            row = session.get(PayGroupRow, group_id)
            if row is None:
                raise AdminError(f"Pay group {group_id} does not exist")
            if is_default:
                self._clear_default(session)
                session.refresh(row)
            if is_default is not None:
                row.is_default = is_default
            if name is not None:
                row.name = name
            if rules is not None:
                row.config = PayGroup(id=row.id, rules=rules).rules_json()
            session.flush()
            session.refresh(row)
            return _pay_group(row)

    def delete_pay_group(self, group_id: int) -> None:
        with self._tx("delete_pay_group") as session:
            row = session.get(PayGroupRow, group_id)
            if row is None:
                raise AdminError(f"Pay group {group_id} does not exist")
            if row.is_default:
                raise AdminError("The default pay group cannot be deleted; make another group the default first")
            in_use = session.scalars(
                select(MerchantRow.id).where(MerchantRow.pay_group_id == group_id)
            ).all()
            if in_use:
                raise AdminError(f"Pay group {group_id} is assigned to {len(in_use)} merchant(s)")
            session.delete(row)

    def set_default(self, group_id: int) -> PayGroup:
        with self._tx("set_default_pay_group") as session:
            row = session.get(PayGroupRow, group_id)
            if row is None:
                raise AdminError(f"Pay group {group_id} does not exist")
            self._clear_default(session)
            session.refresh(row)
            row.is_default = True
            session.flush()
            return _pay_group(row)

    def set_merchant_pay_group(self, merchant_id: str, pay_group_id: Optional[int]) -> None:
        with self._tx("set_merchant_pay_group") as session:
            if pay_group_id is not None and session.get(PayGroupRow, pay_group_id) is None:
                raise AdminError(f"Pay group {pay_group_id} does not exist")
            row = session.scalars(select(MerchantRow).where(MerchantRow.user_id == merchant_id)).first()
            if row is None:
                row = MerchantRow(user_id=merchant_id)
                session.add(row)
            row.pay_group_id = pay_group_id

    def update_pay_group_cursor(self, group_id: int, cursor: int) -> None:
        with self._tx("update_pay_group_cursor") as session:
            session.execute(
                update(PayGroupRow)
                .where(PayGroupRow.id == group_id)
                .values(sequential_index=cursor)
                .execution_options(synchronize_session=False)
            )

    def advance_pay_group_cursor(self, group_id: int, size: int) -> Optional[int]:
        with self._tx("advance_pay_group_cursor") as session:
            position = self._advance(session, PayGroupRow, PayGroupRow.sequential_index, group_id, size)
        logger.debug("cursor_advanced", scope="pay_group", group_id=group_id, position=position, size=size)
        return position


class OrderStore(_Store):
    def create_order(
        self,
        trade_no: str,
        out_trade_no: str,
        merchant_id: str,
        channel_id: int,
        pay_type_id: int,
        amount: Decimal,
        rate: Decimal = Decimal("0"),
        status: int = ORDER_PENDING,
        created_at: Optional[datetime] = None,
    ) -> Order:
        row = OrderRow(
            trade_no=trade_no,
            out_trade_no=out_trade_no,
            merchant_id=merchant_id,
            channel_id=channel_id,
            pay_type_id=pay_type_id,
            money=amount,
            rate=rate,
            status=status,
            created_at=(created_at or utcnow()).astimezone(timezone.utc),
        )
        try:
            with self._sessions.begin() as session:
                session.add(row)
                session.flush()
                return _order(row)
        except IntegrityError as exc:
            raise DuplicateOrder(merchant_id, out_trade_no) from exc
        except SQLAlchemyError as exc:
            logger.warning("store_error", op="create_order", error=str(exc))
            raise StoreError(f"create_order failed: {exc}") from exc

    def get_order(self, trade_no: str) -> Optional[Order]:
        with self._tx("get_order") as session:
            row = session.scalars(select(OrderRow).where(OrderRow.trade_no == trade_no)).first()
            return _order(row) if row else None

    def mark_settled(self, trade_no: str) -> Optional[Order]:
        with self._tx("mark_settled") as session:
            row = session.scalars(select(OrderRow).where(OrderRow.trade_no == trade_no)).first()
            if row is None:
                return None
            if row.status != ORDER_SETTLED:
                row.status = ORDER_SETTLED
                row.paid_at = utcnow()
            session.flush()
            return _order(row)


class IdempotencyStore:
    def __init__(self) -> None:
        self._store: Dict[str, RouteDecision] = {}

    def get(self, key: str) -> Optional[RouteDecision]:
        return self._store.get(key)

    def put(self, key: str, decision: RouteDecision) -> None:
        self._store[key] = decision

    def clear(self) -> None:
        self._store.clear()
