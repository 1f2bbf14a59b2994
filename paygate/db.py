"""SQLAlchemy tables and session management."""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import get_settings

MONEY = Numeric(12, 2)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ChannelRow(Base):
    __tablename__ = "provider_channels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    channel_name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    # comma separated method-type names, e.g. "alipay,wxpay"
    pay_type: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    plugin_name: Mapped[str] = mapped_column(String(64), nullable=False)
    min_money: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    max_money: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    day_limit: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=0)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    weight: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fee_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 3), nullable=True)
    config: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (Index("idx_channels_status", "status", "is_deleted"),)


class PayGroupRow(Base):
    __tablename__ = "provider_pay_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    # {"<pay type id>": {"mode": ..., "rate": ..., ...}}
    config: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    sequential_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class ChannelGroupRow(Base):
    __tablename__ = "channel_groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    pay_type_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    mode: Mapped[str] = mapped_column(String(32), nullable=False, default="sequential")
    # [{"channel_id": 1, "weight": 3}, ...] in rotation order
    channels: Mapped[Optional[List[Dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    current_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class MerchantRow(Base):
    __tablename__ = "merchants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    pay_group_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)


class OrderRow(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    trade_no: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    out_trade_no: Mapped[str] = mapped_column(String(64), nullable=False)
    merchant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_id: Mapped[int] = mapped_column(ForeignKey("provider_channels.id"), nullable=False)
    pay_type_id: Mapped[int] = mapped_column(Integer, nullable=False)
    money: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=0)
    status: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # stored in UTC
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_orders_channel_status_created", "channel_id", "status", "created_at"),
        Index("idx_orders_merchant_out_trade_no", "merchant_id", "out_trade_no", unique=True),
    )


def make_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    settings = get_settings()
    url = url or settings.database_url
    echo = settings.database_echo if echo is None else echo
    if url == "sqlite://" or (url.startswith("sqlite") and ":memory:" in url):
        # one shared connection, otherwise every session sees an empty database
        return create_engine(
            url, echo=echo, connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
    if url.startswith("sqlite"):
        return create_engine(url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(url, echo=echo, pool_pre_ping=True, pool_recycle=3600)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(engine, expire_on_commit=False, autoflush=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
