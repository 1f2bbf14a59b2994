import secrets
from typing import Optional

from .adapters import AdapterRegistry
from .db import utcnow
from .errors import NoChannelAvailable
from .log import get_logger
from .models import AdapterResult, CheckoutRequest, CheckoutResponse, Order
from .routing import Router
from .storage import OrderStore

logger = get_logger(__name__)


def new_trade_no() -> str:
    return f"{utcnow():%Y%m%d%H%M%S}{secrets.randbelow(10**6):06d}"


class CheckoutService:
    """Routes a payment, records the order against the chosen channel, then starts it with the provider."""

    def __init__(self, router: Router, orders: OrderStore, adapters: AdapterRegistry) -> None:
        self._router = router
        self._orders = orders
        self._adapters = adapters

    def start(self, request: CheckoutRequest) -> CheckoutResponse:
        result = self._router.route(request.methodType, request.merchantId, request.amount, request.device)
        if result is None:
            raise NoChannelAvailable(request.methodType, request.merchantId)

        adapter = self._adapters.get(result.channel.plugin)
        order = self._orders.create_order(
            trade_no=new_trade_no(),
            out_trade_no=request.outTradeNo,
            merchant_id=request.merchantId,
            channel_id=result.channel.id,
            pay_type_id=result.method_type_id,
            amount=request.amount,
            rate=result.rate,
        )
        try:
            outcome = adapter.submit(result.channel, order, request)
        except Exception as exc:
            # the pending order stays behind; it never counts against quota
            logger.error("adapter_submit_failed", trade_no=order.trade_no, adapter=adapter.name, error=str(exc))
            outcome = AdapterResult(type="error", message=f"{adapter.name}: {exc}")
        logger.info(
            "checkout_started",
            trade_no=order.trade_no,
            channel_id=result.channel.id,
            adapter=adapter.name,
            result_type=outcome.type,
        )
        return CheckoutResponse(
            tradeNo=order.trade_no,
            channelId=result.channel.id,
            methodTypeId=result.method_type_id,
            rate=result.rate,
            result=outcome,
        )

    def settle(self, trade_no: str) -> Optional[Order]:
        """Mark an order paid; from then on it counts against its channel's daily quota."""
        order = self._orders.mark_settled(trade_no)
        if order is not None:
            logger.info("order_settled", trade_no=trade_no, channel_id=order.channel_id)
        return order
