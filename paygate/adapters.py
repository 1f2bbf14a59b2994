"""
Provider adapter interface and registry.

Each payment provider integration implements ``ProviderAdapter`` and is looked
up by the ``plugin`` identifier stored on the chosen channel. The router never
talks to adapters; checkout hands the chosen channel's credentials to one.
"""
from abc import ABC, abstractmethod
from importlib.metadata import entry_points
from typing import Any, Dict, List, Tuple
from urllib.parse import urlencode

from .errors import AdapterNotFound
from .log import get_logger
from .models import AdapterResult, Channel, CheckoutRequest, Order

logger = get_logger(__name__)

ENTRY_POINT_GROUP = "paygate.adapters"


class ProviderAdapter(ABC):
    name: str = ""
    showname: str = ""
    # method-type names this provider can serve
    types: Tuple[str, ...] = ()

    @abstractmethod
    def submit(self, channel: Channel, order: Order, request: CheckoutRequest) -> AdapterResult:
        """Start a payment through a redirect/page flow."""

    @abstractmethod
    def mapi(self, channel: Channel, order: Order, request: CheckoutRequest) -> AdapterResult:
        """Start a payment through a server-to-server API call."""

    @abstractmethod
    def notify(self, channel: Channel, payload: Dict[str, Any], order: Order) -> bool:
        """Verify an asynchronous provider notification for ``order``."""

    @abstractmethod
    def refund(self, channel: Channel, order: Order, amount: Any) -> AdapterResult:
        ...

    def transfer(self, channel: Channel, payload: Dict[str, Any]) -> AdapterResult:
        raise NotImplementedError(f"{self.name} does not support transfers")


class SandboxAdapter(ProviderAdapter):
    """Provider stand-in for development: answers without contacting anyone."""

    name = "sandbox"
    showname = "Sandbox"
    types = ("alipay", "wxpay", "qqpay", "bank", "jdpay", "paypal", "ecny")

    def _gateway(self, channel: Channel) -> str:
        return channel.config.get("gateway_url", "https://sandbox.invalid/pay")

    def submit(self, channel: Channel, order: Order, request: CheckoutRequest) -> AdapterResult:
        query = urlencode({"trade_no": order.trade_no, "money": str(order.amount), "type": request.methodType})
        return AdapterResult(type="jump", url=f"{self._gateway(channel)}?{query}")

    def mapi(self, channel: Channel, order: Order, request: CheckoutRequest) -> AdapterResult:
        return AdapterResult(type="qrcode", url=f"{self._gateway(channel)}/qr/{order.trade_no}")

    def notify(self, channel: Channel, payload: Dict[str, Any], order: Order) -> bool:
        return payload.get("trade_no") == order.trade_no and payload.get("status") == "success"

    def refund(self, channel: Channel, order: Order, amount: Any) -> AdapterResult:
        return AdapterResult(type="error", message="sandbox refunds are not recorded")


class AdapterRegistry:
    def __init__(self) -> None:
        self._adapters: Dict[str, ProviderAdapter] = {}

    def register(self, adapter: ProviderAdapter) -> None:
        if not adapter.name:
            raise ValueError(f"{type(adapter).__name__} has no name")
        self._adapters[adapter.name] = adapter
        logger.info("adapter_registered", adapter=adapter.name)

    def unregister(self, name: str) -> None:
        self._adapters.pop(name, None)

    def get(self, name: str) -> ProviderAdapter:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise AdapterNotFound(name)
        return adapter

    def names(self) -> List[str]:
        return sorted(self._adapters)

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register adapters published by installed distributions; returns how many loaded."""
        loaded = 0
        for ep in entry_points(group=group):
            try:
                adapter_cls = ep.load()
            except (ImportError, AttributeError) as exc:
                logger.error("adapter_load_failed", entry_point=ep.name, error=str(exc))
                continue
            self.register(adapter_cls())
            loaded += 1
        return loaded
