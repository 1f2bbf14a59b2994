class PaygateError(Exception):
    """Base class for errors raised by the routing service."""

    retryable = False


class StoreError(PaygateError):
    """A data-store query failed. The caller may retry the whole routing attempt."""

    retryable = True


class NoChannelAvailable(PaygateError):
    """Routing produced no channel; surfaced as "payment method temporarily unavailable"."""

    def __init__(self, method_type: str, merchant_id: str) -> None:
        super().__init__(f"No available channel for {method_type!r} (merchant {merchant_id})")
        self.method_type = method_type
        self.merchant_id = merchant_id


class AdapterNotFound(PaygateError):
    def __init__(self, plugin: str) -> None:
        super().__init__(f"No provider adapter registered as {plugin!r}")
        self.plugin = plugin


class AdminError(PaygateError):
    """An administrative change was rejected."""


class DuplicateOrder(PaygateError):
    def __init__(self, merchant_id: str, out_trade_no: str) -> None:
        super().__init__(f"Order {out_trade_no!r} already exists for merchant {merchant_id}")
        self.merchant_id = merchant_id
        self.out_trade_no = out_trade_no
