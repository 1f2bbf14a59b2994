import json
from pathlib import Path
from typing import Dict, List, Optional

from .models import PaymentMethodCatalog, PaymentMethodType

DEFAULT_PAY_TYPES = [
    {"id": 1, "name": "alipay", "showname": "Alipay", "icon": "alipay.ico", "sort": 1},
    {"id": 2, "name": "wxpay", "showname": "WeChat Pay", "icon": "wxpay.ico", "sort": 2},
    {"id": 3, "name": "qqpay", "showname": "QQ Wallet", "icon": "qqpay.ico", "sort": 3},
    {"id": 4, "name": "bank", "showname": "Online Banking", "icon": "bank.ico", "sort": 4},
    {"id": 5, "name": "jdpay", "showname": "JD Pay", "icon": "jdpay.ico", "sort": 5},
    {"id": 6, "name": "paypal", "showname": "PayPal", "icon": "paypal.ico", "sort": 6},
    {"id": 7, "name": "ecny", "showname": "Digital RMB", "icon": "ecny.ico", "sort": 7},
]


class PayTypeRegistry:
    """Static catalog of payment method types, loaded once at startup."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = Path(path) if path else None
        self._types: Dict[int, PaymentMethodType] = {}
        self.reload()

    def reload(self) -> None:
        if self._path is not None:
            data = json.loads(self._path.read_text())
        else:
            data = {"types": DEFAULT_PAY_TYPES}
        catalog = PaymentMethodCatalog(**data)
        self._types = {t.id: t for t in catalog.types}

    def list(self, device: Optional[str] = None) -> List[PaymentMethodType]:
        types = [t for t in self._types.values() if t.enabled]
        if device is not None:
            types = [t for t in types if t.supports_device(device)]
        return sorted(types, key=lambda t: t.sort)

    def get(self, type_id: int) -> Optional[PaymentMethodType]:
        return self._types.get(type_id)

    def find(self, name: str, device: str = "pc") -> Optional[PaymentMethodType]:
        for t in self._types.values():
            if t.name == name and t.supports_device(device):
                return t
        return None
