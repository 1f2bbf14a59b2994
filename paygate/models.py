from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, field_validator, model_validator

ORDER_PENDING = 0
ORDER_SETTLED = 1


class PaymentMethodType(BaseModel):
    id: int
    name: str
    showname: str = ""
    icon: Optional[str] = None
    device: Literal["any", "desktop", "mobile"] = "any"
    enabled: bool = True
    sort: int = 0

    def supports_device(self, device: str) -> bool:
        if not self.enabled:
            return False
        if self.device == "any":
            return True
        return self.device == ("mobile" if device == "mobile" else "desktop")


class PaymentMethodCatalog(BaseModel):
    types: List[PaymentMethodType]


class Channel(BaseModel):
    id: int
    name: str = ""
    pay_types: List[str] = Field(default_factory=list)
    plugin: str
    # 0 means unbounded for both bounds and the daily quota
    min_amount: Decimal = Decimal("0")
    max_amount: Decimal = Decimal("0")
    day_limit: Decimal = Decimal("0")
    priority: int = 0
    weight: int = Field(default=1, ge=0)
    status: Literal["active", "inactive"] = "active"
    is_deleted: bool = False
    fee_rate: Optional[Decimal] = None
    config: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("pay_types", mode="before")
    @classmethod
    def split_pay_types(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in v.split(",") if t.strip()]
        return v

    @field_validator("min_amount", "max_amount", "day_limit", mode="before")
    @classmethod
    def none_is_unbounded(cls, v: Any) -> Any:
        return Decimal("0") if v is None else v

    @property
    def usable(self) -> bool:
        return self.status == "active" and not self.is_deleted

    def supports(self, method_type: str) -> bool:
        return method_type in self.pay_types

    def accepts_amount(self, amount: Decimal) -> bool:
        if self.min_amount != 0 and amount < self.min_amount:
            return False
        if self.max_amount != 0 and amount > self.max_amount:
            return False
        return True


# Routing rules. One case per mode; every case may override the fee rate.

class _Rule(BaseModel):
    rate: Optional[Decimal] = None


class DisabledRule(_Rule):
    mode: Literal["disabled"] = "disabled"


class DirectRule(_Rule):
    mode: Literal["direct"] = "direct"
    channel_id: int


class RandomRule(_Rule):
    mode: Literal["random"] = "random"


class SequentialRule(_Rule):
    mode: Literal["sequential"] = "sequential"


class FirstAvailableRule(_Rule):
    mode: Literal["first"] = "first"


class GroupRule(_Rule):
    mode: Literal["group"] = "group"
    group_id: int


TypeRule = Annotated[
    Union[DisabledRule, DirectRule, RandomRule, SequentialRule, FirstAvailableRule, GroupRule],
    Field(discriminator="mode"),
]
_TYPE_RULE = TypeAdapter(TypeRule)

# Integer encoding kept in older pay-group configs; positive values pin a channel id.
LEGACY_CHANNEL_MODES = {0: "disabled", -1: "random", -3: "group", -4: "sequential", -5: "first"}


def parse_type_rule(raw: Any) -> TypeRule:
    """Build a rule from either ``{"mode": ...}`` or the legacy ``{"channel_mode": n}`` form."""
    if isinstance(raw, _Rule):
        return raw
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid type rule: {raw!r}")
    if "mode" in raw:
        return _TYPE_RULE.validate_python(raw)

    rate = raw.get("rate") or None
    try:
        mode = int(raw.get("channel_mode"))
    except (TypeError, ValueError):
        return RandomRule(rate=rate)

    if mode > 0:
        return DirectRule(channel_id=mode, rate=rate)
    name = LEGACY_CHANNEL_MODES.get(mode)
    if name == "disabled":
        return DisabledRule(rate=rate)
    if name == "group" and raw.get("group_id"):
        return GroupRule(group_id=int(raw["group_id"]), rate=rate)
    if name == "sequential":
        return SequentialRule(rate=rate)
    if name == "first":
        return FirstAvailableRule(rate=rate)
    return RandomRule(rate=rate)


def parse_rules(raw: Any) -> Dict[int, TypeRule]:
    if not raw:
        return {}
    return {
        int(k): parse_type_rule(rule)
        for k, rule in raw.items()
        if not str(k).startswith("_")
    }


class PayGroup(BaseModel):
    id: int
    name: str = ""
    is_default: bool = False
    rules: Dict[int, TypeRule] = Field(default_factory=dict)
    sequential_index: int = 0

    @model_validator(mode="before")
    @classmethod
    def lift_legacy_cursor(cls, data: Any) -> Any:
        if isinstance(data, dict):
            rules = data.get("rules")
            if isinstance(rules, dict) and "_sequential_index" in rules:
                rules = dict(rules)
                cursor = rules.pop("_sequential_index")
                data = {**data, "rules": rules}
                data.setdefault("sequential_index", int(cursor or 0))
        return data

    @field_validator("rules", mode="before")
    @classmethod
    def decode_rules(cls, v: Any) -> Any:
        return parse_rules(v)

    def rule_for(self, pay_type_id: int) -> TypeRule:
        # No rule configured for a type means "any channel, random pick".
        return self.rules.get(pay_type_id) or RandomRule()

    def rules_json(self) -> Dict[str, Any]:
        return {str(k): r.model_dump(mode="json", exclude_none=True) for k, r in self.rules.items()}


class GroupMember(BaseModel):
    channel_id: int = Field(validation_alias=AliasChoices("channel_id", "id"))
    # 0 or unset draws as 1
    weight: Optional[int] = Field(default=None, ge=0)

    @property
    def effective_weight(self) -> int:
        return self.weight or 1


LEGACY_GROUP_MODES = {0: "sequential", 1: "weighted_random", 2: "first_available"}


def legacy_group_strategy(v: Any) -> Any:
    if isinstance(v, int):
        return LEGACY_GROUP_MODES.get(v, "sequential")
    return v


class ChannelGroup(BaseModel):
    id: int
    name: str = ""
    status: Literal["active", "inactive"] = "active"
    pay_type_id: Optional[int] = None
    members: List[GroupMember] = Field(default_factory=list)
    strategy: Literal["sequential", "weighted_random", "first_available"] = "sequential"
    cursor: int = 0

    @field_validator("strategy", mode="before")
    @classmethod
    def decode_strategy(cls, v: Any) -> Any:
        return legacy_group_strategy(v)


class Order(BaseModel):
    trade_no: str
    out_trade_no: str
    merchant_id: str
    channel_id: int
    pay_type_id: int
    amount: Decimal
    rate: Decimal = Decimal("0")
    status: int = ORDER_PENDING
    created_at: datetime


class RouteResult(BaseModel):
    channel: Channel
    method_type: PaymentMethodType
    rate: Decimal

    @property
    def method_type_id(self) -> int:
        return self.method_type.id


class AvailableMethod(BaseModel):
    id: int
    name: str
    showname: str = ""
    rate: Optional[Decimal] = None


class AdapterResult(BaseModel):
    type: Literal["jump", "qrcode", "page", "html", "jsapi", "error"]
    url: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    message: Optional[str] = None


# HTTP request/response bodies

class RouteRequest(BaseModel):
    methodType: str
    merchantId: str
    amount: Decimal = Field(gt=0)
    device: Literal["pc", "mobile"] = "pc"
    idempotencyKey: Optional[str] = None


class RouteDecision(BaseModel):
    merchantId: str
    methodType: str
    methodTypeId: int
    channelId: int
    plugin: str
    rate: Decimal


class CheckoutRequest(RouteRequest):
    outTradeNo: str
    subject: str = ""
    notifyUrl: Optional[str] = None
    returnUrl: Optional[str] = None


class CheckoutResponse(BaseModel):
    tradeNo: str
    channelId: int
    methodTypeId: int
    rate: Decimal
    result: AdapterResult


class PayGroupIn(BaseModel):
    name: str = Field(min_length=1)
    is_default: bool = False
    rules: Dict[int, TypeRule] = Field(default_factory=dict)

    @field_validator("rules", mode="before")
    @classmethod
    def decode_rules(cls, v: Any) -> Any:
        return parse_rules(v)


class ChannelGroupIn(BaseModel):
    name: str = Field(min_length=1)
    status: Literal["active", "inactive"] = "active"
    pay_type_id: Optional[int] = None
    members: List[GroupMember] = Field(default_factory=list)
    strategy: Literal["sequential", "weighted_random", "first_available"] = "sequential"

    @field_validator("strategy", mode="before")
    @classmethod
    def decode_strategy(cls, v: Any) -> Any:
        return legacy_group_strategy(v)


class MerchantPayGroupIn(BaseModel):
    pay_group_id: Optional[int] = None
