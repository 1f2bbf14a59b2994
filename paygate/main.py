from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from .config import get_settings
from .db import init_db, make_engine
from .errors import AdapterNotFound, AdminError, DuplicateOrder, NoChannelAvailable, StoreError
from .log import setup_logging
from .models import (
    AvailableMethod,
    Channel,
    ChannelGroup,
    ChannelGroupIn,
    CheckoutRequest,
    CheckoutResponse,
    MerchantPayGroupIn,
    Order,
    PayGroup,
    PayGroupIn,
    PaymentMethodType,
    RouteDecision,
    RouteRequest,
)
from .services import Services, build_services
from .storage import ChannelFilter

SERVICES = build_services(make_engine())


def get_services() -> Services:
    return SERVICES


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db(SERVICES.engine)
    yield


app = FastAPI(title="Payment Channel Routing Service", version="1.0.0", lifespan=lifespan)


@app.exception_handler(StoreError)
async def store_error(request: Request, exc: StoreError):
    return JSONResponse(status_code=503, content={"detail": str(exc), "retryable": True})


@app.exception_handler(AdminError)
async def admin_error(request: Request, exc: AdminError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(DuplicateOrder)
async def duplicate_order(request: Request, exc: DuplicateOrder):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(AdapterNotFound)
async def adapter_not_found(request: Request, exc: AdapterNotFound):
    return JSONResponse(status_code=502, content={"detail": str(exc)})


@app.exception_handler(NoChannelAvailable)
async def no_channel(request: Request, exc: NoChannelAvailable):
    return JSONResponse(status_code=503, content={"detail": "Payment method temporarily unavailable"})


@app.get("/health")
def health(svc: Services = Depends(get_services)):
    return {"ok": True, "payTypes": len(svc.catalog.list()), "adapters": svc.adapters.names()}


@app.get("/pay-types", response_model=List[PaymentMethodType])
def list_pay_types(device: Optional[str] = None, svc: Services = Depends(get_services)):
    return svc.catalog.list(device)


@app.get("/merchants/{merchant_id}/pay-types", response_model=List[AvailableMethod])
def merchant_pay_types(merchant_id: str, device: str = "pc", svc: Services = Depends(get_services)):
    return svc.router.available_methods(merchant_id, device)


@app.post("/route", response_model=RouteDecision)
def route(req: RouteRequest, svc: Services = Depends(get_services)):
    # Idempotency: return prior decision for the same merchant + idempotency key
    key = f"{req.merchantId}:{req.idempotencyKey}" if req.idempotencyKey else None
    use_cache = key is not None and get_settings().idempotency_enabled
    if use_cache:
        prev = svc.idempotency.get(key)
        if prev:
            return prev

    result = svc.router.route(req.methodType, req.merchantId, req.amount, req.device)
    if result is None:
        raise HTTPException(status_code=503, detail="No channel available")

    decision = RouteDecision(
        merchantId=req.merchantId,
        methodType=result.method_type.name,
        methodTypeId=result.method_type_id,
        channelId=result.channel.id,
        plugin=result.channel.plugin,
        rate=result.rate,
    )
    if use_cache:
        svc.idempotency.put(key, decision)
    return decision


@app.post("/checkout", response_model=CheckoutResponse)
def checkout(req: CheckoutRequest, svc: Services = Depends(get_services)):
    return svc.checkout.start(req)


@app.post("/orders/{trade_no}/settle", response_model=Order)
def settle_order(trade_no: str, svc: Services = Depends(get_services)):
    order = svc.checkout.settle(trade_no)
    if order is None:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


# Administration

@app.post("/admin/reload")
def reload_catalog(svc: Services = Depends(get_services)):
    svc.catalog.reload()
    return {"ok": True, "payTypes": [t.name for t in svc.catalog.list()]}


@app.get("/admin/channels", response_model=List[Channel])
def list_channels(svc: Services = Depends(get_services)):
    return svc.channels.list_channels(ChannelFilter(usable_only=False))


@app.put("/admin/channels/{channel_id}", response_model=Channel)
def save_channel(channel_id: int, channel: Channel, svc: Services = Depends(get_services)):
    if channel.id != channel_id:
        raise HTTPException(status_code=400, detail="Channel id mismatch")
    return svc.channels.save_channel(channel)


@app.post("/admin/channels/{channel_id}/status/{state}")
def set_channel_status(channel_id: int, state: str, svc: Services = Depends(get_services)):
    ok = svc.channels.set_channel_status(channel_id, state)
    if not ok:
        raise HTTPException(status_code=400, detail="Invalid channel or state")
    return {"ok": True, "channel": channel_id, "status": state}


@app.delete("/admin/channels/{channel_id}")
def delete_channel(channel_id: int, svc: Services = Depends(get_services)):
    if not svc.channels.soft_delete_channel(channel_id):
        raise HTTPException(status_code=404, detail="Channel not found")
    return {"ok": True}


@app.get("/admin/pay-groups", response_model=List[PayGroup])
def list_pay_groups(svc: Services = Depends(get_services)):
    return svc.pay_groups.list_pay_groups()


@app.post("/admin/pay-groups", response_model=PayGroup)
def create_pay_group(data: PayGroupIn, svc: Services = Depends(get_services)):
    return svc.pay_groups.create_pay_group(data)


@app.put("/admin/pay-groups/{group_id}", response_model=PayGroup)
def update_pay_group(group_id: int, data: PayGroupIn, svc: Services = Depends(get_services)):
    return svc.pay_groups.update_pay_group(group_id, name=data.name, is_default=data.is_default or None, rules=data.rules)


@app.delete("/admin/pay-groups/{group_id}")
def delete_pay_group(group_id: int, svc: Services = Depends(get_services)):
    svc.pay_groups.delete_pay_group(group_id)
    return {"ok": True}


@app.post("/admin/pay-groups/{group_id}/default", response_model=PayGroup)
def set_default_pay_group(group_id: int, svc: Services = Depends(get_services)):
    return svc.pay_groups.set_default(group_id)


@app.put("/admin/merchants/{merchant_id}/pay-group")
def set_merchant_pay_group(merchant_id: str, data: MerchantPayGroupIn, svc: Services = Depends(get_services)):
    svc.pay_groups.set_merchant_pay_group(merchant_id, data.pay_group_id)
    return {"ok": True, "merchantId": merchant_id, "payGroupId": data.pay_group_id}


@app.get("/admin/channel-groups", response_model=List[ChannelGroup])
def list_channel_groups(pay_type_id: Optional[int] = None, svc: Services = Depends(get_services)):
    return svc.channels.list_channel_groups(pay_type_id)


@app.post("/admin/channel-groups", response_model=ChannelGroup)
def create_channel_group(data: ChannelGroupIn, svc: Services = Depends(get_services)):
    return svc.channels.create_channel_group(data)


@app.put("/admin/channel-groups/{group_id}", response_model=ChannelGroup)
def update_channel_group(group_id: int, data: ChannelGroupIn, svc: Services = Depends(get_services)):
    return svc.channels.update_channel_group(group_id, data)


@app.delete("/admin/channel-groups/{group_id}")
def delete_channel_group(group_id: int, svc: Services = Depends(get_services)):
    svc.channels.delete_channel_group(group_id)
    return {"ok": True}
