"""
API routes/endpoints for the application.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
import logging

import data_processor
import orders
from database import get_session
from models import PaymentMethod
from paypal_client import PayPalClient
from principal import Principal, get_principal, require_admin

logger = logging.getLogger(__name__)


# --------- Request bodies ---------
class CreateOrderBody(BaseModel):
    sub_category_id: int
    city_id: int
    reservation_date_from: date
    reservation_date_to: date
    vehicles_count: int = Field(..., gt=0)
    passport_image: str
    hotel_name: str
    hotel_address: str
    hotel_phone: Optional[str] = None
    notes: Optional[str] = None
    is_urgent: bool = False
    payment_method: PaymentMethod
    mobile_total: Decimal


class ConfirmOrderBody(BaseModel):
    vehicle_ids: List[int]


class UpdateOrderStateBody(BaseModel):
    new_state: str
    vehicle_ids: Optional[List[int]] = None


class ProcessRefundBody(BaseModel):
    refund_state: str


class UpdatePaymentStateBody(BaseModel):
    payment_state: str


class CompletePayPalPaymentBody(BaseModel):
    paypal_order_id: str


def get_gateway(request: Request) -> PayPalClient:
    return request.app.state.payment_gateway


def _ok(data, **extra) -> JSONResponse:
    return JSONResponse(content={"success": True, "data": data, **extra})


# --------- Health ---------
async def health_route(session: AsyncSession = Depends(get_session)):
    return {"status": "ok", "database": session.bind.dialect.name}


# --------- Customer ---------
async def create_order_route(
    body: CreateOrderBody,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
    gateway: PayPalClient = Depends(get_gateway),
):
    """
    Place an order for the calling customer.

    PayPal orders come back with the approve link the app opens.
    """
    logger.info(
        f"Create order request - customer: {principal.user_id}, sub_category: {body.sub_category_id}, "
        f"dates: {body.reservation_date_from}..{body.reservation_date_to}"
    )
    result = await orders.create_order(
        session,
        principal,
        orders.CreateOrderRequest(
            sub_category_id=body.sub_category_id,
            city_id=body.city_id,
            reservation_date_from=body.reservation_date_from,
            reservation_date_to=body.reservation_date_to,
            vehicles_count=body.vehicles_count,
            passport_image=body.passport_image,
            hotel_name=body.hotel_name,
            hotel_address=body.hotel_address,
            payment_method=body.payment_method,
            client_total=body.mobile_total,
            is_urgent=body.is_urgent,
            hotel_phone=body.hotel_phone,
            notes=body.notes,
        ),
        gateway=gateway,
    )
    data = data_processor.order_summary(result.order)
    data["totals"] = data_processor.totals_data(result.totals)
    data["payment"] = data_processor.payment_data(result.payment)
    data["paypal_order_id"] = result.paypal_order_id
    data["paypal_approve_link"] = result.approve_link
    return JSONResponse(status_code=201, content={"success": True, "data": data})


async def list_customer_orders_route(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
):
    customer_orders = await orders.list_customer_orders(session, principal)
    return _ok(data_processor.order_list(customer_orders), total=len(customer_orders))


async def get_order_route(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
):
    detail = await orders.get_order_detail(session, principal, order_id)
    return _ok(data_processor.order_detail(detail))


async def cancel_order_route(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
):
    result = await orders.cancel_order(session, principal, order_id)
    data = data_processor.order_summary(result.order)
    data["cancellation_fee"] = data_processor.cancellation_fee_data(result.cancellation_fee)
    data["refund"] = data_processor.refund_data(result.refund)
    data["released_days"] = result.released_days
    return _ok(data)


async def complete_paypal_payment_route(
    order_id: int,
    body: CompletePayPalPaymentBody,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
    gateway: PayPalClient = Depends(get_gateway),
):
    capture = await orders.complete_paypal_payment(
        session, principal, order_id, body.paypal_order_id, gateway=gateway
    )
    return _ok(
        {
            "order_id": order_id,
            "paypal_order_id": capture.paypal_order_id,
            "transaction_id": capture.transaction_id,
            "status": capture.status,
        }
    )


async def city_fees_route(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
):
    city = await orders.get_city_fees(session, principal)
    return _ok(data_processor.city_fees_data(city))


async def reserved_dates_route(
    sub_category_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(get_principal),
):
    days = await orders.get_reserved_dates(session, sub_category_id)
    return _ok([data_processor.format_date(day) for day in days], total=len(days))


# --------- Admin ---------
async def list_orders_route(
    state: Optional[str] = Query(None, description="Filter by order state (e.g. 'Pending')"),
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    all_orders = await orders.list_orders(session, principal, state=state)
    return _ok(data_processor.order_list(all_orders), total=len(all_orders))


async def admin_get_order_route(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    detail = await orders.get_order_detail(session, principal, order_id)
    return _ok(data_processor.order_detail(detail))


async def confirm_order_route(
    order_id: int,
    body: ConfirmOrderBody,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    order = await orders.confirm_order(session, principal, order_id, body.vehicle_ids)
    return _ok(data_processor.order_summary(order))


async def update_order_state_route(
    order_id: int,
    body: UpdateOrderStateBody,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    order = await orders.advance_order_state(
        session, principal, order_id, body.new_state, vehicle_ids=body.vehicle_ids
    )
    return _ok(data_processor.order_summary(order))


async def admin_cancel_order_route(
    order_id: int,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    return await cancel_order_route(order_id, session=session, principal=principal)


async def process_refund_route(
    order_id: int,
    body: ProcessRefundBody,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    refund = await orders.process_refund(session, principal, order_id, body.refund_state)
    return _ok(data_processor.refund_data(refund))


async def update_payment_state_route(
    order_id: int,
    body: UpdatePaymentStateBody,
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    payment = await orders.update_payment_state(session, principal, order_id, body.payment_state)
    return _ok(data_processor.payment_data(payment))


async def treasury_route(
    session: AsyncSession = Depends(get_session),
    principal: Principal = Depends(require_admin),
):
    summary = await orders.get_treasury_summary(session, principal)
    return _ok(data_processor.treasury_summary_data(summary))
