"""
Data processing functions for shaping orders and ledgers into API payloads.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from models import (
    City,
    Order,
    OrderCancellationFee,
    OrderPayment,
    OrderTotals,
    RefundablePaypalAmount,
    Vehicle,
)


def format_money(value: Optional[Decimal]) -> Optional[str]:
    """Amounts travel as strings with two decimals to avoid float rounding."""
    if value is None:
        return None
    return f"{Decimal(value):.2f}"


def format_date(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _enum_value(value) -> Optional[str]:
    return value.value if value is not None else None


def order_summary(order: Order) -> dict:
    return {
        "id": order.id,
        "order_code": order.order_code,
        "customer_id": order.customer_id,
        "sub_category_id": order.sub_category_id,
        "city_id": order.city_id,
        "reservation_date_from": format_date(order.reservation_date_from),
        "reservation_date_to": format_date(order.reservation_date_to),
        "vehicles_count": order.vehicles_count,
        "order_sub_total": format_money(order.order_sub_total),
        "order_total": format_money(order.order_total),
        "notes": order.notes,
        "hotel_name": order.hotel_name,
        "hotel_address": order.hotel_address,
        "hotel_phone": order.hotel_phone,
        "is_urgent": order.is_urgent,
        "payment_method": _enum_value(order.payment_method),
        "order_state": _enum_value(order.order_state),
        "cancellation_status": _enum_value(order.cancellation_status),
        "created_by": order.created_by,
        "created_at": format_date(order.created_at),
        "last_modified_at": format_date(order.last_modified_at),
    }


def totals_data(totals: Optional[OrderTotals]) -> Optional[dict]:
    if totals is None:
        return None
    return {
        "sub_total": format_money(totals.sub_total),
        "service_fees": format_money(totals.service_fees),
        "delivery_fees": format_money(totals.delivery_fees),
        "urgent_fees": format_money(totals.urgent_fees),
        "total_after_all_fees": format_money(totals.total_after_all_fees),
    }


def payment_data(payment: Optional[OrderPayment]) -> Optional[dict]:
    if payment is None:
        return None
    return {
        "id": payment.id,
        "payment_method": _enum_value(payment.payment_method),
        "total": format_money(payment.total),
        "state": _enum_value(payment.state),
        "last_modified_at": format_date(payment.last_modified_at),
    }


def cancellation_fee_data(fee: Optional[OrderCancellationFee]) -> Optional[dict]:
    if fee is None:
        return None
    return {
        "id": fee.id,
        "amount": format_money(fee.amount),
        "state": _enum_value(fee.state),
        "created_at": format_date(fee.created_at),
    }


def refund_data(refund: Optional[RefundablePaypalAmount]) -> Optional[dict]:
    if refund is None:
        return None
    return {
        "id": refund.id,
        "order_id": refund.order_id,
        "customer_id": refund.customer_id,
        "order_total": format_money(refund.order_total),
        "cancellation_fees": format_money(refund.cancellation_fees),
        "refundable_amount": format_money(refund.refundable_amount),
        "state": _enum_value(refund.state),
        "created_at": format_date(refund.created_at),
    }


def vehicle_data(vehicle: Vehicle) -> dict:
    return {
        "id": vehicle.id,
        "name": vehicle.name,
        "vehicle_code": vehicle.vehicle_code,
        "status": _enum_value(vehicle.status),
    }


def order_detail(detail) -> dict:
    """
    Full order view: the order, its fee snapshot, payment, bound vehicles
    and any cancellation fee or refund.
    """
    data = order_summary(detail.order)
    data["totals"] = totals_data(detail.totals)
    data["payment"] = payment_data(detail.payment)
    data["vehicles"] = [vehicle_data(v) for v in detail.vehicles]
    data["cancellation_fee"] = cancellation_fee_data(detail.cancellation_fee)
    data["refund"] = refund_data(detail.refund)
    return data


def order_list(orders: List[Order]) -> List[dict]:
    return [order_summary(order) for order in orders]


def city_fees_data(city: City) -> dict:
    return {
        "city_id": city.id,
        "city_name": city.name,
        "service_fees": format_money(city.service_fees),
        "delivery_fees": format_money(city.delivery_fees),
        "urgent_fees": format_money(city.urgent_delivery),
        "cancellation_fees": format_money(city.cancellation_fees),
    }


def treasury_summary_data(summary: dict) -> dict:
    return {
        "total_revenue": format_money(summary["total_revenue"]),
        "total_cancellation_fees": format_money(summary["total_cancellation_fees"]),
        "balance": format_money(summary["balance"]),
        "entry_count": summary["entry_count"],
        "last_updated": format_date(summary["last_updated"]),
    }
