"""
Database models for the application.

Catalog tables (cities, sub-categories, customers, vehicles) are read by the
order engine; everything from ``orders`` down is owned by it.
"""
import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base

from errors import ConflictError, InvalidArgument, InvalidStateTransition

Base = declarative_base()

MONEY = Numeric(12, 2)


def utc_now():
    """Get current UTC datetime with timezone awareness."""
    return datetime.now(timezone.utc)


class OrderState(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    ON_WAY = "OnWay"
    CUSTOMER_RECEIVED = "CustomerReceived"
    COMPLETED = "Completed"


class CancellationStatus(str, enum.Enum):
    NONE = "none"
    REQUESTED = "requested"
    SETTLED = "settled"


class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    PAYPAL = "PayPal"


class PaymentState(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    FAILED = "Failed"
    REFUNDED = "Refunded"


class ReservedVehicleState(str, enum.Enum):
    STILL_BOOKED = "StillBooked"
    CANCELLED = "Cancelled"


class CancellationFeeState(str, enum.Enum):
    NOT_YET = "NotYet"
    PAID = "Paid"


class RefundState(str, enum.Enum):
    PENDING = "Pending"
    SUCCESS = "Success"
    FAILED = "Failed"


class VehicleStatus(str, enum.Enum):
    AVAILABLE = "Available"
    RENTED = "Rented"
    UNDER_MAINTENANCE = "Under Maintenance"


class TreasuryEntryKind(str, enum.Enum):
    REVENUE = "Revenue"
    CANCELLATION_FEE = "CancellationFee"


def _enum_column(enum_cls, default=None, **kwargs):
    """Store enums by their value ("Pending", "StillBooked", ...)."""
    return Column(
        Enum(
            enum_cls,
            native_enum=False,
            length=32,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=default,
        **kwargs,
    )


class AuditMixin:
    created_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    last_modified_by = Column(String(120), nullable=True)
    last_modified_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    def _touch(self, modified_by: Optional[str]):
        self.last_modified_by = modified_by
        self.last_modified_at = utc_now()


# --------- Catalogs ---------
class City(Base):
    __tablename__ = "cities"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    delivery_fees = Column(MONEY, nullable=True)  # per vehicle
    urgent_delivery = Column(MONEY, nullable=True)
    service_fees = Column(MONEY, nullable=True)  # percentage, 5.0 means 5%
    cancellation_fees = Column(MONEY, nullable=True)


class SubCategory(Base):
    __tablename__ = "sub_categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(120), nullable=False)
    price = Column(MONEY, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class Customer(Base):
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True)
    full_name = Column(String(255), nullable=False)
    mobile_number = Column(String(32), nullable=False, default="")
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=True)
    cash_block = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class Vehicle(AuditMixin, Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    vehicle_code = Column(String(64), nullable=True)
    sub_category_id = Column(Integer, ForeignKey("sub_categories.id"), nullable=False, index=True)
    status = _enum_column(VehicleStatus, default=VehicleStatus.AVAILABLE)

    def update_status(self, status: VehicleStatus, modified_by: Optional[str] = None):
        self.status = status
        self._touch(modified_by)


# --------- Orders ---------
class Order(AuditMixin, Base):
    """
    Order aggregate.

    ``order_state`` only moves forward through
    Pending -> Confirmed -> OnWay -> CustomerReceived -> Completed.
    Cancellation is tracked separately in ``cancellation_status`` and never
    changes ``order_state``.
    """
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_code = Column(String(32), nullable=False, unique=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False, index=True)
    sub_category_id = Column(Integer, ForeignKey("sub_categories.id"), nullable=False, index=True)
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=False)
    reservation_date_from = Column(Date, nullable=False)
    reservation_date_to = Column(Date, nullable=False)
    vehicles_count = Column(Integer, nullable=False)
    order_sub_total = Column(MONEY, nullable=False)
    order_total = Column(MONEY, nullable=False)
    notes = Column(Text, nullable=True)
    passport_image = Column(Text, nullable=False)
    hotel_name = Column(String(255), nullable=False)
    hotel_address = Column(String(500), nullable=False)
    hotel_phone = Column(String(32), nullable=True)
    is_urgent = Column(Boolean, nullable=False, default=False)
    payment_method = _enum_column(PaymentMethod)
    order_state = _enum_column(OrderState, default=OrderState.PENDING, index=True)
    cancellation_status = _enum_column(CancellationStatus, default=CancellationStatus.NONE)

    @classmethod
    def create(
        cls,
        customer_id: int,
        sub_category_id: int,
        city_id: int,
        reservation_date_from: date,
        reservation_date_to: date,
        vehicles_count: int,
        order_sub_total: Decimal,
        order_total: Decimal,
        passport_image: str,
        hotel_name: str,
        hotel_address: str,
        payment_method: PaymentMethod,
        is_urgent: bool,
        order_code: str,
        hotel_phone: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> "Order":
        if customer_id <= 0:
            raise InvalidArgument("Customer ID must be greater than zero")
        if sub_category_id <= 0:
            raise InvalidArgument("SubCategory ID must be greater than zero")
        if city_id <= 0:
            raise InvalidArgument("City ID must be greater than zero")
        if reservation_date_from >= reservation_date_to:
            raise InvalidArgument("Reservation date from must be before reservation date to")
        if vehicles_count <= 0:
            raise InvalidArgument("Vehicles count must be greater than zero")
        if order_sub_total < 0:
            raise InvalidArgument("Order sub total cannot be negative")
        if order_total < 0:
            raise InvalidArgument("Order total cannot be negative")
        if not passport_image or not passport_image.strip():
            raise InvalidArgument("Passport image is required")
        if not hotel_name or not hotel_name.strip():
            raise InvalidArgument("Hotel name is required")
        if not hotel_address or not hotel_address.strip():
            raise InvalidArgument("Hotel address is required")
        if not order_code or not order_code.strip():
            raise InvalidArgument("Order code is required")

        now = utc_now()
        return cls(
            order_code=order_code,
            customer_id=customer_id,
            sub_category_id=sub_category_id,
            city_id=city_id,
            reservation_date_from=reservation_date_from,
            reservation_date_to=reservation_date_to,
            vehicles_count=vehicles_count,
            order_sub_total=order_sub_total,
            order_total=order_total,
            passport_image=passport_image,
            hotel_name=hotel_name.strip(),
            hotel_address=hotel_address.strip(),
            hotel_phone=hotel_phone.strip() if hotel_phone else None,
            is_urgent=is_urgent,
            payment_method=PaymentMethod(payment_method),
            order_state=OrderState.PENDING,
            cancellation_status=CancellationStatus.NONE,
            notes=notes,
            created_by=created_by,
            created_at=now,
            last_modified_at=now,
        )

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation_status != CancellationStatus.NONE

    def _check_transition(self, action: str, expected: OrderState):
        if self.is_cancelled:
            raise InvalidStateTransition(self.order_state.value, action, "Order has been cancelled.")
        if self.order_state != expected:
            raise InvalidStateTransition(
                self.order_state.value, action, f"Order must be in {expected.value} state."
            )

    def _advance(self, action: str, expected: OrderState, target: OrderState, modified_by: Optional[str]):
        self._check_transition(action, expected)
        self.order_state = target
        self._touch(modified_by)

    def ensure_can_confirm(self):
        self._check_transition("confirm", OrderState.PENDING)

    def ensure_can_cancel(self):
        if self.order_state == OrderState.COMPLETED:
            raise InvalidStateTransition(self.order_state.value, "cancel", "Order is already completed.")
        if self.is_cancelled:
            raise InvalidStateTransition(self.order_state.value, "cancel", "Order is already cancelled.")

    def confirm(self, modified_by: Optional[str] = None):
        self._advance("confirm", OrderState.PENDING, OrderState.CONFIRMED, modified_by)

    def mark_on_way(self, modified_by: Optional[str] = None):
        self._advance("mark as OnWay", OrderState.CONFIRMED, OrderState.ON_WAY, modified_by)

    def mark_customer_received(self, modified_by: Optional[str] = None):
        self._advance(
            "mark customer received", OrderState.ON_WAY, OrderState.CUSTOMER_RECEIVED, modified_by
        )

    def complete(self, modified_by: Optional[str] = None):
        self._advance("complete", OrderState.CUSTOMER_RECEIVED, OrderState.COMPLETED, modified_by)

    def cancel(self, settled: bool = True, modified_by: Optional[str] = None):
        """
        Mark the order cancelled without touching ``order_state``.

        ``settled=False`` means a refund or fee is still outstanding.
        """
        self.ensure_can_cancel()
        self.cancellation_status = CancellationStatus.SETTLED if settled else CancellationStatus.REQUESTED
        self._touch(modified_by)

    def settle_cancellation(self, modified_by: Optional[str] = None):
        if self.cancellation_status == CancellationStatus.REQUESTED:
            self.cancellation_status = CancellationStatus.SETTLED
            self._touch(modified_by)


class OrderTotals(Base):
    """Fee breakdown captured once at order creation."""
    __tablename__ = "order_totals"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    sub_total = Column(MONEY, nullable=False)
    service_fees = Column(MONEY, nullable=False)
    delivery_fees = Column(MONEY, nullable=False)
    urgent_fees = Column(MONEY, nullable=False)
    total_after_all_fees = Column(MONEY, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class OrderVehicle(Base):
    __tablename__ = "order_vehicles"

    order_id = Column(Integer, ForeignKey("orders.id"), primary_key=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), primary_key=True)
    created_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now)


class ReservedVehiclesPerDay(AuditMixin, Base):
    """One vehicle blocked for one calendar day by one order."""
    __tablename__ = "reserved_vehicles_per_days"
    __table_args__ = (
        # Two StillBooked rows can never hold the same vehicle on the same day
        Index(
            "uq_reserved_vehicle_day_booked",
            "vehicle_id",
            "date_from",
            unique=True,
            sqlite_where=text("state = 'StillBooked'"),
            postgresql_where=text("state = 'StillBooked'"),
        ),
        Index("ix_reserved_sub_category_dates", "sub_category_id", "date_from", "date_to"),
    )

    id = Column(Integer, primary_key=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    sub_category_id = Column(Integer, ForeignKey("sub_categories.id"), nullable=False)
    vehicle_code = Column(String(64), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    date_from = Column(Date, nullable=False)
    date_to = Column(Date, nullable=False)
    state = _enum_column(ReservedVehicleState, default=ReservedVehicleState.STILL_BOOKED)

    def cancel(self, modified_by: Optional[str] = None) -> bool:
        """Returns False when the row was already cancelled."""
        if self.state == ReservedVehicleState.CANCELLED:
            return False
        self.state = ReservedVehicleState.CANCELLED
        self._touch(modified_by)
        return True


class OrderPayment(AuditMixin, Base):
    __tablename__ = "order_payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    payment_method = _enum_column(PaymentMethod)
    total = Column(MONEY, nullable=False)
    state = _enum_column(PaymentState, default=PaymentState.PENDING)

    def _require(self, allowed, target: PaymentState):
        if self.state not in allowed:
            raise ConflictError(
                f"Cannot move payment from {self.state.value} to {target.value}"
            )

    def mark_as_paid(self, modified_by: Optional[str] = None):
        self._require((PaymentState.PENDING, PaymentState.FAILED), PaymentState.PAID)
        self.state = PaymentState.PAID
        self._touch(modified_by)

    def mark_as_failed(self, modified_by: Optional[str] = None):
        self._require((PaymentState.PENDING,), PaymentState.FAILED)
        self.state = PaymentState.FAILED
        self._touch(modified_by)

    def mark_as_refunded(self, modified_by: Optional[str] = None):
        if self.state == PaymentState.REFUNDED:
            return
        self._require((PaymentState.PAID,), PaymentState.REFUNDED)
        self.state = PaymentState.REFUNDED
        self._touch(modified_by)


class OrderCancellationFee(AuditMixin, Base):
    __tablename__ = "order_cancellation_fees"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    amount = Column(MONEY, nullable=False)
    state = _enum_column(CancellationFeeState, default=CancellationFeeState.NOT_YET)

    def mark_as_paid(self, modified_by: Optional[str] = None):
        self.state = CancellationFeeState.PAID
        self._touch(modified_by)


class RefundablePaypalAmount(AuditMixin, Base):
    __tablename__ = "refundable_paypal_amounts"

    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, unique=True)
    order_total = Column(MONEY, nullable=False)
    cancellation_fees = Column(MONEY, nullable=False)
    refundable_amount = Column(MONEY, nullable=False)
    state = _enum_column(RefundState, default=RefundState.PENDING)

    def mark_as_success(self, modified_by: Optional[str] = None):
        self.state = RefundState.SUCCESS
        self._touch(modified_by)

    def mark_as_failed(self, modified_by: Optional[str] = None):
        self.state = RefundState.FAILED
        self._touch(modified_by)


# --------- Treasury ---------
class TreasuryEntry(Base):
    """Append-only ledger line. Rows are never updated or deleted."""
    __tablename__ = "treasury_entries"

    id = Column(Integer, primary_key=True)
    kind = _enum_column(TreasuryEntryKind)
    debit_amount = Column(MONEY, nullable=False, default=Decimal("0"))
    credit_amount = Column(MONEY, nullable=False, default=Decimal("0"))
    description = Column(String(255), nullable=False, default="")
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    created_by = Column(String(120), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)


class CompanyTreasury(Base):
    """Singleton projection of the treasury entries."""
    __tablename__ = "company_treasury"

    SINGLETON_ID = 1

    id = Column(Integer, primary_key=True)
    total_revenue = Column(MONEY, nullable=False, default=Decimal("0"))
    total_cancellation_fees = Column(MONEY, nullable=False, default=Decimal("0"))
    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    @property
    def balance(self) -> Decimal:
        return (self.total_revenue or Decimal("0")) + (self.total_cancellation_fees or Decimal("0"))
