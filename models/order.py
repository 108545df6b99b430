"""Order aggregate: totals, status state machine and the append-only event log.

State machine:
    Pending -> Paid -> Processing -> Shipped -> Delivered
    Pending/Paid -> Cancelled
    Shipped/Delivered -> Returned
    Paid/Processing/Shipped/Delivered/Returned/Cancelled -> Refunded

Every transition writes exactly one OrderEvent carrying the new status.
"""
import enum
import uuid
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Integer, JSON, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, utcnow
from core.exceptions import ConflictError, ValidationFailed

CENT = Decimal("0.01")


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderStatus(str, enum.Enum):
    PENDING = "Pending"
    PAID = "Paid"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"
    REFUNDED = "Refunded"
    RETURNED = "Returned"

    @classmethod
    def parse(cls, value: str) -> "OrderStatus":
        for status in cls:
            if status.value.lower() == (value or "").strip().lower():
                return status
        raise ValidationFailed(
            f"Invalid order status: {value}",
            [{"field": "status", "message": f"Must be one of: {', '.join(s.value for s in cls)}"}],
        )


VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED, OrderStatus.REFUNDED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.REFUNDED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.RETURNED, OrderStatus.REFUNDED}),
    OrderStatus.DELIVERED: frozenset({OrderStatus.RETURNED, OrderStatus.REFUNDED}),
    OrderStatus.RETURNED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.CANCELLED: frozenset({OrderStatus.REFUNDED}),
    OrderStatus.REFUNDED: frozenset(),
}

CANCELLABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.PAID})

TERMINAL_STATUSES = frozenset(
    {OrderStatus.DELIVERED, OrderStatus.CANCELLED, OrderStatus.REFUNDED, OrderStatus.RETURNED}
)


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_number: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    customer_email: Mapped[str] = mapped_column(String(255))
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PENDING.value, index=True)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    shipping_cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), default="EUR")
    payment_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    shipping_method: Mapped[str | None] = mapped_column(String(20), nullable=True)
    shipping_address: Mapped[dict] = mapped_column(JSON, default=dict)
    billing_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    tracking_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    user = relationship("User")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderItem.created_at",
    )
    events = relationship(
        "OrderEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderEvent.created_at",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def order_status(self) -> OrderStatus:
        return OrderStatus(self.status)

    @property
    def can_be_cancelled(self) -> bool:
        return self.order_status in CANCELLABLE_STATUSES

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)

    def can_transition_to(self, status: OrderStatus) -> bool:
        return status in VALID_TRANSITIONS[self.order_status]

    # Totals

    def recalculate_totals(self) -> None:
        self.subtotal = money(sum((Decimal(i.line_total) for i in self.items), Decimal("0")))
        self.total = money(
            Decimal(self.subtotal)
            + Decimal(self.shipping_cost or 0)
            + Decimal(self.tax_amount or 0)
            - Decimal(self.discount_amount or 0)
        )

    def _set_amount(self, field: str, amount) -> None:
        value = money(amount)
        if value < 0:
            raise ValidationFailed(
                f"{field.replace('_', ' ').capitalize()} cannot be negative",
                [{"field": field, "message": "Must be zero or greater"}],
            )
        setattr(self, field, value)
        self.recalculate_totals()

    def set_shipping_cost(self, amount) -> None:
        self._set_amount("shipping_cost", amount)

    def set_tax_amount(self, amount) -> None:
        self._set_amount("tax_amount", amount)

    def set_discount_amount(self, amount) -> None:
        self._set_amount("discount_amount", amount)

    def add_item(self, item: "OrderItem") -> "OrderItem":
        self.items.append(item)
        self.recalculate_totals()
        return item

    # Lifecycle

    def record_event(self, status: OrderStatus, description: str | None = None, notes: str | None = None) -> "OrderEvent":
        event = OrderEvent(status=status.value, description=description, notes=notes, created_at=utcnow())
        self.events.append(event)
        return event

    def transition_to(self, status: OrderStatus, description: str | None = None, notes: str | None = None) -> "OrderEvent":
        if not self.can_transition_to(status):
            raise ConflictError(f"Cannot transition order from {self.status} to {status.value}")

        now = utcnow()
        self.status = status.value
        if status is OrderStatus.PAID:
            self.paid_at = now
        elif status is OrderStatus.SHIPPED:
            self.shipped_at = now
        elif status is OrderStatus.DELIVERED:
            self.delivered_at = now
        elif status is OrderStatus.CANCELLED:
            self.cancelled_at = now
        self.updated_at = now
        return self.record_event(status, description, notes)

    def cancel(self, reason: str | None = None) -> "OrderEvent":
        if not self.can_be_cancelled:
            raise ConflictError(f"Order cannot be cancelled. Current status: {self.status}")
        self.cancellation_reason = reason
        return self.transition_to(OrderStatus.CANCELLED, reason or "Order cancelled by customer")

    def append_note(self, note: str) -> None:
        entry = f"[{utcnow():%Y-%m-%d %H:%M}] {note.strip()}"
        self.notes = f"{self.notes}\n{entry}" if self.notes else entry
        self.updated_at = utcnow()


class OrderEvent(Base):
    __tablename__ = "order_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    status: Mapped[str] = mapped_column(String(20))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    order = relationship("Order", back_populates="events")
