from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy import String, DateTime, ForeignKey, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base, utcnow


class Cart(Base):
    __tablename__ = "carts"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=True, unique=True, index=True)
    session_id: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @staticmethod
    def expiry(ttl_days: int) -> datetime:
        return utcnow() + timedelta(days=ttl_days)

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and utcnow() > self.expires_at

    @property
    def is_guest(self) -> bool:
        return self.user_id is None

    def touch(self) -> None:
        # Always dirties the row, which bumps version_id
        self.updated_at = utcnow()

    def find_item(self, product_id: int, variant_id: int | None) -> "CartItem | None":
        return next(
            (i for i in self.items if i.product_id == product_id and i.variant_id == variant_id),
            None,
        )

    @property
    def item_count(self) -> int:
        return sum(i.quantity for i in self.items)


class CartItem(Base):
    __tablename__ = "cart_items"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    cart_id: Mapped[int] = mapped_column(ForeignKey("carts.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("products.id", ondelete="CASCADE"), index=True)
    variant_id: Mapped[int | None] = mapped_column(ForeignKey("product_variants.id", ondelete="CASCADE"), nullable=True, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2))  # price seen when the line was added
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")
    variant = relationship("ProductVariant")

    @property
    def line_total(self) -> Decimal:
        return Decimal(self.unit_price) * self.quantity
