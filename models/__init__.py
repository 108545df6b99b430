# Import models so that SQLAlchemy metadata includes them on app startup
from .user import User  # noqa: F401
from .category import Category  # noqa: F401
from .product import Product, ProductVariant, ProductImage  # noqa: F401
from .cart import Cart, CartItem  # noqa: F401
from .order import Order, OrderEvent, OrderStatus  # noqa: F401
from .order_item import OrderItem  # noqa: F401
from .payment import Payment  # noqa: F401
from .address import Address  # noqa: F401
