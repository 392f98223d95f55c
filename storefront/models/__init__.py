"""Models package - exports all SQLAlchemy models."""
from storefront.models.account import Account, AccountRole
from storefront.models.product import Product
from storefront.models.delivery_location import DeliveryLocation, LocationStatus
from storefront.models.coupon import Coupon, DiscountType
from storefront.models.order import Order, OrderStatus, PaymentMethod
from storefront.models.order_item import OrderItem

__all__ = [
    'Account', 'AccountRole',
    'Product',
    'DeliveryLocation', 'LocationStatus',
    'Coupon', 'DiscountType',
    'Order', 'OrderStatus', 'PaymentMethod',
    'OrderItem',
]
