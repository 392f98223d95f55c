"""Order model."""
import enum

from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class OrderStatus(str, enum.Enum):
    """Order lifecycle status."""
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    PROCESSING = 'processing'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class PaymentMethod(str, enum.Enum):
    """Out-of-band payment methods (no gateway integration)."""
    MPESA = 'mpesa'
    PAY_ON_DELIVERY = 'pay_on_delivery'


class Order(Base):
    """Committed order. Amounts and line prices are snapshots taken at commit time."""

    __tablename__ = 'orders'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_number = Column(String(50), nullable=False, unique=True)
    account_id = Column(BigInteger, ForeignKey('account.id'), nullable=False, index=True)
    delivery_location_id = Column(BigInteger, ForeignKey('delivery_location.id'), nullable=False)

    subtotal_amount = Column(Numeric(10, 2), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)

    coupon_id = Column(BigInteger, ForeignKey('coupon.id'), nullable=True)
    coupon_code = Column(String(50), nullable=True)

    payment_method = Column(String(30), nullable=False)
    payment_reference = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)

    # Idempotency key to prevent duplicate orders on double-submit
    idempotency_key = Column(String(64), unique=True, nullable=False, index=True)

    # Delivery snapshot
    shipping_city = Column(String(120), nullable=True)
    pickup_location = Column(String(255), nullable=True)
    pickup_phone = Column(String(50), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    account = relationship('Account', back_populates='orders')
    delivery_location = relationship('DeliveryLocation')
    coupon = relationship('Coupon')
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<Order(id={self.id}, number='{self.order_number}', total={self.total_amount}, status='{self.status}')>"
