"""Coupon model."""
import enum

from sqlalchemy import Column, String, Text, Numeric, Integer, Boolean, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class DiscountType(str, enum.Enum):
    """How a coupon's value is interpreted."""
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'


class Coupon(Base):
    """
    Discount voucher.

    used_count is only ever incremented inside the order commit transaction.
    A NULL starts_at / expires_at leaves that side of the window open.
    """

    __tablename__ = 'coupon'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    discount_type = Column(String(20), nullable=False)
    value = Column(Numeric(10, 2), nullable=False)
    min_order_amount = Column(Numeric(10, 2), nullable=True)
    max_discount_amount = Column(Numeric(10, 2), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0, server_default='0')
    is_active = Column(Boolean, nullable=False, default=True)
    starts_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Coupon(id={self.id}, code='{self.code}', type='{self.discount_type}', value={self.value})>"
