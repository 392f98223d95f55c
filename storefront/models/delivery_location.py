"""Delivery location model."""
import enum

from sqlalchemy import Column, String, Numeric, DateTime
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class LocationStatus(str, enum.Enum):
    """Delivery location status."""
    ACTIVE = 'active'
    INACTIVE = 'inactive'
    MAINTENANCE = 'maintenance'


class DeliveryLocation(Base):
    """Delivery location with a flat per-city shipping fee."""

    __tablename__ = 'delivery_location'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    city_name = Column(String(120), nullable=False)
    shipping_amount = Column(Numeric(10, 2), nullable=False, default=0)
    pickup_location = Column(String(255), nullable=True)
    pickup_phone = Column(String(50), nullable=True)
    status = Column(String(20), nullable=False, default=LocationStatus.ACTIVE.value)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    @property
    def is_active(self):
        return self.status == LocationStatus.ACTIVE.value

    def __repr__(self):
        return f"<DeliveryLocation(id={self.id}, city='{self.city_name}', status='{self.status}')>"
