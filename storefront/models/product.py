"""Product model (catalog table read for authoritative prices)."""
from sqlalchemy import Column, String, Numeric, Boolean, DateTime
from sqlalchemy.sql import func
from storefront.database import Base


class Product(Base):
    """Product price record."""

    __tablename__ = 'product'

    id = Column(String(64), primary_key=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id='{self.id}', price={self.price})>"
