"""Order Item model."""
from sqlalchemy import Column, BigInteger, String, Integer, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from storefront.database import Base, BigIntPK


class OrderItem(Base):
    """Order line with the unit price captured at purchase time."""

    __tablename__ = 'order_items'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_id = Column(BigInteger, ForeignKey('orders.id'), nullable=False, index=True)
    product_id = Column(String(64), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price_at_purchase = Column(Numeric(10, 2), nullable=False)
    line_total = Column(Numeric(10, 2), nullable=False)
    size = Column(String(30), nullable=True)
    color = Column(String(30), nullable=True)

    # Relationships
    order = relationship('Order', back_populates='items')

    def __repr__(self):
        return f"<OrderItem(id={self.id}, product_id='{self.product_id}', qty={self.quantity})>"
