"""Account model - durable customer record, the only valid order owner."""
import enum

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from storefront.database import Base, BigIntPK


class AccountRole(str, enum.Enum):
    """Account role."""
    CUSTOMER = 'customer'
    ADMIN = 'admin'


class Account(Base):
    """
    Account (durable identity).

    session_ref holds the last session identity seen for this account. It is
    a lookup key only; orders always reference Account.id.
    """

    __tablename__ = 'account'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    session_ref = Column(String(255), nullable=True, unique=True)
    email = Column(String(255), nullable=False, unique=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default=AccountRole.CUSTOMER.value)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    orders = relationship('Order', back_populates='account')

    @property
    def is_admin(self):
        return self.role == AccountRole.ADMIN.value

    def __repr__(self):
        return f"<Account(id={self.id}, email='{self.email}', role='{self.role}')>"
