"""
Persistence port consumed by the checkout core.

One PersistenceProvider implementation is wired in the app factory
(SqlAlchemyPersistence); services receive it as an argument and never
branch on which backend is behind it.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from flask import current_app
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storefront.exceptions import (
    ConflictError, LimitExceededError, PersistenceError, PriceFetchError
)
from storefront.models import (
    Account, Coupon, DeliveryLocation, LocationStatus, Order, Product
)

logger = logging.getLogger(__name__)


class PersistenceProvider(Protocol):
    """Storage operations the checkout pipeline depends on."""

    # Catalog
    def get_prices(self, product_ids: List[str]) -> Dict[str, Decimal]: ...

    # Delivery locations
    def get_location(self, location_id: int) -> Optional[DeliveryLocation]: ...
    def list_active_locations(self) -> List[DeliveryLocation]: ...

    # Coupons
    def get_coupon_by_code(self, code: str) -> Optional[Coupon]: ...
    def list_enabled_coupons(self) -> List[Coupon]: ...

    # Accounts
    def find_account_by_session_ref(self, session_ref: str) -> Optional[Account]: ...
    def find_account_by_email(self, email: str) -> Optional[Account]: ...
    def insert_account(self, account: Account) -> Account: ...
    def update_session_ref(self, account: Account, session_ref: str) -> Account: ...

    # Orders
    def find_order_by_idempotency_key(self, key: str) -> Optional[Order]: ...
    def insert_order_with_items(self, order: Order, coupon_id: Optional[int] = None) -> Order: ...
    def get_order(self, order_id: int) -> Optional[Order]: ...
    def list_orders_for_account(self, account_id: int) -> List[Order]: ...
    def save_order(self, order: Order) -> Order: ...

    def rollback(self) -> None: ...


class SqlAlchemyPersistence:
    """
    PersistenceProvider over a SQLAlchemy (scoped) session.

    Every write commits its own transaction. IntegrityError becomes
    ConflictError; any other SQLAlchemyError becomes PersistenceError.
    The session is rolled back before either is raised.
    """

    def __init__(self, session):
        self.session = session

    def rollback(self) -> None:
        try:
            self.session.rollback()
        except SQLAlchemyError as e:
            logger.warning(f"[DB] Rollback failed: {e}")

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def get_prices(self, product_ids: List[str]) -> Dict[str, Decimal]:
        """Current prices for active products, in a single query."""
        if not product_ids:
            return {}
        try:
            rows = self.session.query(Product.id, Product.price).filter(
                Product.id.in_(list(product_ids)),
                Product.is_active.is_(True)
            ).all()
            return {str(pid): Decimal(str(price)) for pid, price in rows}
        except SQLAlchemyError as e:
            self.rollback()
            raise PriceFetchError(f'Catalog query failed: {e}')

    # ------------------------------------------------------------------
    # Delivery locations
    # ------------------------------------------------------------------

    def get_location(self, location_id: int) -> Optional[DeliveryLocation]:
        try:
            return self.session.query(DeliveryLocation).filter_by(id=location_id).first()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Delivery location lookup failed: {e}')

    def list_active_locations(self) -> List[DeliveryLocation]:
        try:
            return self.session.query(DeliveryLocation).filter(
                DeliveryLocation.status == LocationStatus.ACTIVE.value
            ).order_by(DeliveryLocation.city_name).all()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Delivery location listing failed: {e}')

    # ------------------------------------------------------------------
    # Coupons
    # ------------------------------------------------------------------

    def get_coupon_by_code(self, code: str) -> Optional[Coupon]:
        try:
            return self.session.query(Coupon).filter_by(code=code).first()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Coupon lookup failed: {e}')

    def list_enabled_coupons(self) -> List[Coupon]:
        """Coupons flagged active. Window and usage checks belong to the coupon engine."""
        try:
            return self.session.query(Coupon).filter(
                Coupon.is_active.is_(True)
            ).order_by(Coupon.code).all()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Coupon listing failed: {e}')

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def find_account_by_session_ref(self, session_ref: str) -> Optional[Account]:
        try:
            return self.session.query(Account).filter_by(session_ref=session_ref).first()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Account lookup failed: {e}')

    def find_account_by_email(self, email: str) -> Optional[Account]:
        try:
            return self.session.query(Account).filter_by(email=email).first()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Account lookup failed: {e}')

    def insert_account(self, account: Account) -> Account:
        """Insert a new account. A unique-key clash raises ConflictError, never a raw IntegrityError."""
        try:
            self.session.add(account)
            self.session.commit()
            return account
        except IntegrityError as e:
            self.rollback()
            raise ConflictError('Account already exists', {'detail': str(e.orig)})
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Account insert failed: {e}')

    def update_session_ref(self, account: Account, session_ref: str) -> Account:
        try:
            account.session_ref = session_ref
            self.session.commit()
            return account
        except IntegrityError as e:
            self.rollback()
            raise ConflictError('Session already linked to another account', {'detail': str(e.orig)})
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Account update failed: {e}')

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def find_order_by_idempotency_key(self, key: str) -> Optional[Order]:
        try:
            return self.session.query(Order).filter_by(idempotency_key=key).first()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Order lookup failed: {e}')

    def insert_order_with_items(self, order: Order, coupon_id: Optional[int] = None) -> Order:
        """
        Write the order, its items and the coupon usage increment in one transaction.

        The increment is a conditional UPDATE so concurrent redemptions can
        never push used_count past usage_limit; when it matches no row the
        whole transaction is rolled back and LimitExceededError is raised.
        """
        try:
            self.session.add(order)
            self.session.flush()

            if coupon_id is not None:
                result = self.session.execute(
                    update(Coupon)
                    .where(
                        Coupon.id == coupon_id,
                        or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit)
                    )
                    .values(used_count=Coupon.used_count + 1)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    self.rollback()
                    raise LimitExceededError(order.coupon_code)

            self.session.commit()

            if coupon_id is not None:
                # the bulk UPDATE bypassed the identity map
                for obj in list(self.session.identity_map.values()):
                    if isinstance(obj, Coupon) and obj.id == coupon_id:
                        self.session.expire(obj, ['used_count'])
            return order
        except IntegrityError as e:
            self.rollback()
            raise ConflictError('Order already exists', {'detail': str(e.orig)})
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Order insert failed: {e}')

    def get_order(self, order_id: int) -> Optional[Order]:
        try:
            return self.session.query(Order).filter_by(id=order_id).first()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Order lookup failed: {e}')

    def list_orders_for_account(self, account_id: int) -> List[Order]:
        try:
            return self.session.query(Order).filter_by(account_id=account_id).order_by(
                Order.created_at.desc(), Order.id.desc()
            ).all()
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Order listing failed: {e}')

    def save_order(self, order: Order) -> Order:
        try:
            self.session.add(order)
            self.session.commit()
            return order
        except SQLAlchemyError as e:
            self.rollback()
            raise PersistenceError(f'Order update failed: {e}')


def init_persistence(app, session) -> SqlAlchemyPersistence:
    """Wire the persistence provider for the process."""
    persistence = SqlAlchemyPersistence(session)
    if not hasattr(app, 'extensions'):
        app.extensions = {}
    app.extensions['persistence'] = persistence
    return persistence


def get_persistence() -> PersistenceProvider:
    """Persistence provider of the current app."""
    persistence = current_app.extensions.get('persistence')
    if persistence is None:
        raise RuntimeError("Persistence not initialized.")
    return persistence
