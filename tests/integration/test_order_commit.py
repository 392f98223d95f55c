"""
Integration tests for the atomic order commit.
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from storefront.exceptions import CommitError, InvalidTransitionError, NotFoundError
from storefront.models import Coupon, Order, OrderItem
from storefront.persistence import SqlAlchemyPersistence
from storefront.services.cart_store import AppliedCoupon
from storefront.services.order_service import cancel_order, commit_order, transition_order_status
from storefront.services.price_service import ReconciledLine


def lines(*rows):
    return [ReconciledLine(product_id=pid, quantity=qty, unit_price=Decimal(price)) for pid, qty, price in rows]


def key():
    return uuid.uuid4().hex


def count(session, model):
    return session.query(model).count()


def used_count(session, coupon_id):
    return session.query(Coupon.used_count).filter(Coupon.id == coupon_id).scalar()


class TestCommitOrder:

    def test_commit_with_coupon(self, session, persistence, account, nairobi, save20):
        applied = AppliedCoupon(coupon_id=save20.id, code='SAVE20', discount_amount=Decimal('600.00'))

        order = commit_order(
            persistence, account.id, lines(('p2', 2, '1500.00')), nairobi.id,
            applied, 'mpesa', key(), payment_reference='QK7H2XYZ'
        )

        assert order.id is not None
        assert order.account_id == account.id
        assert order.subtotal_amount == Decimal('3000.00')
        assert order.shipping_amount == Decimal('200.00')
        assert order.discount_amount == Decimal('600.00')
        assert order.total_amount == Decimal('2600.00')
        assert order.status == 'pending'
        assert order.shipping_city == 'Nairobi'
        assert order.payment_reference == 'QK7H2XYZ'
        assert count(session, OrderItem) == 1
        assert used_count(session, save20.id) == 1

    def test_items_snapshot_prices(self, session, persistence, account, nairobi):
        order = commit_order(
            persistence, account.id, lines(('p1', 2, '120.00'), ('p3', 1, '450.00')),
            nairobi.id, None, 'pay_on_delivery', key()
        )

        items = {i.product_id: i for i in session.query(OrderItem).filter_by(order_id=order.id)}
        assert items['p1'].unit_price_at_purchase == Decimal('120.00')
        assert items['p1'].line_total == Decimal('240.00')
        assert items['p3'].quantity == 1
        assert order.subtotal_amount == Decimal('690.00')
        assert order.total_amount == Decimal('890.00')

    def test_stale_client_discount_is_ignored(self, persistence, account, nairobi, save20):
        applied = AppliedCoupon(coupon_id=save20.id, code='SAVE20', discount_amount=Decimal('9999.00'))

        order = commit_order(
            persistence, account.id, lines(('p2', 1, '1500.00')), nairobi.id, applied, 'mpesa', key()
        )

        assert order.discount_amount == Decimal('300.00')

    def test_duplicate_key_returns_existing_order(self, session, persistence, account, nairobi, save20):
        applied = AppliedCoupon(coupon_id=save20.id, code='SAVE20', discount_amount=Decimal('600.00'))
        idempotency_key = key()

        first = commit_order(persistence, account.id, lines(('p2', 2, '1500.00')), nairobi.id, applied, 'mpesa', idempotency_key)
        second = commit_order(persistence, account.id, lines(('p2', 2, '1500.00')), nairobi.id, applied, 'mpesa', idempotency_key)

        assert first.id == second.id
        assert count(session, Order) == 1
        assert used_count(session, save20.id) == 1

    def test_empty_items_rejected(self, session, persistence, account, nairobi):
        with pytest.raises(CommitError) as exc_info:
            commit_order(persistence, account.id, [], nairobi.id, None, 'mpesa', key())

        assert exc_info.value.stage == 'validation'
        assert count(session, Order) == 0

    def test_inactive_location_rejected(self, session, persistence, account, closed_location):
        with pytest.raises(CommitError) as exc_info:
            commit_order(persistence, account.id, lines(('p1', 1, '120.00')), closed_location.id, None, 'mpesa', key())

        assert exc_info.value.stage == 'delivery'
        assert exc_info.value.payload['reason'] == 'inactive_location'
        assert count(session, Order) == 0

    def test_unknown_location_rejected(self, persistence, account):
        with pytest.raises(CommitError) as exc_info:
            commit_order(persistence, account.id, lines(('p1', 1, '120.00')), 9999, None, 'mpesa', key())
        assert exc_info.value.stage == 'delivery'

    def test_coupon_below_minimum_rejected(self, session, persistence, account, nairobi, flat500):
        applied = AppliedCoupon(coupon_id=flat500.id, code='FLAT500', discount_amount=Decimal('500.00'))

        with pytest.raises(CommitError) as exc_info:
            commit_order(persistence, account.id, lines(('p2', 1, '1500.00')), nairobi.id, applied, 'mpesa', key())

        assert exc_info.value.stage == 'coupon'
        assert exc_info.value.payload['reason'] == 'coupon_minimum_not_met'
        assert used_count(session, flat500.id) == 0
        assert count(session, Order) == 0

    def test_exhausted_coupon_rejected(self, session, persistence, account, nairobi, make_coupon):
        once = make_coupon('ONCE', 'fixed', 100, usage_limit=1)
        applied = AppliedCoupon(coupon_id=once.id, code='ONCE', discount_amount=Decimal('100.00'))

        commit_order(persistence, account.id, lines(('p1', 1, '120.00')), nairobi.id, applied, 'mpesa', key())
        with pytest.raises(CommitError) as exc_info:
            commit_order(persistence, account.id, lines(('p3', 1, '450.00')), nairobi.id, applied, 'mpesa', key())

        assert exc_info.value.stage == 'coupon'
        assert count(session, Order) == 1
        assert used_count(session, once.id) == 1


class TestCommitAtomicity:

    def test_limit_reached_between_validation_and_insert(self, session, account, nairobi, make_coupon):
        once = make_coupon('LASTONE', 'fixed', 100, usage_limit=1)

        class RacingPersistence(SqlAlchemyPersistence):
            def insert_order_with_items(self, order, coupon_id=None):
                # a concurrent order redeems the last use first
                self.session.execute(update(Coupon).where(Coupon.id == coupon_id).values(used_count=1))
                self.session.commit()
                return super().insert_order_with_items(order, coupon_id)

        applied = AppliedCoupon(coupon_id=once.id, code='LASTONE', discount_amount=Decimal('100.00'))
        with pytest.raises(CommitError) as exc_info:
            commit_order(RacingPersistence(session), account.id, lines(('p1', 1, '120.00')), nairobi.id, applied, 'mpesa', key())

        assert exc_info.value.stage == 'coupon'
        assert exc_info.value.payload['reason'] == 'coupon_limit_exceeded'
        assert count(session, Order) == 0
        assert count(session, OrderItem) == 0
        assert used_count(session, once.id) == 1

    def test_database_failure_rolls_back_everything(self, session, account, nairobi, save20):
        class DroppedConnection:
            """Session whose COMMIT fails after the order and coupon update were flushed."""

            def __init__(self, wrapped):
                self._wrapped = wrapped

            def __getattr__(self, name):
                return getattr(self._wrapped, name)

            def commit(self):
                raise OperationalError('COMMIT', {}, Exception('server closed the connection'))

        applied = AppliedCoupon(coupon_id=save20.id, code='SAVE20', discount_amount=Decimal('600.00'))

        with pytest.raises(CommitError) as exc_info:
            commit_order(
                SqlAlchemyPersistence(DroppedConnection(session)), account.id,
                lines(('p2', 2, '1500.00')), nairobi.id, applied, 'mpesa', key()
            )

        assert exc_info.value.stage == 'persistence'
        assert exc_info.value.status_code == 500
        assert count(session, Order) == 0
        assert count(session, OrderItem) == 0
        assert used_count(session, save20.id) == 0


class TestOrderLifecycle:

    def _order(self, persistence, account, nairobi):
        return commit_order(persistence, account.id, lines(('p1', 1, '120.00')), nairobi.id, None, 'pay_on_delivery', key())

    def test_shopper_cancels_pending_order(self, persistence, account, nairobi):
        order = self._order(persistence, account, nairobi)

        cancelled = cancel_order(persistence, order.id, account.id)

        assert cancelled.status == 'cancelled'

    def test_shopper_cannot_cancel_shipped_order(self, persistence, account, nairobi):
        order = self._order(persistence, account, nairobi)
        transition_order_status(persistence, order.id, 'shipped')

        with pytest.raises(InvalidTransitionError):
            cancel_order(persistence, order.id, account.id)

    def test_shopper_cannot_cancel_other_accounts_order(self, persistence, account, nairobi):
        order = self._order(persistence, account, nairobi)

        with pytest.raises(NotFoundError):
            cancel_order(persistence, order.id, account.id + 1000)

    def test_admin_moves_order_forward(self, persistence, account, nairobi):
        order = self._order(persistence, account, nairobi)

        transition_order_status(persistence, order.id, 'confirmed')
        updated = transition_order_status(persistence, order.id, 'delivered')

        assert updated.status == 'delivered'
