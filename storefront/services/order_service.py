"""
Order commit and lifecycle.

commit_order() re-derives every amount server side and writes the order,
its items and the coupon usage increment in one transaction. A failure at
any stage leaves nothing behind.
"""
import logging
import secrets
import string
import time
from decimal import Decimal
from typing import Any, Dict, List, Optional

from storefront.blueprints.metrics import orders_committed_total
from storefront.exceptions import (
    CommitError, ConflictError, CouponError, InactiveLocationError,
    InvalidTransitionError, LimitExceededError, NotFoundError, PersistenceError,
    ValidationError
)
from storefront.models import Order, OrderItem, OrderStatus, PaymentMethod
from storefront.services import cache_service
from storefront.services.coupon_service import CACHE_MODULE as COUPONS_CACHE_MODULE, validate_coupon
from storefront.services.delivery_service import resolve_delivery_fee
from storefront.utils.money import ZERO, quantize_money

logger = logging.getLogger(__name__)

# Forward-only fulfilment path. Skipping ahead is allowed.
STATUS_FLOW = [
    OrderStatus.PENDING.value,
    OrderStatus.CONFIRMED.value,
    OrderStatus.PROCESSING.value,
    OrderStatus.SHIPPED.value,
    OrderStatus.DELIVERED.value,
]
TERMINAL_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
SHOPPER_CANCELLABLE = {OrderStatus.PENDING.value, OrderStatus.CONFIRMED.value}
PAYMENT_REFERENCE_MAX_LENGTH = 100  # orders.payment_reference column


def parse_payment_method(value) -> str:
    try:
        return PaymentMethod(str(value or '').strip().lower()).value
    except ValueError:
        allowed = ', '.join(m.value for m in PaymentMethod)
        raise ValidationError(f'payment_method must be one of: {allowed}')


def parse_status(value) -> str:
    try:
        return OrderStatus(str(value or '').strip().lower()).value
    except ValueError:
        allowed = ', '.join(s.value for s in OrderStatus)
        raise ValidationError(f'status must be one of: {allowed}')


def parse_payment_reference(value) -> Optional[str]:
    """Stripped payment reference, or None when blank."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError('payment_reference must be a string')
    value = value.strip()
    if len(value) > PAYMENT_REFERENCE_MAX_LENGTH:
        raise ValidationError(
            f'payment_reference must be at most {PAYMENT_REFERENCE_MAX_LENGTH} characters'
        )
    return value or None


def can_transition(current: str, new: str) -> bool:
    """Whether an order in `current` status may move to `new`."""
    if current in TERMINAL_STATUSES or current == new:
        return False
    if new == OrderStatus.CANCELLED.value:
        return True
    if current not in STATUS_FLOW or new not in STATUS_FLOW:
        return False
    return STATUS_FLOW.index(new) > STATUS_FLOW.index(current)


def ensure_transition(current: str, new: str) -> None:
    if not can_transition(current, new):
        raise InvalidTransitionError(current, new)


def generate_order_number(prefix: str = 'ORDER') -> str:
    """e.g. ORDER-1718000000000-K3F9Q"""
    suffix = ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
    return f"{prefix}-{int(time.time() * 1000)}-{suffix}"


def _validate_lines(reconciled_items) -> List:
    lines = list(reconciled_items or [])
    if not lines:
        raise ValidationError('Cannot place an order without items')
    for line in lines:
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity < 1:
            raise ValidationError(f'Invalid quantity for product {line.product_id}')
        if line.unit_price is None or Decimal(str(line.unit_price)) < 0:
            raise ValidationError(f'Invalid price for product {line.product_id}')
    return lines


def _existing_order(persistence, idempotency_key: str) -> Optional[Order]:
    try:
        return persistence.find_order_by_idempotency_key(idempotency_key)
    except PersistenceError as e:
        raise CommitError('persistence', 'Could not check for an existing order', e)


def commit_order(persistence, account_id, reconciled_items, delivery_location_id,
                 applied_coupon, payment_method, idempotency_key,
                 payment_reference: Optional[str] = None,
                 order_number_prefix: str = 'ORDER') -> Order:
    """
    Persist an order for a resolved account.

    The subtotal is recomputed from the reconciled prices, the coupon is
    validated again against that subtotal (the client's discount is never
    trusted) and the delivery fee is read again. If an order with the same
    idempotency key already exists it is returned unchanged.

    Raises:
        CommitError: with stage validation, coupon, delivery or persistence.
            Nothing is persisted when it is raised.
    """
    # 1. Validation
    try:
        if not idempotency_key:
            raise ValidationError('idempotency_key is required')
        if not account_id:
            raise ValidationError('account_id is required')
        payment_method = parse_payment_method(payment_method)
        payment_reference = parse_payment_reference(payment_reference)
        lines = _validate_lines(reconciled_items)
    except ValidationError as e:
        raise CommitError('validation', e.message, e)

    existing = _existing_order(persistence, idempotency_key)
    if existing is not None:
        logger.info(f"[ORDER] Duplicate submit, returning order {existing.order_number}")
        return existing

    subtotal = quantize_money(sum((line.line_total for line in lines), ZERO))

    # 2. Coupon
    discount = ZERO
    coupon_id = None
    coupon_code = None
    if applied_coupon is not None:
        try:
            fresh = validate_coupon(applied_coupon.code, subtotal, persistence, account_id=account_id)
        except (CouponError, ValidationError) as e:
            raise CommitError('coupon', e.message, e)
        except PersistenceError as e:
            raise CommitError('persistence', 'Could not validate the coupon', e)
        if fresh.coupon_id != applied_coupon.coupon_id:
            raise CommitError('coupon', 'Applied coupon no longer matches this code')
        discount = fresh.discount_amount
        coupon_id = fresh.coupon_id
        coupon_code = fresh.code

    # 3. Delivery
    try:
        quote = resolve_delivery_fee(delivery_location_id, persistence)
    except (NotFoundError, InactiveLocationError, ValidationError) as e:
        raise CommitError('delivery', e.message, e)
    except PersistenceError as e:
        raise CommitError('persistence', 'Could not read the delivery location', e)

    total = max(ZERO, subtotal + quote.shipping_amount - discount)

    order = Order(
        order_number=generate_order_number(order_number_prefix),
        account_id=account_id,
        delivery_location_id=quote.location_id,
        subtotal_amount=subtotal,
        shipping_amount=quote.shipping_amount,
        discount_amount=discount,
        total_amount=quantize_money(total),
        coupon_id=coupon_id,
        coupon_code=coupon_code,
        payment_method=payment_method,
        payment_reference=payment_reference,
        status=OrderStatus.PENDING.value,
        idempotency_key=idempotency_key,
        shipping_city=quote.city_name,
        pickup_location=quote.pickup_location,
        pickup_phone=quote.pickup_phone,
    )
    for line in lines:
        order.items.append(OrderItem(
            product_id=line.product_id,
            quantity=line.quantity,
            unit_price_at_purchase=quantize_money(line.unit_price),
            line_total=line.line_total,
            size=line.size,
            color=line.color,
        ))

    # 4. Persistence
    try:
        persistence.insert_order_with_items(order, coupon_id=coupon_id)
    except LimitExceededError as e:
        raise CommitError('coupon', e.message, e)
    except ConflictError as e:
        existing = _existing_order(persistence, idempotency_key)
        if existing is not None:
            logger.info(f"[ORDER] Concurrent duplicate submit, returning order {existing.order_number}")
            return existing
        raise CommitError('persistence', 'Order could not be saved', e)
    except PersistenceError as e:
        logger.error(f"[ORDER] Commit failed for account {account_id}: {e.message}")
        raise CommitError('persistence', 'Order could not be saved', e)

    orders_committed_total.inc()
    if coupon_id is not None:
        # used_count changed; the public listing hides exhausted coupons
        cache_service.invalidate(COUPONS_CACHE_MODULE)
    logger.info(
        f"[ORDER] Committed {order.order_number} for account {account_id}: "
        f"subtotal={subtotal} shipping={quote.shipping_amount} discount={discount} total={order.total_amount}"
    )
    return order


# ----------------------------------------------------------------------
# Reads and lifecycle
# ----------------------------------------------------------------------

def get_order(persistence, order_id, account_id: Optional[int] = None) -> Order:
    """
    Fetch an order. With account_id, orders of other accounts are reported
    as not found.
    """
    order = persistence.get_order(int(order_id))
    if order is None or (account_id is not None and order.account_id != account_id):
        raise NotFoundError('Order not found', {'order_id': order_id})
    return order


def list_orders_for_account(persistence, account_id: int) -> List[Order]:
    return persistence.list_orders_for_account(account_id)


def transition_order_status(persistence, order_id, new_status) -> Order:
    """Admin status change along the order lifecycle."""
    new_status = parse_status(new_status)
    order = get_order(persistence, order_id)
    ensure_transition(order.status, new_status)
    previous = order.status
    order.status = new_status
    persistence.save_order(order)
    logger.info(f"[ORDER] {order.order_number}: {previous} -> {new_status}")
    return order


def cancel_order(persistence, order_id, account_id: int) -> Order:
    """Shopper cancellation: own orders only, while pending or confirmed."""
    order = get_order(persistence, order_id, account_id=account_id)
    if order.status not in SHOPPER_CANCELLABLE:
        raise InvalidTransitionError(order.status, OrderStatus.CANCELLED.value)
    order.status = OrderStatus.CANCELLED.value
    persistence.save_order(order)
    logger.info(f"[ORDER] {order.order_number} cancelled by account {account_id}")
    return order


def order_to_dict(order: Order) -> Dict[str, Any]:
    return {
        'id': order.id,
        'order_number': order.order_number,
        'account_id': order.account_id,
        'status': order.status,
        'delivery_location_id': order.delivery_location_id,
        'shipping_address': {
            'city': order.shipping_city,
            'pickup_location': order.pickup_location,
            'pickup_phone': order.pickup_phone,
        },
        'subtotal_amount': str(quantize_money(order.subtotal_amount)),
        'shipping_amount': str(quantize_money(order.shipping_amount)),
        'discount_amount': str(quantize_money(order.discount_amount)),
        'total_amount': str(quantize_money(order.total_amount)),
        'coupon_code': order.coupon_code,
        'payment_method': order.payment_method,
        'payment_reference': order.payment_reference,
        'created_at': order.created_at.isoformat() if order.created_at else None,
        'items': [
            {
                'product_id': item.product_id,
                'quantity': item.quantity,
                'unit_price_at_purchase': str(quantize_money(item.unit_price_at_purchase)),
                'line_total': str(quantize_money(item.line_total)),
                'size': item.size,
                'color': item.color,
            }
            for item in order.items
        ],
    }
