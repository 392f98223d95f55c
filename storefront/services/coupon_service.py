"""
Coupon engine.

validate_coupon() checks a code against an order subtotal and returns the
discount to apply. It only reads: used_count is incremented by the order
commit, inside the order transaction.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from storefront.blueprints.metrics import coupon_rejections_total
from storefront.exceptions import (
    CouponError, CouponNotFoundError, ExpiredError, LimitExceededError,
    MinimumNotMetError, ValidationError
)
from storefront.models import Coupon, DiscountType
from storefront.services import cache_service
from storefront.services.cart_store import AppliedCoupon
from storefront.utils.money import ZERO, quantize_money, to_money

logger = logging.getLogger(__name__)

CACHE_MODULE = 'coupons'


def normalize_code(code) -> str:
    """Strip and upper-case a coupon code. Empty codes are rejected."""
    normalized = str(code or '').strip().upper()
    if not normalized:
        raise ValidationError('Coupon code is required')
    return normalized


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; stored values are UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def is_within_window(coupon: Coupon, now: datetime) -> bool:
    starts_at = _as_utc(coupon.starts_at)
    expires_at = _as_utc(coupon.expires_at)
    if starts_at is not None and now < starts_at:
        return False
    if expires_at is not None and now > expires_at:
        return False
    return True


def is_exhausted(coupon: Coupon) -> bool:
    return coupon.usage_limit is not None and (coupon.used_count or 0) >= coupon.usage_limit


def compute_discount(coupon: Coupon, order_subtotal: Decimal) -> Decimal:
    """
    Discount for a subtotal.

    percentage: subtotal * value / 100; fixed: value. The result is capped by
    max_discount_amount and by the subtotal, and is never negative.
    """
    value = Decimal(str(coupon.value))
    if coupon.discount_type == DiscountType.PERCENTAGE.value:
        raw = order_subtotal * value / Decimal('100')
    elif coupon.discount_type == DiscountType.FIXED.value:
        raw = value
    else:
        raise ValidationError(f'Unknown discount type: {coupon.discount_type}')

    discount = raw
    if coupon.max_discount_amount is not None:
        discount = min(discount, Decimal(str(coupon.max_discount_amount)))
    discount = min(discount, order_subtotal)
    return quantize_money(max(ZERO, discount))


def _check(coupon: Optional[Coupon], code: str, order_subtotal: Decimal, now: datetime) -> Coupon:
    if coupon is None:
        raise CouponNotFoundError(code)
    if not coupon.is_active or not is_within_window(coupon, now):
        raise ExpiredError(code)
    if coupon.min_order_amount is not None and order_subtotal < Decimal(str(coupon.min_order_amount)):
        raise MinimumNotMetError(code, quantize_money(coupon.min_order_amount))
    if is_exhausted(coupon):
        raise LimitExceededError(code)
    return coupon


def validate_coupon(code, order_subtotal, persistence, account_id: Optional[int] = None,
                    now: Optional[datetime] = None) -> AppliedCoupon:
    """
    Validate a coupon code for an order subtotal.

    Checks run in order and stop at the first failure: code present, coupon
    exists, active and inside its window, minimum order met, usage limit not
    reached.

    account_id is accepted for per-account rules; none are enforced today.

    Raises:
        ValidationError: empty code or malformed subtotal
        CouponError: one of CouponNotFoundError, ExpiredError,
            MinimumNotMetError, LimitExceededError
    """
    normalized = normalize_code(code)
    subtotal = to_money(order_subtotal, 'order_subtotal')
    now = now or datetime.now(timezone.utc)

    try:
        coupon = _check(persistence.get_coupon_by_code(normalized), normalized, subtotal, now)
    except CouponError as e:
        coupon_rejections_total.labels(reason=e.code).inc()
        logger.info(f"[COUPON] Rejected {normalized} for subtotal {subtotal}: {e.code}")
        raise

    discount = compute_discount(coupon, subtotal)
    logger.info(f"[COUPON] Accepted {normalized}: discount {discount} on {subtotal}")
    return AppliedCoupon(coupon_id=coupon.id, code=coupon.code, discount_amount=discount)


def coupon_to_dict(coupon: Coupon) -> Dict:
    return {
        'id': coupon.id,
        'code': coupon.code,
        'description': coupon.description,
        'discount_type': coupon.discount_type,
        'value': str(quantize_money(coupon.value)),
        'min_order_amount': str(quantize_money(coupon.min_order_amount)) if coupon.min_order_amount is not None else None,
        'max_discount_amount': str(quantize_money(coupon.max_discount_amount)) if coupon.max_discount_amount is not None else None,
        'expires_at': _as_utc(coupon.expires_at).isoformat() if coupon.expires_at else None,
    }


def list_public_coupons(persistence, now: Optional[datetime] = None) -> List[Dict]:
    """Coupons a shopper can redeem right now, for the promotions banner."""
    now = now or datetime.now(timezone.utc)

    def _load():
        return [
            coupon_to_dict(c) for c in persistence.list_enabled_coupons()
            if is_within_window(c, now) and not is_exhausted(c)
        ]

    return cache_service.memoize(CACHE_MODULE, 'public', _load, 'CACHE_COUPONS_TTL')
