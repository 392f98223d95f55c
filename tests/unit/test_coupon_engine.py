"""
Unit tests for coupon validation and discount math.
"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from storefront.exceptions import (
    CouponNotFoundError, ExpiredError, LimitExceededError, MinimumNotMetError,
    NotFoundError, ValidationError
)
from storefront.models import Coupon
from storefront.services.coupon_service import (
    compute_discount, list_public_coupons, normalize_code, validate_coupon
)

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def coupon(code='SAVE20', discount_type='percentage', value='20', **kwargs):
    kwargs.setdefault('used_count', 0)
    kwargs.setdefault('is_active', True)
    return Coupon(id=kwargs.pop('id', 1), code=code, discount_type=discount_type, value=Decimal(value), **kwargs)


class CouponLookup:
    """Minimal persistence with only the coupon reads."""

    def __init__(self, *coupons):
        self.coupons = {c.code: c for c in coupons}

    def get_coupon_by_code(self, code):
        return self.coupons.get(code)

    def list_enabled_coupons(self):
        return [c for c in self.coupons.values() if c.is_active]


class TestComputeDiscount:

    def test_percentage(self):
        assert compute_discount(coupon(value='20'), Decimal('3000')) == Decimal('600.00')

    def test_fixed(self):
        assert compute_discount(coupon(discount_type='fixed', value='500'), Decimal('3000')) == Decimal('500.00')

    def test_capped_by_max_discount(self):
        c = coupon(value='50', max_discount_amount=Decimal('1000'))
        assert compute_discount(c, Decimal('5000')) == Decimal('1000.00')

    def test_capped_by_subtotal(self):
        c = coupon(discount_type='fixed', value='500')
        assert compute_discount(c, Decimal('300')) == Decimal('300.00')

    def test_rounds_half_up(self):
        c = coupon(value='15')
        assert compute_discount(c, Decimal('0.10')) == Decimal('0.02')

    @pytest.mark.parametrize('subtotal', ['0', '1', '99.99', '1000', '3000', '250000'])
    @pytest.mark.parametrize('c', [
        coupon(value='20', max_discount_amount=Decimal('5000')),
        coupon(value='100'),
        coupon(discount_type='fixed', value='500'),
        coupon(discount_type='fixed', value='50', max_discount_amount=Decimal('10')),
    ])
    def test_discount_bounds(self, c, subtotal):
        subtotal = Decimal(subtotal)
        cap = c.max_discount_amount if c.max_discount_amount is not None else subtotal
        discount = compute_discount(c, subtotal)
        assert Decimal('0') <= discount <= min(subtotal, cap)


class TestValidateCoupon:

    def test_save20_scenario(self):
        save20 = coupon(min_order_amount=Decimal('1000'), max_discount_amount=Decimal('5000'))

        applied = validate_coupon('save20', Decimal('3000'), CouponLookup(save20), now=NOW)

        assert applied.code == 'SAVE20'
        assert applied.coupon_id == 1
        assert applied.discount_amount == Decimal('600.00')

    def test_flat500_below_minimum(self):
        flat500 = coupon('FLAT500', 'fixed', '500', min_order_amount=Decimal('2000'))

        with pytest.raises(MinimumNotMetError) as exc_info:
            validate_coupon('FLAT500', Decimal('1500'), CouponLookup(flat500), now=NOW)
        assert exc_info.value.status_code == 422

    def test_code_is_normalized(self):
        applied = validate_coupon('  save20 ', Decimal('3000'), CouponLookup(coupon()), now=NOW)
        assert applied.code == 'SAVE20'

    @pytest.mark.parametrize('code', ['', '   ', None])
    def test_empty_code(self, code):
        with pytest.raises(ValidationError):
            validate_coupon(code, Decimal('100'), CouponLookup(), now=NOW)

    def test_unknown_code(self):
        with pytest.raises(CouponNotFoundError) as exc_info:
            validate_coupon('NOPE', Decimal('100'), CouponLookup(), now=NOW)
        assert isinstance(exc_info.value, NotFoundError)

    def test_inactive(self):
        with pytest.raises(ExpiredError):
            validate_coupon('SAVE20', Decimal('100'), CouponLookup(coupon(is_active=False)), now=NOW)

    def test_expired(self):
        c = coupon(expires_at=NOW - timedelta(seconds=1))
        with pytest.raises(ExpiredError):
            validate_coupon('SAVE20', Decimal('100'), CouponLookup(c), now=NOW)

    def test_not_yet_started(self):
        c = coupon(starts_at=NOW + timedelta(days=1))
        with pytest.raises(ExpiredError):
            validate_coupon('SAVE20', Decimal('100'), CouponLookup(c), now=NOW)

    def test_naive_window_is_utc(self):
        c = coupon(starts_at=datetime(2026, 5, 1), expires_at=datetime(2026, 7, 1))
        applied = validate_coupon('SAVE20', Decimal('100'), CouponLookup(c), now=NOW)
        assert applied.discount_amount == Decimal('20.00')

    def test_usage_limit_reached(self):
        c = coupon(usage_limit=5, used_count=5)
        with pytest.raises(LimitExceededError):
            validate_coupon('SAVE20', Decimal('100'), CouponLookup(c), now=NOW)

    def test_expiry_checked_before_minimum(self):
        c = coupon(is_active=False, min_order_amount=Decimal('1000'))
        with pytest.raises(ExpiredError):
            validate_coupon('SAVE20', Decimal('10'), CouponLookup(c), now=NOW)

    def test_minimum_checked_before_limit(self):
        c = coupon(min_order_amount=Decimal('1000'), usage_limit=1, used_count=1)
        with pytest.raises(MinimumNotMetError):
            validate_coupon('SAVE20', Decimal('10'), CouponLookup(c), now=NOW)

    def test_validation_does_not_touch_used_count(self):
        c = coupon(usage_limit=5, used_count=2)
        validate_coupon('SAVE20', Decimal('100'), CouponLookup(c), now=NOW)
        assert c.used_count == 2


class TestPublicCoupons:

    def test_only_redeemable_coupons_listed(self):
        lookup = CouponLookup(
            coupon('SAVE20', id=1),
            coupon('OLD', id=2, expires_at=NOW - timedelta(days=1)),
            coupon('GONE', id=3, usage_limit=1, used_count=1),
            coupon('OFF', id=4, is_active=False),
        )

        listed = list_public_coupons(lookup, now=NOW)

        assert [c['code'] for c in listed] == ['SAVE20']
        assert listed[0]['value'] == '20.00'


def test_normalize_code():
    assert normalize_code(' flat500 ') == 'FLAT500'
