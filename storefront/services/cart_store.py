"""
Cart store - client-resident line-item container.

State transitions are synchronous. After every successful mutation the new
state is written through a CartStorage port; when validation or the write
fails the in-memory state is left untouched.
"""
import hashlib
import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Protocol

from flask import current_app, session

from storefront.exceptions import NotFoundError, ValidationError
from storefront.utils.money import ZERO, quantize_money, to_money

logger = logging.getLogger(__name__)


@dataclass
class CartLineItem:
    """One cart row. name and image are display-only."""
    product_id: str
    cached_unit_price: Decimal
    quantity: int = 1
    size: Optional[str] = None
    color: Optional[str] = None
    name: Optional[str] = None
    image: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.cached_unit_price * self.quantity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_id': self.product_id,
            'cached_unit_price': str(self.cached_unit_price),
            'quantity': self.quantity,
            'size': self.size,
            'color': self.color,
            'name': self.name,
            'image': self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CartLineItem':
        """
        Build a line item from client or persisted data.

        Raises:
            ValidationError: missing product_id, bad price or quantity < 1
        """
        if not isinstance(data, dict):
            raise ValidationError('Cart item must be an object')
        product_id = data.get('product_id')
        if product_id is None or str(product_id).strip() == '':
            raise ValidationError('product_id is required')
        quantity = _parse_quantity(data.get('quantity', 1))
        if quantity < 1:
            raise ValidationError('quantity must be at least 1')
        return cls(
            product_id=str(product_id).strip(),
            cached_unit_price=to_money(data.get('cached_unit_price'), 'cached_unit_price'),
            quantity=quantity,
            size=data.get('size'),
            color=data.get('color'),
            name=data.get('name'),
            image=data.get('image'),
        )


@dataclass
class AppliedCoupon:
    """Coupon accepted by the coupon engine for the current cart."""
    coupon_id: int
    code: str
    discount_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            'coupon_id': self.coupon_id,
            'code': self.code,
            'discount_amount': str(self.discount_amount),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppliedCoupon':
        return cls(
            coupon_id=int(data['coupon_id']),
            code=str(data['code']),
            discount_amount=to_money(data['discount_amount'], 'discount_amount'),
        )


def _parse_quantity(value) -> int:
    if isinstance(value, bool):
        raise ValidationError('quantity must be an integer')
    try:
        quantity = int(value)
    except (TypeError, ValueError):
        raise ValidationError('quantity must be an integer')
    if isinstance(value, float) and value != quantity:
        raise ValidationError('quantity must be an integer')
    return quantity


def _derive_checkout_token(raw: Dict[str, Any]) -> str:
    """Stable token for a persisted cart that predates checkout tokens."""
    canonical = json.dumps(raw, sort_keys=True, separators=(',', ':'), default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()[:32]


# ----------------------------------------------------------------------
# Storage ports
# ----------------------------------------------------------------------

class CartStorage(Protocol):
    """Durable store for the serialized cart."""

    def load(self) -> Optional[Dict[str, Any]]: ...
    def save(self, data: Dict[str, Any]) -> None: ...
    def clear(self) -> None: ...


class InMemoryCartStorage:
    """Dict-backed storage, used in tests and scripts."""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self.data = data
        self.saves = 0

    def load(self) -> Optional[Dict[str, Any]]:
        return self.data

    def save(self, data: Dict[str, Any]) -> None:
        self.data = data
        self.saves += 1

    def clear(self) -> None:
        self.data = None


class SessionCartStorage:
    """Stores the cart in the signed Flask session cookie."""

    def __init__(self, key: Optional[str] = None):
        self.key = key or current_app.config.get('CART_SESSION_KEY', 'storefront-cart')

    def load(self) -> Optional[Dict[str, Any]]:
        return session.get(self.key)

    def save(self, data: Dict[str, Any]) -> None:
        session[self.key] = data
        session.modified = True

    def clear(self) -> None:
        session.pop(self.key, None)
        session.modified = True


# ----------------------------------------------------------------------
# Store
# ----------------------------------------------------------------------

@dataclass
class _CartState:
    items: List[CartLineItem] = field(default_factory=list)
    delivery_location: Optional[Dict[str, Any]] = None
    applied_coupon: Optional[AppliedCoupon] = None
    checkout_token: str = field(default_factory=lambda: uuid.uuid4().hex)


class CartStore:
    """
    Ordered list of CartLineItem plus the selected delivery location and
    applied coupon.

    checkout_token changes on clear(), so an identical cart built after a
    completed checkout is treated as a new purchase.
    """

    def __init__(self, storage: CartStorage):
        self.storage = storage
        self._state = self._load()

    def _load(self) -> _CartState:
        raw = self.storage.load()
        if not raw:
            return _CartState()
        try:
            items = [CartLineItem.from_dict(row) for row in raw.get('items', [])]
            coupon_data = raw.get('applied_coupon')
            location = raw.get('delivery_location')
            if location is not None and not isinstance(location, dict):
                raise ValidationError('delivery_location must be an object')
            state = _CartState(
                items=items,
                delivery_location=location,
                applied_coupon=AppliedCoupon.from_dict(coupon_data) if coupon_data else None,
            )
            token = raw.get('checkout_token')
        except (ValidationError, AttributeError, KeyError, TypeError, ValueError, InvalidOperation) as e:
            logger.warning(f"[CART] Discarding corrupt persisted cart: {e}")
            self.storage.clear()
            return _CartState()

        if token:
            state.checkout_token = str(token)
        else:
            # Carts saved without a token get one derived from their contents
            state.checkout_token = _derive_checkout_token(raw)
            self.storage.save(self._serialize(state))
        return state

    def _serialize(self, state: _CartState) -> Dict[str, Any]:
        return {
            'items': [item.to_dict() for item in state.items],
            'delivery_location': state.delivery_location,
            'applied_coupon': state.applied_coupon.to_dict() if state.applied_coupon else None,
            'checkout_token': state.checkout_token,
        }

    def _commit(self, state: _CartState) -> None:
        self.storage.save(self._serialize(state))
        self._state = state

    def _replace(self, **changes) -> _CartState:
        values = {
            'items': list(self._state.items),
            'delivery_location': self._state.delivery_location,
            'applied_coupon': self._state.applied_coupon,
            'checkout_token': self._state.checkout_token,
        }
        values.update(changes)
        return _CartState(**values)

    # Read access

    @property
    def items(self) -> List[CartLineItem]:
        return list(self._state.items)

    @property
    def delivery_location(self) -> Optional[Dict[str, Any]]:
        return self._state.delivery_location

    @property
    def applied_coupon(self) -> Optional[AppliedCoupon]:
        return self._state.applied_coupon

    @property
    def checkout_token(self) -> str:
        return self._state.checkout_token

    def is_empty(self) -> bool:
        return not self._state.items

    def get_item(self, product_id) -> Optional[CartLineItem]:
        product_id = str(product_id)
        for item in self._state.items:
            if item.product_id == product_id:
                return item
        return None

    # Mutations

    def add(self, item: CartLineItem) -> None:
        """Append an item, or increase the quantity of an existing row."""
        if item.quantity < 1:
            raise ValidationError('quantity must be at least 1')
        items = list(self._state.items)
        for index, existing in enumerate(items):
            if existing.product_id == str(item.product_id):
                items[index] = CartLineItem(
                    product_id=existing.product_id,
                    cached_unit_price=existing.cached_unit_price,
                    quantity=existing.quantity + item.quantity,
                    size=existing.size,
                    color=existing.color,
                    name=existing.name,
                    image=existing.image,
                )
                break
        else:
            items.append(replace(item, product_id=str(item.product_id)))
        self._commit(self._replace(items=items))
        logger.info(f"[CART] Added {item.quantity} x {item.product_id}")

    def remove(self, product_id) -> None:
        product_id = str(product_id)
        if self.get_item(product_id) is None:
            raise NotFoundError('Item not in cart', {'product_id': product_id})
        items = [i for i in self._state.items if i.product_id != product_id]
        self._commit(self._replace(items=items))
        logger.info(f"[CART] Removed {product_id}")

    def set_quantity(self, product_id, quantity) -> None:
        """Set a row's quantity. Zero or less removes the row."""
        product_id = str(product_id)
        quantity = _parse_quantity(quantity)
        existing = self.get_item(product_id)
        if existing is None:
            raise NotFoundError('Item not in cart', {'product_id': product_id})
        if quantity <= 0:
            self.remove(product_id)
            return
        items = [
            CartLineItem(
                product_id=i.product_id,
                cached_unit_price=i.cached_unit_price,
                quantity=quantity,
                size=i.size,
                color=i.color,
                name=i.name,
                image=i.image,
            ) if i.product_id == product_id else i
            for i in self._state.items
        ]
        self._commit(self._replace(items=items))

    def clear(self) -> None:
        """Reset items, delivery location and coupon, and start a new checkout token."""
        self._commit(_CartState())
        logger.info("[CART] Cleared")

    def apply_coupon(self, applied: AppliedCoupon) -> None:
        self._commit(self._replace(applied_coupon=applied))

    def remove_coupon(self) -> None:
        self._commit(self._replace(applied_coupon=None))

    def set_delivery_location(self, location) -> None:
        """Select a delivery location (a DeliveryQuote or its dict form). None deselects."""
        if location is not None and not isinstance(location, dict):
            location = location.to_dict()
        self._commit(self._replace(delivery_location=location))

    # Derived values

    @property
    def total_items(self) -> int:
        return sum(item.quantity for item in self._state.items)

    @property
    def subtotal(self) -> Decimal:
        return quantize_money(sum((item.line_total for item in self._state.items), ZERO))

    @property
    def shipping_cost(self) -> Decimal:
        location = self._state.delivery_location
        if not location:
            return ZERO
        return quantize_money(Decimal(str(location.get('shipping_amount') or '0')))

    @property
    def coupon_discount(self) -> Decimal:
        applied = self._state.applied_coupon
        if applied is None:
            return ZERO
        return min(applied.discount_amount, self.subtotal)

    @property
    def final_total(self) -> Decimal:
        return max(ZERO, self.subtotal + self.shipping_cost - self.coupon_discount)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'items': [dict(item.to_dict(), line_total=str(item.line_total)) for item in self._state.items],
            'total_items': self.total_items,
            'subtotal': str(self.subtotal),
            'shipping_cost': str(self.shipping_cost),
            'coupon_discount': str(self.coupon_discount),
            'final_total': str(self.final_total),
            'delivery_location': self._state.delivery_location,
            'applied_coupon': self._state.applied_coupon.to_dict() if self._state.applied_coupon else None,
        }
