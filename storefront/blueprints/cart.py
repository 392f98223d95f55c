"""Cart blueprint - session-backed cart, JSON API."""
from flask import Blueprint, current_app, jsonify
from flask_wtf.csrf import generate_csrf

from storefront.exceptions import CouponError, PersistenceError, ValidationError
from storefront.persistence import get_persistence
from storefront.services.cart_store import CartLineItem, CartStore, SessionCartStorage
from storefront.services.coupon_service import validate_coupon
from storefront.services.delivery_service import resolve_delivery_fee
from storefront.services.price_service import reconcile_prices
from storefront.utils.http import json_body
from storefront.utils.money import quantize_money

cart_bp = Blueprint('cart', __name__, url_prefix='/cart')


def get_cart() -> CartStore:
    """Cart of the current browser session."""
    return CartStore(SessionCartStorage())


def _refresh_coupon(cart: CartStore):
    """
    Re-run the coupon against the new subtotal after the items changed.

    Returns a notice for the shopper when the coupon had to be dropped.
    """
    applied = cart.applied_coupon
    if applied is None:
        return None
    if cart.is_empty():
        cart.remove_coupon()
        return None
    try:
        fresh = validate_coupon(applied.code, cart.subtotal, get_persistence())
    except CouponError as e:
        cart.remove_coupon()
        current_app.logger.info(f"[CART] Dropped coupon {applied.code}: {e.code}")
        return {'code': e.code, 'message': e.message}
    except PersistenceError as e:
        # Keep the coupon; checkout validates it again anyway
        current_app.logger.warning(f"[CART] Could not refresh coupon {applied.code}: {e.message}")
        return None
    if fresh.discount_amount != applied.discount_amount:
        cart.apply_coupon(fresh)
    return None


def _cart_response(cart: CartStore, status_code: int = 200, **extra):
    body = {'status': 'success', 'cart': cart.to_dict(), 'currency': current_app.config.get('CURRENCY', 'KES')}
    body.update({k: v for k, v in extra.items() if v is not None})
    return jsonify(body), status_code


@cart_bp.route('', methods=['GET'])
def view_cart():
    """Cart with cached prices (first render phase) plus a CSRF token for mutations."""
    cart = get_cart()
    return _cart_response(cart, csrf_token=generate_csrf())


@cart_bp.route('/items', methods=['POST'])
def add_item():
    data = json_body()
    if 'cached_unit_price' not in data and 'price' in data:
        data['cached_unit_price'] = data['price']
    item = CartLineItem.from_dict(data)
    cart = get_cart()
    cart.add(item)
    notice = _refresh_coupon(cart)
    return _cart_response(cart, 201, coupon_notice=notice)


@cart_bp.route('/items/<product_id>', methods=['PATCH'])
def update_item(product_id):
    data = json_body()
    if 'quantity' not in data:
        raise ValidationError('quantity is required')
    cart = get_cart()
    cart.set_quantity(product_id, data['quantity'])
    notice = _refresh_coupon(cart)
    return _cart_response(cart, coupon_notice=notice)


@cart_bp.route('/items/<product_id>', methods=['DELETE'])
def remove_item(product_id):
    cart = get_cart()
    cart.remove(product_id)
    notice = _refresh_coupon(cart)
    return _cart_response(cart, coupon_notice=notice)


@cart_bp.route('', methods=['DELETE'])
def clear_cart():
    cart = get_cart()
    cart.clear()
    return _cart_response(cart)


@cart_bp.route('/coupon', methods=['POST'])
def apply_coupon():
    """Validate a code against the current subtotal and attach it to the cart."""
    data = json_body()
    cart = get_cart()
    if cart.is_empty():
        raise ValidationError('Add items to your cart before applying a coupon')
    applied = validate_coupon(data.get('code'), cart.subtotal, get_persistence())
    cart.apply_coupon(applied)
    return _cart_response(cart)


@cart_bp.route('/coupon', methods=['DELETE'])
def remove_coupon():
    cart = get_cart()
    cart.remove_coupon()
    return _cart_response(cart)


@cart_bp.route('/delivery-location', methods=['PUT'])
def set_delivery_location():
    """Select (or with null, deselect) the delivery location."""
    data = json_body()
    cart = get_cart()
    location_id = data.get('delivery_location_id')
    if location_id is None:
        cart.set_delivery_location(None)
    else:
        cart.set_delivery_location(resolve_delivery_fee(location_id, get_persistence()))
    return _cart_response(cart)


@cart_bp.route('/prices', methods=['GET'])
def reconciled_prices():
    """Authoritative prices for the cart (second render phase)."""
    cart = get_cart()
    result = reconcile_prices(cart.items, get_persistence())
    lines = result.lines(cart.items)
    subtotal = quantize_money(sum((line.line_total for line in lines), quantize_money(0)))
    body = result.to_dict()
    body.update({
        'status': 'success',
        'changed': result.changed(cart.items),
        'subtotal': str(subtotal),
    })
    return jsonify(body)
