"""Checkout blueprint."""
from flask import Blueprint, current_app, g, jsonify

from storefront.blueprints.cart import get_cart
from storefront.middleware import require_session
from storefront.utils.http import json_body

checkout_bp = Blueprint('checkout', __name__)


@checkout_bp.route('/checkout', methods=['POST'])
@require_session
def submit():
    """
    Place an order from the session cart.

    Body: payment_method, optional payment_reference, optional
    delivery_location_id (defaults to the location selected on the cart).
    The cart is cleared only when the order is committed.
    """
    data = json_body()
    cart = get_cart()

    location_id = data.get('delivery_location_id')
    if location_id is None and cart.delivery_location:
        location_id = cart.delivery_location.get('id')

    service = current_app.extensions['checkout']
    result = service.checkout(
        cart,
        g.session_identity,
        g.session_email,
        delivery_location_id=location_id,
        payment_method=data.get('payment_method'),
        payment_reference=data.get('payment_reference'),
        first_name=g.get('session_first_name'),
        last_name=g.get('session_last_name'),
    )

    if result.ok:
        cart.clear()
    return jsonify(result.to_dict()), result.status_code
