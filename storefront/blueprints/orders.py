"""Orders blueprint - shopper order history and cancellation."""
from flask import Blueprint, jsonify

from storefront.middleware import current_account, require_session
from storefront.persistence import get_persistence
from storefront.services import order_service

orders_bp = Blueprint('orders', __name__, url_prefix='/orders')


@orders_bp.route('', methods=['GET'])
@require_session
def list_orders():
    account = current_account()
    orders = order_service.list_orders_for_account(get_persistence(), account.id)
    return jsonify({
        'status': 'success',
        'orders': [order_service.order_to_dict(o) for o in orders],
    })


@orders_bp.route('/<int:order_id>', methods=['GET'])
@require_session
def detail(order_id):
    account = current_account()
    order = order_service.get_order(get_persistence(), order_id, account_id=account.id)
    return jsonify({'status': 'success', 'order': order_service.order_to_dict(order)})


@orders_bp.route('/<int:order_id>/cancel', methods=['POST'])
@require_session
def cancel(order_id):
    account = current_account()
    order = order_service.cancel_order(get_persistence(), order_id, account.id)
    return jsonify({'status': 'success', 'order': order_service.order_to_dict(order)})
