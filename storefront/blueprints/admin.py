"""Admin blueprint - order fulfilment status."""
from flask import Blueprint, current_app, jsonify

from storefront.middleware import current_account, require_admin, require_session
from storefront.persistence import get_persistence
from storefront.services import order_service
from storefront.utils.http import json_body

admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


@admin_bp.route('/orders/<int:order_id>/status', methods=['POST'])
@require_session
@require_admin
def update_order_status(order_id):
    """Move an order along its lifecycle. Body: {"status": "shipped"}."""
    data = json_body()
    order = order_service.transition_order_status(get_persistence(), order_id, data.get('status'))
    current_app.logger.info(f"[ADMIN] Account {current_account().id} set order {order.order_number} to {order.status}")
    return jsonify({'status': 'success', 'order': order_service.order_to_dict(order)})
