"""Delivery locations blueprint."""
from flask import Blueprint, jsonify

from storefront.persistence import get_persistence
from storefront.services.delivery_service import list_active_locations

delivery_bp = Blueprint('delivery', __name__, url_prefix='/delivery')


@delivery_bp.route('/locations', methods=['GET'])
def locations():
    return jsonify({'status': 'success', 'locations': list_active_locations(get_persistence())})
