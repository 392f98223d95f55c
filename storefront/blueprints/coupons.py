"""Public coupons blueprint (promotions banner)."""
from flask import Blueprint, jsonify

from storefront.persistence import get_persistence
from storefront.services.coupon_service import list_public_coupons

coupons_bp = Blueprint('coupons', __name__, url_prefix='/coupons')


@coupons_bp.route('/public', methods=['GET'])
def public():
    return jsonify({'status': 'success', 'coupons': list_public_coupons(get_persistence())})
