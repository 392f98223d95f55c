"""Delivery cost resolution."""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from storefront.exceptions import InactiveLocationError, NotFoundError, ValidationError
from storefront.models import DeliveryLocation
from storefront.services import cache_service
from storefront.utils.money import quantize_money

logger = logging.getLogger(__name__)

CACHE_MODULE = 'delivery'


@dataclass
class DeliveryQuote:
    """Shipping fee and pickup details for a delivery location."""
    location_id: int
    city_name: str
    shipping_amount: Decimal
    pickup_location: Optional[str] = None
    pickup_phone: Optional[str] = None

    @classmethod
    def from_location(cls, location: DeliveryLocation) -> 'DeliveryQuote':
        return cls(
            location_id=location.id,
            city_name=location.city_name,
            shipping_amount=quantize_money(location.shipping_amount),
            pickup_location=location.pickup_location,
            pickup_phone=location.pickup_phone,
        )

    def to_dict(self) -> Dict:
        return {
            'id': self.location_id,
            'city_name': self.city_name,
            'shipping_amount': str(self.shipping_amount),
            'pickup_location': self.pickup_location,
            'pickup_phone': self.pickup_phone,
        }


def parse_location_id(value) -> int:
    if value is None or isinstance(value, bool) or str(value).strip() == '':
        raise ValidationError('delivery_location_id is required')
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError('delivery_location_id must be an integer')


def resolve_delivery_fee(location_id, persistence) -> DeliveryQuote:
    """
    Shipping fee for a delivery location, read fresh from the database.

    Raises:
        NotFoundError: unknown location
        InactiveLocationError: location is inactive or under maintenance
    """
    location_id = parse_location_id(location_id)
    location = persistence.get_location(location_id)
    if location is None:
        raise NotFoundError('Delivery location not found', {'delivery_location_id': location_id})
    if not location.is_active:
        logger.info(f"[DELIVERY] Location {location_id} is {location.status}")
        raise InactiveLocationError(location_id, location.status)
    return DeliveryQuote.from_location(location)


def list_active_locations(persistence) -> List[Dict]:
    """Active delivery locations ordered by city name (cached)."""
    def _load():
        return [DeliveryQuote.from_location(loc).to_dict() for loc in persistence.list_active_locations()]

    return cache_service.memoize(CACHE_MODULE, 'active', _load, 'CACHE_DELIVERY_TTL')
