"""
Price reconciliation.

Cart rows carry the price seen when the item was added. Before an order is
committed every row is re-priced from the catalog in a single query. When
the catalog is unreachable the cached prices are used and the result is
flagged as degraded.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from storefront.blueprints.metrics import price_reconciliation_degraded_total
from storefront.exceptions import PersistenceError, PriceFetchError
from storefront.utils.money import quantize_money

logger = logging.getLogger(__name__)


@dataclass
class ReconciledLine:
    """Cart row priced for commit."""
    product_id: str
    quantity: int
    unit_price: Decimal
    size: Optional[str] = None
    color: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return quantize_money(self.unit_price * self.quantity)


@dataclass
class ReconciledPrices:
    """
    Result of a reconciliation.

    prices maps every cart product_id to a unit price. missing lists ids the
    catalog did not return (inactive or deleted) that were back-filled from
    the cart.
    """
    prices: Dict[str, Decimal]
    degraded: bool = False
    missing: List[str] = field(default_factory=list)

    def lines(self, items: Iterable) -> List[ReconciledLine]:
        return [
            ReconciledLine(
                product_id=item.product_id,
                quantity=item.quantity,
                unit_price=self.prices[item.product_id],
                size=item.size,
                color=item.color,
            )
            for item in items
        ]

    def changed(self, items: Iterable) -> Dict[str, Dict[str, str]]:
        """Rows whose authoritative price differs from the cached one."""
        return {
            item.product_id: {
                'cached': str(item.cached_unit_price),
                'current': str(self.prices[item.product_id]),
            }
            for item in items
            if self.prices[item.product_id] != item.cached_unit_price
        }

    def to_dict(self) -> Dict:
        return {
            'prices': {pid: str(price) for pid, price in self.prices.items()},
            'degraded': self.degraded,
            'missing': list(self.missing),
        }


def reconcile_prices(items, persistence) -> ReconciledPrices:
    """
    Authoritative unit price for every cart item.

    Never raises for catalog failures: they are absorbed by falling back to
    the cached prices, with a warning and the degraded counter bumped.
    """
    items = list(items)
    cached = {item.product_id: item.cached_unit_price for item in items}
    if not items:
        return ReconciledPrices(prices={})

    try:
        fetched = persistence.get_prices(list(cached.keys()))
    except (PriceFetchError, PersistenceError) as e:
        logger.warning(f"[PRICES] Catalog unavailable, using cached prices for {len(cached)} items: {e.message}")
        price_reconciliation_degraded_total.inc()
        return ReconciledPrices(prices=dict(cached), degraded=True)

    prices = {}
    missing = []
    for product_id, cached_price in cached.items():
        current = fetched.get(product_id)
        if current is None:
            missing.append(product_id)
            prices[product_id] = cached_price
        else:
            prices[product_id] = quantize_money(current)

    if missing:
        logger.info(f"[PRICES] No catalog price for {missing}, keeping cached prices")

    return ReconciledPrices(prices=prices, missing=missing)
