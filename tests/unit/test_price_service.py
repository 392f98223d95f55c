"""
Unit tests for price reconciliation.
"""

from decimal import Decimal

from storefront.exceptions import PersistenceError, PriceFetchError
from storefront.services.cart_store import CartLineItem
from storefront.services.price_service import reconcile_prices


class Catalog:
    def __init__(self, prices=None, error=None):
        self.prices = prices or {}
        self.error = error
        self.calls = []

    def get_prices(self, product_ids):
        self.calls.append(list(product_ids))
        if self.error is not None:
            raise self.error
        return {pid: self.prices[pid] for pid in product_ids if pid in self.prices}


def line(product_id, price, quantity):
    return CartLineItem(product_id=product_id, cached_unit_price=Decimal(price), quantity=quantity)


class TestReconcilePrices:

    def test_catalog_price_wins(self):
        items = [line('p1', '100', 2)]

        result = reconcile_prices(items, Catalog({'p1': Decimal('120')}))

        assert result.prices == {'p1': Decimal('120.00')}
        assert not result.degraded
        assert sum(l.line_total for l in result.lines(items)) == Decimal('240.00')

    def test_single_catalog_call(self):
        catalog = Catalog({'p1': Decimal('1'), 'p2': Decimal('2')})

        reconcile_prices([line('p1', '1', 1), line('p2', '2', 1)], catalog)

        assert len(catalog.calls) == 1
        assert sorted(catalog.calls[0]) == ['p1', 'p2']

    def test_missing_ids_backfilled(self):
        items = [line('p1', '100', 1), line('gone', '55.50', 1)]

        result = reconcile_prices(items, Catalog({'p1': Decimal('120')}))

        assert result.prices['gone'] == Decimal('55.50')
        assert result.missing == ['gone']
        assert not result.degraded

    def test_fetch_failure_falls_back_to_cached(self):
        items = [line('p1', '100', 2)]

        result = reconcile_prices(items, Catalog(error=PriceFetchError('timeout')))

        assert result.degraded
        assert result.prices == {'p1': Decimal('100')}

    def test_persistence_failure_falls_back_to_cached(self):
        result = reconcile_prices([line('p1', '100', 1)], Catalog(error=PersistenceError()))
        assert result.degraded

    def test_empty_cart(self):
        catalog = Catalog()
        result = reconcile_prices([], catalog)
        assert result.prices == {}
        assert catalog.calls == []

    def test_changed_rows(self):
        items = [line('p1', '100', 1), line('p2', '50', 1)]

        result = reconcile_prices(items, Catalog({'p1': Decimal('120'), 'p2': Decimal('50')}))

        assert result.changed(items) == {'p1': {'cached': '100', 'current': '120.00'}}
