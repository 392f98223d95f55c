"""
Order history, shopper cancellation and admin status changes.
"""

import pytest

from storefront.models import Account, AccountRole


@pytest.fixture
def place_order(client, login, products, nairobi):
    """Log in as a shopper and place a pay-on-delivery order."""
    def _place(sub='sess-shopper', email='shopper@example.com'):
        login(sub=sub, email=email)
        client.post('/cart/items', json={'product_id': 'p1', 'cached_unit_price': '120.00', 'quantity': 1})
        response = client.post('/checkout', json={'delivery_location_id': nairobi.id, 'payment_method': 'pay_on_delivery'})
        assert response.status_code == 201
        return response.get_json()['order']
    return _place


def make_admin(session, email):
    account = session.query(Account).filter_by(email=email).one()
    account.role = AccountRole.ADMIN.value
    session.commit()


class TestShopperOrders:

    def test_list_own_orders(self, client, place_order):
        order = place_order()

        response = client.get('/orders')

        assert response.status_code == 200
        assert [o['id'] for o in response.get_json()['orders']] == [order['id']]

    def test_detail(self, client, place_order):
        order = place_order()

        response = client.get(f"/orders/{order['id']}")

        assert response.get_json()['order']['order_number'] == order['order_number']

    def test_other_accounts_order_is_hidden(self, client, login, place_order):
        order = place_order()
        login(sub='sess-other', email='other@example.com')

        assert client.get(f"/orders/{order['id']}").status_code == 404
        assert client.post(f"/orders/{order['id']}/cancel").status_code == 404
        assert client.get('/orders').get_json()['orders'] == []

    def test_cancel_pending_order(self, client, place_order):
        order = place_order()

        response = client.post(f"/orders/{order['id']}/cancel")

        assert response.status_code == 200
        assert response.get_json()['order']['status'] == 'cancelled'

    def test_cannot_cancel_twice(self, client, place_order):
        order = place_order()
        client.post(f"/orders/{order['id']}/cancel")

        response = client.post(f"/orders/{order['id']}/cancel")

        assert response.status_code == 409
        assert response.get_json()['code'] == 'invalid_transition'

    def test_cannot_cancel_shipped_order(self, client, session, login, place_order):
        order = place_order()
        make_admin(session, 'shopper@example.com')
        client.post(f"/admin/orders/{order['id']}/status", json={'status': 'shipped'})

        response = client.post(f"/orders/{order['id']}/cancel")

        assert response.status_code == 409
        assert response.get_json()['current_status'] == 'shipped'

    def test_requires_session(self, client):
        assert client.get('/orders').status_code == 401


class TestAdminStatus:

    def test_customer_is_forbidden(self, client, place_order):
        order = place_order()

        response = client.post(f"/admin/orders/{order['id']}/status", json={'status': 'confirmed'})

        assert response.status_code == 403

    def test_admin_moves_order_forward(self, client, session, place_order):
        order = place_order()
        make_admin(session, 'shopper@example.com')

        confirmed = client.post(f"/admin/orders/{order['id']}/status", json={'status': 'confirmed'})
        shipped = client.post(f"/admin/orders/{order['id']}/status", json={'status': 'shipped'})

        assert confirmed.status_code == 200
        assert shipped.get_json()['order']['status'] == 'shipped'

    def test_admin_cannot_move_backwards(self, client, session, place_order):
        order = place_order()
        make_admin(session, 'shopper@example.com')
        client.post(f"/admin/orders/{order['id']}/status", json={'status': 'delivered'})

        response = client.post(f"/admin/orders/{order['id']}/status", json={'status': 'processing'})

        assert response.status_code == 409

    def test_admin_can_cancel_shipped_order(self, client, session, place_order):
        order = place_order()
        make_admin(session, 'shopper@example.com')
        client.post(f"/admin/orders/{order['id']}/status", json={'status': 'shipped'})

        response = client.post(f"/admin/orders/{order['id']}/status", json={'status': 'cancelled'})

        assert response.get_json()['order']['status'] == 'cancelled'

    def test_unknown_status(self, client, session, place_order):
        order = place_order()
        make_admin(session, 'shopper@example.com')

        response = client.post(f"/admin/orders/{order['id']}/status", json={'status': 'lost'})

        assert response.status_code == 400

    def test_non_object_body(self, client, session, place_order):
        order = place_order()
        make_admin(session, 'shopper@example.com')

        response = client.post(f"/admin/orders/{order['id']}/status", json=['shipped'])

        assert response.status_code == 400
        assert response.get_json()['code'] == 'validation_error'

    def test_unknown_order(self, client, session, place_order):
        place_order()
        make_admin(session, 'shopper@example.com')

        response = client.post('/admin/orders/9999/status', json={'status': 'confirmed'})

        assert response.status_code == 404
