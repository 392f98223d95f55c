"""
Flask CLI commands.
"""

from decimal import Decimal

from storefront.models import Account, Coupon, DeliveryLocation, Product


class TestCliCommands:

    def test_init_db(self, app):
        result = app.test_cli_runner().invoke(args=['init-db'])
        assert 'Database tables created' in result.output

    def test_create_coupon(self, app, session):
        result = app.test_cli_runner().invoke(args=[
            'create-coupon', '--code', 'save20', '--type', 'percentage', '--value', '20',
            '--min-order', '1000', '--max-discount', '5000', '--expires-at', '2030-01-01T00:00:00'
        ])

        assert 'Coupon SAVE20 created' in result.output
        coupon = session.query(Coupon).filter_by(code='SAVE20').one()
        assert coupon.value == Decimal('20.00')
        assert coupon.used_count == 0

    def test_create_coupon_rejects_bad_value(self, app, session):
        result = app.test_cli_runner().invoke(args=[
            'create-coupon', '--code', 'BAD', '--type', 'fixed', '--value', 'lots'
        ])

        assert 'Invalid coupon' in result.output
        assert session.query(Coupon).count() == 0

    def test_add_delivery_location(self, app, session):
        result = app.test_cli_runner().invoke(args=[
            'add-delivery-location', '--city', 'Mombasa', '--fee', '350', '--status', 'maintenance'
        ])

        assert result.exit_code == 0
        location = session.query(DeliveryLocation).one()
        assert location.shipping_amount == Decimal('350.00')
        assert location.status == 'maintenance'

    def test_add_product_updates_existing(self, app, session):
        runner = app.test_cli_runner()
        runner.invoke(args=['add-product', '--id', 'p1', '--name', 'Linen Shirt', '--price', '100'])
        runner.invoke(args=['add-product', '--id', 'p1', '--name', 'Linen Shirt', '--price', '120'])

        product = session.query(Product).one()
        assert product.price == Decimal('120.00')

    def test_promote_admin(self, app, session, account):
        email = account.email

        result = app.test_cli_runner().invoke(args=['promote-admin', '--email', email.upper()])

        assert 'is now an admin' in result.output
        assert session.query(Account.role).filter_by(email=email).scalar() == 'admin'

    def test_promote_unknown_account(self, app):
        result = app.test_cli_runner().invoke(args=['promote-admin', '--email', 'ghost@example.com'])
        assert 'No account' in result.output
