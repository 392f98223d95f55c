"""
Flask CLI commands for storefront data management.

Commands:
- flask init-db: Create all tables
- flask create-coupon: Create a discount coupon
- flask add-delivery-location: Add a delivery location with its shipping fee
- flask add-product: Add or update a catalog price
- flask promote-admin: Give an account the admin role
"""
from datetime import datetime, timezone

import click
from sqlalchemy.exc import SQLAlchemyError

from storefront.database import create_all, get_session
from storefront.exceptions import ValidationError
from storefront.models import (
    Account, AccountRole, Coupon, DeliveryLocation, DiscountType, LocationStatus, Product
)
from storefront.services import cache_service
from storefront.services.coupon_service import normalize_code
from storefront.utils.money import to_money


def _parse_datetime(value):
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _save(obj, success_message):
    db_session = get_session()
    try:
        db_session.add(obj)
        db_session.commit()
        click.echo(click.style(success_message, fg='green'))
        return True
    except SQLAlchemyError as e:
        db_session.rollback()
        click.echo(click.style(f'Error: {e}', fg='red'))
        return False


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables."""
        create_all()
        click.echo(click.style('Database tables created.', fg='green'))

    @app.cli.command('create-coupon')
    @click.option('--code', required=True, help='Coupon code (stored upper-case)')
    @click.option('--type', 'discount_type', type=click.Choice([t.value for t in DiscountType]), required=True)
    @click.option('--value', required=True, help='Percentage (e.g. 20) or fixed amount')
    @click.option('--description', default=None)
    @click.option('--min-order', default=None, help='Minimum order subtotal')
    @click.option('--max-discount', default=None, help='Cap on the discount amount')
    @click.option('--usage-limit', type=int, default=None)
    @click.option('--starts-at', default=None, help='ISO datetime, UTC if no offset')
    @click.option('--expires-at', default=None, help='ISO datetime, UTC if no offset')
    def create_coupon(code, discount_type, value, description, min_order, max_discount,
                      usage_limit, starts_at, expires_at):
        """Create a discount coupon."""
        try:
            coupon = Coupon(
                code=normalize_code(code),
                description=description,
                discount_type=discount_type,
                value=to_money(value, 'value'),
                min_order_amount=to_money(min_order, 'min_order') if min_order else None,
                max_discount_amount=to_money(max_discount, 'max_discount') if max_discount else None,
                usage_limit=usage_limit,
                used_count=0,
                is_active=True,
                starts_at=_parse_datetime(starts_at),
                expires_at=_parse_datetime(expires_at),
            )
        except (ValidationError, ValueError) as e:
            click.echo(click.style(f'Invalid coupon: {getattr(e, "message", e)}', fg='red'))
            return
        if coupon.value <= 0:
            click.echo(click.style('Invalid coupon: value must be greater than 0', fg='red'))
            return
        if _save(coupon, f'Coupon {coupon.code} created.'):
            cache_service.invalidate('coupons')

    @app.cli.command('add-delivery-location')
    @click.option('--city', required=True)
    @click.option('--fee', required=True, help='Shipping amount')
    @click.option('--pickup-location', default=None)
    @click.option('--pickup-phone', default=None)
    @click.option('--status', type=click.Choice([s.value for s in LocationStatus]), default=LocationStatus.ACTIVE.value)
    def add_delivery_location(city, fee, pickup_location, pickup_phone, status):
        """Add a delivery location."""
        try:
            shipping_amount = to_money(fee, 'fee')
        except ValidationError as e:
            click.echo(click.style(f'Invalid fee: {e.message}', fg='red'))
            return
        location = DeliveryLocation(
            city_name=city.strip(),
            shipping_amount=shipping_amount,
            pickup_location=pickup_location,
            pickup_phone=pickup_phone,
            status=status,
        )
        if _save(location, f'Delivery location {location.city_name} added.'):
            cache_service.invalidate('delivery')

    @app.cli.command('add-product')
    @click.option('--id', 'product_id', required=True)
    @click.option('--name', required=True)
    @click.option('--price', required=True)
    @click.option('--inactive', is_flag=True, default=False)
    def add_product(product_id, name, price, inactive):
        """Add a product price, or update it when the id exists."""
        try:
            amount = to_money(price, 'price')
        except ValidationError as e:
            click.echo(click.style(f'Invalid price: {e.message}', fg='red'))
            return
        product = get_session().get(Product, str(product_id)) or Product(id=str(product_id))
        product.name = name
        product.price = amount
        product.is_active = not inactive
        _save(product, f'Product {product.id} saved at {amount}.')

    @app.cli.command('promote-admin')
    @click.option('--email', required=True)
    def promote_admin(email):
        """Give an existing account the admin role."""
        account = get_session().query(Account).filter_by(email=email.strip().lower()).first()
        if account is None:
            click.echo(click.style(f'No account with email {email}', fg='red'))
            return
        account.role = AccountRole.ADMIN.value
        _save(account, f'{account.email} is now an admin.')
