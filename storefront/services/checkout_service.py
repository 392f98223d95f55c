"""
Checkout orchestration.

Sequence: input validation, price reconciliation, account resolution, order
commit. Typed errors are caught here and returned inside a CheckoutResult.
"""
import hashlib
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

from storefront.blueprints.metrics import checkout_attempts_total
from storefront.exceptions import (
    CheckoutInProgressError, StorefrontError, ValidationError
)
from storefront.models import Order, PaymentMethod
from storefront.services.delivery_service import parse_location_id
from storefront.services.identity_service import resolve_account
from storefront.services.order_service import (
    commit_order, order_to_dict, parse_payment_method, parse_payment_reference
)
from storefront.services.price_service import reconcile_prices

logger = logging.getLogger(__name__)


@dataclass
class CheckoutResult:
    ok: bool
    order: Optional[Order] = None
    error: Optional[StorefrontError] = None
    degraded_prices: bool = False

    @property
    def status_code(self) -> int:
        if self.ok:
            return 201
        return self.error.status_code if self.error is not None else 500

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {
                'status': 'success',
                'order': order_to_dict(self.order),
                'degraded_prices': self.degraded_prices,
            }
        return self.error.to_dict()


def checkout_fingerprint(account_id, cart, delivery_location_id, payment_method) -> str:
    """
    SHA-256 over everything that makes a submission distinct.

    The cart's checkout_token is included so the same basket bought again
    after a completed checkout gets a new key.
    """
    lines = sorted(
        f"{item.product_id}:{item.quantity}:{item.size or ''}:{item.color or ''}"
        for item in cart.items
    )
    coupon_code = cart.applied_coupon.code if cart.applied_coupon else ''
    parts = [
        str(account_id),
        '|'.join(lines),
        str(delivery_location_id),
        coupon_code,
        payment_method,
        cart.checkout_token,
    ]
    return hashlib.sha256('#'.join(parts).encode('utf-8')).hexdigest()


class CheckoutService:
    """
    Runs checkouts against one persistence provider.

    An in-process in-flight set keyed by the submission fingerprint rejects a
    second identical submission while the first is still committing. Across
    processes the unique idempotency key on orders covers the same case.
    """

    def __init__(self, persistence, identity_attempts: int = 3, identity_backoff: float = 0.2,
                 mpesa_reference_required: bool = False, order_number_prefix: str = 'ORDER'):
        self.persistence = persistence
        self.identity_attempts = identity_attempts
        self.identity_backoff = identity_backoff
        self.mpesa_reference_required = mpesa_reference_required
        self.order_number_prefix = order_number_prefix
        self._in_flight = set()
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, persistence, config) -> 'CheckoutService':
        return cls(
            persistence,
            identity_attempts=config.get('IDENTITY_RESOLVE_ATTEMPTS', 3),
            identity_backoff=config.get('IDENTITY_RESOLVE_BACKOFF', 0.2),
            mpesa_reference_required=config.get('MPESA_REFERENCE_REQUIRED', False),
            order_number_prefix=config.get('ORDER_NUMBER_PREFIX', 'ORDER'),
        )

    def _acquire(self, fingerprint: str) -> None:
        with self._lock:
            if fingerprint in self._in_flight:
                raise CheckoutInProgressError()
            self._in_flight.add(fingerprint)

    def _release(self, fingerprint: str) -> None:
        with self._lock:
            self._in_flight.discard(fingerprint)

    def _validate(self, cart, delivery_location_id, payment_method, payment_reference):
        if cart.is_empty():
            raise ValidationError('Your cart is empty')
        location_id = parse_location_id(delivery_location_id)
        method = parse_payment_method(payment_method)
        reference = parse_payment_reference(payment_reference)
        if method == PaymentMethod.MPESA.value and self.mpesa_reference_required and not reference:
            raise ValidationError('An M-Pesa payment reference is required')
        return location_id, method, reference

    def checkout(self, cart, session_identity, session_email, delivery_location_id,
                 payment_method, payment_reference: Optional[str] = None,
                 first_name: Optional[str] = None, last_name: Optional[str] = None) -> CheckoutResult:
        """
        Place an order for the cart.

        Never raises a StorefrontError; failures come back as
        CheckoutResult(ok=False, error=...). Clearing the cart on success is
        left to the caller.
        """
        try:
            location_id, method, reference = self._validate(cart, delivery_location_id, payment_method, payment_reference)

            prices = reconcile_prices(cart.items, self.persistence)
            if prices.degraded:
                logger.warning("[CHECKOUT] Committing with cached prices (catalog unavailable)")

            account = resolve_account(
                self.persistence, session_identity, session_email,
                first_name=first_name, last_name=last_name,
                attempts=self.identity_attempts, backoff=self.identity_backoff,
            )

            fingerprint = checkout_fingerprint(account.id, cart, location_id, method)
            self._acquire(fingerprint)
            try:
                order = commit_order(
                    self.persistence,
                    account_id=account.id,
                    reconciled_items=prices.lines(cart.items),
                    delivery_location_id=location_id,
                    applied_coupon=cart.applied_coupon,
                    payment_method=method,
                    idempotency_key=fingerprint,
                    payment_reference=reference,
                    order_number_prefix=self.order_number_prefix,
                )
            finally:
                self._release(fingerprint)
        except StorefrontError as e:
            checkout_attempts_total.labels(outcome=e.code).inc()
            logger.info(f"[CHECKOUT] Rejected: {e.code} ({e.message})")
            return CheckoutResult(ok=False, error=e)

        checkout_attempts_total.labels(outcome='success').inc()
        logger.info(f"[CHECKOUT] Order {order.order_number} placed by account {account.id}")
        return CheckoutResult(ok=True, order=order, degraded_prices=prices.degraded)
