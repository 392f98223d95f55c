"""Custom exceptions for the storefront checkout pipeline."""


class StorefrontError(Exception):
    """Base exception for all application errors."""
    code = 'error'

    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['code'] = self.code
        return rv


class ValidationError(StorefrontError):
    """Malformed input: empty coupon code, missing checkout field, bad quantity."""
    code = 'validation_error'

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(StorefrontError):
    """Exception raised when a resource is not found."""
    code = 'not_found'

    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class UnauthorizedError(StorefrontError):
    """Raised when there is no authenticated session or the role is insufficient."""
    code = 'unauthorized'

    def __init__(self, message="Unauthorized access", status_code=401):
        super().__init__(message, status_code)


# Coupon rejections

class CouponError(StorefrontError):
    """Base class for coupon rejection reasons (surfaced verbatim to the shopper)."""
    code = 'coupon_error'

    def __init__(self, message, status_code=422, payload=None):
        super().__init__(message, status_code, payload)


class CouponNotFoundError(CouponError, NotFoundError):
    code = 'coupon_not_found'

    def __init__(self, code):
        StorefrontError.__init__(self, 'Invalid coupon code', 404, {'coupon_code': code})


class ExpiredError(CouponError):
    code = 'coupon_expired'

    def __init__(self, code):
        super().__init__('This coupon has expired or is not yet active', payload={'coupon_code': code})


class MinimumNotMetError(CouponError):
    code = 'coupon_minimum_not_met'

    def __init__(self, code, minimum):
        super().__init__(
            f'Minimum order amount for this coupon is {minimum}',
            payload={'coupon_code': code, 'minimum_order_amount': str(minimum)}
        )


class LimitExceededError(CouponError):
    code = 'coupon_limit_exceeded'

    def __init__(self, code):
        super().__init__('This coupon has reached its usage limit', payload={'coupon_code': code})


# Delivery

class InactiveLocationError(StorefrontError):
    """Delivery location exists but is inactive or under maintenance."""
    code = 'inactive_location'

    def __init__(self, location_id, status):
        super().__init__(
            'Delivery to this location is currently unavailable',
            422,
            {'delivery_location_id': location_id, 'location_status': status}
        )


# Infrastructure

class PriceFetchError(StorefrontError):
    """Catalog prices could not be fetched. Absorbed by the cached-price fallback."""
    code = 'price_fetch_failed'

    def __init__(self, message='Could not fetch current prices'):
        super().__init__(message, 503)


class PersistenceError(StorefrontError):
    """Transient database failure (connection dropped, timeout, deadlock)."""
    code = 'persistence_error'

    def __init__(self, message='Database operation failed'):
        super().__init__(message, 503)


class ConflictError(StorefrontError):
    """Unique constraint violated by a concurrent writer."""
    code = 'conflict'

    def __init__(self, message='Conflicting write', payload=None):
        super().__init__(message, 409, payload)


class IdentityResolutionError(StorefrontError):
    """Session identity could not be mapped to an account. Safe to retry."""
    code = 'identity_resolution_failed'
    retryable = True

    def __init__(self, message='Could not resolve your account. Please try again.'):
        super().__init__(message, 503, {'retryable': True})


class CommitError(StorefrontError):
    """Order could not be committed. Nothing was persisted."""
    code = 'commit_failed'

    def __init__(self, stage, message, cause=None):
        payload = {'stage': stage}
        if cause is not None and isinstance(cause, StorefrontError):
            payload['reason'] = cause.code
        status_code = 500 if stage == 'persistence' else 409
        super().__init__(message, status_code, payload)
        self.stage = stage
        self.cause = cause


class InvalidTransitionError(StorefrontError):
    """Order status change not allowed by the order lifecycle."""
    code = 'invalid_transition'

    def __init__(self, current, requested):
        super().__init__(
            f'Cannot change order status from {current} to {requested}',
            409,
            {'current_status': current, 'requested_status': requested}
        )


class CheckoutInProgressError(StorefrontError):
    """A checkout for the same cart is already being committed."""
    code = 'checkout_in_progress'

    def __init__(self):
        super().__init__('Your order is already being placed', 409)
