"""Middleware for session identity and role checks."""
from functools import wraps

from flask import current_app, g, jsonify, session

from storefront.exceptions import UnauthorizedError
from storefront.persistence import get_persistence
from storefront.services.identity_service import resolve_account


def load_session_identity():
    """
    Load the authentication session into g.

    The external auth provider writes auth_sub / auth_email (and optionally
    auth_first_name / auth_last_name) into the Flask session. Nothing is read
    from the database here; the Account is only resolved when a view needs it.
    """
    g.session_identity = session.get('auth_sub')
    g.session_email = session.get('auth_email')
    g.session_first_name = session.get('auth_first_name')
    g.session_last_name = session.get('auth_last_name')
    g.account = None


def require_session(f):
    """Decorator: require an authenticated session. Returns 401 JSON otherwise."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('session_identity') or not g.get('session_email'):
            error = UnauthorizedError('Please sign in to continue')
            return jsonify(error.to_dict()), error.status_code
        return f(*args, **kwargs)
    return decorated_function


def current_account():
    """
    Durable Account for the current session, resolved once per request.

    Raises:
        IdentityResolutionError: storage kept failing
    """
    if g.get('account') is None:
        g.account = resolve_account(
            get_persistence(),
            g.session_identity,
            g.session_email,
            first_name=g.get('session_first_name'),
            last_name=g.get('session_last_name'),
            attempts=current_app.config.get('IDENTITY_RESOLVE_ATTEMPTS', 3),
            backoff=current_app.config.get('IDENTITY_RESOLVE_BACKOFF', 0.2),
        )
    return g.account


def require_admin(f):
    """
    Decorator: require an account with the admin role.

    Must be used AFTER require_session.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        account = current_account()
        if not account.is_admin:
            current_app.logger.warning(f"[ADMIN] Account {account.id} denied access to {f.__name__}")
            error = UnauthorizedError('Admin role required', status_code=403)
            return jsonify(error.to_dict()), error.status_code
        return f(*args, **kwargs)
    return decorated_function
