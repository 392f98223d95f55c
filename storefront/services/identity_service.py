"""
Identity resolution.

Maps the identity of an authentication session onto exactly one durable
Account. Orders are always written against Account.id, never against the
session identity itself.
"""
import logging
import time
from typing import Optional

from storefront.exceptions import (
    ConflictError, IdentityResolutionError, PersistenceError, ValidationError
)
from storefront.models import Account, AccountRole

logger = logging.getLogger(__name__)


def normalize_email(email) -> str:
    normalized = str(email or '').strip().lower()
    if not normalized:
        raise ValidationError('Session email is required')
    if '@' not in normalized:
        raise ValidationError('Session email is not a valid address')
    return normalized


def _relink(persistence, account: Account, session_identity: str) -> Account:
    """Point an account found by email at the current session identity."""
    if account.session_ref == session_identity:
        return account
    logger.info(f"[IDENTITY] Linking session to account {account.id} (previous ref {'set' if account.session_ref else 'empty'})")
    try:
        return persistence.update_session_ref(account, session_identity)
    except ConflictError:
        # Another request linked the session first
        linked = persistence.find_account_by_session_ref(session_identity)
        if linked is not None:
            return linked
        raise


def _resolve_once(persistence, session_identity: str, email: str,
                  first_name: Optional[str], last_name: Optional[str]) -> Account:
    account = persistence.find_account_by_session_ref(session_identity)
    if account is not None:
        return account

    account = persistence.find_account_by_email(email)
    if account is not None:
        return _relink(persistence, account, session_identity)

    try:
        account = persistence.insert_account(Account(
            session_ref=session_identity,
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=AccountRole.CUSTOMER.value,
        ))
        logger.info(f"[IDENTITY] Created account {account.id} for {email}")
        return account
    except ConflictError:
        # Race condition: a concurrent request inserted the same account
        account = persistence.find_account_by_session_ref(session_identity)
        if account is not None:
            return account
        account = persistence.find_account_by_email(email)
        if account is not None:
            return _relink(persistence, account, session_identity)
        raise


def resolve_account(persistence, session_identity, session_email,
                    first_name: Optional[str] = None, last_name: Optional[str] = None,
                    attempts: int = 3, backoff: float = 0.2) -> Account:
    """
    Find or create the Account for an authenticated session.

    Lookup order: session identity, then email (re-linking the session to
    that account), then insert. A unique-key conflict on insert is resolved
    by reading the row the concurrent writer created, so concurrent first
    logins yield one account.

    Transient database failures are retried `attempts` times with a linear
    backoff before giving up.

    Raises:
        ValidationError: missing session identity or email
        IdentityResolutionError: storage kept failing (retryable)
    """
    session_identity = str(session_identity or '').strip()
    if not session_identity:
        raise ValidationError('Session identity is required')
    email = normalize_email(session_email)
    attempts = max(1, int(attempts))

    for attempt in range(1, attempts + 1):
        try:
            return _resolve_once(persistence, session_identity, email, first_name, last_name)
        except (PersistenceError, ConflictError) as e:
            persistence.rollback()
            logger.warning(f"[IDENTITY] Attempt {attempt}/{attempts} failed for {email}: {e.message}")
            if attempt < attempts and backoff:
                time.sleep(backoff * attempt)

    logger.error(f"[IDENTITY] Giving up resolving account for {email} after {attempts} attempts")
    raise IdentityResolutionError()
