"""
provisioning.py - First-login account creation

The identity row and its usd grant are written in one unit of work, so an
identity never exists without its starting balance.
"""

from typing import Optional
import logging

from .core import INITIAL_GRANT, Identity, InvalidArgument, Numeric, USD, ZERO, to_decimal
from .store import RecordStore

logger = logging.getLogger(__name__)


def provision_account(
    store: RecordStore,
    user_id: str,
    username: Optional[str] = None,
    initial_grant: Numeric = INITIAL_GRANT,
) -> Identity:
    """
    Create an identity and credit its initial usd balance atomically.

    Args:
        store: Record Store to provision in
        user_id: Verified id from the authentication collaborator
        username: Display name, optional
        initial_grant: usd credited on creation (>= 0)

    Returns:
        The created Identity

    Raises:
        InvalidArgument: Empty user_id or negative grant
        AlreadyExists: The user was provisioned before
        StorageFault: The write failed; neither row persists
    """
    grant = to_decimal(initial_grant, "initial_grant")
    if grant < ZERO:
        raise InvalidArgument(f"initial_grant cannot be negative, got {grant}")

    with store.transaction(user_id, create=True) as session:
        identity = session.create_identity(username)
        session.set_balance(USD, grant)

    logger.info("provisioned %s with %s %s", user_id, grant, USD)
    return identity
