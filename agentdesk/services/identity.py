# =============================================================================
# Identity Provisioning — External Identity → Local User
# =============================================================================
#
# Authentication happens upstream (gateway / auth provider). Requests carry
# a trusted external identity, and the first request from a new identity
# creates the local user record. Provisioning is idempotent: two concurrent
# first requests race on the unique username and the loser re-reads the
# winner's row.
# =============================================================================

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from agentdesk.db.models import User
from agentdesk.db.repository import Repository

logger = logging.getLogger(__name__)


async def ensure_user(repo: Repository, external_id: str) -> User:
    """
    Return the local user for an external identity, creating it if needed.

    Raises:
        ValueError: Empty identity.
    """
    external_id = (external_id or "").strip()
    if not external_id:
        raise ValueError("Missing user identity")

    user = await repo.get_user_by_username(external_id)
    if user is not None:
        return user

    try:
        user = await repo.create_user(username=external_id, email=f"{external_id}@example.com")
    except IntegrityError:
        logger.info("Concurrent provisioning for %s; re-reading", external_id)
        user = await repo.get_user_by_username(external_id)
        if user is None:
            raise
        return user

    logger.info("Provisioned user %s for identity %s", user.id, external_id)
    return user
