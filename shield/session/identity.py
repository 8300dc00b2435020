"""Identity normalization.

Older app versions stored non-UUID user ids (``user-1``, timestamps). Those
ids are replaced with a fresh UUID once; every other field is kept.
"""

import logging
import uuid

from shield.session.models import Session, UserRecord, is_valid_uuid

logger = logging.getLogger(__name__)


def normalize_user_id(user: UserRecord) -> UserRecord:
    """Return user with a canonical UUID id (the same object if already valid)."""
    if is_valid_uuid(user.id):
        return user
    return user.model_copy(update={"id": str(uuid.uuid4())})


def ensure_canonical_user_id(session: Session) -> bool:
    """Migrate the session user's legacy id in place.

    Returns:
        True if the id was migrated, False if there was nothing to do
    """
    user = session.user
    if user is None:
        return False

    migrated = normalize_user_id(user)
    if migrated is user:
        return False

    logger.warning(
        "Migrating legacy user id %r to %s",
        user.id,
        migrated.id,
        extra={"user_id": migrated.id},
    )
    session.user = migrated
    return True
