# Overview: Housekeeping jobs run from the CLI.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import IdempotencyKey
from ..time_utils import utcnow


def purge_expired_idempotency_keys() -> int:
    """
    Delete idempotency mappings past their expiry.

    Orders are untouched; only the key -> order replay mapping goes away.
    """
    deleted = db.session.query(IdempotencyKey).filter(
        IdempotencyKey.expires_at <= utcnow()
    ).delete(synchronize_session=False)
    db.session.commit()
    current_app.logger.info("Purged %s expired idempotency keys", deleted)
    return deleted
