"""In-app notifications and pub/sub event publishing.

Fire-and-forget: nothing here raises into core logic. Notification rows are
written in their own short transaction after the caller has committed, and
the Redis publish is the event bus clients subscribe to instead of watching
table changes.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from coremine.db.models import Notification
from coremine.timeutil import utcnow

logger = logging.getLogger(__name__)

EPOCH_CHANNEL = "pubsub:epoch_update"
STREAK_CHANNEL = "pubsub:streak_update"
BALANCE_CHANNEL = "pubsub:balance_update"

EPOCH_MESSAGES = {
    "start": "A new mining epoch has begun! Start mining to earn rewards.",
    "end": "The current mining epoch has ended. Rewards have been distributed.",
    "transition": "Epoch transition in progress. Please wait while we process your rewards.",
}


async def publish_event(redis: object, channel: str, payload: dict[str, Any]) -> None:
    """Publish a JSON event on a Redis channel; failures are logged only."""
    if redis is None:
        return
    try:
        await redis.publish(channel, json.dumps(payload, default=str))  # type: ignore[attr-defined]
    except Exception:
        logger.warning("Failed to publish %s event", channel, exc_info=True)


async def notify(
    db: AsyncSession,
    redis: object,
    event_type: str,
    message: str,
    user_ids: Iterable[str] = (),
    *,
    channel: str = EPOCH_CHANNEL,
    payload: dict[str, Any] | None = None,
) -> int:
    """Create notification rows for ``user_ids`` and broadcast the event.

    Returns the number of notification rows written (0 if the write failed).
    """
    now = utcnow()
    recipients = sorted(set(user_ids))
    written = 0
    if recipients:
        try:
            db.add_all(
                Notification(user_id=uid, type=event_type, message=message, created_at=now)
                for uid in recipients
            )
            await db.commit()
            written = len(recipients)
        except Exception:
            await db.rollback()
            logger.warning("Failed to store %s notifications for %d users", event_type, len(recipients), exc_info=True)

    event = {"event": event_type, "message": message, "recipients": len(recipients)}
    if payload:
        event.update(payload)
    await publish_event(redis, channel, event)
    return written
