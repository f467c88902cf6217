"""Escalation notification sinks.

The escalation service hands every committed transition to a
:class:`NotificationSink` as an :class:`EscalationNotice`.  Sinks are
fire-and-forget from the service's point of view: a failing sink is
logged and ignored, the transition stays committed.

This module does NOT deliver anything to devices.  It renders the
citizen-facing text and either queues the notice in memory, writes it
to the log, or publishes it on a Redis channel that a push / socket
gateway can subscribe to.
"""

from __future__ import annotations

import contextlib
from typing import Final, Protocol, runtime_checkable

import orjson
import structlog

from src.models.escalation import CLOSE, EscalationNotice
from src.services.escalation.display import get_escalation_info

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Message templates
# ---------------------------------------------------------------------------

_TEMPLATES: Final[dict[str, str]] = {
    "escalated": (
        "Complaint {complaint_id} has been escalated from level {from_level} "
        "to level {to_level} ({label}) because no action was taken in time."
    ),
    "manual": (
        "Complaint {complaint_id} has been moved from level {from_level} "
        "to level {to_level} ({label}): {reason}."
    ),
    "closed": (
        "Complaint {complaint_id} reached the maximum escalation level "
        "{from_level} without resolution and has been closed."
    ),
}


def render_message(notice: EscalationNotice) -> str:
    """Human-readable text for *notice*."""
    if notice.to_level == CLOSE:
        template = "closed"
    elif notice.reason.startswith("auto-"):
        template = "escalated"
    else:
        template = "manual"

    label = get_escalation_info(notice.to_level if isinstance(notice.to_level, int) else None).label
    return _TEMPLATES[template].format(
        complaint_id=notice.complaint_id,
        from_level=notice.from_level,
        to_level=notice.to_level,
        label=label,
        reason=notice.reason,
    )


# ---------------------------------------------------------------------------
# Sink protocol and implementations
# ---------------------------------------------------------------------------


@runtime_checkable
class NotificationSink(Protocol):
    async def emit(self, notice: EscalationNotice) -> None: ...


class QueueNotificationSink:
    """In-memory queue of notices; a delivery layer drains it.

    Production would use Redis/SQS/Pub-Sub; see :class:`RedisNotificationSink`.
    """

    __slots__ = ("_queue",)

    def __init__(self) -> None:
        self._queue: list[EscalationNotice] = []

    async def emit(self, notice: EscalationNotice) -> None:
        self._queue.append(notice)
        logger.debug(
            "notifications.queued",
            complaint_id=notice.complaint_id,
            to_level=notice.to_level,
            recipient=notice.recipient_user_id,
        )

    def pending(self) -> list[EscalationNotice]:
        return list(self._queue)

    def drain(self) -> list[EscalationNotice]:
        notices, self._queue = self._queue, []
        return notices

    def for_recipient(self, user_id: str) -> list[EscalationNotice]:
        return [n for n in self._queue if n.recipient_user_id == user_id]


class LoggingNotificationSink:
    """Writes every notice to the structured log."""

    __slots__ = ()

    async def emit(self, notice: EscalationNotice) -> None:
        logger.info(
            "notifications.escalation",
            notice_id=notice.notice_id,
            complaint_id=notice.complaint_id,
            from_level=notice.from_level,
            to_level=notice.to_level,
            recipient=notice.recipient_user_id,
            message=render_message(notice),
        )


class RedisNotificationSink:
    """Publishes notices as JSON on a Redis pub/sub channel.

    Each payload is the notice plus its rendered ``message``.  Whoever
    pushes to sockets or phones subscribes to *channel*.
    """

    __slots__ = ("_channel", "_redis")

    def __init__(
        self,
        url: str = "redis://localhost:6379/0",
        *,
        client: object | None = None,
        channel: str = "escalation:notifications",
    ) -> None:
        if client is None:
            import redis.asyncio as aioredis

            client = aioredis.Redis.from_url(url, decode_responses=False)
        self._redis = client
        self._channel = channel

    async def emit(self, notice: EscalationNotice) -> None:
        payload = notice.model_dump(mode="json")
        payload["message"] = render_message(notice)
        receivers = await self._redis.publish(self._channel, orjson.dumps(payload))
        logger.debug(
            "notifications.published",
            channel=self._channel,
            complaint_id=notice.complaint_id,
            receivers=receivers,
        )

    async def close(self) -> None:
        with contextlib.suppress(Exception):
            await self._redis.aclose()
