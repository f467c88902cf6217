"""Escalation worker entry point.

Builds the rule table, complaint store, notification sink, engine,
service and scheduler from settings, then runs the polling loop until
the process is interrupted.

    python -m src.main
"""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

import structlog

from config.settings import Settings, settings
from src.models.enums import ComplaintStatus
from src.services.escalation.engine import EscalationEngine
from src.services.escalation.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    RedisNotificationSink,
)
from src.services.escalation.officers import (
    InMemoryRejectionRegistry,
    OfficerQueue,
    RedisRejectionRegistry,
    RejectionRegistry,
)
from src.services.escalation.rules import load_rule_table
from src.services.escalation.scheduler import EscalationScheduler
from src.services.escalation.service import EscalationService
from src.services.escalation.store import (
    ComplaintStore,
    InMemoryComplaintStore,
    RedisComplaintStore,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Structured logging configuration
# ---------------------------------------------------------------------------


def _configure_logging(config: Settings = settings) -> None:
    """Set up structlog with JSON or console rendering based on settings."""
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if config.log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            structlog.get_level_from_name(config.log_level),
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Components:
    store: ComplaintStore
    sink: NotificationSink
    registry: RejectionRegistry
    engine: EscalationEngine
    service: EscalationService
    officers: OfficerQueue
    scheduler: EscalationScheduler


def build_components(config: Settings = settings) -> Components:
    """Wire every escalation collaborator from *config*.

    Raises :class:`ConfigurationError` if the rule table is invalid.
    """
    rules = load_rule_table(config.rules_path)
    engine = EscalationEngine(rules)

    store: ComplaintStore
    sink: NotificationSink
    registry: RejectionRegistry
    if config.uses_redis:
        store = RedisComplaintStore(config.redis_url)
        sink = RedisNotificationSink(config.redis_url)
        registry = RedisRejectionRegistry(config.redis_url, ttl_seconds=config.officer_rejection_ttl_seconds)
    else:
        store = InMemoryComplaintStore()
        sink = LoggingNotificationSink()
        registry = InMemoryRejectionRegistry(ttl_seconds=config.officer_rejection_ttl_seconds)

    service = EscalationService(
        engine,
        store,
        sink,
        close_status=ComplaintStatus(config.auto_close_status),
        max_attempts=config.max_write_attempts,
        backdate_missed_windows=config.backdate_missed_windows,
    )
    scheduler = EscalationScheduler(
        service,
        store,
        poll_interval_seconds=config.poll_interval_seconds,
    )
    return Components(
        store=store,
        sink=sink,
        registry=registry,
        engine=engine,
        service=service,
        officers=OfficerQueue(store, registry),
        scheduler=scheduler,
    )


async def close_components(components: Components) -> None:
    """Release the Redis connections held by the store, sink and registry."""
    for resource in (components.store, components.sink, components.registry):
        if isinstance(resource, (RedisComplaintStore, RedisNotificationSink, RedisRejectionRegistry)):
            await resource.close()


async def run_worker(config: Settings = settings) -> None:
    _configure_logging(config)
    logger.info(
        "worker.startup",
        env=config.env,
        backend="redis" if config.uses_redis else "memory",
        poll_interval_s=config.poll_interval_seconds,
    )

    components = build_components(config)
    try:
        await components.scheduler.run_forever()
    finally:
        await components.scheduler.stop()
        await close_components(components)
        logger.info("worker.shutdown")


def main() -> None:
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run_worker())


if __name__ == "__main__":
    main()
