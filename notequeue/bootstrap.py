"""
Queue bootstrap - wires the store, scheduler, facade and gateway together.

Used by main.py (API process, optionally with an embedded scheduler) and by
worker.py (standalone scheduler process). Both share one database; the store
is the only coordination point between processes.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from notequeue.config import settings
from notequeue.core.facade import QueueFacade
from notequeue.core.gateway import StatusGateway
from notequeue.core.handlers import HandlerRegistry, NoteJobHandlers
from notequeue.core.notes import LiteLLMNoteGenerator, NoteGenerator
from notequeue.core.notifier import JobEventNotifier
from notequeue.core.scheduler import Scheduler
from notequeue.core.store import SqlJobStore
from notequeue.core.subscriptions import (
    CachedSubscriptionProvider,
    StaticSubscriptionProvider,
    SubscriptionProvider,
)
from notequeue.db.session import get_session_local

logger = logging.getLogger(__name__)


@dataclass
class QueueComponents:
    notifier: JobEventNotifier
    store: SqlJobStore
    handlers: HandlerRegistry
    notes: NoteJobHandlers
    scheduler: Scheduler
    facade: QueueFacade
    gateway: StatusGateway
    subscriptions: SubscriptionProvider


def build_queue(
    session_factory=None,
    generator: Optional[NoteGenerator] = None,
    subscriptions: Optional[SubscriptionProvider] = None,
    handlers: Optional[HandlerRegistry] = None,
) -> QueueComponents:
    """Build queue components from settings. Nothing is started here."""
    notifier = JobEventNotifier()
    store = SqlJobStore(
        session_factory or get_session_local(),
        notifier=notifier,
        default_max_retries=settings.default_max_retries,
    )

    notes = NoteJobHandlers(generator or LiteLLMNoteGenerator())
    if handlers is None:
        handlers = notes.registry()

    if subscriptions is None:
        subscriptions = CachedSubscriptionProvider(
            StaticSubscriptionProvider(settings.default_subscription_tier),
            ttl_seconds=settings.subscription_cache_ttl_seconds,
        )

    scheduler = Scheduler(
        store,
        handlers,
        max_concurrent_jobs=settings.max_concurrent_jobs,
        poll_interval=settings.poll_interval_seconds,
        worker_id=settings.worker_id,
        auto_retry=settings.auto_retry_failed_jobs,
    )
    facade = QueueFacade(
        store,
        scheduler,
        subscriptions,
        timeout_seconds=settings.facade_timeout_seconds,
        notifier=notifier,
        poll_interval=settings.poll_interval_seconds,
    )
    gateway = StatusGateway(
        store,
        notifier=notifier,
        poll_interval=settings.poll_interval_seconds,
        max_concurrent_jobs=settings.max_concurrent_jobs,
        default_job_duration_seconds=settings.default_job_duration_seconds,
    )

    logger.info(
        f"Queue components built (instance={scheduler.instance_id}, handlers={handlers.job_types})"
    )
    return QueueComponents(
        notifier=notifier,
        store=store,
        handlers=handlers,
        notes=notes,
        scheduler=scheduler,
        facade=facade,
        gateway=gateway,
        subscriptions=subscriptions,
    )


def attach_to_app(app, components: QueueComponents) -> None:
    app.state.queue = components
    app.state.store = components.store
    app.state.scheduler = components.scheduler
    app.state.facade = components.facade
    app.state.notes = components.notes
    app.state.gateway = components.gateway
    app.state.subscriptions = components.subscriptions
