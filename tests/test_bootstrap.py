"""Tests for queue wiring."""

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from notequeue.api.v1 import deps
from notequeue.bootstrap import attach_to_app, build_queue


async def test_build_queue_wires_components(session_factory, fake_generator, subscriptions):
    components = build_queue(
        session_factory=session_factory,
        generator=fake_generator,
        subscriptions=subscriptions,
    )

    assert components.handlers.job_types == [
        "file_notes",
        "text_notes",
        "video_notes",
        "youtube_notes",
    ]
    assert components.facade.scheduler is components.scheduler
    assert components.notes.generator is fake_generator
    assert components.gateway.store is components.store
    assert components.gateway.notifier is components.notifier
    assert components.subscriptions is subscriptions
    assert components.scheduler.running is False


async def test_build_queue_defaults_to_cached_subscriptions(session_factory, fake_generator):
    from notequeue.core.subscriptions import CachedSubscriptionProvider

    components = build_queue(session_factory=session_factory, generator=fake_generator)

    assert isinstance(components.subscriptions, CachedSubscriptionProvider)


async def test_attach_to_app(queue):
    app = SimpleNamespace(state=SimpleNamespace())

    attach_to_app(app, queue)

    assert app.state.queue is queue
    assert app.state.store is queue.store
    assert app.state.scheduler is queue.scheduler
    assert app.state.facade is queue.facade
    assert app.state.notes is queue.notes
    assert app.state.gateway is queue.gateway
    assert app.state.subscriptions is queue.subscriptions


async def test_request_dependencies_read_app_state(queue):
    app = SimpleNamespace(state=SimpleNamespace())
    request = SimpleNamespace(app=app)

    with pytest.raises(HTTPException) as exc_info:
        deps.get_facade(request)
    assert exc_info.value.status_code == 503
    assert deps.get_scheduler(request) is None

    attach_to_app(app, queue)

    assert deps.get_facade(request) is queue.facade
    assert deps.get_note_handlers(request) is queue.notes
    assert deps.get_store(request) is queue.store
    assert deps.get_gateway(request) is queue.gateway
    assert deps.get_subscriptions(request) is queue.subscriptions
    assert deps.get_scheduler(request) is queue.scheduler
