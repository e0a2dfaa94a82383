from fastapi import Request

from notequeue.api.v1.helpers.responses import service_unavailable_response
from notequeue.core.facade import QueueFacade
from notequeue.core.gateway import StatusGateway
from notequeue.core.handlers import NoteJobHandlers
from notequeue.core.scheduler import Scheduler
from notequeue.core.store import SqlJobStore
from notequeue.core.subscriptions import SubscriptionProvider


# Queue components are built once at startup and live on app.state


def _state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise service_unavailable_response(f"Job queue is not initialised ({name})")
    return value


def get_store(request: Request) -> SqlJobStore:
    return _state(request, "store")


def get_gateway(request: Request) -> StatusGateway:
    return _state(request, "gateway")


def get_subscriptions(request: Request) -> SubscriptionProvider:
    return _state(request, "subscriptions")


def get_facade(request: Request) -> QueueFacade:
    return _state(request, "facade")


def get_note_handlers(request: Request) -> NoteJobHandlers:
    return _state(request, "notes")


def get_scheduler(request: Request) -> Scheduler | None:
    return getattr(request.app.state, "scheduler", None)
