"""
In-process wake-ups for change-feed subscribers.

The durable feed is the job_events table; this only shortens the time a
subscriber sleeps before re-reading it. A missed wake-up costs at most one
poll interval.
"""

import asyncio
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Optional, Set

ALL_USERS = "*"


class JobEventNotifier:
    def __init__(self):
        self._listeners: Dict[str, Set[asyncio.Event]] = defaultdict(set)

    @contextmanager
    def listen(self, user_id: Optional[str] = None):
        """Register interest before reading the feed so no write slips between."""
        key = user_id or ALL_USERS
        event = asyncio.Event()
        self._listeners[key].add(event)
        try:
            yield event
        finally:
            self._listeners[key].discard(event)
            if not self._listeners[key]:
                self._listeners.pop(key, None)

    def notify(self, user_id: str) -> None:
        for key in (user_id, ALL_USERS):
            for event in list(self._listeners.get(key, ())):
                event.set()

    @property
    def listener_count(self) -> int:
        return sum(len(events) for events in self._listeners.values())
