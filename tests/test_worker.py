"""Tests for the standalone worker process entry point."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest


@pytest.mark.asyncio
async def test_run_worker_starts_and_drains_scheduler(monkeypatch):
    from notequeue import worker

    scheduler = MagicMock(worker_id="worker-test")
    scheduler.start = AsyncMock()
    scheduler.stop = AsyncMock()
    dispose = AsyncMock()
    close = AsyncMock()
    monkeypatch.setattr(worker, "build_queue", lambda: SimpleNamespace(scheduler=scheduler))
    monkeypatch.setattr(worker, "dispose_engine", dispose)
    monkeypatch.setattr(worker, "close_valkey_client", close)

    stop_event = asyncio.Event()
    stop_event.set()
    await worker.run_worker(stop_event)

    scheduler.start.assert_awaited_once()
    scheduler.stop.assert_awaited_once_with(
        drain=True, timeout=worker.SHUTDOWN_DRAIN_SECONDS
    )
    dispose.assert_awaited_once()
    close.assert_awaited_once()
