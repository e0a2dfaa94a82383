"""Shared fixtures for task tests."""

from unittest.mock import AsyncMock, patch

import pytest_asyncio


@pytest_asyncio.fixture()
async def patch_task_session(session_factory):
    """Returns a context-manager factory that patches get_session_local and dispose_engine
    for a given task module path.

    dispose_engine_path defaults to '{module_path}.dispose_engine' but can be overridden
    for modules that import it locally.
    """

    def _patch(module_path: str, dispose_engine_path: str | None = None):
        if dispose_engine_path is None:
            dispose_engine_path = f"{module_path}.dispose_engine"
        return (
            patch(f"{module_path}.get_session_local", return_value=session_factory),
            patch(dispose_engine_path, new_callable=AsyncMock),
        )

    return _patch
