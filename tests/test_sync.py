"""Tests for await_ready polling."""

from __future__ import annotations

import asyncio
from typing import List
from unittest.mock import patch

import pytest

from docrag.errors import (
    IndexBuildCancelledError,
    IndexBuildFailedError,
    IndexBuildTimeoutError,
    InvalidConfigError,
)
from docrag.index.sync import await_ready
from docrag.models import IndexStatus


class ScriptedIndex:
    """Reports a fixed sequence of statuses, repeating the last one."""

    index_name = "vector_index"

    def __init__(self, statuses: List[IndexStatus], error: str | None = None) -> None:
        self.statuses = list(statuses)
        self.error = error
        self.polls = 0

    async def status(self) -> IndexStatus:
        self.polls += 1
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def describe(self) -> dict:
        return {"name": self.index_name, "status": self.statuses[0].value, "error": self.error}


class TestAwaitReady:
    """Test the poll loop outcomes."""

    @pytest.mark.asyncio
    async def test_pending_then_ready(self) -> None:
        index = ScriptedIndex([IndexStatus.PENDING, IndexStatus.BUILDING, IndexStatus.READY])

        status = await await_ready(index, poll_interval=0.001, timeout=5.0)

        assert status is IndexStatus.READY
        assert index.polls == 3

    @pytest.mark.asyncio
    async def test_already_ready_polls_once(self) -> None:
        index = ScriptedIndex([IndexStatus.READY])
        await await_ready(index, poll_interval=10.0, timeout=5.0)
        assert index.polls == 1

    @pytest.mark.asyncio
    async def test_stays_pending_times_out(self) -> None:
        index = ScriptedIndex([IndexStatus.PENDING])

        with pytest.raises(IndexBuildTimeoutError):
            await await_ready(index, poll_interval=0.01, timeout=0.05)
        assert index.polls >= 2

    @pytest.mark.asyncio
    async def test_timeout_is_a_timeout_error(self) -> None:
        index = ScriptedIndex([IndexStatus.BUILDING])
        with pytest.raises(TimeoutError):
            await await_ready(index, poll_interval=0.01, timeout=0.02)

    @pytest.mark.asyncio
    async def test_failed(self) -> None:
        index = ScriptedIndex([IndexStatus.BUILDING, IndexStatus.FAILED])

        with pytest.raises(IndexBuildFailedError):
            await await_ready(index, poll_interval=0.001, timeout=5.0)

    @pytest.mark.asyncio
    async def test_failed_reports_build_error(self) -> None:
        index = ScriptedIndex([IndexStatus.FAILED], error="Record abc has 128 dimensions, index expects 256")

        with pytest.raises(IndexBuildFailedError, match="has 128 dimensions"):
            await await_ready(index, poll_interval=0.001, timeout=5.0)

    @pytest.mark.asyncio
    async def test_cancel_event(self) -> None:
        """Setting the cancel event aborts the wait early."""
        index = ScriptedIndex([IndexStatus.PENDING])
        cancel = asyncio.Event()

        async def trip() -> None:
            await asyncio.sleep(0.02)
            cancel.set()

        trigger = asyncio.create_task(trip())
        with pytest.raises(IndexBuildCancelledError):
            await await_ready(index, poll_interval=10.0, timeout=30.0, cancel=cancel)
        await trigger
        assert index.polls == 1

    @pytest.mark.asyncio
    async def test_task_cancellation_propagates(self) -> None:
        index = ScriptedIndex([IndexStatus.PENDING])
        task = asyncio.create_task(await_ready(index, poll_interval=10.0, timeout=30.0))
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    @pytest.mark.asyncio
    async def test_backoff_grows_and_caps(self) -> None:
        """Sleep intervals grow by the backoff factor up to max_interval."""
        index = ScriptedIndex([IndexStatus.PENDING] * 5 + [IndexStatus.READY])
        delays: List[float] = []

        async def fake_pause(delay: float, cancel) -> None:
            delays.append(delay)

        with patch("docrag.index.sync._pause", side_effect=fake_pause):
            await await_ready(index, poll_interval=1.0, timeout=100.0, backoff=2.0, max_interval=5.0)

        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"poll_interval": 0, "timeout": 1.0},
            {"poll_interval": 1.0, "timeout": 0},
            {"poll_interval": 1.0, "timeout": 1.0, "backoff": 0.5},
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_arguments(self, kwargs) -> None:
        with pytest.raises(InvalidConfigError):
            await await_ready(ScriptedIndex([IndexStatus.READY]), **kwargs)
