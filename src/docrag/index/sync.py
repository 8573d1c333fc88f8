"""Wait for an asynchronously built search index to become READY."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Protocol

from docrag.errors import (
    IndexBuildCancelledError,
    IndexBuildFailedError,
    IndexBuildTimeoutError,
    InvalidConfigError,
)
from docrag.models import IndexStatus

LOGGER = logging.getLogger(__name__)


class PollableIndex(Protocol):
    index_name: str

    async def status(self) -> IndexStatus:
        ...

    async def describe(self) -> Dict[str, Any]:
        ...


async def _pause(delay: float, cancel: asyncio.Event | None) -> None:
    """Sleep for ``delay`` seconds, waking early if ``cancel`` is set."""
    if cancel is None:
        await asyncio.sleep(delay)
        return
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay)
    except asyncio.TimeoutError:
        pass


async def await_ready(
    index: PollableIndex,
    poll_interval: float = 1.0,
    timeout: float = 60.0,
    *,
    backoff: float = 1.0,
    max_interval: float | None = None,
    cancel: asyncio.Event | None = None,
) -> IndexStatus:
    """Poll ``index.status()`` until READY.

    One status round trip per poll; between polls the coroutine suspends for
    ``poll_interval`` seconds (multiplied by ``backoff`` after each poll, capped
    at ``max_interval``), never past the deadline.

    Raises:
        IndexBuildFailedError: the index reached FAILED.
        IndexBuildTimeoutError: ``timeout`` seconds elapsed first.
        IndexBuildCancelledError: ``cancel`` was set while waiting.
    """
    if poll_interval <= 0:
        raise InvalidConfigError(f"poll_interval must be positive, got {poll_interval}")
    if timeout <= 0:
        raise InvalidConfigError(f"timeout must be positive, got {timeout}")
    if backoff < 1.0:
        raise InvalidConfigError(f"backoff must be at least 1.0, got {backoff}")

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    interval = poll_interval
    polls = 0

    while True:
        if cancel is not None and cancel.is_set():
            raise IndexBuildCancelledError(f"Stopped waiting for index {index.index_name!r}")

        status = await index.status()
        polls += 1
        LOGGER.debug("Index %s status after %d polls: %s", index.index_name, polls, status.value)

        if status is IndexStatus.READY:
            LOGGER.info("Index %s is READY", index.index_name)
            return status
        if status is IndexStatus.FAILED:
            reason = (await index.describe()).get("error") or "no error recorded"
            raise IndexBuildFailedError(f"Index {index.index_name!r} build failed: {reason}")

        remaining = deadline - loop.time()
        if remaining <= 0:
            raise IndexBuildTimeoutError(
                f"Index {index.index_name!r} not READY after {timeout:.1f}s (last status {status.value})"
            )

        await _pause(min(interval, remaining), cancel)
        interval = interval * backoff
        if max_interval is not None:
            interval = min(interval, max_interval)
