"""Timeout-bounded calls into collaborators.

Every collaborator call in the core goes through one of these helpers so a
slow or failing backend turns into a TransientCollaboratorError instead of a
hung tick or an unhandled exception.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, TypeVar

from core.errors import CollaboratorTimeout, TransientCollaboratorError

T = TypeVar("T")


async def call_with_timeout(awaitable: Awaitable[T], timeout: float, step: str) -> T:
    """Await a collaborator call, mapping timeouts and failures to core errors."""

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise CollaboratorTimeout(step, timeout) from exc
    except TransientCollaboratorError:
        raise
    except Exception as exc:
        raise TransientCollaboratorError(step, f"{type(exc).__name__}: {exc}") from exc


async def run_blocking(fn: Callable[..., T], *args: Any, timeout: float, step: str) -> T:
    """Run a blocking store call in a worker thread under a timeout."""

    return await call_with_timeout(asyncio.to_thread(fn, *args), timeout, step)
