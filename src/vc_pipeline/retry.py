"""Bounded retry for transient collaborator failures."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from vc_pipeline.exceptions import PipelineError

log = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_transient(
    operation: Callable[[], Awaitable[T]],
    *,
    retries: int,
    backoff: float,
    description: str,
) -> T:
    """Run *operation*, retrying up to *retries* times on transient errors.

    Only errors whose ``transient`` flag is set (timeouts) are retried;
    everything else propagates on the first failure. Backoff grows linearly.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except PipelineError as e:
            if not e.transient or attempt >= retries:
                raise
            attempt += 1
            log.debug(
                "%s: transient failure (%s), retry %d/%d",
                description,
                e.message,
                attempt,
                retries,
            )
            await asyncio.sleep(backoff * attempt)
