"""Waiting for asynchronous remote operations to complete.

Every long-running remote operation is followed by a wait built on
await_condition(): the condition is checked at a fixed interval until it
holds or the attempt budget is spent. Remote errors raised during the first
few attempts are retried because the API is known to return "not yet
visible" errors right after a create; afterwards they are fatal.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .config import PollPolicy
from .gateway import GatewayError, RemoteGateway
from .models import JobStatus, ResourceState, ServerStatus

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class PollTimeoutError(Exception):
    """Raised when a condition does not hold within its attempt budget."""

    def __init__(self, description: str, attempts: int, resource_id: int | None = None) -> None:
        self.description = description
        self.attempts = attempts
        self.resource_id = resource_id
        super().__init__(f"Timed out waiting for {description} after {attempts} attempts")


class JobFailedError(Exception):
    """Raised when a remote job reports failure."""

    def __init__(self, resource_id: int, job_id: int) -> None:
        self.resource_id = resource_id
        self.job_id = job_id
        super().__init__(f"Job {job_id} for server {resource_id} failed")


async def await_condition(
    check: Callable[[], bool],
    policy: PollPolicy,
    *,
    description: str,
    resource_id: int | None = None,
    sleep: Sleep = asyncio.sleep,
) -> int:
    """Check a condition until it holds.

    Args:
        check: Returns True once done. May raise GatewayError.
        policy: Attempt budget, interval and error grace window.
        description: What is being waited for, used in logs and errors.
        resource_id: Server the wait belongs to, for error context.
        sleep: Coroutine used to wait between attempts.

    Returns:
        The 1-based attempt on which the condition held.

    Raises:
        PollTimeoutError: The condition never held.
        GatewayError: A remote error occurred after the grace window.
    """
    for attempt in range(1, policy.max_attempts + 1):
        try:
            if check():
                logger.debug(
                    "Condition met",
                    extra={"description": description, "attempt": attempt},
                )
                return attempt
        except GatewayError as e:
            if attempt > policy.early_error_grace:
                raise
            logger.debug(
                "Retrying remote error within grace window",
                extra={
                    "description": description,
                    "attempt": attempt,
                    "grace": policy.early_error_grace,
                    "error": str(e),
                },
            )

        if attempt < policy.max_attempts:
            await sleep(policy.interval_seconds)

    logger.error(
        "Timed out waiting",
        extra={"description": description, "attempts": policy.max_attempts},
    )
    raise PollTimeoutError(description, policy.max_attempts, resource_id)


async def wait_for_status(
    gateway: RemoteGateway,
    resource_id: int,
    target: ServerStatus,
    policy: PollPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
) -> ResourceState:
    """Wait until a server reports the target status and return its state."""
    observed: list[ResourceState] = []

    def check() -> bool:
        state = gateway.read_resource(resource_id)
        observed.append(state)
        return state.status == target

    await await_condition(
        check,
        policy,
        description=f"server {resource_id} to obtain {target.value!r} status",
        resource_id=resource_id,
        sleep=sleep,
    )
    return observed[-1]


async def wait_for_job(
    gateway: RemoteGateway,
    resource_id: int,
    job_id: int,
    policy: PollPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Wait until a job succeeds.

    Raises:
        JobFailedError: The job reached a failed terminal status.
    """

    def check() -> bool:
        job = gateway.get_job(resource_id, job_id)
        if not job.status.terminal:
            return False
        if job.status == JobStatus.FAILED:
            raise JobFailedError(resource_id, job_id)
        return True

    await await_condition(
        check,
        policy,
        description=f"job {job_id} on server {resource_id}",
        resource_id=resource_id,
        sleep=sleep,
    )


async def wait_for_drain(
    gateway: RemoteGateway,
    resource_id: int,
    policy: PollPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Wait until no peering sessions remain on a server."""
    await await_condition(
        lambda: not gateway.list_peering_sessions(resource_id),
        policy,
        description=f"BGP sessions on server {resource_id} to clear",
        resource_id=resource_id,
        sleep=sleep,
    )
