"""In-memory NetActuate gateway for engine tests.

Key Features:
- In-memory servers, jobs and BGP sessions
- Boot, job and session-drain delays counted in polls
- Error injection per gateway method
- A log of every call for ordering assertions

Usage:
    from gateway_fake import FakeGateway

    gateway = FakeGateway(boot_reads=2)
    orchestrator = Orchestrator(gateway, config, sleep=no_sleep)
    resource_id, state = await orchestrator.create(spec)

    assert gateway.mutating_calls() == ["create_resource"]
"""

from .gateway import (
    DEFAULT_IMAGES,
    DEFAULT_LOCATIONS,
    MUTATING_CALLS,
    FakeGateway,
    FakeJob,
    FakeServer,
)

__all__ = [
    "DEFAULT_IMAGES",
    "DEFAULT_LOCATIONS",
    "MUTATING_CALLS",
    "FakeGateway",
    "FakeJob",
    "FakeServer",
]
