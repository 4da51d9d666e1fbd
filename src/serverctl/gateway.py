"""Remote gateway contract.

The engine talks to the provisioning API only through this interface so that
it can run against the HTTP client in production and an in-memory fake in
tests. Mutating calls that complete asynchronously return a job id which the
caller must poll.
"""

from __future__ import annotations

from typing import Any, Protocol

from .models import Image, Job, Location, PeeringSession, ResourceState


class GatewayError(Exception):
    """Base class for errors raised by a remote gateway."""

    def __init__(self, message: str, resource_id: int | None = None) -> None:
        super().__init__(message)
        self.resource_id = resource_id


class NotFoundError(GatewayError):
    """The remote entity does not exist (or is not visible yet)."""

    pass


class TransientRemoteError(GatewayError):
    """Any other transport or API failure."""

    pass


class RemoteGateway(Protocol):
    """Capabilities of the remote provisioning API used by the engine."""

    def create_resource(self, request: dict[str, Any]) -> tuple[int, int | None]:
        """Buy and build a server. Returns (server id, job id if any)."""

    def read_resource(self, resource_id: int) -> ResourceState:
        """Read a server. Raises NotFoundError if it does not exist."""

    def rebuild_resource(self, resource_id: int, request: dict[str, Any]) -> int | None:
        """Reimage/relocate a server in place. Returns a job id if any."""

    def delete_resource(self, resource_id: int, cancel_billing: bool) -> int:
        """Delete a server. Returns the delete job id."""

    def unlink_resource(self, resource_id: int) -> None:
        """Detach a deleted, still billed server from its network identity."""

    def list_peering_sessions(self, resource_id: int) -> list[PeeringSession]:
        """List the BGP sessions attached to a server."""

    def create_peering_sessions(
        self, resource_id: int, group_id: int, ipv6: bool, redundant: bool
    ) -> PeeringSession:
        """Create the BGP sessions of a group for a server."""

    def delete_peering_session(self, session_id: int) -> None:
        """Delete a single BGP session."""

    def get_job(self, resource_id: int, job_id: int) -> Job:
        """Read the status of a job."""

    def list_locations(self) -> list[Location]:
        """List available locations."""

    def list_images(self) -> list[Image]:
        """List available images."""
