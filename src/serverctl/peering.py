"""BGP peering session lifecycle around destructive server operations.

A server cannot be moved while BGP sessions are attached to it. Before a move
the coordinator records how the sessions are laid out (group, address
families, redundancy), deletes them and waits until the listing is empty.
Once the rebuilt server is RUNNING the sessions are recreated from that
template. Session ids are not preserved.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .config import PollPolicy
from .gateway import RemoteGateway
from .models import IPFamily, PeeringSession
from .poller import Sleep, wait_for_drain

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PeeringTemplate:
    """Layout of a server's sessions, enough to recreate them.

    Attributes:
        group_id: BGP group the sessions belong to.
        has_ipv6: At least one IPv6 session existed.
        redundant: Some group and family combination had more than one session.
        session_count: Number of sessions torn down.
    """

    group_id: int
    has_ipv6: bool
    redundant: bool
    session_count: int

    @classmethod
    def from_sessions(cls, sessions: list[PeeringSession]) -> PeeringTemplate:
        if not sessions:
            raise ValueError("cannot build a peering template from zero sessions")
        members = Counter((s.group_id, s.ip_family) for s in sessions)
        return cls(
            group_id=sessions[0].group_id,
            has_ipv6=any(s.ip_family == IPFamily.IPV6 for s in sessions),
            redundant=any(count > 1 for count in members.values()),
            session_count=len(sessions),
        )


def summarize_peers(sessions: list[PeeringSession]) -> dict[str, Any] | None:
    """Summarize a server's sessions as its BGP peering configuration.

    Group and ASNs come from the first session. Provider peer addresses are
    listed per family, with the customer side address of each family.
    """
    if not sessions:
        return None

    first = sessions[0]
    summary: dict[str, Any] = {
        "group_id": first.group_id,
        "localasn": first.customer_asn,
        "peerasn": first.provider_asn,
    }
    for family, suffix in ((IPFamily.IPV4, "v4"), (IPFamily.IPV6, "v6")):
        members = [s for s in sessions if s.ip_family == family]
        if members:
            summary[f"localpeer{suffix}"] = members[-1].customer_ip
            summary[f"ip{suffix}"] = [s.provider_ip for s in members]
    return summary


class PeeringCoordinator:
    """Drains and restores the peering sessions of one server."""

    def __init__(
        self,
        gateway: RemoteGateway,
        drain_policy: PollPolicy,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._drain_policy = drain_policy
        self._sleep = sleep

    def capture(self, resource_id: int) -> tuple[PeeringTemplate, list[PeeringSession]] | None:
        """List the sessions of a server and record their layout.

        Returns:
            The template and the sessions it was built from, None if the
            server has no sessions.
        """
        sessions = self._gateway.list_peering_sessions(resource_id)
        if not sessions:
            logger.info("No BGP sessions to tear down", extra={"resource_id": resource_id})
            return None
        return PeeringTemplate.from_sessions(sessions), sessions

    def delete_sessions(
        self,
        resource_id: int,
        sessions: list[PeeringSession],
        on_deleted: Callable[[PeeringSession], None] | None = None,
    ) -> None:
        """Delete sessions one by one, reporting each as soon as it is gone.

        A failure stops the loop; sessions reported through on_deleted up to
        that point stay deleted.
        """
        logger.info(
            "Tearing down BGP sessions",
            extra={"resource_id": resource_id, "session_count": len(sessions)},
        )
        for session in sessions:
            self._gateway.delete_peering_session(session.id)
            if on_deleted is not None:
                on_deleted(session)

    async def wait_drained(self, resource_id: int) -> None:
        """Wait until the session listing of a server is empty.

        Raises:
            PollTimeoutError: Sessions were still listed when the drain budget ran out.
        """
        await wait_for_drain(self._gateway, resource_id, self._drain_policy, sleep=self._sleep)
        logger.info("BGP sessions cleared", extra={"resource_id": resource_id})

    async def teardown(self, resource_id: int) -> PeeringTemplate | None:
        """Delete every session of a server and wait until none remain."""
        captured = self.capture(resource_id)
        if captured is None:
            return None
        template, sessions = captured
        self.delete_sessions(resource_id, sessions)
        await self.wait_drained(resource_id)
        return template

    def restore(self, resource_id: int, template: PeeringTemplate) -> PeeringSession:
        """Recreate sessions from a template captured before teardown."""
        logger.info(
            "Recreating BGP sessions",
            extra={
                "resource_id": resource_id,
                "group_id": template.group_id,
                "has_ipv6": template.has_ipv6,
                "redundant": template.redundant,
            },
        )
        return self._gateway.create_peering_sessions(
            resource_id, template.group_id, template.has_ipv6, template.redundant
        )


class PeeringSessions:
    """Host operations on the peering sessions of a server."""

    def __init__(
        self,
        gateway: RemoteGateway,
        drain_policy: PollPolicy,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._gateway = gateway
        self._coordinator = PeeringCoordinator(gateway, drain_policy, sleep)

    def create(
        self, resource_id: int, group_id: int, ipv6: bool = True, redundant: bool = False
    ) -> PeeringSession:
        return self._gateway.create_peering_sessions(resource_id, group_id, ipv6, redundant)

    def read(self, resource_id: int) -> list[PeeringSession]:
        return self._gateway.list_peering_sessions(resource_id)

    async def delete(self, resource_id: int) -> None:
        await self._coordinator.teardown(resource_id)
