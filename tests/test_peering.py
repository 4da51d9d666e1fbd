"""Tests for BGP session teardown and restore."""

from __future__ import annotations

import pytest

from gateway_fake import FakeGateway
from serverctl.config import PollPolicy
from serverctl.models import IPFamily, PeeringSession
from serverctl.gateway import TransientRemoteError
from serverctl.peering import (
    PeeringCoordinator,
    PeeringSessions,
    PeeringTemplate,
    summarize_peers,
)
from serverctl.poller import PollTimeoutError


def session(session_id: int, group_id: int, family: IPFamily) -> PeeringSession:
    return PeeringSession(id=session_id, resource_id=1, group_id=group_id, ip_family=family)


def peer(session_id: int, family: IPFamily, customer_ip: str, provider_ip: str) -> PeeringSession:
    return PeeringSession(
        id=session_id,
        resource_id=1,
        group_id=42,
        ip_family=family,
        customer_ip=customer_ip,
        provider_ip=provider_ip,
        customer_asn=64512,
        provider_asn=36236,
    )


class TestPeeringTemplate:
    """Tests for PeeringTemplate.from_sessions."""

    def test_mixed_families_single_member(self) -> None:
        template = PeeringTemplate.from_sessions(
            [session(1, 42, IPFamily.IPV4), session(2, 42, IPFamily.IPV6)]
        )
        assert template == PeeringTemplate(
            group_id=42, has_ipv6=True, redundant=False, session_count=2
        )

    def test_ipv4_only(self) -> None:
        template = PeeringTemplate.from_sessions([session(1, 7, IPFamily.IPV4)])
        assert not template.has_ipv6
        assert not template.redundant

    def test_two_members_of_one_family_is_redundant(self) -> None:
        template = PeeringTemplate.from_sessions(
            [
                session(1, 42, IPFamily.IPV4),
                session(2, 42, IPFamily.IPV4),
                session(3, 42, IPFamily.IPV6),
            ]
        )
        assert template.redundant
        assert template.session_count == 3

    def test_empty_rejected(self) -> None:
        with pytest.raises(ValueError):
            PeeringTemplate.from_sessions([])


class TestSummarizePeers:
    """Tests for summarize_peers."""

    def test_no_sessions(self) -> None:
        assert summarize_peers([]) is None

    def test_dual_stack_redundant(self) -> None:
        sessions = [
            peer(1, IPFamily.IPV4, "10.0.1.100", "10.0.1.1"),
            peer(2, IPFamily.IPV4, "10.0.1.100", "10.0.1.2"),
            peer(3, IPFamily.IPV6, "2001:db8:1::100", "2001:db8:1::1"),
        ]

        assert summarize_peers(sessions) == {
            "group_id": 42,
            "localasn": 64512,
            "peerasn": 36236,
            "localpeerv4": "10.0.1.100",
            "ipv4": ["10.0.1.1", "10.0.1.2"],
            "localpeerv6": "2001:db8:1::100",
            "ipv6": ["2001:db8:1::1"],
        }

    def test_ipv4_only_has_no_v6_keys(self) -> None:
        summary = summarize_peers([session(1, 7, IPFamily.IPV4)])
        assert summary is not None
        assert "ipv6" not in summary and "localpeerv6" not in summary
        assert summary["group_id"] == 7


class TestPeeringCoordinator:
    """Tests for PeeringCoordinator."""

    @pytest.mark.asyncio
    async def test_teardown_without_sessions(self, sleep) -> None:
        gateway = FakeGateway()
        server = gateway.add_server()
        coordinator = PeeringCoordinator(gateway, PollPolicy(24, 5), sleep)

        assert await coordinator.teardown(server.id) is None
        assert gateway.mutating_calls() == []

    @pytest.mark.asyncio
    async def test_teardown_deletes_and_drains(self, sleep) -> None:
        gateway = FakeGateway(drain_listings=2)
        server = gateway.add_server()
        created = gateway.add_sessions(server.id, 42, [IPFamily.IPV4, IPFamily.IPV6])
        coordinator = PeeringCoordinator(gateway, PollPolicy(24, 5), sleep)

        template = await coordinator.teardown(server.id)

        assert template is not None and template.group_id == 42
        assert [args[0] for args in gateway.calls_of("delete_peering_session")] == [
            s.id for s in created
        ]
        # initial listing, two lingering listings, then the empty one
        assert len(gateway.calls_of("list_peering_sessions")) == 4
        assert sleep.delays == [5, 5]

    def test_delete_sessions_reports_each_deletion(self, sleep) -> None:
        gateway = FakeGateway()
        server = gateway.add_server()
        created = gateway.add_sessions(server.id, 42, [IPFamily.IPV4, IPFamily.IPV6])
        gateway.fail("delete_peering_session", TransientRemoteError("HTTP 500"), after=1)
        coordinator = PeeringCoordinator(gateway, PollPolicy(24, 5), sleep)
        deleted: list[PeeringSession] = []

        with pytest.raises(TransientRemoteError):
            coordinator.delete_sessions(server.id, created, on_deleted=deleted.append)

        assert deleted == created[:1]
        assert gateway.sessions[server.id] == created[1:]

    @pytest.mark.asyncio
    async def test_drain_timeout(self, sleep) -> None:
        gateway = FakeGateway(drain_listings=100)
        server = gateway.add_server()
        gateway.add_sessions(server.id, 42, [IPFamily.IPV4])
        coordinator = PeeringCoordinator(gateway, PollPolicy(24, 5), sleep)

        with pytest.raises(PollTimeoutError):
            await coordinator.teardown(server.id)

    @pytest.mark.asyncio
    async def test_restore_recreates_layout(self, sleep) -> None:
        gateway = FakeGateway()
        server = gateway.add_server()
        gateway.add_sessions(server.id, 42, [IPFamily.IPV4, IPFamily.IPV6])
        coordinator = PeeringCoordinator(gateway, PollPolicy(24, 5), sleep)

        template = await coordinator.teardown(server.id)
        assert template is not None
        coordinator.restore(server.id, template)

        assert gateway.calls_of("create_peering_sessions") == [(server.id, 42, True, False)]
        assert {s.ip_family for s in gateway.sessions[server.id]} == {
            IPFamily.IPV4,
            IPFamily.IPV6,
        }


class TestPeeringSessions:
    """Tests for the host-facing session operations."""

    @pytest.mark.asyncio
    async def test_create_read_delete(self, sleep) -> None:
        gateway = FakeGateway()
        server = gateway.add_server()
        sessions = PeeringSessions(gateway, PollPolicy(24, 5), sleep)

        sessions.create(server.id, group_id=42, ipv6=True, redundant=True)
        listed = sessions.read(server.id)
        assert len(listed) == 4
        assert {s.ip_family for s in listed} == {IPFamily.IPV4, IPFamily.IPV6}

        await sessions.delete(server.id)
        assert sessions.read(server.id) == []
