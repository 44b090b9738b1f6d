"""
Tests for the datagram session table.

These use mock transports so no sockets are opened.
"""

import asyncio

import pytest

pytest_plugins = ("pytest_asyncio",)

from portal.servers.udp_sessions import DatagramSession, SessionProtocol, SessionTable

CLIENT_A = ("192.168.1.100", 40000)
CLIENT_B = ("192.168.1.101", 40001)


# =============================================================================
# Mock Classes for Testing
# =============================================================================


class MockDatagramTransport:
    """Mock asyncio DatagramTransport for testing."""

    def __init__(self, fail_with: OSError | None = None):
        self.sent: list[tuple[bytes, tuple | None]] = []
        self.closing = False
        self.fail_with = fail_with

    def sendto(self, data: bytes, addr=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.sent.append((data, addr))

    def is_closing(self) -> bool:
        return self.closing

    def close(self):
        self.closing = True


def make_session(client_address=CLIENT_A, **kwargs) -> DatagramSession:
    return DatagramSession(client_address, MockDatagramTransport(**kwargs))


# =============================================================================
# DatagramSession Tests
# =============================================================================


class TestDatagramSession:
    def test_send_updates_activity(self):
        session = make_session()
        session.last_activity -= 10

        assert session.send(b"hello") is True
        assert session.forward_transport.sent == [(b"hello", None)]
        assert session.bytes_sent == 5
        assert session.idle_for() < 1.0

    def test_send_on_closed_session_fails(self):
        session = make_session()
        session.close()

        assert session.closed
        assert session.send(b"hello") is False
        assert session.forward_transport.sent == []

    def test_send_error_is_reported_not_raised(self):
        session = make_session(fail_with=OSError("network unreachable"))

        assert session.send(b"hello") is False
        assert session.bytes_sent == 0

    def test_is_stale(self):
        session = make_session()
        assert not session.is_stale(30.0)

        session.last_activity -= 31.0
        assert session.is_stale(30.0)


class TestSessionProtocol:
    def test_reply_goes_back_to_client(self):
        inbound = MockDatagramTransport()
        session = make_session()
        session.last_activity -= 10
        protocol = SessionProtocol(CLIENT_A, inbound)
        protocol.session = session

        protocol.datagram_received(b"reply", ("10.0.0.1", 53))

        assert inbound.sent == [(b"reply", CLIENT_A)]
        assert session.bytes_received == 5
        assert session.idle_for() < 1.0

    def test_reply_dropped_when_inbound_closed(self):
        inbound = MockDatagramTransport()
        inbound.close()
        protocol = SessionProtocol(CLIENT_A, inbound)

        protocol.datagram_received(b"reply", ("10.0.0.1", 53))

        assert inbound.sent == []

    def test_error_received_does_not_raise(self):
        protocol = SessionProtocol(CLIENT_A, MockDatagramTransport())

        protocol.error_received(ConnectionRefusedError())


# =============================================================================
# SessionTable Tests
# =============================================================================


class TestSessionTable:
    @pytest.mark.asyncio
    async def test_concurrent_first_packets_create_one_session(self):
        """Concurrent lookups for one client must share a single session."""
        table = SessionTable()
        created = []

        async def slow_factory(addr):
            await asyncio.sleep(0.01)
            session = make_session(addr)
            created.append(session)
            return session

        results = await asyncio.gather(*[table.get_or_create(CLIENT_A, slow_factory) for _ in range(20)])

        assert len(created) == 1
        assert len(table) == 1
        assert all(session is created[0] for session, _ in results)
        assert [was_created for _, was_created in results].count(True) == 1

    @pytest.mark.asyncio
    async def test_distinct_clients_get_distinct_sessions(self):
        table = SessionTable()

        async def factory(addr):
            return make_session(addr)

        a, _ = await table.get_or_create(CLIENT_A, factory)
        b, _ = await table.get_or_create(CLIENT_B, factory)

        assert a is not b
        assert sorted(table.addresses()) == sorted([CLIENT_A, CLIENT_B])
        assert CLIENT_A in table

    @pytest.mark.asyncio
    async def test_factory_error_leaves_table_unchanged(self):
        table = SessionTable()

        async def failing_factory(addr):
            raise OSError("no route")

        with pytest.raises(OSError):
            await table.get_or_create(CLIENT_A, failing_factory)

        assert len(table) == 0

    @pytest.mark.asyncio
    async def test_evict_idle_removes_only_stale(self):
        table = SessionTable()
        stale = make_session(CLIENT_A)
        fresh = make_session(CLIENT_B)
        stale.last_activity -= 100

        async def factory(addr):
            return stale if addr == CLIENT_A else fresh

        await table.get_or_create(CLIENT_A, factory)
        await table.get_or_create(CLIENT_B, factory)

        evicted = await table.evict_idle(30.0)

        assert evicted == [stale]
        assert stale.closed
        assert not fresh.closed
        assert CLIENT_A not in table
        assert table.get(CLIENT_B) is fresh

    @pytest.mark.asyncio
    async def test_remove(self):
        table = SessionTable()

        async def factory(addr):
            return make_session(addr)

        session, _ = await table.get_or_create(CLIENT_A, factory)

        assert await table.remove(CLIENT_A) is session
        assert session.closed
        assert await table.remove(CLIENT_A) is None

    @pytest.mark.asyncio
    async def test_clear_closes_everything(self):
        table = SessionTable()

        async def factory(addr):
            return make_session(addr)

        a, _ = await table.get_or_create(CLIENT_A, factory)
        b, _ = await table.get_or_create(CLIENT_B, factory)

        assert await table.clear() == 2
        assert len(table) == 0
        assert a.closed and b.closed
