"""
Tests for the shared forwarder types and address helpers.
"""

import dataclasses
import logging
import socket

import pytest

pytest_plugins = ("pytest_asyncio",)

from portal.exceptions import BindError, ConfigurationError, PortalError
from portal.models.forward_types import ForwardingEndpoint, ForwardProtocol, LiveConnectionCounter
from portal.util.addresses import format_address, parse_address, resolve_address
from portal.util.logging_helper import format_hex, parse_level

# =============================================================================
# LiveConnectionCounter Tests
# =============================================================================


class TestLiveConnectionCounter:
    def test_starts_at_zero(self):
        assert LiveConnectionCounter().value == 0

    def test_increment_and_decrement(self):
        counter = LiveConnectionCounter()
        counter.increment()
        counter.increment()
        counter.decrement()

        assert counter.value == 1

    def test_never_negative(self):
        counter = LiveConnectionCounter()
        counter.decrement()
        counter.set(-5)

        assert counter.value == 0

    def test_set_overwrites(self):
        counter = LiveConnectionCounter(3)
        counter.set(7)

        assert int(counter) == 7

    def test_track_releases_on_error(self):
        """A failing flow must not leak its count."""
        counter = LiveConnectionCounter()

        with pytest.raises(RuntimeError):
            with counter.track():
                assert counter.value == 1
                raise RuntimeError("boom")

        assert counter.value == 0


# =============================================================================
# ForwardProtocol / ForwardingEndpoint Tests
# =============================================================================


class TestForwardProtocol:
    @pytest.mark.parametrize("tag", ["udp", "UDP", "Udp"])
    def test_parse_is_case_insensitive(self, tag):
        assert ForwardProtocol.parse(tag) is ForwardProtocol.UDP

    def test_parse_passes_members_through(self):
        assert ForwardProtocol.parse(ForwardProtocol.TCP) is ForwardProtocol.TCP

    def test_parse_unknown_raises(self):
        with pytest.raises(ConfigurationError):
            ForwardProtocol.parse("sctp")


class TestForwardingEndpoint:
    def test_describe(self):
        endpoint = ForwardingEndpoint("0.0.0.0:8080", "10.0.0.2:80")

        assert endpoint.describe(ForwardProtocol.TCP) == "0.0.0.0:8080 -> 10.0.0.2:80 (TCP)"

    def test_is_immutable(self):
        endpoint = ForwardingEndpoint("0.0.0.0:8080", "10.0.0.2:80")

        with pytest.raises(dataclasses.FrozenInstanceError):
            endpoint.src = "0.0.0.0:9090"


class TestExceptions:
    def test_bind_error_is_portal_error(self):
        error = BindError("127.0.0.1:80", OSError(98, "Address already in use"))

        assert isinstance(error, PortalError)
        assert "127.0.0.1:80" in str(error)
        assert error.reason.errno == 98


# =============================================================================
# Address Parsing Tests
# =============================================================================


class TestParseAddress:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("127.0.0.1:8080", ("127.0.0.1", 8080)),
            ("localhost:0", ("localhost", 0)),
            ("[::1]:53", ("::1", 53)),
            (" 0.0.0.0:65535 ", ("0.0.0.0", 65535)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_address(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["", "8080", ":8080", "host:", "host:http", "host:70000", "::1:53", "[]:53"],
    )
    def test_invalid(self, text):
        with pytest.raises(ConfigurationError):
            parse_address(text)

    def test_format_round_trips_ipv6(self):
        assert format_address(("::1", 53, 0, 0)) == "[::1]:53"
        assert format_address(("127.0.0.1", 80)) == "127.0.0.1:80"


class TestResolveAddress:
    @pytest.mark.asyncio
    async def test_resolves_literal(self):
        sockaddr = await resolve_address("127.0.0.1:8080", socket.SOCK_DGRAM)

        assert sockaddr[:2] == ("127.0.0.1", 8080)

    @pytest.mark.asyncio
    async def test_unresolvable_host(self):
        with pytest.raises(ConfigurationError):
            await resolve_address("no-such-host.invalid:80")

    @pytest.mark.asyncio
    async def test_overlong_label_is_configuration_error(self):
        # IDNA rejects labels over 63 characters before any lookup
        with pytest.raises(ConfigurationError, match="Cannot resolve"):
            await resolve_address("a" * 70 + ".com:80")

    @pytest.mark.asyncio
    async def test_malformed_text(self):
        with pytest.raises(ConfigurationError):
            await resolve_address("not an address")


# =============================================================================
# Logging Helper Tests
# =============================================================================


class TestLoggingHelpers:
    def test_format_hex_truncates_long_payloads(self):
        assert format_hex(b"\x00\xff", limit=4) == "00 ff"
        assert format_hex(bytes(range(6)), limit=4) == "00 01 02 03 ..."

    def test_parse_level(self):
        assert parse_level("debug") == logging.DEBUG
        assert parse_level("bogus") == logging.INFO
