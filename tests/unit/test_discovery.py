"""Tests for WS-Discovery probing."""

import asyncio
import socket
import xml.etree.ElementTree as ET
from unittest.mock import MagicMock, patch

import pytest

from ronin_onvif.exceptions import DiscoveryError
from ronin_onvif.services.onvif import ONVIFClient
from ronin_onvif.services.onvif.discovery import (
    MULTICAST_V4,
    DiscoveryService,
    _ProbeProtocol,
    build_probe,
    parse_probe_match,
)


def probe_match(
    urn: str = "urn:uuid:4d454930-0000-1000-8000-bcbac2a1b2c3",
    xaddrs: str = "http://169.254.10.20/onvif/device_service http://192.168.1.50/onvif/device_service",
    scopes: str = (
        "onvif://www.onvif.org/type/video_encoder "
        "onvif://www.onvif.org/name/Front%20Door "
        "onvif://www.onvif.org/hardware/IPC-123"
    ),
) -> bytes:
    xaddrs_element = f"<d:XAddrs>{xaddrs}</d:XAddrs>" if xaddrs else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://www.w3.org/2003/05/soap-envelope" '
        'xmlns:wsa="http://schemas.xmlsoap.org/ws/2004/08/addressing" '
        'xmlns:d="http://schemas.xmlsoap.org/ws/2005/04/discovery" '
        'xmlns:dn="http://www.onvif.org/ver10/network/wsdl">'
        "<SOAP-ENV:Header>"
        "<wsa:MessageID>uuid:reply</wsa:MessageID>"
        "<wsa:RelatesTo>uuid:probe</wsa:RelatesTo>"
        "</SOAP-ENV:Header>"
        "<SOAP-ENV:Body><d:ProbeMatches><d:ProbeMatch>"
        f"<wsa:EndpointReference><wsa:Address>{urn}</wsa:Address></wsa:EndpointReference>"
        "<d:Types>dn:NetworkVideoTransmitter</d:Types>"
        f"<d:Scopes>{scopes}</d:Scopes>"
        f"{xaddrs_element}"
        "<d:MetadataVersion>1</d:MetadataVersion>"
        "</d:ProbeMatch></d:ProbeMatches></SOAP-ENV:Body>"
        "</SOAP-ENV:Envelope>"
    ).encode("utf-8")


class TestBuildProbe:
    """Tests for the Probe message."""

    def test_probe_is_well_formed(self) -> None:
        payload = build_probe("1234")
        root = ET.fromstring(payload)
        assert root.tag.endswith("Envelope")
        assert b"urn:uuid:1234" in payload
        assert b"dn:NetworkVideoTransmitter" in payload

    def test_random_message_id(self) -> None:
        assert build_probe() != build_probe()


class TestParseProbeMatch:
    """Tests for parse_probe_match."""

    def test_parses_device(self) -> None:
        device = parse_probe_match(probe_match(), "192.168.1.50")

        assert device.urn == "urn:uuid:4d454930-0000-1000-8000-bcbac2a1b2c3"
        assert device.address == "192.168.1.50"
        assert len(device.xaddrs) == 2
        assert device.types == ["dn:NetworkVideoTransmitter"]
        assert device.metadata_version == "1"
        assert device.name == "Front Door"

    def test_prefers_xaddr_on_responder_ip(self) -> None:
        device = parse_probe_match(probe_match(), "192.168.1.50")
        assert device.service_url == "http://192.168.1.50/onvif/device_service"
        assert device.connection_kwargs() == {
            "host": "192.168.1.50",
            "port": 80,
            "path": "/onvif/device_service",
            "use_secure": False,
            "urn": device.urn,
        }

    def test_falls_back_to_first_xaddr(self) -> None:
        device = parse_probe_match(
            probe_match(xaddrs="https://10.0.0.9/onvif/device_service"), "192.168.1.77"
        )
        assert device.service_url == "https://10.0.0.9/onvif/device_service"
        kwargs = device.connection_kwargs()
        assert kwargs["port"] == 443
        assert kwargs["use_secure"] is True

    def test_missing_xaddrs(self) -> None:
        with pytest.raises(ValueError, match="No XAddrs"):
            parse_probe_match(probe_match(xaddrs=""), "192.168.1.50")

        device = parse_probe_match(probe_match(xaddrs=""), "192.168.1.50", resolve=False)
        assert device.xaddrs == []
        assert device.service_url is None
        with pytest.raises(ValueError):
            device.connection_kwargs()

    def test_not_probe_matches(self) -> None:
        payload = (
            '<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope">'
            "<s:Body><Hello/></s:Body></s:Envelope>"
        ).encode()
        with pytest.raises(ValueError, match="Wrong SOAP message"):
            parse_probe_match(payload, "192.168.1.50")

    def test_no_name_scope(self) -> None:
        device = parse_probe_match(probe_match(scopes="onvif://www.onvif.org/Profile/S"), "1.2.3.4")
        assert device.name is None

    def test_create_client(self) -> None:
        device = parse_probe_match(
            probe_match(xaddrs="http://192.168.1.50:8000/onvif/device_service"), "192.168.1.50"
        )

        client = device.create_client(username="admin", password="secret", timeout=30.0)

        assert isinstance(client, ONVIFClient)
        assert client.host == "192.168.1.50"
        assert client.port == 8000
        assert client.path == "/onvif/device_service"
        assert client.urn == device.urn
        assert client.username == "admin"
        assert client.timeout == 30.0
        assert not client.is_connected


class TestProbeProtocol:
    """Tests for reply collection."""

    def test_dedupes_by_urn(self) -> None:
        protocol = _ProbeProtocol(resolve=True)
        protocol.datagram_received(probe_match(), ("192.168.1.50", 3702))
        protocol.datagram_received(probe_match(), ("192.168.1.50", 3702))
        protocol.datagram_received(probe_match(urn="urn:uuid:other"), ("192.168.1.51", 3702))

        assert list(protocol.devices) == ["urn:uuid:4d454930-0000-1000-8000-bcbac2a1b2c3", "urn:uuid:other"]
        assert protocol.errors == []

    def test_collects_errors(self) -> None:
        protocol = _ProbeProtocol(resolve=True)
        protocol.datagram_received(b"not xml", ("192.168.1.60", 3702))
        protocol.error_received(OSError("network down"))

        assert protocol.devices == {}
        assert len(protocol.errors) == 2


class TestDiscoveryService:
    """Tests for DiscoveryService.probe with a fake UDP endpoint."""

    @staticmethod
    def fake_endpoint(replies: list[tuple[bytes, str]], calls: dict):
        transport = MagicMock()

        async def create_datagram_endpoint(factory, local_addr=None, family=0):
            protocol = factory()
            calls["local_addr"] = local_addr
            calls["family"] = family

            def sendto(data, addr):
                calls["target"] = addr
                calls["payload"] = data
                for payload, address in replies:
                    protocol.datagram_received(payload, (address, 3702))

            transport.sendto.side_effect = sendto
            return transport, protocol

        return transport, create_datagram_endpoint

    @pytest.mark.asyncio
    async def test_probe_returns_devices(self) -> None:
        calls: dict = {}
        transport, endpoint = self.fake_endpoint(
            [
                (probe_match(), "192.168.1.50"),
                (probe_match(), "192.168.1.50"),
                (b"garbage", "192.168.1.99"),
            ],
            calls,
        )
        loop = asyncio.get_running_loop()

        with patch.object(loop, "create_datagram_endpoint", new=endpoint):
            devices = await DiscoveryService(timeout=0.01).probe(message_id="abc")

        assert [d.address for d in devices] == ["192.168.1.50"]
        assert calls["target"] == MULTICAST_V4
        assert calls["family"] == socket.AF_INET
        assert calls["local_addr"] == ("0.0.0.0", 0)
        assert b"urn:uuid:abc" in calls["payload"]
        transport.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_raise_on_error(self) -> None:
        transport, endpoint = self.fake_endpoint([(b"garbage", "192.168.1.99")], {})
        loop = asyncio.get_running_loop()

        with patch.object(loop, "create_datagram_endpoint", new=endpoint):
            with pytest.raises(DiscoveryError) as exc_info:
                await DiscoveryService().probe(timeout=0.01, raise_on_error=True)

        assert len(exc_info.value.errors) == 1
        transport.close.assert_called_once()

    @pytest.mark.asyncio
    async def test_interface_and_port(self) -> None:
        calls: dict = {}
        _, endpoint = self.fake_endpoint([], calls)
        loop = asyncio.get_running_loop()

        with patch.object(loop, "create_datagram_endpoint", new=endpoint):
            devices = await DiscoveryService().probe(
                timeout=0.01, interface_address="192.168.1.2", listening_port=3703
            )

        assert devices == []
        assert calls["local_addr"] == ("192.168.1.2", 3703)

    @pytest.mark.asyncio
    async def test_discover_clients(self) -> None:
        _, endpoint = self.fake_endpoint(
            [
                (probe_match(), "192.168.1.50"),
                (probe_match(urn="urn:uuid:no-xaddrs", xaddrs=""), "192.168.1.51"),
            ],
            {},
        )
        loop = asyncio.get_running_loop()

        with patch.object(loop, "create_datagram_endpoint", new=endpoint):
            clients = await DiscoveryService().discover_clients(
                timeout=0.01, username="admin", password="secret"
            )

        assert [c.host for c in clients] == ["192.168.1.50"]
        assert clients[0].has_credentials
        assert clients[0].urn == "urn:uuid:4d454930-0000-1000-8000-bcbac2a1b2c3"
        for client in clients:
            await client.close()
