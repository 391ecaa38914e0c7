"""WS-Discovery probe for ONVIF network video transmitters.

``DiscoveryService`` is a plain constructible object: each ``probe`` call
opens its own UDP socket, multicasts one Probe, collects ProbeMatch replies
for a bounded window and returns them as a list.
"""

import asyncio
import logging
import socket
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from ronin_onvif.exceptions import DiscoveryError
from ronin_onvif.services.onvif.client import ONVIFClient
from ronin_onvif.services.onvif.soap import as_list, parse_soap, text_of

logger = logging.getLogger(__name__)

MULTICAST_V4 = ("239.255.255.250", 3702)
MULTICAST_V6 = ("ff02::c", 3702)

PROBE_TEMPLATE = (
    '<Envelope xmlns="http://www.w3.org/2003/05/soap-envelope" '
    'xmlns:dn="http://www.onvif.org/ver10/network/wsdl">'
    "<Header>"
    '<wsa:MessageID xmlns:wsa="http://schemas.xmlsoap.org/ws/2004/08/addressing">{message_id}</wsa:MessageID>'
    '<wsa:To xmlns:wsa="http://schemas.xmlsoap.org/ws/2004/08/addressing">'
    "urn:schemas-xmlsoap-org:ws:2005:04:discovery</wsa:To>"
    '<wsa:Action xmlns:wsa="http://schemas.xmlsoap.org/ws/2004/08/addressing">'
    "http://schemas.xmlsoap.org/ws/2005/04/discovery/Probe</wsa:Action>"
    "</Header>"
    "<Body>"
    '<Probe xmlns="http://schemas.xmlsoap.org/ws/2005/04/discovery" '
    'xmlns:xsd="http://www.w3.org/2001/XMLSchema" '
    'xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance">'
    "<Types>dn:NetworkVideoTransmitter</Types>"
    "<Scopes />"
    "</Probe>"
    "</Body>"
    "</Envelope>"
)


@dataclass
class DiscoveredDevice:
    """A device that answered the discovery probe."""

    urn: str
    address: str
    xaddrs: list[str] = field(default_factory=list)
    scopes: list[str] = field(default_factory=list)
    types: list[str] = field(default_factory=list)
    metadata_version: Optional[str] = None

    @property
    def service_url(self) -> Optional[str]:
        """The XAddr on the responder's own IP, else the first one."""
        for xaddr in self.xaddrs:
            if urlparse(xaddr).hostname == self.address:
                return xaddr
        return self.xaddrs[0] if self.xaddrs else None

    @property
    def name(self) -> Optional[str]:
        """Device name from the ``onvif://www.onvif.org/name/...`` scope."""
        for scope in self.scopes:
            if "/name/" in scope:
                return scope.rsplit("/name/", 1)[1].replace("%20", " ")
        return None

    def connection_kwargs(self) -> dict[str, Any]:
        """Host, port and path for building an ONVIFClient."""
        url = self.service_url
        if not url:
            raise ValueError(f"No XAddrs found for {self.address}")
        parsed = urlparse(url)
        use_secure = parsed.scheme == "https"
        return {
            "host": parsed.hostname,
            "port": parsed.port or (443 if use_secure else 80),
            "path": parsed.path or "/onvif/device_service",
            "use_secure": use_secure,
            "urn": self.urn,
        }

    def create_client(self, **kwargs) -> ONVIFClient:
        """Build an ONVIFClient for this device.

        Keyword arguments (credentials, timeouts ...) are passed through and
        override the discovered connection settings.
        """
        return ONVIFClient(**{**self.connection_kwargs(), **kwargs})


def build_probe(message_id: Optional[str] = None) -> bytes:
    """Build a WS-Discovery Probe for NetworkVideoTransmitter devices."""
    return PROBE_TEMPLATE.format(message_id=f"urn:uuid:{message_id or uuid.uuid4()}").encode(
        "utf-8"
    )


def parse_probe_match(payload: bytes, address: str, resolve: bool = True) -> Optional[DiscoveredDevice]:
    """Decode one ProbeMatch datagram.

    Returns None for replies without an endpoint address.

    Raises:
        ValueError: If the datagram is not a ProbeMatches message, or when
            ``resolve`` is set and the device lists no XAddrs
    """
    body, xml = parse_soap(payload.decode("utf-8", errors="replace"))
    matches = body.get("probeMatches")
    if not isinstance(matches, dict):
        raise ValueError(f"Wrong SOAP message from {address}: {xml[:200]}")

    match = next((m for m in as_list(matches.get("probeMatch")) if isinstance(m, dict)), None)
    if match is None:
        return None

    reference = match.get("endpointReference")
    urn = text_of(reference.get("address")) if isinstance(reference, dict) else None
    if not urn:
        return None

    xaddrs = (text_of(match.get("XAddrs")) or "").split()
    if resolve and not xaddrs:
        raise ValueError(f"No XAddrs found for {address}")

    return DiscoveredDevice(
        urn=urn,
        address=address,
        xaddrs=xaddrs,
        scopes=(text_of(match.get("scopes")) or "").split(),
        types=(text_of(match.get("types")) or "").split(),
        metadata_version=text_of(match.get("metadataVersion")),
    )


class _ProbeProtocol(asyncio.DatagramProtocol):
    def __init__(self, resolve: bool):
        self.resolve = resolve
        self.devices: dict[str, DiscoveredDevice] = {}
        self.errors: list[Exception] = []

    def datagram_received(self, data: bytes, addr) -> None:
        address = addr[0]
        try:
            device = parse_probe_match(data, address, resolve=self.resolve)
        except Exception as e:
            logger.debug(f"Invalid discovery reply from {address}: {e}")
            self.errors.append(e)
            return
        if device is None or device.urn in self.devices:
            return
        self.devices[device.urn] = device
        logger.info(f"Discovered ONVIF device {device.urn} at {address}")

    def error_received(self, exc: Exception) -> None:
        logger.debug(f"Discovery socket error: {exc}")
        self.errors.append(exc)


class DiscoveryService:
    """Finds ONVIF devices on the local network."""

    def __init__(self, timeout: float = 5.0):
        """Initialize discovery.

        Args:
            timeout: Default collection window in seconds
        """
        self.timeout = timeout

    async def probe(
        self,
        timeout: Optional[float] = None,
        resolve: bool = True,
        message_id: Optional[str] = None,
        interface_address: Optional[str] = None,
        listening_port: int = 0,
        ipv6: bool = False,
        raise_on_error: bool = False,
    ) -> list[DiscoveredDevice]:
        """Multicast a Probe and collect replies.

        Args:
            timeout: Collection window in seconds (defaults to the service's)
            resolve: Require each device to list a service address
            message_id: WS-Discovery message id (random when omitted)
            interface_address: Local address to bind, selecting the interface
            listening_port: Local UDP port to listen on (0 = ephemeral)
            ipv6: Probe over IPv6 instead of IPv4
            raise_on_error: Raise DiscoveryError if any reply was invalid

        Returns:
            Devices deduplicated by endpoint address, in arrival order
        """
        loop = asyncio.get_running_loop()
        family = socket.AF_INET6 if ipv6 else socket.AF_INET
        bind_host = interface_address or ("::" if ipv6 else "0.0.0.0")
        target = MULTICAST_V6 if ipv6 else MULTICAST_V4

        transport, protocol = await loop.create_datagram_endpoint(
            lambda: _ProbeProtocol(resolve),
            local_addr=(bind_host, listening_port),
            family=family,
        )
        try:
            transport.sendto(build_probe(message_id), target)
            await asyncio.sleep(self.timeout if timeout is None else timeout)
        finally:
            transport.close()

        if protocol.errors and raise_on_error:
            raise DiscoveryError(protocol.errors)
        if protocol.errors:
            logger.warning(f"Discovery finished with {len(protocol.errors)} invalid reply(ies)")
        return list(protocol.devices.values())

    async def discover_clients(
        self,
        timeout: Optional[float] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        **client_kwargs,
    ) -> list[ONVIFClient]:
        """Probe and build an unconnected ONVIFClient per resolved device.

        Every device gets the same credentials; call ``connect`` on each
        client before use.
        """
        devices = await self.probe(timeout=timeout, resolve=True)
        return [
            device.create_client(username=username, password=password, **client_kwargs)
            for device in devices
        ]
