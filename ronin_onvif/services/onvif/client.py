"""ONVIF client wrapper for camera communication.

Provides async methods for:
- Connecting to ONVIF-enabled cameras and learning their service addresses
- Querying device information, clock and capabilities
- Discovering media profiles, RTSP stream URLs and snapshot URLs
- PTZ control through ``client.ptz``
- Event subscriptions through ``client.events``

Device, media and PTZ calls go through ``onvif.ONVIFCamera`` service proxies.
The event service uses the raw SOAP transport since follow-up calls must
carry the subscription's addressing headers.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlparse

import httpx
import onvif
from onvif import ONVIFCamera

from ronin_onvif.exceptions import InvalidResponseError, NotConnectedError
from ronin_onvif.services.onvif.auth import compute_digest
from ronin_onvif.services.onvif.event_subscriber import ONVIFEventSubscriber
from ronin_onvif.services.onvif.ptz import PTZService
from ronin_onvif.services.onvif.soap import DEVICE_WSDL, SOAP_ENV, envelope, security_header
from ronin_onvif.services.onvif.transport import SOAPTransport
from ronin_onvif.utils.timezone import to_utc_isoformat, utc_now

logger = logging.getLogger(__name__)

DigestFunc = Callable[[str, str, str], tuple[str, str]]


@dataclass
class MediaProfile:
    """Represents an ONVIF media profile with stream information."""

    token: str
    name: str
    rtsp_url: str
    encoding: Optional[str] = None
    resolution: Optional[tuple[int, int]] = None
    fps: Optional[float] = None


@dataclass
class ONVIFCapabilities:
    """Camera ONVIF capabilities summary."""

    device_info: dict = field(default_factory=dict)
    profiles: list[MediaProfile] = field(default_factory=list)
    services: dict[str, str] = field(default_factory=dict)
    has_events: bool = False
    has_analytics: bool = False
    has_ptz: bool = False


def default_wsdl_dir() -> Path:
    """WSDL files shipped in the onvif package's wsdl subdirectory."""
    return Path(onvif.__file__).parent / "wsdl"


def service_name(namespace: str) -> Optional[str]:
    """Short name for an ONVIF service namespace.

    ``http://www.onvif.org/ver10/events/wsdl`` maps to ``events``, the
    ver20 media service to ``media2`` and PTZ to ``PTZ``. Vendor namespaces
    and sub-interfaces (``.../events/wsdl/PullPointSubscription``) map to
    None.
    """
    parsed = urlparse(namespace)
    if parsed.hostname != "www.onvif.org":
        return None
    segments = parsed.path.strip("/").split("/")
    if len(segments) != 3 or segments[2] != "wsdl":
        return None
    version, name = segments[0], segments[1]
    if name == "media" and version == "ver20":
        return "media2"
    if name == "ptz":
        return "PTZ"
    return name


def sanitize_rtsp_url(url: str) -> str:
    """Remove credentials from RTSP URL if present."""
    try:
        parsed = urlparse(url)
        if parsed.username or parsed.password:
            netloc = parsed.hostname
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            return parsed._replace(netloc=netloc).geturl()
    except ValueError:
        pass
    return url


def _uri_of(response: Any, operation: str) -> str:
    # Media2 replies unwrap to the URI string, Media1 to a MediaUri object
    uri = response if isinstance(response, str) else getattr(response, "Uri", None)
    if not uri:
        raise InvalidResponseError(operation, "no Uri")
    return str(uri)


def _media_profile(profile: Any, encoder: Any, rtsp_url: str) -> MediaProfile:
    resolution = None
    fps = None
    encoding = None
    if encoder is not None:
        res = getattr(encoder, "Resolution", None)
        if res is not None and res.Width and res.Height:
            resolution = (int(res.Width), int(res.Height))
        rate = getattr(encoder, "RateControl", None)
        if rate is not None and getattr(rate, "FrameRateLimit", None):
            fps = float(rate.FrameRateLimit)
        if getattr(encoder, "Encoding", None):
            encoding = str(encoder.Encoding)

    token = str(profile.token)
    return MediaProfile(
        token=token,
        name=getattr(profile, "Name", None) or token,
        rtsp_url=sanitize_rtsp_url(rtsp_url),
        encoding=encoding,
        resolution=resolution,
        fps=fps,
    )


class ONVIFClient:
    """Async ONVIF client for a single camera.

    Example usage:
        client = ONVIFClient("192.168.1.100", 80, "admin", "password")
        if await client.connect():
            client.events.on("event", print)
            client.events.start_event_loop()
            ...
            await client.close()
    """

    def __init__(
        self,
        host: str,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        use_secure: bool = False,
        verify_tls: bool = False,
        path: str = "/onvif/device_service",
        timeout: float = 120.0,
        preserve_address: bool = False,
        urn: Optional[str] = None,
        wsdl_dir: Optional[Path] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        camera: Optional[ONVIFCamera] = None,
        digest_func: DigestFunc = compute_digest,
    ):
        """Initialize ONVIF client.

        Args:
            host: Camera IP address or hostname
            port: ONVIF service port (defaults to 80, or 443 with use_secure)
            username: Camera username for authentication
            password: Camera password for authentication
            use_secure: Use https for event service requests
            verify_tls: Verify the device certificate when use_secure is set
            path: Device service path
            timeout: Request timeout in seconds; pulls extend it past the
                pull timeout when needed
            preserve_address: Force configured host/port onto every address
                the device reports (devices behind NAT or proxies)
            urn: Endpoint reference reported by discovery
            wsdl_dir: Path to WSDL files directory (optional, uses the files
                shipped with the onvif package)
            http_client: Preconfigured httpx client for the event service
            camera: Preconfigured ONVIFCamera (created on connect otherwise)
            digest_func: Computes (digest, nonce) for the security header
        """
        self.host = host
        self.port = port or (443 if use_secure else 80)
        self.username = username or ""
        self.password = password or ""
        self.use_secure = use_secure
        self.path = path
        self.timeout = timeout
        self.preserve_address = preserve_address
        self.urn = urn
        self.wsdl_dir = wsdl_dir
        self.uri: dict[str, str] = {}
        self.device_info: dict = {}
        self.profiles: list[MediaProfile] = []
        self._camera = camera
        self._services: dict[str, Any] = {}
        self._digest_func = digest_func
        self._time_shift: Optional[timedelta] = None
        self._connected = False
        self.transport = SOAPTransport(
            host=host,
            port=self.port,
            base_path=path,
            uri_map=self.uri,
            timeout=timeout,
            use_secure=use_secure,
            verify_tls=verify_tls,
            http_client=http_client,
        )
        self.events = ONVIFEventSubscriber(self)
        self.ptz = PTZService(self)

    async def __aenter__(self) -> "ONVIFClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # -------------------- Service proxies --------------------

    @property
    def camera(self) -> ONVIFCamera:
        """The ONVIFCamera behind device, media and PTZ calls."""
        if self._camera is None:
            raise NotConnectedError(self.host)
        return self._camera

    def _create_camera(self) -> ONVIFCamera:
        kwargs = {
            "host": self.host,
            "port": self.port,
            "user": self.username,
            "passwd": self.password,
            "wsdl_dir": str(self.wsdl_dir or default_wsdl_dir()),
            "adjust_time": True,
        }
        return ONVIFCamera(**kwargs)

    async def service(self, name: str) -> Any:
        """Service proxy (``devicemgmt``, ``media``, ``media2``, ``ptz``).

        Proxies are created once per connection.
        """
        if name not in self._services:
            create = getattr(self.camera, f"create_{name}_service")
            self._services[name] = await create()
        return self._services[name]

    # -------------------- Raw SOAP (event service) --------------------

    @property
    def has_credentials(self) -> bool:
        return bool(self.username and self.password)

    def device_time(self) -> datetime:
        """Current time on the device's clock, as far as we know it."""
        return utc_now() + (self._time_shift or timedelta(0))

    def security_header(self) -> str:
        """WS-Security block, or empty string when no credentials are set."""
        if not self.has_credentials:
            return ""
        created = to_utc_isoformat(self.device_time().replace(microsecond=0))
        digest, nonce = self._digest_func(self.username, self.password, created)
        return security_header(self.username, digest, nonce, created)

    async def request(
        self,
        body: str,
        service: Optional[str] = None,
        url: Optional[str] = None,
        raw: bool = False,
        timeout: Optional[float] = None,
    ) -> tuple[dict, str]:
        """Send a request to the device.

        Args:
            body: Body fragment, or a complete envelope when ``raw`` is set
            service: Named service (``events``, ``device`` ...)
            url: Explicit endpoint overriding ``service``
            raw: Send ``body`` as-is without wrapping it in an envelope
            timeout: Per-request timeout in seconds (client default if None)

        Returns:
            Tuple of (decoded body dict, raw response text)
        """
        if not body:
            raise ValueError("There is no body in request options")
        full_body = body if raw else envelope(body, self.security_header())
        return await self.transport.request(full_body, service=service, url=url, timeout=timeout)

    def parse_url(self, address: str) -> str:
        """Normalize an address reported by the device.

        With ``preserve_address`` the configured host and port replace the
        reported ones, since devices behind NAT often self-report an
        unreachable address.
        """
        parsed = urlparse(address)
        if not parsed.scheme or not parsed.hostname:
            raise ValueError(f"Invalid URL: {address!r}")

        if self.preserve_address and (
            parsed.hostname != self.host or parsed.port != self.port
        ):
            netloc = f"{self.host}:{self.port}"
            if parsed.username:
                credentials = parsed.username
                if parsed.password:
                    credentials = f"{credentials}:{parsed.password}"
                netloc = f"{credentials}@{netloc}"
            return parsed._replace(netloc=netloc).geturl()
        return address

    # -------------------- Device management --------------------

    def _setup_system_date_and_time(self, data: dict) -> datetime:
        response = data.get("getSystemDateAndTimeResponse")
        system = response.get("systemDateAndTime") if isinstance(response, dict) else None
        if not isinstance(system, dict):
            raise InvalidResponseError("GetSystemDateAndTime", "systemDateAndTime not found")

        date_time = system.get("UTCDateTime") or system.get("localDateTime")
        if not isinstance(date_time, dict):
            now = utc_now()
            if self._time_shift is None:
                self._time_shift = timedelta(0)
            return now

        date = date_time.get("date") or {}
        time = date_time.get("time") or {}
        try:
            device_time = datetime(
                int(date["year"]),
                int(date["month"]),
                int(date["day"]),
                int(time.get("hour", 0)),
                int(time.get("minute", 0)),
                int(time.get("second", 0)),
                tzinfo=timezone.utc,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidResponseError(
                "GetSystemDateAndTime", "year, month and day are required"
            ) from e

        if self._time_shift is None:
            self._time_shift = device_time - utc_now()
        return device_time

    async def get_system_date_and_time(self) -> datetime:
        """Read the device clock and learn the clock shift used for digests.

        The request is sent unauthenticated first since the shift is not yet
        known; some devices only answer authenticated requests, in which
        case it is retried with credentials.
        """
        body = f'<GetSystemDateAndTime xmlns="{DEVICE_WSDL}"/>'
        unauthenticated = (
            f'<s:Envelope xmlns:s="{SOAP_ENV}">'
            '<s:Body xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
            'xmlns:xsd="http://www.w3.org/2001/XMLSchema">'
            f"{body}</s:Body></s:Envelope>"
        )
        try:
            data, xml = await self.request(unauthenticated, raw=True)
        except Exception as e:
            raw_text = getattr(e, "raw", "") or ""
            if "sender not authorized" not in raw_text.lower():
                raise
            logger.debug(f"{self.host} requires authenticated GetSystemDateAndTime")
            data, _ = await self.request(body)
            return self._setup_system_date_and_time(data)

        try:
            return self._setup_system_date_and_time(data)
        except InvalidResponseError:
            if "sender not authorized" not in (xml or "").lower():
                raise
            data, _ = await self.request(body)
            return self._setup_system_date_and_time(data)

    def _add_service_address(self, namespace: str, xaddr: str) -> None:
        try:
            address = self.parse_url(xaddr)
        except ValueError:
            logger.debug(f"Ignoring invalid XAddr for {namespace}: {xaddr}")
            return
        # ONVIFCamera builds its proxies from xaddrs
        self.camera.xaddrs[namespace] = address
        name = service_name(namespace)
        if name:
            self.uri[name] = address

    async def get_services(self) -> dict[str, str]:
        """Call GetServices and add every ONVIF service to the address map.

        Picks up services GetCapabilities does not report, such as Media2.
        """
        devicemgmt = await self.service("devicemgmt")
        services = await devicemgmt.GetServices({"IncludeCapability": False})
        for s in services or []:
            namespace = getattr(s, "Namespace", None)
            xaddr = getattr(s, "XAddr", None)
            if namespace and xaddr and service_name(namespace):
                self._add_service_address(namespace, xaddr)
        return dict(self.uri)

    async def connect(self, timeout: float = 10.0) -> bool:
        """Connect to camera and learn its service addresses.

        Args:
            timeout: Connection timeout in seconds

        Returns:
            True if connection successful, False otherwise
        """
        try:
            await asyncio.wait_for(self._connect(), timeout=timeout)
            self._connected = True
            logger.info(f"ONVIF connected to {self.host}:{self.port}")
            return True
        except asyncio.TimeoutError:
            logger.warning(f"ONVIF connection timeout: {self.host}:{self.port}")
            return False
        except Exception as e:
            logger.warning(f"ONVIF connection failed to {self.host}:{self.port}: {e}")
            return False

    async def _connect(self) -> None:
        await self.get_system_date_and_time()

        if self._camera is None:
            self._camera = self._create_camera()
        # GetCapabilities addresses
        await self._camera.update_xaddrs()
        for namespace, xaddr in list(self._camera.xaddrs.items()):
            if xaddr:
                self._add_service_address(namespace, xaddr)

        try:
            await self.get_services()
        except Exception as e:
            logger.debug(f"GetServices failed on {self.host}, using GetCapabilities: {e}")

    async def get_device_info(self) -> dict:
        """Get device information (manufacturer, model, firmware, serial).

        Returns:
            Dictionary with device information
        """
        devicemgmt = await self.service("devicemgmt")
        info = await devicemgmt.GetDeviceInformation()
        self.device_info = {
            "manufacturer": getattr(info, "Manufacturer", None) or "",
            "model": getattr(info, "Model", None) or "",
            "firmware": getattr(info, "FirmwareVersion", None) or "",
            "serial": getattr(info, "SerialNumber", None) or "",
            "hardware_id": getattr(info, "HardwareId", None) or "",
        }
        return self.device_info

    # -------------------- Media --------------------

    async def get_media_profiles(self) -> list[MediaProfile]:
        """Get available media profiles with RTSP URLs.

        Media2 (Profile T) is tried first when the device offers it, then
        Media1 (Profile S). Profiles whose stream URI cannot be resolved
        are skipped.
        """
        profiles: list[MediaProfile] = []
        if "media2" in self.uri:
            try:
                profiles = await self._get_media2_profiles()
            except Exception as e:
                logger.debug(f"Media2 service not available on {self.host}: {e}")
        if not profiles:
            profiles = await self._get_media1_profiles()
        self.profiles = profiles
        return profiles

    async def _get_media2_profiles(self) -> list[MediaProfile]:
        media2 = await self.service("media2")
        profiles = []
        for p in await media2.GetProfiles({"Type": ["All"]}) or []:
            try:
                response = await media2.GetStreamUri({"Protocol": "RTSP", "ProfileToken": p.token})
                rtsp_url = _uri_of(response, "GetStreamUri")
            except Exception as e:
                logger.debug(f"Failed to get stream URI for profile {p.token}: {e}")
                continue
            configurations = getattr(p, "Configurations", None)
            profiles.append(
                _media_profile(p, getattr(configurations, "VideoEncoder", None), rtsp_url)
            )
        return profiles

    async def _get_media1_profiles(self) -> list[MediaProfile]:
        media = await self.service("media")
        profiles = []
        for p in await media.GetProfiles() or []:
            try:
                rtsp_url = await self.get_stream_uri(p.token)
            except Exception as e:
                logger.debug(f"Failed to get stream URI for profile {p.token}: {e}")
                continue
            profiles.append(
                _media_profile(p, getattr(p, "VideoEncoderConfiguration", None), rtsp_url)
            )
        return profiles

    async def get_stream_uri(self, profile_token: str) -> str:
        """Get the RTSP URI for a media profile (Media1)."""
        media = await self.service("media")
        response = await media.GetStreamUri(
            {
                "StreamSetup": {"Stream": "RTP-Unicast", "Transport": {"Protocol": "RTSP"}},
                "ProfileToken": profile_token,
            }
        )
        return _uri_of(response, "GetStreamUri")

    def resolve_profile_token(self, profile_token: Optional[str] = None) -> str:
        """The given token, else the first loaded media profile's."""
        if profile_token:
            return profile_token
        if self.profiles:
            return self.profiles[0].token
        raise ValueError("No profile token given and no media profiles loaded")

    async def get_snapshot_uri(self, profile_token: Optional[str] = None) -> str:
        """Get the JPEG snapshot URI for a media profile."""
        token = self.resolve_profile_token(profile_token)
        name = "media2" if "media2" in self.uri else "media"
        media = await self.service(name)
        response = await media.GetSnapshotUri({"ProfileToken": token})
        return _uri_of(response, "GetSnapshotUri")

    async def get_capabilities(self) -> ONVIFCapabilities:
        """Get a camera summary including profiles and feature flags."""
        device_info = {}
        profiles: list[MediaProfile] = []
        try:
            device_info = await self.get_device_info()
        except Exception as e:
            logger.error(f"Failed to get device info from {self.host}: {e}")
        if "media" in self.uri or "media2" in self.uri:
            try:
                profiles = await self.get_media_profiles()
            except Exception as e:
                logger.error(f"Failed to get media profiles from {self.host}: {e}")

        return ONVIFCapabilities(
            device_info=device_info,
            profiles=profiles,
            services=dict(self.uri),
            has_events="events" in self.uri,
            has_analytics="analytics" in self.uri,
            has_ptz="PTZ" in self.uri,
        )

    async def close(self) -> None:
        """Stop event polling and release the HTTP clients."""
        await self.events.shutdown()
        await self.transport.close()
        if self._camera is not None:
            try:
                await self._camera.close()
            except Exception as e:
                logger.debug(f"Error closing ONVIF camera {self.host}: {e}")
        self._services.clear()
        self._connected = False
        logger.debug(f"ONVIF disconnected from {self.host}")

    @property
    def is_connected(self) -> bool:
        """Check if client is connected."""
        return self._connected
