"""Request and response models for the ONVIF HTTP API."""

from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class ONVIFProfile(BaseModel):
    """Media profile as returned by GetProfiles plus its stream URI."""

    model_config = ConfigDict(from_attributes=True)

    token: str = Field(..., description="Profile token")
    name: str = Field(..., description="Profile name reported by the device")
    rtsp_url: str = Field(..., description="Stream URI with credentials removed")
    encoding: Optional[str] = Field(None, description="Video encoder, e.g. H264 or H265")
    resolution: Optional[str] = Field(None, description="WIDTHxHEIGHT, e.g. 3840x2160")
    fps: Optional[float] = Field(None, description="Encoder frame rate limit")

    @field_validator("resolution", mode="before")
    @classmethod
    def format_resolution(cls, v: Any) -> Optional[str]:
        if isinstance(v, (tuple, list)) and len(v) == 2:
            return f"{v[0]}x{v[1]}"
        return v


class ONVIFDeviceInfo(BaseModel):
    """GetDeviceInformation fields."""

    manufacturer: Optional[str] = None
    model: Optional[str] = None
    firmware: Optional[str] = None
    serial: Optional[str] = None
    hardware_id: Optional[str] = None


class ONVIFEventCapabilities(BaseModel):
    """Subset of the event service GetServiceCapabilities reply."""

    model_config = ConfigDict(from_attributes=True)

    pull_point_support: Optional[bool] = Field(
        None, validation_alias=AliasChoices("pull_point_support", "ws_pull_point_support")
    )
    max_pull_points: Optional[int] = None
    max_notification_producers: Optional[int] = None


class ONVIFProbeRequest(BaseModel):
    """Connection parameters for a single device probe."""

    host: str = Field(..., description="Device IP or hostname")
    onvif_port: int = Field(80, ge=1, le=65535, description="Device service HTTP port")
    username: Optional[str] = Field(None, description="WS-Security username")
    password: Optional[str] = Field(None, description="WS-Security password")
    timeout: float = Field(10.0, ge=1.0, le=60.0, description="Connect timeout in seconds")


class ONVIFProbeResponse(BaseModel):
    """Outcome of probing one device."""

    success: bool
    host: str
    device_info: ONVIFDeviceInfo = Field(default_factory=ONVIFDeviceInfo)
    profiles: list[ONVIFProfile] = Field(default_factory=list)
    has_events: bool = Field(False, description="Device exposes an event service")
    has_analytics: bool = Field(False, description="Device exposes an analytics service")
    has_ptz: bool = Field(False, description="Device exposes a PTZ service")
    event_capabilities: Optional[ONVIFEventCapabilities] = None
    detection_types: list[str] = Field(
        default_factory=list, description="Detection categories advertised in the TopicSet"
    )
    error: Optional[str] = None


class ONVIFDiscoverRequest(BaseModel):
    """Request to run a WS-Discovery probe."""

    timeout: float = Field(5.0, ge=0.5, le=30.0, description="Collection window in seconds")


class ONVIFDiscoveredDevice(BaseModel):
    """A device that answered the discovery probe."""

    model_config = ConfigDict(from_attributes=True)

    urn: str
    address: str
    name: Optional[str] = None
    service_url: Optional[str] = None
    xaddrs: list[str] = Field(default_factory=list)
    scopes: list[str] = Field(default_factory=list)


class ONVIFDiscoverResponse(BaseModel):
    """Devices collected during one discovery window."""

    devices: list[ONVIFDiscoveredDevice]
