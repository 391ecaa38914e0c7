"""PTZ (pan/tilt/zoom) control through the device's PTZ service.

Every operation addresses a media profile. When no profile token is given
the first profile loaded by ``get_media_profiles`` is used.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Optional, Union

from ronin_onvif.exceptions import InvalidResponseError
from ronin_onvif.utils.timezone import to_datetime

if TYPE_CHECKING:
    from ronin_onvif.services.onvif.client import ONVIFClient

logger = logging.getLogger(__name__)


def _float(value: Any) -> Optional[float]:
    return None if value is None else float(value)


@dataclass
class PTZVector:
    """Pan/tilt/zoom values; unset axes are left out of requests."""

    pan: Optional[float] = None
    tilt: Optional[float] = None
    zoom: Optional[float] = None

    def to_request(self) -> dict:
        vector: dict = {}
        if self.pan is not None or self.tilt is not None:
            vector["PanTilt"] = {"x": self.pan or 0.0, "y": self.tilt or 0.0}
        if self.zoom is not None:
            vector["Zoom"] = {"x": self.zoom}
        return vector

    @classmethod
    def from_response(cls, value: Any) -> Optional["PTZVector"]:
        if value is None:
            return None
        pan_tilt = getattr(value, "PanTilt", None)
        zoom = getattr(value, "Zoom", None)
        return cls(
            pan=_float(getattr(pan_tilt, "x", None)),
            tilt=_float(getattr(pan_tilt, "y", None)),
            zoom=_float(getattr(zoom, "x", None)),
        )


@dataclass
class PTZPreset:
    token: str
    name: Optional[str] = None
    position: Optional[PTZVector] = None


@dataclass
class PTZStatus:
    """Position and movement state reported by GetStatus."""

    position: Optional[PTZVector] = None
    pan_tilt_status: Optional[str] = None
    zoom_status: Optional[str] = None
    error: Optional[str] = None
    utc_time: Optional[datetime] = None


Speed = Optional[PTZVector]


class PTZService:
    """PTZ operations for one camera, reached as ``client.ptz``.

    Example usage:
        await client.get_media_profiles()
        presets = await client.ptz.get_presets()
        await client.ptz.goto_preset(next(iter(presets)))
        await client.ptz.continuous_move(PTZVector(pan=0.5), timeout=2)
        await client.ptz.stop()
    """

    def __init__(self, client: "ONVIFClient"):
        self.client = client
        self.nodes: dict[str, Any] = {}
        self.configurations: dict[str, Any] = {}
        self.presets: dict[str, PTZPreset] = {}

    async def _call(self, operation: str, params: Optional[dict] = None) -> Any:
        ptz = await self.client.service("ptz")
        method = getattr(ptz, operation)
        return await (method(params) if params is not None else method())

    def _request(
        self, profile_token: Optional[str], speed: Speed = None, **fields: Any
    ) -> dict:
        params = {"ProfileToken": self.client.resolve_profile_token(profile_token)}
        params.update(fields)
        if speed is not None:
            params["Speed"] = speed.to_request()
        return params

    async def get_nodes(self) -> dict[str, Any]:
        """PTZ nodes keyed by token."""
        nodes = await self._call("GetNodes")
        self.nodes = {str(node.token): node for node in nodes or []}
        return self.nodes

    async def get_configurations(self) -> dict[str, Any]:
        """PTZ configurations keyed by token."""
        configurations = await self._call("GetConfigurations")
        self.configurations = {str(c.token): c for c in configurations or []}
        return self.configurations

    async def get_presets(self, profile_token: Optional[str] = None) -> dict[str, PTZPreset]:
        """Presets available for the profile, keyed by preset token."""
        presets = await self._call("GetPresets", self._request(profile_token))
        self.presets = {}
        for p in presets or []:
            token = str(p.token)
            self.presets[token] = PTZPreset(
                token=token,
                name=getattr(p, "Name", None),
                position=PTZVector.from_response(getattr(p, "PTZPosition", None)),
            )
        return self.presets

    async def goto_preset(
        self, preset_token: str, profile_token: Optional[str] = None, speed: Speed = None
    ) -> None:
        await self._call(
            "GotoPreset", self._request(profile_token, speed, PresetToken=preset_token)
        )

    async def set_preset(
        self,
        preset_name: str,
        preset_token: Optional[str] = None,
        profile_token: Optional[str] = None,
    ) -> str:
        """Save the current position as a preset.

        Without ``preset_token`` a new preset is created; with it the
        existing preset is overwritten.

        Returns:
            Token of the saved preset
        """
        fields = {"PresetName": preset_name}
        if preset_token:
            fields["PresetToken"] = preset_token
        response = await self._call("SetPreset", self._request(profile_token, **fields))
        token = response if isinstance(response, str) else getattr(response, "PresetToken", None)
        if not token:
            raise InvalidResponseError("SetPreset", "no PresetToken")
        return str(token)

    async def remove_preset(self, preset_token: str, profile_token: Optional[str] = None) -> None:
        await self._call("RemovePreset", self._request(profile_token, PresetToken=preset_token))
        self.presets.pop(preset_token, None)

    async def goto_home_position(
        self, profile_token: Optional[str] = None, speed: Speed = None
    ) -> None:
        await self._call("GotoHomePosition", self._request(profile_token, speed))

    async def set_home_position(self, profile_token: Optional[str] = None) -> None:
        await self._call("SetHomePosition", self._request(profile_token))

    async def get_status(self, profile_token: Optional[str] = None) -> PTZStatus:
        """Current position and movement state of the PTZ unit."""
        status = await self._call("GetStatus", self._request(profile_token))
        if status is None:
            raise InvalidResponseError("GetStatus", "no PTZStatus")

        move_status = getattr(status, "MoveStatus", None)
        pan_tilt_status = getattr(move_status, "PanTilt", None)
        zoom_status = getattr(move_status, "Zoom", None)
        return PTZStatus(
            position=PTZVector.from_response(getattr(status, "Position", None)),
            pan_tilt_status=None if pan_tilt_status is None else str(pan_tilt_status),
            zoom_status=None if zoom_status is None else str(zoom_status),
            error=getattr(status, "Error", None),
            utc_time=to_datetime(getattr(status, "UtcTime", None)),
        )

    async def absolute_move(
        self, position: PTZVector, profile_token: Optional[str] = None, speed: Speed = None
    ) -> None:
        await self._call(
            "AbsoluteMove", self._request(profile_token, speed, Position=position.to_request())
        )

    async def relative_move(
        self, translation: PTZVector, profile_token: Optional[str] = None, speed: Speed = None
    ) -> None:
        await self._call(
            "RelativeMove",
            self._request(profile_token, speed, Translation=translation.to_request()),
        )

    async def continuous_move(
        self,
        velocity: PTZVector,
        profile_token: Optional[str] = None,
        timeout: Union[float, timedelta, None] = None,
    ) -> None:
        """Start moving at ``velocity`` until ``stop`` or the timeout.

        Args:
            velocity: Speed per axis, -1.0 to 1.0 in the default space
            profile_token: Media profile (first loaded profile if None)
            timeout: Seconds or timedelta after which the device stops
        """
        fields: dict[str, Any] = {"Velocity": velocity.to_request()}
        if timeout:
            fields["Timeout"] = (
                timeout if isinstance(timeout, timedelta) else timedelta(seconds=timeout)
            )
        await self._call("ContinuousMove", self._request(profile_token, **fields))

    async def stop(
        self, profile_token: Optional[str] = None, pan_tilt: bool = True, zoom: bool = True
    ) -> None:
        """Stop ongoing pan/tilt and/or zoom movement."""
        await self._call("Stop", self._request(profile_token, PanTilt=pan_tilt, Zoom=zoom))
        logger.debug(f"PTZ stop sent to {self.client.host}")
