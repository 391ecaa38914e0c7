"""Tests for PTZ control."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from ronin_onvif.exceptions import InvalidResponseError
from ronin_onvif.services.onvif import MediaProfile, ONVIFClient, PTZVector


@pytest.fixture
def ptz(onvif_client: ONVIFClient, zeep_camera: MagicMock) -> MagicMock:
    """PTZ proxy of a client whose first loaded profile is Profile_1."""
    onvif_client.profiles = [
        MediaProfile(token="Profile_1", name="main", rtsp_url="rtsp://cam/1"),
        MediaProfile(token="Profile_2", name="sub", rtsp_url="rtsp://cam/2"),
    ]
    proxy = MagicMock()
    for operation in (
        "GetNodes",
        "GetConfigurations",
        "GetPresets",
        "GotoPreset",
        "SetPreset",
        "RemovePreset",
        "GotoHomePosition",
        "SetHomePosition",
        "GetStatus",
        "AbsoluteMove",
        "RelativeMove",
        "ContinuousMove",
        "Stop",
    ):
        setattr(proxy, operation, AsyncMock(return_value=None))
    zeep_camera.create_ptz_service.return_value = proxy
    return proxy


def position(pan: float, tilt: float, zoom: float) -> SimpleNamespace:
    return SimpleNamespace(
        PanTilt=SimpleNamespace(x=pan, y=tilt),
        Zoom=SimpleNamespace(x=zoom),
    )


class TestPTZVector:
    """Tests for request vectors."""

    def test_pan_tilt_and_zoom(self) -> None:
        assert PTZVector(pan=0.5, tilt=-0.2, zoom=0.1).to_request() == {
            "PanTilt": {"x": 0.5, "y": -0.2},
            "Zoom": {"x": 0.1},
        }

    def test_missing_axis_is_zero(self) -> None:
        assert PTZVector(pan=0.5).to_request() == {"PanTilt": {"x": 0.5, "y": 0.0}}

    def test_zoom_only(self) -> None:
        """A zoom-only vector leaves pan/tilt untouched."""
        assert PTZVector(zoom=1.0).to_request() == {"Zoom": {"x": 1.0}}

    def test_from_response(self) -> None:
        vector = PTZVector.from_response(position(0.1, 0.2, 0.3))
        assert vector == PTZVector(pan=0.1, tilt=0.2, zoom=0.3)
        assert PTZVector.from_response(None) is None


class TestPresets:
    """Tests for preset operations."""

    @pytest.mark.asyncio
    async def test_get_presets(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        ptz.GetPresets.return_value = [
            SimpleNamespace(token="1", Name="Gate", PTZPosition=position(0.1, 0.2, 0.0)),
            SimpleNamespace(token="2", Name=None, PTZPosition=None),
        ]

        presets = await onvif_client.ptz.get_presets()

        assert list(presets) == ["1", "2"]
        assert presets["1"].name == "Gate"
        assert presets["1"].position == PTZVector(pan=0.1, tilt=0.2, zoom=0.0)
        assert presets["2"].position is None
        ptz.GetPresets.assert_awaited_once_with({"ProfileToken": "Profile_1"})

    @pytest.mark.asyncio
    async def test_goto_preset_with_speed(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        await onvif_client.ptz.goto_preset("1", profile_token="Profile_2", speed=PTZVector(pan=1, tilt=1))

        ptz.GotoPreset.assert_awaited_once_with(
            {
                "ProfileToken": "Profile_2",
                "PresetToken": "1",
                "Speed": {"PanTilt": {"x": 1, "y": 1}},
            }
        )

    @pytest.mark.asyncio
    async def test_set_preset(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        ptz.SetPreset.return_value = "7"

        token = await onvif_client.ptz.set_preset("Driveway")

        assert token == "7"
        ptz.SetPreset.assert_awaited_once_with(
            {"ProfileToken": "Profile_1", "PresetName": "Driveway"}
        )

    @pytest.mark.asyncio
    async def test_set_preset_overwrite(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        ptz.SetPreset.return_value = SimpleNamespace(PresetToken="3")

        assert await onvif_client.ptz.set_preset("Porch", preset_token="3") == "3"
        assert ptz.SetPreset.await_args.args[0]["PresetToken"] == "3"

    @pytest.mark.asyncio
    async def test_set_preset_missing_token(
        self, onvif_client: ONVIFClient, ptz: MagicMock
    ) -> None:
        with pytest.raises(InvalidResponseError, match="SetPreset"):
            await onvif_client.ptz.set_preset("Driveway")

    @pytest.mark.asyncio
    async def test_remove_preset(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        ptz.GetPresets.return_value = [SimpleNamespace(token="1", Name="Gate", PTZPosition=None)]
        await onvif_client.ptz.get_presets()

        await onvif_client.ptz.remove_preset("1")

        ptz.RemovePreset.assert_awaited_once_with({"ProfileToken": "Profile_1", "PresetToken": "1"})
        assert onvif_client.ptz.presets == {}

    @pytest.mark.asyncio
    async def test_home_position(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        await onvif_client.ptz.set_home_position()
        await onvif_client.ptz.goto_home_position(speed=PTZVector(zoom=0.5))

        ptz.SetHomePosition.assert_awaited_once_with({"ProfileToken": "Profile_1"})
        ptz.GotoHomePosition.assert_awaited_once_with(
            {"ProfileToken": "Profile_1", "Speed": {"Zoom": {"x": 0.5}}}
        )


class TestMovement:
    """Tests for move, stop and status operations."""

    @pytest.mark.asyncio
    async def test_continuous_move(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        await onvif_client.ptz.continuous_move(PTZVector(pan=-0.5), timeout=2)

        ptz.ContinuousMove.assert_awaited_once_with(
            {
                "ProfileToken": "Profile_1",
                "Velocity": {"PanTilt": {"x": -0.5, "y": 0.0}},
                "Timeout": timedelta(seconds=2),
            }
        )

    @pytest.mark.asyncio
    async def test_continuous_move_without_timeout(
        self, onvif_client: ONVIFClient, ptz: MagicMock
    ) -> None:
        await onvif_client.ptz.continuous_move(PTZVector(zoom=0.2))

        assert "Timeout" not in ptz.ContinuousMove.await_args.args[0]

    @pytest.mark.asyncio
    async def test_absolute_and_relative_move(
        self, onvif_client: ONVIFClient, ptz: MagicMock
    ) -> None:
        await onvif_client.ptz.absolute_move(PTZVector(pan=0, tilt=0, zoom=0))
        await onvif_client.ptz.relative_move(PTZVector(tilt=0.1), speed=PTZVector(pan=0.5, tilt=0.5))

        ptz.AbsoluteMove.assert_awaited_once_with(
            {
                "ProfileToken": "Profile_1",
                "Position": {"PanTilt": {"x": 0, "y": 0}, "Zoom": {"x": 0}},
            }
        )
        ptz.RelativeMove.assert_awaited_once_with(
            {
                "ProfileToken": "Profile_1",
                "Translation": {"PanTilt": {"x": 0.0, "y": 0.1}},
                "Speed": {"PanTilt": {"x": 0.5, "y": 0.5}},
            }
        )

    @pytest.mark.asyncio
    async def test_stop(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        await onvif_client.ptz.stop()
        await onvif_client.ptz.stop(zoom=False)

        assert [c.args[0] for c in ptz.Stop.await_args_list] == [
            {"ProfileToken": "Profile_1", "PanTilt": True, "Zoom": True},
            {"ProfileToken": "Profile_1", "PanTilt": True, "Zoom": False},
        ]

    @pytest.mark.asyncio
    async def test_get_status(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        utc_time = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        ptz.GetStatus.return_value = SimpleNamespace(
            Position=position(0.25, -0.5, 0.75),
            MoveStatus=SimpleNamespace(PanTilt="MOVING", Zoom="IDLE"),
            Error=None,
            UtcTime=utc_time,
        )

        status = await onvif_client.ptz.get_status()

        assert status.position == PTZVector(pan=0.25, tilt=-0.5, zoom=0.75)
        assert status.pan_tilt_status == "MOVING"
        assert status.zoom_status == "IDLE"
        assert status.error is None
        assert status.utc_time == utc_time

    @pytest.mark.asyncio
    async def test_get_status_missing(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        with pytest.raises(InvalidResponseError, match="GetStatus"):
            await onvif_client.ptz.get_status()

    @pytest.mark.asyncio
    async def test_profile_required(self, onvif_client: ONVIFClient, ptz: MagicMock) -> None:
        onvif_client.profiles = []

        with pytest.raises(ValueError):
            await onvif_client.ptz.stop()
        ptz.Stop.assert_not_awaited()


class TestNodes:
    """Tests for node and configuration listings."""

    @pytest.mark.asyncio
    async def test_nodes_and_configurations(
        self, onvif_client: ONVIFClient, ptz: MagicMock
    ) -> None:
        node = SimpleNamespace(token="PTZNode_1", Name="Dome", HomeSupported=True)
        configuration = SimpleNamespace(token="PTZConf_1", NodeToken="PTZNode_1")
        ptz.GetNodes.return_value = [node]
        ptz.GetConfigurations.return_value = [configuration]

        assert await onvif_client.ptz.get_nodes() == {"PTZNode_1": node}
        assert await onvif_client.ptz.get_configurations() == {"PTZConf_1": configuration}
        ptz.GetNodes.assert_awaited_once_with()
