"""ONVIF API endpoints for device discovery and probing."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from ronin_onvif.dependencies import ClientFactory, get_client_factory, get_discovery_service
from ronin_onvif.schemas.onvif import (
    ONVIFDeviceInfo,
    ONVIFDiscoveredDevice,
    ONVIFDiscoverRequest,
    ONVIFDiscoverResponse,
    ONVIFEventCapabilities,
    ONVIFProbeRequest,
    ONVIFProbeResponse,
    ONVIFProfile,
)
from ronin_onvif.services.onvif import DiscoveryService, ONVIFClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onvif", tags=["onvif"])


@router.post("/discover", response_model=ONVIFDiscoverResponse)
async def discover_devices(
    request: ONVIFDiscoverRequest,
    discovery: DiscoveryService = Depends(get_discovery_service),
) -> ONVIFDiscoverResponse:
    """Multicast a WS-Discovery probe and list the devices that answered."""
    devices = await discovery.probe(timeout=request.timeout)
    return ONVIFDiscoverResponse(
        devices=[ONVIFDiscoveredDevice.model_validate(d) for d in devices]
    )


async def _read_event_service(
    client: ONVIFClient,
) -> tuple[Optional[ONVIFEventCapabilities], list[str]]:
    """Event service capabilities and advertised detection types.

    Event service failures are logged and leave the probe successful.
    """
    try:
        service_caps = await client.events.get_service_capabilities()
        detection_types = await client.events.get_supported_detection_types()
    except Exception as e:
        logger.warning(f"Failed to read event service of {client.host}: {e}")
        return None, []
    return (
        ONVIFEventCapabilities.model_validate(service_caps),
        [category.value for category in detection_types],
    )


@router.post("/probe", response_model=ONVIFProbeResponse)
async def probe_camera(
    request: ONVIFProbeRequest,
    client_factory: ClientFactory = Depends(get_client_factory),
) -> ONVIFProbeResponse:
    """Connect to one device and report what it offers.

    The response carries device information, media profiles with RTSP
    URLs, service flags and, when an event service exists, its
    PullPoint capabilities and the detection categories in its TopicSet.
    """
    client = client_factory(
        host=request.host,
        port=request.onvif_port,
        username=request.username,
        password=request.password,
    )

    try:
        if not await client.connect(timeout=request.timeout):
            return ONVIFProbeResponse(
                success=False,
                host=request.host,
                error=f"Could not connect to ONVIF service at {request.host}:{request.onvif_port}",
            )

        capabilities = await client.get_capabilities()
        event_capabilities, detection_types = (
            await _read_event_service(client) if capabilities.has_events else (None, [])
        )
        return ONVIFProbeResponse(
            success=True,
            host=request.host,
            device_info=ONVIFDeviceInfo(**capabilities.device_info),
            profiles=[ONVIFProfile.model_validate(p) for p in capabilities.profiles],
            has_events=capabilities.has_events,
            has_analytics=capabilities.has_analytics,
            has_ptz=capabilities.has_ptz,
            event_capabilities=event_capabilities,
            detection_types=detection_types,
        )
    except Exception as e:
        logger.error(f"ONVIF probe failed for {request.host}: {e}")
        return ONVIFProbeResponse(success=False, host=request.host, error=str(e))
    finally:
        await client.close()
