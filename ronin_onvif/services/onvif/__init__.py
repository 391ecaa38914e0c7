"""ONVIF protocol services for camera discovery and event subscription."""

from ronin_onvif.services.onvif.client import MediaProfile, ONVIFCapabilities, ONVIFClient
from ronin_onvif.services.onvif.discovery import DiscoveredDevice, DiscoveryService
from ronin_onvif.services.onvif.event_subscriber import Backoff, ONVIFEventSubscriber
from ronin_onvif.services.onvif.ptz import PTZPreset, PTZService, PTZStatus, PTZVector
from ronin_onvif.services.onvif.topics import EventCategory, categorize_event, parse_event_topic

__all__ = [
    "ONVIFClient",
    "MediaProfile",
    "ONVIFCapabilities",
    "ONVIFEventSubscriber",
    "Backoff",
    "PTZService",
    "PTZVector",
    "PTZPreset",
    "PTZStatus",
    "DiscoveryService",
    "DiscoveredDevice",
    "EventCategory",
    "categorize_event",
    "parse_event_topic",
]
