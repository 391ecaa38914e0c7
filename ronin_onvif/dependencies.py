"""Factories wiring settings into ONVIF service objects."""

from pathlib import Path
from typing import Callable, Optional

from ronin_onvif.config import Settings, get_settings
from ronin_onvif.services.onvif import Backoff, DiscoveryService, ONVIFClient, ONVIFEventSubscriber

ClientFactory = Callable[..., ONVIFClient]


def build_client(
    settings: Settings,
    host: Optional[str] = None,
    port: Optional[int] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    **overrides,
) -> ONVIFClient:
    """Create an ONVIFClient whose event subscriber follows the settings.

    Explicit arguments take precedence over the configured defaults.
    """
    host = host or settings.host
    if not host:
        raise ValueError("No ONVIF host configured")

    options = {
        "use_secure": settings.use_secure,
        "verify_tls": settings.verify_tls,
        "path": settings.device_path,
        "timeout": settings.timeout_seconds,
        "preserve_address": settings.preserve_address,
        "wsdl_dir": Path(settings.wsdl_dir) if settings.wsdl_dir else None,
        **overrides,
    }
    client = ONVIFClient(
        host=host,
        port=port or settings.port,
        username=username if username is not None else settings.username,
        password=password if password is not None else settings.password,
        **options,
    )
    client.events = ONVIFEventSubscriber(
        client,
        message_limit=settings.message_limit,
        pull_timeout=settings.pull_timeout,
        initial_termination_time=settings.initial_termination_time,
        renew_extension=settings.renew_extension,
        backoff=Backoff(
            floor_ms=settings.reconnect_floor_ms,
            ceiling_ms=settings.reconnect_ceiling_ms,
            factor=settings.reconnect_factor,
        ),
        max_consecutive_renew_failures=settings.max_consecutive_renew_failures,
    )
    return client


def get_client_factory() -> ClientFactory:
    """FastAPI dependency returning a client factory bound to the settings."""
    settings = get_settings()

    def factory(**kwargs) -> ONVIFClient:
        return build_client(settings, **kwargs)

    return factory


def get_discovery_service() -> DiscoveryService:
    """FastAPI dependency returning a fresh discovery service."""
    return DiscoveryService(timeout=get_settings().discovery_timeout_seconds)
