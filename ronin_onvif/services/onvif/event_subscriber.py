"""ONVIF event subscription service.

Drives the create -> pull -> renew cycle of a PullPoint subscription for a
single camera and publishes every notification on an event channel. The
loop never exits because of an error; only ``stop_event_loop`` ends it.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, AsyncIterator, Callable, Optional

from ronin_onvif.exceptions import is_retryable_error
from ronin_onvif.services.onvif.capabilities import (
    get_all_supported_detection_types,
    get_supported_detection_types,
)
from ronin_onvif.services.onvif.channel import EventChannel, Listener, Signal, SignalType
from ronin_onvif.services.onvif.models import (
    EventProperties,
    EventServiceCapabilities,
    PullMessagesResult,
    RenewResult,
    Subscription,
)
from ronin_onvif.services.onvif.soap import EVENTS_WSDL
from ronin_onvif.services.onvif.subscription import (
    DEFAULT_MESSAGE_LIMIT,
    DEFAULT_PULL_TIMEOUT,
    DEFAULT_TERMINATION_TIME,
    SubscriptionSession,
)
from ronin_onvif.services.onvif.topics import EventCategory
from ronin_onvif.utils.timezone import format_duration, parse_duration

if TYPE_CHECKING:
    from ronin_onvif.services.onvif.client import ONVIFClient

logger = logging.getLogger(__name__)


def _duration(value: str | timedelta, name: str) -> str:
    """Validate a positive ISO 8601 duration, formatting timedeltas."""
    if isinstance(value, timedelta):
        value = format_duration(value)
    if parse_duration(value) <= timedelta(0):
        raise ValueError(f"{name} must be a positive duration, got {value!r}")
    return value


@dataclass
class Backoff:
    """Geometric retry delay, reset to the floor on any success."""

    floor_ms: float = 10.0
    ceiling_ms: float = 2 * 60 * 1000.0
    factor: float = 1.5
    current_ms: float = field(init=False)

    def __post_init__(self):
        self.current_ms = self.floor_ms

    def reset(self) -> None:
        self.current_ms = self.floor_ms

    def grow(self) -> None:
        self.current_ms = min(self.current_ms * self.factor, self.ceiling_ms)

    @property
    def seconds(self) -> float:
        return self.current_ms / 1000.0


class ONVIFEventSubscriber:
    """Manages PullPoint event subscription for a single camera.

    ONVIF events are received via PullPoint subscription, a polling-based
    approach where we repeatedly request pending events from the camera.

    Example usage:
        client.events.on("event", handle_message)
        client.events.on("error", handle_error)
        client.events.start_event_loop(message_limit=20)
        ...
        client.events.stop_event_loop()
    """

    def __init__(
        self,
        client: "ONVIFClient",
        message_limit: int = DEFAULT_MESSAGE_LIMIT,
        pull_timeout: str | timedelta = DEFAULT_PULL_TIMEOUT,
        initial_termination_time: str | timedelta = DEFAULT_TERMINATION_TIME,
        renew_extension: str | timedelta = DEFAULT_TERMINATION_TIME,
        backoff: Optional[Backoff] = None,
        max_consecutive_renew_failures: int = 3,
        channel: Optional[EventChannel] = None,
    ):
        """Initialize the subscriber.

        Args:
            client: Device client used for all requests
            message_limit: Default per-pull message cap
            pull_timeout: Server-side PullMessages timeout (ISO 8601 duration or
                timedelta); pull requests wait at least this long for a reply
            initial_termination_time: Lifetime requested on creation
            renew_extension: Lifetime requested on each renew
            backoff: Retry delay policy for transient network failures
            max_consecutive_renew_failures: Drop and recreate the subscription
                after this many renew failures in a row (0 disables)
            channel: Signal channel; a private one is created when omitted

        Raises:
            ValueError: If a duration is not a positive ISO 8601 duration
        """
        self.client = client
        self.session = SubscriptionSession(client, message_limit=message_limit)
        self.pull_timeout = _duration(pull_timeout, "pull_timeout")
        self.initial_termination_time = _duration(
            initial_termination_time, "initial_termination_time"
        )
        self.renew_extension = _duration(renew_extension, "renew_extension")
        self.backoff = backoff or Backoff()
        self.max_consecutive_renew_failures = max_consecutive_renew_failures
        self.channel = channel or EventChannel()
        self.auto_renew = True
        self.event_properties: Optional[EventProperties] = None

        self._running = False
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._unsubscribe_task: Optional[asyncio.Task] = None
        self._renew_failures = 0

    # -------------------- Consumers --------------------

    def on(self, signal_type: SignalType | str, listener: Listener) -> Callable[[], None]:
        """Attach an ``event`` or ``error`` callback; returns a detach function."""
        return self.channel.on(signal_type, listener)

    def off(self, signal_type: SignalType | str, listener: Listener) -> None:
        self.channel.off(signal_type, listener)

    def subscribe(self) -> AsyncIterator[Signal]:
        """Iterate over signals emitted from now on."""
        return self.channel.subscribe()

    # -------------------- Event service --------------------

    async def get_service_capabilities(self) -> EventServiceCapabilities:
        """Get event service capabilities."""
        data, _ = await self.client.request(
            f'<GetServiceCapabilities xmlns="{EVENTS_WSDL}"/>', service="events"
        )
        response = data.get("getServiceCapabilitiesResponse")
        capabilities = response.get("capabilities") if isinstance(response, dict) else None
        return EventServiceCapabilities.from_dict(capabilities)

    async def get_event_properties(self) -> EventProperties:
        """Fetch advertised event properties and cache them."""
        data, _ = await self.client.request(
            f'<GetEventProperties xmlns="{EVENTS_WSDL}"/>', service="events"
        )
        self.event_properties = EventProperties.from_dict(
            data.get("getEventPropertiesResponse")
        )
        return self.event_properties

    async def get_supported_detection_types(self) -> list[EventCategory]:
        """Advertised detection categories, fetching properties if needed."""
        properties = self.event_properties or await self.get_event_properties()
        return get_supported_detection_types(properties)

    async def get_all_supported_detection_types(self) -> list[EventCategory]:
        """Advertised plus observed detection categories."""
        properties = self.event_properties or await self.get_event_properties()
        return get_all_supported_detection_types(properties, self.get_observed_categories())

    # -------------------- Subscription operations --------------------

    async def create_subscription(
        self,
        filter: Optional[str] = None,
        initial_termination_time: Optional[str] = None,
    ) -> Subscription:
        return await self.session.create_subscription(
            filter=filter,
            initial_termination_time=initial_termination_time or self.initial_termination_time,
        )

    async def pull_messages(
        self,
        timeout: Optional[str] = None,
        message_limit: Optional[int] = None,
    ) -> PullMessagesResult:
        return await self.session.pull_messages(
            timeout=timeout or self.pull_timeout,
            message_limit=message_limit,
        )

    async def renew(self, extension: Optional[str] = None) -> RenewResult:
        return await self.session.renew(extension or self.renew_extension)

    async def unsubscribe(self) -> None:
        await self.session.unsubscribe()

    # -------------------- Event loop --------------------

    def start_event_loop(
        self,
        message_limit: Optional[int] = None,
        auto_renew: bool = True,
    ) -> None:
        """Start polling in the background; no-op if already running.

        ``message_limit`` replaces the per-pull cap; when omitted the cap
        given at construction (or by an earlier start) is kept. Must be
        called from within a running asyncio event loop.
        """
        if self._running:
            return

        self._running = True
        self._generation += 1
        self._renew_failures = 0
        if message_limit is not None:
            self.session.message_limit = message_limit
        self.auto_renew = auto_renew
        self._task = asyncio.create_task(self._run_event_loop(self._generation))
        logger.info(f"Event loop started for {self.client.host}")

    def stop_event_loop(self) -> None:
        """Stop polling and unsubscribe in the background.

        The loop exits at its next iteration boundary; an in-flight pull is
        not interrupted. Unsubscription is only scheduled, not awaited.
        Outside a running asyncio loop nothing can be scheduled, so the
        subscription is only dropped locally and left to expire on the
        device.
        """
        self._running = False
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop, dropping subscription for {self.client.host} locally")
            self.session.subscription = None
            self.session.termination_time = None
            return
        self._unsubscribe_task = asyncio.create_task(self.session.unsubscribe())
        logger.info(f"Event loop stopping for {self.client.host}")

    async def shutdown(self) -> None:
        """Stop the loop, cancel any in-flight request and unsubscribe."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._unsubscribe_task:
            await self._unsubscribe_task
            self._unsubscribe_task = None
        await self.session.unsubscribe()

    @property
    def is_running(self) -> bool:
        """Check if the event loop is running."""
        return self._running

    @property
    def current_subscription(self) -> Optional[Subscription]:
        return self.session.subscription

    def get_observed_categories(self) -> list[EventCategory]:
        """Categories actually received so far."""
        return list(self.session.observed_categories)

    def has_observed_category(self, category: EventCategory | str) -> bool:
        """Whether ``category`` was received; unknown names are never observed."""
        try:
            return EventCategory(category) in self.session.observed_categories
        except ValueError:
            return False

    def clear_observed_categories(self) -> None:
        self.session.observed_categories.clear()

    async def _run_event_loop(self, generation: int) -> None:
        """Main event loop."""
        while self._running and generation == self._generation:
            try:
                if self.session.is_expired:
                    await self.create_subscription()
                    self.backoff.reset()

                result = await self.pull_messages(message_limit=self.session.message_limit)
                self.backoff.reset()
            except Exception as e:
                await self._handle_failure(e)
                continue

            for message in result.messages:
                await self.channel.emit(SignalType.EVENT, message)

            if self.auto_renew:
                await self._try_renew()

        logger.info(f"Event loop stopped for {self.client.host}")

    async def _try_renew(self) -> None:
        try:
            await self.renew()
            self._renew_failures = 0
        except Exception as e:
            self._renew_failures += 1
            logger.warning(
                f"Failed to renew subscription for {self.client.host} "
                f"({self._renew_failures} in a row): {e}"
            )
            limit = self.max_consecutive_renew_failures
            if limit and self._renew_failures >= limit:
                logger.warning(f"Dropping subscription for {self.client.host} after renew failures")
                self._renew_failures = 0
                await self.session.unsubscribe()

    async def _handle_failure(self, error: Exception) -> None:
        await self.channel.emit(SignalType.ERROR, error)

        if is_retryable_error(error):
            delay = self.backoff.current_ms
            logger.warning(
                f"Event loop network error for {self.client.host}, "
                f"retrying in {delay:.0f} ms: {error!r}"
            )
            await asyncio.sleep(self.backoff.seconds)
            self.backoff.grow()
        else:
            logger.error(f"Event loop error for {self.client.host}, recreating subscription: {error!r}")
            await self.session.unsubscribe()
