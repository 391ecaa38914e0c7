"""PullPoint subscription session.

Owns the single live subscription handle of a device connection together
with its client-side termination deadline. Creating a new subscription
replaces the previous handle without tearing it down.

Calling these operations concurrently with a running event loop is a caller
error: the interleaving of subscription replacement is undefined. A lock
keeps each replacement atomic.
"""

import asyncio
import logging
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from ronin_onvif.exceptions import InvalidResponseError, NoActiveSubscriptionError
from ronin_onvif.services.onvif.models import (
    NotificationMessage,
    PullMessagesResult,
    RenewResult,
    Subscription,
    response_times,
)
from ronin_onvif.services.onvif.soap import (
    EVENTS_WSDL,
    WSN_B2,
    addressing_header,
    as_list,
    envelope,
    first,
    text_of,
)
from ronin_onvif.services.onvif.topics import EventCategory, categorize_event
from ronin_onvif.utils.timezone import parse_duration, utc_now

if TYPE_CHECKING:
    from ronin_onvif.services.onvif.client import ONVIFClient

logger = logging.getLogger(__name__)

DEFAULT_TERMINATION_TIME = "PT2M"
DEFAULT_PULL_TIMEOUT = "PT1M"
DEFAULT_MESSAGE_LIMIT = 10
# Seconds the HTTP timeout of a pull must exceed the server-side pull timeout
PULL_TIMEOUT_MARGIN = 10.0


def local_termination_time(
    current_time: datetime,
    termination_time: datetime,
    now: Optional[datetime] = None,
) -> datetime:
    """Translate a device-reported expiry onto the local clock.

    The skew between device and local clock is removed so the local clock
    alone decides when the subscription has expired.
    """
    now = now or utc_now()
    return termination_time - (current_time - now)


class SubscriptionSession:
    """Create, pull, renew and unsubscribe a PullPoint subscription."""

    def __init__(self, client: "ONVIFClient", message_limit: int = DEFAULT_MESSAGE_LIMIT):
        self.client = client
        self.message_limit = message_limit
        self.subscription: Optional[Subscription] = None
        self.termination_time: Optional[datetime] = None
        self.observed_categories: set[EventCategory] = set()
        self._lock = asyncio.Lock()

    @property
    def is_expired(self) -> bool:
        """True when there is no usable subscription on the local clock."""
        return (
            self.subscription is None
            or self.termination_time is None
            or utc_now() > self.termination_time
        )

    def update_termination_time(self, current_time: datetime, termination_time: datetime) -> None:
        self.termination_time = local_termination_time(current_time, termination_time)

    def _follow_up_envelope(self, subscription: Subscription, body: str) -> str:
        header = self.client.security_header() + addressing_header(
            subscription.reference_address, subscription.subscription_id
        )
        return envelope(body, header)

    def _require_subscription(self) -> Subscription:
        if self.subscription is None:
            raise NoActiveSubscriptionError()
        return self.subscription

    async def create_subscription(
        self,
        filter: Optional[str] = None,
        initial_termination_time: str = DEFAULT_TERMINATION_TIME,
    ) -> Subscription:
        """Create a PullPoint subscription and make it the current one.

        Args:
            filter: Optional topic filter expression
            initial_termination_time: ISO 8601 duration, e.g. ``PT2M``

        Raises:
            InvalidResponseError: If the reply has no subscription data
        """
        filter_xml = f"<Filter>{filter}</Filter>" if filter else ""
        data, _ = await self.client.request(
            f'<CreatePullPointSubscription xmlns="{EVENTS_WSDL}">'
            f"{filter_xml}"
            f"<InitialTerminationTime>{initial_termination_time}</InitialTerminationTime>"
            "</CreatePullPointSubscription>",
            service="events",
        )

        response = first(data.get("createPullPointSubscriptionResponse"))
        if not isinstance(response, dict):
            raise InvalidResponseError("CreatePullPointSubscription")

        reference = response.get("subscriptionReference")
        address = text_of(reference.get("address")) if isinstance(reference, dict) else None
        if not address:
            raise InvalidResponseError("CreatePullPointSubscription", "no subscription address")

        parameters = reference.get("referenceParameters")
        subscription_id = (
            text_of(parameters.get("subscriptionId")) if isinstance(parameters, dict) else None
        )

        current_time, termination_time = response_times(response)
        subscription = Subscription(
            reference_address=self.client.parse_url(address),
            subscription_id=subscription_id,
            current_time=current_time,
            termination_time=termination_time,
        )

        async with self._lock:
            self.subscription = subscription
            self.update_termination_time(current_time, termination_time)
        logger.info(
            f"Created PullPoint subscription on {self.client.host}: "
            f"{subscription.reference_address}"
        )
        return subscription

    async def pull_messages(
        self,
        timeout: str = DEFAULT_PULL_TIMEOUT,
        message_limit: Optional[int] = None,
    ) -> PullMessagesResult:
        """Pull buffered notifications from the current subscription.

        Every pulled topic is classified and recorded in
        ``observed_categories``, and the local termination deadline is
        recomputed from the reported times.

        Raises:
            NoActiveSubscriptionError: If no subscription exists
            InvalidResponseError: If the reply has no PullMessages data
        """
        subscription = self._require_subscription()
        limit = message_limit if message_limit is not None else self.message_limit
        # The device holds the request open for up to the pull timeout
        request_timeout = max(
            self.client.timeout, parse_duration(timeout).total_seconds() + PULL_TIMEOUT_MARGIN
        )

        data, _ = await self.client.request(
            self._follow_up_envelope(
                subscription,
                f'<PullMessages xmlns="{EVENTS_WSDL}">'
                f"<Timeout>{timeout}</Timeout>"
                f"<MessageLimit>{limit}</MessageLimit>"
                "</PullMessages>",
            ),
            url=subscription.reference_address,
            raw=True,
            timeout=request_timeout,
        )

        response = first(data.get("pullMessagesResponse"))
        if not isinstance(response, dict):
            raise InvalidResponseError("PullMessages")

        messages = [
            NotificationMessage.from_dict(raw)
            for raw in as_list(response.get("notificationMessage"))
        ]
        for message in messages:
            if message.topic:
                category = categorize_event(message.topic)
                if category != EventCategory.UNKNOWN:
                    self.observed_categories.add(category)

        current_time, termination_time = response_times(response)
        self.update_termination_time(current_time, termination_time)
        logger.debug(f"Pulled {len(messages)} message(s) from {self.client.host}")
        return PullMessagesResult(
            current_time=current_time,
            termination_time=termination_time,
            messages=messages,
        )

    async def renew(self, extension: str = DEFAULT_TERMINATION_TIME) -> RenewResult:
        """Extend the current subscription.

        Raises:
            NoActiveSubscriptionError: If no subscription exists
            InvalidResponseError: If the reply has no Renew data
        """
        subscription = self._require_subscription()
        data, _ = await self.client.request(
            self._follow_up_envelope(
                subscription,
                f'<Renew xmlns="{WSN_B2}"><TerminationTime>{extension}</TerminationTime></Renew>',
            ),
            url=subscription.reference_address,
            raw=True,
        )

        response = first(data.get("renewResponse"))
        if not isinstance(response, dict):
            raise InvalidResponseError("Renew")

        current_time, termination_time = response_times(response)
        self.update_termination_time(current_time, termination_time)
        return RenewResult(current_time=current_time, termination_time=termination_time)

    async def unsubscribe(self) -> None:
        """Best-effort unsubscribe; always clears the local subscription."""
        subscription = self.subscription
        if subscription is None:
            return

        try:
            await self.client.request(
                self._follow_up_envelope(subscription, f'<Unsubscribe xmlns="{WSN_B2}"/>'),
                url=subscription.reference_address,
                raw=True,
            )
            logger.debug(f"Unsubscribed from {subscription.reference_address}")
        except Exception as e:
            logger.debug(f"Unsubscribe failed for {subscription.reference_address}: {e}")
        finally:
            async with self._lock:
                if self.subscription is subscription:
                    self.subscription = None
                    self.termination_time = None
