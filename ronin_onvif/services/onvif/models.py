"""Data types for ONVIF event subscriptions and notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ronin_onvif.services.onvif.soap import as_list, text_of
from ronin_onvif.utils.timezone import to_datetime, utc_now


@dataclass
class Subscription:
    """One live PullPoint subscription on the device."""

    reference_address: str
    current_time: datetime
    termination_time: datetime
    subscription_id: Optional[str] = None


@dataclass
class RenewResult:
    """Device times reported by a Renew call."""

    current_time: datetime
    termination_time: datetime


@dataclass
class SimpleItem:
    """A generic (name, value) payload pair."""

    name: str
    value: Any

    @classmethod
    def from_dict(cls, raw: Any) -> "SimpleItem":
        if isinstance(raw, SimpleItem):
            return raw
        if not isinstance(raw, dict):
            return cls(name="", value=raw)
        return cls(name=str(raw.get("name") or ""), value=raw.get("value"))


def _simple_items(section: Any) -> Optional[list[SimpleItem]]:
    if not isinstance(section, dict) or "simpleItem" not in section:
        return None
    return [SimpleItem.from_dict(item) for item in as_list(section.get("simpleItem"))]


@dataclass
class NotificationMessage:
    """One event instance delivered by a pull."""

    topic: str
    dialect: Optional[str] = None
    utc_time: Optional[datetime] = None
    property_operation: Optional[str] = None
    source: Optional[list[SimpleItem]] = None
    key: Optional[list[SimpleItem]] = None
    data: Optional[list[SimpleItem]] = None
    producer_address: Optional[str] = None
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, raw: Any) -> "NotificationMessage":
        """Build a message from a decoded ``NotificationMessage`` element."""
        if not isinstance(raw, dict):
            return cls(topic=text_of(raw) or "")

        topic_value = raw.get("topic")
        dialect = topic_value.get("dialect") if isinstance(topic_value, dict) else None

        # Payload is wrapped as Message/Message in the wire format
        message = raw.get("message")
        if isinstance(message, dict) and isinstance(message.get("message"), dict):
            message = message["message"]
        if not isinstance(message, dict):
            message = {}

        producer = raw.get("producerReference")
        producer_address = (
            text_of(producer.get("address")) if isinstance(producer, dict) else None
        )

        return cls(
            topic=text_of(topic_value) or "",
            dialect=dialect,
            utc_time=to_datetime(message.get("utcTime")),
            property_operation=message.get("propertyOperation"),
            source=_simple_items(message.get("source")),
            key=_simple_items(message.get("key")),
            data=_simple_items(message.get("data")),
            producer_address=producer_address,
            raw=raw,
        )


@dataclass
class PullMessagesResult:
    """Outcome of one PullMessages call."""

    current_time: datetime
    termination_time: datetime
    messages: list[NotificationMessage] = field(default_factory=list)


@dataclass
class EventProperties:
    """Event properties advertised by GetEventProperties."""

    topic_set: Any = None
    fixed_topic_set: Optional[bool] = None
    topic_namespace_location: list[str] = field(default_factory=list)
    topic_expression_dialect: list[str] = field(default_factory=list)
    message_content_filter_dialect: list[str] = field(default_factory=list)
    producer_properties_filter_dialect: list[str] = field(default_factory=list)
    message_content_schema_location: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "EventProperties":
        if not isinstance(raw, dict):
            return cls()

        def strings(key: str) -> list[str]:
            return [text for text in (text_of(v) for v in as_list(raw.get(key))) if text]

        fixed = raw.get("fixedTopicSet")
        return cls(
            topic_set=raw.get("topicSet"),
            fixed_topic_set=None if fixed is None else str(text_of(fixed)).lower() == "true",
            topic_namespace_location=strings("topicNamespaceLocation"),
            topic_expression_dialect=strings("topicExpressionDialect"),
            message_content_filter_dialect=strings("messageContentFilterDialect"),
            producer_properties_filter_dialect=strings("producerPropertiesFilterDialect"),
            message_content_schema_location=strings("messageContentSchemaLocation"),
        )


def _bool(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return str(value).lower() in ("true", "1")


def _int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class EventServiceCapabilities:
    """Event service capabilities from GetServiceCapabilities."""

    ws_subscription_policy_support: Optional[bool] = None
    ws_pull_point_support: Optional[bool] = None
    ws_pausable_subscription_manager_interface_support: Optional[bool] = None
    max_notification_producers: Optional[int] = None
    max_pull_points: Optional[int] = None
    persistent_notification_storage: Optional[bool] = None
    event_broker_protocols: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Any) -> "EventServiceCapabilities":
        if not isinstance(raw, dict):
            return cls()
        protocols = raw.get("eventBrokerProtocols")
        return cls(
            ws_subscription_policy_support=_bool(raw.get("WSSubscriptionPolicySupport")),
            ws_pull_point_support=_bool(raw.get("WSPullPointSupport")),
            ws_pausable_subscription_manager_interface_support=_bool(
                raw.get("WSPausableSubscriptionManagerInterfaceSupport")
            ),
            max_notification_producers=_int(raw.get("maxNotificationProducers")),
            max_pull_points=_int(raw.get("maxPullPoints")),
            persistent_notification_storage=_bool(raw.get("persistentNotificationStorage")),
            event_broker_protocols=str(protocols).split() if protocols else [],
        )


@dataclass
class MotionEventData:
    """Typed record for a motion notification."""

    is_motion: bool
    video_source_token: Optional[str] = None
    rule: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass
class DetectionEventData:
    """Typed record for face/person/vehicle/animal/license-plate detection."""

    category: str
    is_detected: bool
    video_source_token: Optional[str] = None
    rule: Optional[str] = None
    timestamp: Optional[datetime] = None
    data: Optional[dict[str, Any]] = None


@dataclass
class AudioEventData:
    """Typed record for an audio analytics notification."""

    is_audio_detected: bool
    audio_source_token: Optional[str] = None
    audio_type: Optional[str] = None
    level: Optional[float] = None
    rule: Optional[str] = None
    timestamp: Optional[datetime] = None


def response_times(raw: dict) -> tuple[datetime, datetime]:
    """Read ``currentTime``/``terminationTime`` from a decoded response.

    Missing or unreadable values fall back to the local clock.
    """
    now = utc_now()
    current = to_datetime(raw.get("currentTime")) or now
    termination = to_datetime(raw.get("terminationTime")) or now
    return current, termination
