"""Typed event records extracted from notification messages.

Each extractor returns None when the message belongs to another category.
Field names are matched case-insensitively against alias sets since vendors
disagree on spelling. Timestamps come only from the message itself.
"""

from typing import Any, Optional

from ronin_onvif.services.onvif.models import (
    AudioEventData,
    DetectionEventData,
    MotionEventData,
    NotificationMessage,
    SimpleItem,
)
from ronin_onvif.services.onvif.topics import (
    DETECTION_CATEGORIES,
    EventCategory,
    categorize_event,
)

MOTION_STATE_KEYS = {"ismotion", "state"}
DETECTION_STATE_KEYS = {"isdetected", "state", "isactive"}
AUDIO_STATE_KEYS = {"isaudiodetected", "state", "isactive", "issound"}
AUDIO_TYPE_KEYS = {"audiotype", "soundtype", "type"}
AUDIO_LEVEL_KEYS = {"level", "soundlevel", "audiolevel"}
PLATE_TEXT_KEYS = {"platetext", "licenseplatenumber"}
CONFIDENCE_KEYS = {"confidence"}
VIDEO_SOURCE_KEYS = {"videosourcetoken", "videosourceconfigurationtoken"}
AUDIO_SOURCE_KEYS = {"audiosourcetoken", "audiosourceconfigurationtoken"}
RULE_KEYS = {"rule"}

# (substrings, audio type), first match wins
AUDIO_TYPE_FALLBACKS: list[tuple[tuple[str, ...], str]] = [
    (("scream",), "scream"),
    (("gunshot",), "gunshot"),
    (("glass", "break"), "glass_break"),
    (("cry", "baby"), "cry"),
    (("bark", "dog"), "bark"),
    (("alarm",), "alarm"),
]


def is_truthy(value: Any) -> bool:
    """Boolean-true, "true" or "1" are true; anything else is false."""
    return value is True or value == "true" or value == "1"


def _items(section: Optional[list[SimpleItem]]) -> list[SimpleItem]:
    return list(section or [])


def _find(items: list[SimpleItem], keys: set[str]) -> Optional[SimpleItem]:
    for item in items:
        if (item.name or "").lower() in keys:
            return item
    return None


def _find_str(items: list[SimpleItem], keys: set[str]) -> Optional[str]:
    item = _find(items, keys)
    if item is None or item.value is None:
        return None
    return str(item.value)


def _find_number(items: list[SimpleItem], keys: set[str]) -> Optional[float]:
    item = _find(items, keys)
    if item is None:
        return None
    try:
        return float(item.value)
    except (TypeError, ValueError):
        return None


def _state(items: list[SimpleItem], keys: set[str]) -> bool:
    item = _find(items, keys)
    return item is not None and is_truthy(item.value)


def extract_motion(message: NotificationMessage) -> Optional[MotionEventData]:
    """Extract motion state from a motion-category notification."""
    if not message.topic or categorize_event(message.topic) != EventCategory.MOTION:
        return None

    data = _items(message.data)
    source = _items(message.source)
    return MotionEventData(
        is_motion=_state(data, MOTION_STATE_KEYS),
        video_source_token=_find_str(source, VIDEO_SOURCE_KEYS),
        rule=_find_str(source, RULE_KEYS),
        timestamp=message.utc_time,
    )


def extract_detection(message: NotificationMessage) -> Optional[DetectionEventData]:
    """Extract object detection state (face, person, vehicle, animal, plate)."""
    if not message.topic:
        return None
    category = categorize_event(message.topic)
    if category not in DETECTION_CATEGORIES:
        return None

    data = _items(message.data)
    source = _items(message.source)

    extra: dict[str, Any] = {}
    plate_text = _find_str(data, PLATE_TEXT_KEYS)
    if plate_text is not None:
        extra["plate_text"] = plate_text
    confidence = _find_number(data, CONFIDENCE_KEYS)
    if confidence is not None:
        extra["confidence"] = confidence

    return DetectionEventData(
        category=category.value,
        is_detected=_state(data, DETECTION_STATE_KEYS),
        video_source_token=_find_str(source, VIDEO_SOURCE_KEYS),
        rule=_find_str(source, RULE_KEYS),
        timestamp=message.utc_time,
        data=extra or None,
    )


def infer_audio_type(topic: str) -> str:
    """Guess the audio event type from topic wording."""
    topic_lower = topic.lower()
    for substrings, audio_type in AUDIO_TYPE_FALLBACKS:
        if any(s in topic_lower for s in substrings):
            return audio_type
    return "generic"


def extract_audio(message: NotificationMessage) -> Optional[AudioEventData]:
    """Extract audio detection state from an audio-category notification."""
    if not message.topic or categorize_event(message.topic) != EventCategory.AUDIO:
        return None

    data = _items(message.data)
    source = _items(message.source)
    return AudioEventData(
        is_audio_detected=_state(data, AUDIO_STATE_KEYS),
        audio_source_token=_find_str(source, AUDIO_SOURCE_KEYS),
        audio_type=_find_str(data, AUDIO_TYPE_KEYS) or infer_audio_type(message.topic),
        level=_find_number(data, AUDIO_LEVEL_KEYS),
        rule=_find_str(source, RULE_KEYS),
        timestamp=message.utc_time,
    )


def extract_event(message: NotificationMessage):
    """Run the extractor matching the message category.

    Returns a MotionEventData, DetectionEventData or AudioEventData record,
    or None for categories without a typed record.
    """
    return extract_motion(message) or extract_detection(message) or extract_audio(message)
