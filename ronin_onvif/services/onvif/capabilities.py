"""Detection support inferred from advertised event properties.

The advertised TopicSet is matched as serialized text, which is a different
shape than live topic strings, so these tables are kept separate from the
topic classifier. Reolink advertises every object-detection kind under a
single ``MyRuleDetector`` node.
"""

import json
from typing import Iterable, Optional

from ronin_onvif.services.onvif.models import EventProperties
from ronin_onvif.services.onvif.topics import EventCategory

SUPPORT_PATTERNS: list[tuple[EventCategory, tuple[str, ...]]] = [
    (
        EventCategory.MOTION,
        ("motiondetect", "cellmotion", "linedetect", "fielddetect", "motionalarm"),
    ),
    (EventCategory.FACE, ("facedetect", "myruledetector")),
    (EventCategory.PERSON, ("peopledetect", "persondetect", "humandetect", "myruledetector")),
    (EventCategory.VEHICLE, ("vehicledetect", "cardetect", "myruledetector")),
    (EventCategory.ANIMAL, ("dogcatdetect", "animaldetect", "petdetect", "myruledetector")),
    (EventCategory.LICENSE_PLATE, ("licenseplate", "anpr")),
    (EventCategory.AUDIO, ("audioanalytics", "audiodetect", "sounddetect")),
]


def _topic_set_text(properties: EventProperties) -> Optional[str]:
    if not properties.topic_set:
        return None
    return json.dumps(properties.topic_set, default=str).lower()


def _supports(properties: EventProperties, category: EventCategory) -> bool:
    text = _topic_set_text(properties)
    if text is None:
        return False
    for candidate, patterns in SUPPORT_PATTERNS:
        if candidate == category:
            return any(pattern in text for pattern in patterns)
    return False


def supports_motion_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.MOTION)


def supports_face_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.FACE)


def supports_person_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.PERSON)


def supports_vehicle_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.VEHICLE)


def supports_animal_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.ANIMAL)


def supports_license_plate_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.LICENSE_PLATE)


def supports_audio_detection(properties: EventProperties) -> bool:
    return _supports(properties, EventCategory.AUDIO)


def get_supported_detection_types(properties: EventProperties) -> list[EventCategory]:
    """Categories the device advertises in its TopicSet."""
    text = _topic_set_text(properties)
    if text is None:
        return []
    return [
        category
        for category, patterns in SUPPORT_PATTERNS
        if any(pattern in text for pattern in patterns)
    ]


def get_all_supported_detection_types(
    properties: EventProperties,
    observed: Iterable[EventCategory],
) -> list[EventCategory]:
    """Union of advertised and actually observed categories.

    Some devices emit categories they never list in their TopicSet. Order is
    advertised first, then newly observed, without duplicates.
    """
    combined: list[EventCategory] = []
    for category in [*get_supported_detection_types(properties), *observed]:
        category = EventCategory(category)
        if category not in combined:
            combined.append(category)
    return combined
