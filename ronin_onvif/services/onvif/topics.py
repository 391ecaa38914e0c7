"""ONVIF event topic parsing and classification.

Vendors publish the same semantic event under many topic spellings, so
classification is a case-insensitive substring match against ordered
pattern tables. Order matters: specific object-detection topics often also
contain generic words such as "analytics", so they are checked first.
"""

from dataclasses import dataclass
from enum import Enum


class EventCategory(str, Enum):
    """Semantic event categories derived from topics."""

    MOTION = "motion"
    FACE = "face"
    PERSON = "person"
    VEHICLE = "vehicle"
    ANIMAL = "animal"
    LICENSE_PLATE = "license_plate"
    TAMPER = "tamper"
    ANALYTICS = "analytics"
    PTZ = "ptz"
    AUDIO = "audio"
    RECORDING = "recording"
    DIGITAL_INPUT = "digital_input"
    RELAY = "relay"
    DEVICE = "device"
    UNKNOWN = "unknown"


DETECTION_CATEGORIES = frozenset(
    {
        EventCategory.FACE,
        EventCategory.PERSON,
        EventCategory.VEHICLE,
        EventCategory.ANIMAL,
        EventCategory.LICENSE_PLATE,
    }
)

# Evaluated top to bottom; first match wins.
TOPIC_RULES: list[tuple[EventCategory, tuple[str, ...]]] = [
    (EventCategory.FACE, ("facedetect",)),
    (EventCategory.PERSON, ("peopledetect", "persondetect", "humandetect")),
    (EventCategory.VEHICLE, ("vehicledetect", "cardetect")),
    (EventCategory.ANIMAL, ("dogcatdetect", "animaldetect", "petdetect")),
    (EventCategory.LICENSE_PLATE, ("licenseplate", "anpr")),
    (
        EventCategory.MOTION,
        ("motiondetect", "cellmotion", "linedetect", "fielddetect", "motionalarm"),
    ),
    (
        EventCategory.TAMPER,
        ("imagetooblurry", "imagetoodark", "imagetoobright", "globalscenechange", "tamper"),
    ),
    (EventCategory.AUDIO, ("audioanalytics", "audiodetect")),
    (EventCategory.DIGITAL_INPUT, ("digitalinput",)),
    (EventCategory.RELAY, ("relay",)),
    (EventCategory.PTZ, ("ptzcontroller", "ptzstatus")),
    (EventCategory.RECORDING, ("recording",)),
    (EventCategory.ANALYTICS, ("analytics",)),
    (EventCategory.DEVICE, ("device/",)),
]

# Known topic spellings per category, for reference and filters
MOTION_TOPIC_PATTERNS = (
    "tns1:RuleEngine/CellMotionDetector",
    "tns1:VideoAnalytics/tnsx:MotionDetection",
    "tns1:VideoAnalytics/tnsaxis:MotionDetection",
    "tns1:RuleEngine/MyMotionDetectorRule",
    "tns1:RuleEngine/LineDetector",
    "tns1:RuleEngine/FieldDetector",
    "tns1:VideoSource/MotionAlarm",
)
FACE_TOPIC_PATTERNS = (
    "tns1:RuleEngine/MyRuleDetector/FaceDetect",
    "tns1:RuleEngine/FaceDetector",
    "tns1:VideoAnalytics/FaceDetection",
)
PERSON_TOPIC_PATTERNS = (
    "tns1:RuleEngine/MyRuleDetector/PeopleDetect",
    "tns1:RuleEngine/PersonDetector",
    "tns1:VideoAnalytics/PersonDetection",
    "tns1:RuleEngine/HumanDetector",
)
VEHICLE_TOPIC_PATTERNS = (
    "tns1:RuleEngine/MyRuleDetector/VehicleDetect",
    "tns1:RuleEngine/VehicleDetector",
    "tns1:VideoAnalytics/VehicleDetection",
    "tns1:RuleEngine/CarDetector",
)
ANIMAL_TOPIC_PATTERNS = (
    "tns1:RuleEngine/MyRuleDetector/DogCatDetect",
    "tns1:RuleEngine/AnimalDetector",
    "tns1:VideoAnalytics/AnimalDetection",
    "tns1:RuleEngine/PetDetector",
)
LICENSE_PLATE_TOPIC_PATTERNS = (
    "tns1:RuleEngine/LicensePlateDetector",
    "tns1:VideoAnalytics/LicensePlateDetection",
    "tns1:VideoAnalytics/tnsx:LicensePlateRecognition",
    "tns1:RuleEngine/ANPR",
)
TAMPER_TOPIC_PATTERNS = (
    "tns1:VideoSource/ImageTooBlurry",
    "tns1:VideoSource/GlobalSceneChange",
    "tns1:VideoSource/ImageTooDark",
    "tns1:VideoSource/ImageTooBright",
)
AUDIO_TOPIC_PATTERNS = (
    "tns1:AudioAnalytics",
    "tns1:RuleEngine/AudioDetector",
)
DIGITAL_INPUT_TOPIC_PATTERNS = (
    "tns1:Device/Trigger/DigitalInput",
    "tns1:Device/IO/DigitalInput",
)
RELAY_TOPIC_PATTERNS = (
    "tns1:Device/Trigger/Relay",
    "tns1:Device/IO/RelayOutput",
)


@dataclass(frozen=True)
class ParsedTopic:
    """Structured view of a topic string."""

    full: str
    namespace: str
    parts: list[str]
    category: EventCategory


def categorize_event(topic: str) -> EventCategory:
    """Map a vendor topic string to an EventCategory.

    Never raises; unrecognized topics are ``EventCategory.UNKNOWN``.
    """
    topic_lower = (topic or "").lower()
    for category, patterns in TOPIC_RULES:
        if any(pattern in topic_lower for pattern in patterns):
            return category
    return EventCategory.UNKNOWN


def _strip_prefix(part: str) -> str:
    idx = part.find(":")
    return part[idx + 1:] if idx > 0 else part


def parse_event_topic(topic: str) -> ParsedTopic:
    """Split a topic into namespace and prefix-free path segments.

    >>> parse_event_topic("tns1:RuleEngine/CellMotionDetector/Motion").parts
    ['RuleEngine', 'CellMotionDetector', 'Motion']
    """
    parts = topic.split("/")
    first = parts[0]
    colon = first.find(":")
    namespace = first[:colon] if colon > 0 else ""

    return ParsedTopic(
        full=topic,
        namespace=namespace,
        parts=[_strip_prefix(part) for part in parts],
        category=categorize_event(topic),
    )
