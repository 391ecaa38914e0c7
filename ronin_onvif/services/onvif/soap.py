"""SOAP envelope construction and response decoding.

Responses are decoded into plain nested dicts so callers can navigate them
without knowing the device's namespace prefixes:

- keys are the local element name with the first letter lower-cased
  (``NotificationMessage`` -> ``notificationMessage``), except leading
  acronyms which are kept (``XAddr``, ``UTCDateTime``)
- attributes are stored on the same dict (``Name`` -> ``name``)
- an element carrying both attributes and text keeps the text under ``"_"``
- repeated children become lists
- leaf text stays a string
"""

import xml.etree.ElementTree as ET
from typing import Any, Optional
from xml.sax.saxutils import escape

SOAP_ENV = "http://www.w3.org/2003/05/soap-envelope"
WSA = "http://www.w3.org/2005/08/addressing"
WSSE = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd"
WSU = "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd"
PASSWORD_DIGEST = (
    "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-username-token-profile-1.0#PasswordDigest"
)
BASE64_BINARY = (
    "http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-soap-message-security-1.0#Base64Binary"
)
AXIS_EVENT_NS = "http://www.axis.com/2009/event"

DEVICE_WSDL = "http://www.onvif.org/ver10/device/wsdl"
EVENTS_WSDL = "http://www.onvif.org/ver10/events/wsdl"
WSN_B2 = "http://docs.oasis-open.org/wsn/b-2"


def as_list(value: Any) -> list:
    """Normalize an absent, single or repeated value to a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def first(value: Any) -> Any:
    """Return the first item of a possibly-repeated value."""
    items = as_list(value)
    return items[0] if items else None


def text_of(value: Any) -> Optional[str]:
    """Return the text content of a decoded leaf (plain or with attributes)."""
    if value is None:
        return None
    if isinstance(value, dict):
        text = value.get("_")
        return None if text is None else str(text)
    if isinstance(value, list):
        return text_of(first(value))
    return str(value)


def _local_name(tag: str) -> str:
    if "}" in tag:
        tag = tag.rsplit("}", 1)[1]
    if ":" in tag:
        tag = tag.rsplit(":", 1)[1]
    if len(tag) > 1 and tag[1].isupper():
        return tag
    return tag[:1].lower() + tag[1:]


def element_to_value(element: ET.Element) -> Any:
    """Decode an element tree node into dicts, lists and strings."""
    children = list(element)
    attrs = {
        _local_name(name): value
        for name, value in element.attrib.items()
        if not name.startswith("{http://www.w3.org/2000/xmlns/}")
    }
    text = (element.text or "").strip()

    if not children:
        if attrs:
            if text:
                attrs["_"] = text
            return attrs
        return text

    result: dict[str, Any] = dict(attrs)
    for child in children:
        key = _local_name(child.tag)
        value = element_to_value(child)
        if key in result:
            existing = result[key]
            if isinstance(existing, list):
                existing.append(value)
            else:
                result[key] = [existing, value]
        else:
            result[key] = value
    if text:
        result["_"] = text
    return result


def parse_soap(xml: str) -> tuple[dict, str]:
    """Decode a SOAP envelope and return ``(body, xml)``.

    The body dict holds the children of the ``Body`` element. A document
    that is not an envelope is decoded whole.

    Raises:
        xml.etree.ElementTree.ParseError: If the document is not well-formed
    """
    root = ET.fromstring(xml.encode("utf-8"))
    body_element = None
    for element in root:
        if _local_name(element.tag) == "body":
            body_element = element
            break

    if body_element is None:
        return {_local_name(root.tag): element_to_value(root)}, xml

    decoded = element_to_value(body_element)
    if not isinstance(decoded, dict):
        decoded = {}
    return decoded, xml


def find_fault(body: dict) -> Optional[tuple[Optional[str], Optional[str]]]:
    """Extract ``(code, reason)`` from a decoded SOAP Fault, if present."""
    fault = body.get("fault")
    if fault is None:
        return None
    if not isinstance(fault, dict):
        return None, text_of(fault)

    code = fault.get("code")
    subcode = code.get("subcode") if isinstance(code, dict) else None
    code_value = (
        text_of(subcode.get("value")) if isinstance(subcode, dict) else None
    ) or (text_of(code.get("value")) if isinstance(code, dict) else text_of(code))
    if code_value is None:
        code_value = text_of(fault.get("faultcode"))

    reason = fault.get("reason")
    reason_text = text_of(reason.get("text")) if isinstance(reason, dict) else text_of(reason)
    if reason_text is None:
        reason_text = text_of(fault.get("faultstring"))
    return code_value, reason_text


def security_header(username: str, digest: str, nonce: str, created: str) -> str:
    """Build a WS-Security UsernameToken header block."""
    return (
        f'<Security s:mustUnderstand="1" xmlns="{WSSE}">'
        "<UsernameToken>"
        f"<Username>{escape(username)}</Username>"
        f'<Password Type="{PASSWORD_DIGEST}">{digest}</Password>'
        f'<Nonce EncodingType="{BASE64_BINARY}">{nonce}</Nonce>'
        f'<Created xmlns="{WSU}">{created}</Created>'
        "</UsernameToken>"
        "</Security>"
    )


def addressing_header(address: str, subscription_id: Optional[str] = None) -> str:
    """Build the WS-Addressing header for subscription follow-up calls.

    When the device issued a vendor subscription id it is threaded back as a
    reference parameter so the request reaches the right subscription.
    """
    if not subscription_id:
        return f"<a:To>{escape(address)}</a:To>"
    return (
        f'<a:To s:mustUnderstand="1">{escape(address)}</a:To>'
        f'<SubscriptionId xmlns="{AXIS_EVENT_NS}" a:IsReferenceParameter="true">'
        f"{escape(subscription_id)}</SubscriptionId>"
    )


def envelope(body: str, header: str = "") -> str:
    """Wrap a body fragment (and optional header blocks) in a SOAP 1.2 envelope."""
    return (
        f'<s:Envelope xmlns:s="{SOAP_ENV}" xmlns:a="{WSA}">'
        f"<s:Header>{header}</s:Header>"
        '<s:Body xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" '
        'xmlns:xsd="http://www.w3.org/2001/XMLSchema">'
        f"{body}"
        "</s:Body>"
        "</s:Envelope>"
    )
