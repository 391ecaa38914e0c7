"""Pytest configuration and fixtures."""

import xml.etree.ElementTree as ET
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any, Optional, Union
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from ronin_onvif.main import app
from ronin_onvif.services.onvif import ONVIFClient

CAMERA_HOST = "192.168.1.100"
SUBSCRIPTION_ADDRESS = f"http://{CAMERA_HOST}/onvif/Subscription?Idx=0"

RESPONSE_ENVELOPE = (
    '<?xml version="1.0" encoding="UTF-8"?>'
    '<SOAP-ENV:Envelope xmlns:SOAP-ENV="http://www.w3.org/2003/05/soap-envelope" '
    'xmlns:wsa5="http://www.w3.org/2005/08/addressing" '
    'xmlns:tt="http://www.onvif.org/ver10/schema" '
    'xmlns:tds="http://www.onvif.org/ver10/device/wsdl" '
    'xmlns:trt="http://www.onvif.org/ver10/media/wsdl" '
    'xmlns:tev="http://www.onvif.org/ver10/events/wsdl" '
    'xmlns:wsnt="http://docs.oasis-open.org/wsn/b-2" '
    'xmlns:wstop="http://docs.oasis-open.org/wsn/t-1" '
    'xmlns:tns1="http://www.onvif.org/ver10/topics" '
    'xmlns:dn="http://www.onvif.org/ver10/network/wsdl">'
    "<SOAP-ENV:Header/>"
    "<SOAP-ENV:Body>{body}</SOAP-ENV:Body>"
    "</SOAP-ENV:Envelope>"
)

Reply = Union[str, tuple[int, str], Exception]


def soap_response(body: str) -> str:
    """Wrap a body fragment in a device-style response envelope."""
    return RESPONSE_ENVELOPE.format(body=body)


def fault_body(subcode: str = "ter:NotAuthorized", reason: str = "Sender not authorized") -> str:
    return (
        "<SOAP-ENV:Fault>"
        "<SOAP-ENV:Code><SOAP-ENV:Value>SOAP-ENV:Sender</SOAP-ENV:Value>"
        f"<SOAP-ENV:Subcode><SOAP-ENV:Value>{subcode}</SOAP-ENV:Value></SOAP-ENV:Subcode>"
        "</SOAP-ENV:Code>"
        f'<SOAP-ENV:Reason><SOAP-ENV:Text xml:lang="en">{reason}</SOAP-ENV:Text></SOAP-ENV:Reason>'
        "</SOAP-ENV:Fault>"
    )


def create_subscription_body(
    address: str = SUBSCRIPTION_ADDRESS,
    current: str = "2024-01-01T00:00:00Z",
    termination: str = "2024-01-01T00:02:00Z",
    subscription_id: Optional[str] = None,
) -> str:
    parameters = ""
    if subscription_id:
        parameters = (
            "<wsa5:ReferenceParameters>"
            '<dom0:SubscriptionId xmlns:dom0="http://www.axis.com/2009/event">'
            f"{subscription_id}</dom0:SubscriptionId>"
            "</wsa5:ReferenceParameters>"
        )
    return (
        "<tev:CreatePullPointSubscriptionResponse>"
        "<tev:SubscriptionReference>"
        f"<wsa5:Address>{address}</wsa5:Address>{parameters}"
        "</tev:SubscriptionReference>"
        f"<wsnt:CurrentTime>{current}</wsnt:CurrentTime>"
        f"<wsnt:TerminationTime>{termination}</wsnt:TerminationTime>"
        "</tev:CreatePullPointSubscriptionResponse>"
    )


def notification(
    topic: str,
    data: Optional[dict[str, str]] = None,
    source: Optional[dict[str, str]] = None,
    utc_time: str = "2024-01-01T00:00:05Z",
    operation: str = "Changed",
) -> str:
    """Build one wsnt:NotificationMessage element."""

    def items(values: Optional[dict[str, str]]) -> str:
        return "".join(
            f'<tt:SimpleItem Name="{name}" Value="{value}"/>'
            for name, value in (values or {}).items()
        )

    return (
        "<wsnt:NotificationMessage>"
        '<wsnt:Topic Dialect="http://www.onvif.org/ver10/tev/topicExpression/ConcreteSet">'
        f"{topic}</wsnt:Topic>"
        "<wsnt:Message>"
        f'<tt:Message UtcTime="{utc_time}" PropertyOperation="{operation}">'
        f"<tt:Source>{items(source)}</tt:Source>"
        f"<tt:Data>{items(data)}</tt:Data>"
        "</tt:Message>"
        "</wsnt:Message>"
        "</wsnt:NotificationMessage>"
    )


def pull_messages_body(
    *messages: str,
    current: str = "2024-01-01T00:00:10Z",
    termination: str = "2024-01-01T00:02:10Z",
) -> str:
    return (
        "<tev:PullMessagesResponse>"
        f"<tev:CurrentTime>{current}</tev:CurrentTime>"
        f"<tev:TerminationTime>{termination}</tev:TerminationTime>"
        f"{''.join(messages)}"
        "</tev:PullMessagesResponse>"
    )


def renew_body(
    current: str = "2024-01-01T00:00:10Z",
    termination: str = "2024-01-01T00:02:10Z",
) -> str:
    return (
        "<wsnt:RenewResponse>"
        f"<wsnt:TerminationTime>{termination}</wsnt:TerminationTime>"
        f"<wsnt:CurrentTime>{current}</wsnt:CurrentTime>"
        "</wsnt:RenewResponse>"
    )


def system_date_time_body(year: int = 2024, month: int = 1, day: int = 1, hour: int = 0) -> str:
    return (
        "<tds:GetSystemDateAndTimeResponse><tds:SystemDateAndTime>"
        "<tt:DateTimeType>NTP</tt:DateTimeType>"
        "<tt:DaylightSavings>false</tt:DaylightSavings>"
        "<tt:UTCDateTime>"
        f"<tt:Time><tt:Hour>{hour}</tt:Hour><tt:Minute>0</tt:Minute><tt:Second>0</tt:Second></tt:Time>"
        f"<tt:Date><tt:Year>{year}</tt:Year><tt:Month>{month}</tt:Month><tt:Day>{day}</tt:Day></tt:Date>"
        "</tt:UTCDateTime>"
        "</tds:SystemDateAndTime></tds:GetSystemDateAndTimeResponse>"
    )


def operation_of(content: bytes) -> str:
    """Local name of the first element inside the request Body."""
    root = ET.fromstring(content)
    for element in root:
        if element.tag.rsplit("}", 1)[-1] == "Body":
            child = next(iter(element), None)
            return "" if child is None else child.tag.rsplit("}", 1)[-1]
    return ""


@dataclass
class CapturedRequest:
    operation: str
    url: str
    body: str
    read_timeout: Optional[float] = None


class FakeCamera:
    """Scripted ONVIF device served through httpx.MockTransport.

    Replies are queued per operation. The last queued reply is repeated for
    further calls; operations without replies get an HTTP 500 fault.
    """

    def __init__(self):
        self.replies: dict[str, list[Reply]] = {}
        self.requests: list[CapturedRequest] = []

    def respond(self, operation: str, *replies: Reply) -> None:
        self.replies.setdefault(operation, []).extend(replies)

    @property
    def operations(self) -> list[str]:
        return [r.operation for r in self.requests]

    def requests_for(self, operation: str) -> list[CapturedRequest]:
        return [r for r in self.requests if r.operation == operation]

    def _next_reply(self, operation: str) -> Reply:
        queue = self.replies.get(operation)
        if not queue:
            return (500, fault_body("ter:ActionNotSupported", f"{operation} not scripted"))
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    def handler(self, request: httpx.Request) -> httpx.Response:
        operation = operation_of(request.content)
        self.requests.append(
            CapturedRequest(
                operation,
                str(request.url),
                request.content.decode("utf-8"),
                request.extensions.get("timeout", {}).get("read"),
            )
        )
        reply = self._next_reply(operation)
        if isinstance(reply, Exception):
            raise reply
        status, body = reply if isinstance(reply, tuple) else (200, reply)
        return httpx.Response(
            status,
            text=soap_response(body),
            headers={"Content-Type": "application/soap+xml; charset=utf-8"},
        )


ZEEP_SERVICES = ("devicemgmt", "media", "media2", "ptz")


def make_zeep_camera(xaddrs: Optional[dict[str, str]] = None, **proxies: Any) -> MagicMock:
    """Stand-in for onvif.ONVIFCamera.

    ``proxies`` maps a service name (``devicemgmt``, ``media``, ``media2``,
    ``ptz``) to its proxy, normally a MagicMock whose operations are
    AsyncMocks returning SimpleNamespace replies.
    """
    zeep = MagicMock()
    zeep.xaddrs = dict(xaddrs or {})
    zeep.update_xaddrs = AsyncMock()
    zeep.close = AsyncMock()
    for name in ZEEP_SERVICES:
        proxy = proxies.get(name, MagicMock())
        setattr(zeep, f"create_{name}_service", AsyncMock(return_value=proxy))
    return zeep


@pytest.fixture
def camera() -> FakeCamera:
    """Create a scripted camera with no replies queued."""
    return FakeCamera()


@pytest.fixture
def zeep_camera() -> MagicMock:
    """ONVIFCamera stand-in with no service addresses."""
    return make_zeep_camera()


@pytest.fixture
async def onvif_client(
    camera: FakeCamera, zeep_camera: MagicMock
) -> AsyncGenerator[ONVIFClient, None]:
    """ONVIF client wired to the fake camera with a known events address."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(camera.handler))
    client = ONVIFClient(
        CAMERA_HOST,
        80,
        "admin",
        "secret",
        http_client=http_client,
        camera=zeep_camera,
        digest_func=lambda username, password, created: ("digest", "nonce"),
    )
    client.uri["events"] = f"http://{CAMERA_HOST}/onvif/event_service"
    yield client
    await client.close()
    await http_client.aclose()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Create API test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
