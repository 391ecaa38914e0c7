"""HTTP transport for SOAP requests to a single ONVIF device."""

import logging
from typing import Mapping, Optional
from urllib.parse import urljoin, urlparse

import httpx

from ronin_onvif.exceptions import SOAPFaultError
from ronin_onvif.services.onvif.soap import find_fault, parse_soap

logger = logging.getLogger(__name__)

SOAP_CONTENT_TYPE = "application/soap+xml; charset=utf-8"


class SOAPTransport:
    """POSTs SOAP envelopes and decodes the replies.

    Service names are resolved through ``uri_map`` (filled in by the device
    client after GetServices/GetCapabilities); the device path is used when
    the service is unknown.
    """

    def __init__(
        self,
        host: str,
        port: int,
        base_path: str = "/onvif/device_service",
        uri_map: Optional[Mapping[str, str]] = None,
        timeout: float = 120.0,
        use_secure: bool = False,
        verify_tls: bool = False,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        scheme = "https" if use_secure else "http"
        self.base_url = f"{scheme}://{host}:{port}"
        self.base_path = base_path
        self.uri_map = uri_map if uri_map is not None else {}
        self.timeout = timeout
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            verify=verify_tls,
        )

    def resolve_url(self, service: Optional[str] = None) -> str:
        """Resolve the request URL for a named service."""
        path = self.base_path
        if service and self.uri_map.get(service):
            path = urlparse(self.uri_map[service]).path or self.base_path
        return urljoin(self.base_url, path)

    async def request(
        self,
        body: str,
        service: Optional[str] = None,
        url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> tuple[dict, str]:
        """POST a complete SOAP envelope.

        Args:
            body: Full SOAP envelope
            service: Named service to address (ignored when ``url`` is set)
            url: Explicit endpoint, e.g. a subscription reference address
            timeout: Seconds for this request (transport default if None)

        Returns:
            Tuple of (decoded body dict, raw response text)

        Raises:
            SOAPFaultError: On a non-2xx status or a SOAP Fault in the reply
            httpx.HTTPError: On network-level failures
        """
        target = url or self.resolve_url(service)
        response = await self._client.post(
            target,
            content=body.encode("utf-8"),
            headers={"Content-Type": SOAP_CONTENT_TYPE},
            timeout=timeout or self.timeout,
        )
        text = response.text

        if not 200 <= response.status_code < 300:
            code, reason = self._fault_details(text)
            raise SOAPFaultError(
                f"HTTP error! status: {response.status_code}",
                status_code=response.status_code,
                fault_code=code,
                reason=reason,
                raw=text,
            )

        parsed, xml = parse_soap(text)
        fault = find_fault(parsed)
        if fault is not None:
            code, reason = fault
            raise SOAPFaultError(
                f"SOAP fault: {reason or code}",
                status_code=response.status_code,
                fault_code=code,
                reason=reason,
                raw=text,
            )
        return parsed, xml

    def _fault_details(self, text: str) -> tuple[Optional[str], Optional[str]]:
        if not text:
            return None, None
        try:
            parsed, _ = parse_soap(text)
        except Exception as e:
            logger.debug(f"Unparseable error body from {self.base_url}: {e}")
            return None, None
        return find_fault(parsed) or (None, None)

    async def close(self) -> None:
        """Close the underlying HTTP client if this transport created it."""
        if self._owns_client:
            await self._client.aclose()
