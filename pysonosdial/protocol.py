"""Sonos UPnP/SOAP wire protocol.

Every speaker command is an HTTP POST of a SOAP envelope to
``http://{host}:{port}/{service_path}/Control``. Responses are parsed with
xmltodict after stripping namespace prefixes from tag names.
"""

import asyncio
import logging
from typing import Any, Optional
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import escape

import aiohttp
import xmltodict

from pysonosdial.exceptions import ProtocolError, TransportError
from pysonosdial.settings import DEFAULT_PORT

# Logical service name -> control path on the speaker
SERVICE_PATHS = {
    "AVTransport": "MediaRenderer/AVTransport",
    "RenderingControl": "MediaRenderer/RenderingControl",
    "ZoneGroupTopology": "ZoneGroupTopology",
    "ContentDirectory": "MediaServer/ContentDirectory",
}

# Quotes are escaped too, on top of & < >
XML_ENTITIES = {'"': "&quot;", "'": "&apos;"}

SOAP_ENVELOPE = (
    '<?xml version="1.0" encoding="utf-8"?>'
    '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
    's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
    "<s:Body>"
    '<u:{action} xmlns:u="urn:schemas-upnp-org:service:{service}:1">'
    "{arguments}"
    "</u:{action}>"
    "</s:Body>"
    "</s:Envelope>"
)


def escape_xml(value: Any) -> str:
    """Escape a parameter value for use as XML element text."""
    if value is None:
        return ""
    if isinstance(value, bool):
        value = "1" if value else "0"
    return escape(str(value), XML_ENTITIES)


def _strip_namespace(path, key, value):
    """xmltodict postprocessor turning ``s:Body`` into ``Body``."""
    if key.startswith("@"):
        return key, value
    return key.rsplit(":", 1)[-1], value


class SonosProtocol:
    """Executes SOAP actions against Sonos speakers over a shared aiohttp session."""

    def __init__(self, http_session: aiohttp.ClientSession, port: int = DEFAULT_PORT):
        self._logger = logging.getLogger(__name__)
        self._http_session = http_session
        self._port = port

    @property
    def port(self) -> int:
        return self._port

    @staticmethod
    def control_url(host: str, port: int, service: str) -> str:
        """URL of the control endpoint for a service on a host."""
        service_path = SERVICE_PATHS.get(service, service)
        return f"http://{host}:{port}/{service_path}/Control"

    @staticmethod
    def soap_action(service: str, action: str) -> str:
        """Value of the SOAPAction header, quotes included."""
        return f'"urn:schemas-upnp-org:service:{service}:1#{action}"'

    @staticmethod
    def build_envelope(service: str, action: str, params: Optional[dict[str, Any]] = None) -> str:
        """Build the SOAP request body. InstanceID defaults to 0 and always comes first."""
        arguments = {"InstanceID": 0}
        arguments.update(params or {})
        xml_arguments = "".join(
            f"<{name}>{escape_xml(value)}</{name}>" for name, value in arguments.items()
        )
        return SOAP_ENVELOPE.format(action=action, service=service, arguments=xml_arguments)

    @staticmethod
    def parse_response(action: str, text: str) -> dict[str, Any]:
        """Return the child elements of ``Envelope/Body/{action}Response``.

        Raises:
            ProtocolError: If the body is not XML or the response element is missing
        """
        try:
            document = xmltodict.parse(text, postprocessor=_strip_namespace)
        except ExpatError as err:
            raise ProtocolError(f"Malformed {action} response: {err}") from err

        envelope = document.get("Envelope")
        body = envelope.get("Body") if isinstance(envelope, dict) else None
        response_key = f"{action}Response"
        if not isinstance(body, dict) or response_key not in body:
            raise ProtocolError(f"Response has no {response_key} element")

        result = body[response_key]
        if not isinstance(result, dict):
            return {}
        return {key: value for key, value in result.items() if not key.startswith("@")}

    async def execute(
        self, host: str, service: str, action: str, params: Optional[dict[str, Any]] = None
    ) -> dict[str, Any]:
        """POST a SOAP action to a host and return the parsed response arguments.

        Raises:
            TransportError: On connection failure or a non-2xx HTTP status
            ProtocolError: If the response body cannot be parsed
        """
        url = self.control_url(host, self._port, service)
        headers = {
            "SOAPAction": self.soap_action(service, action),
            "Content-Type": "text/xml; charset=utf-8",
        }
        request = self.build_envelope(service, action, params)
        self._logger.debug(f"SEND: {service}.{action} to {host} {params or {}}")

        try:
            async with self._http_session.post(url, data=request, headers=headers) as response:
                status = response.status
                text = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise TransportError(f"{service}.{action} on {host} failed: {err!r}") from err
        except UnicodeDecodeError as err:
            raise ProtocolError(f"{service}.{action} response from {host} is not valid text: {err}") from err

        if not 200 <= status < 300:
            raise TransportError(f"HTTP {status}: {text}", status=status, body=text)
        return self.parse_response(action, text)
