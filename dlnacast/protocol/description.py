"""
UPnP device description fetching and parsing.

The LOCATION header of an SSDP response points at an XML document like:

    <root xmlns="urn:schemas-upnp-org:device-1-0">
      <URLBase>http://192.168.1.20:1400/</URLBase>
      <device>
        <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
        <friendlyName>Living Room TV</friendlyName>
        <UDN>uuid:...</UDN>
        <serviceList>
          <service>
            <serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType>
            <controlURL>/MediaRenderer/AVTransport/Control</controlURL>
            ...
          </service>
        </serviceList>
        <deviceList> ...embedded devices... </deviceList>
      </device>
    </root>

URLBase is optional (deprecated in UDA 1.1); relative URLs are then resolved
against the description location.
"""

from __future__ import annotations

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from urllib.parse import urljoin

import httpx

from dlnacast.core import DlnaCastError

logger = logging.getLogger(__name__)

AVTRANSPORT_PREFIX = "urn:schemas-upnp-org:service:AVTransport:"


class DescriptionError(DlnaCastError):
    """Raised when a device description cannot be fetched or understood."""


@dataclass(frozen=True, slots=True)
class ServiceDescription:
    """One <service> element with its URLs resolved to absolute form."""

    service_type: str
    service_id: str
    control_url: str
    event_sub_url: str = ""
    scpd_url: str = ""


@dataclass(frozen=True)
class DeviceDescription:
    """One <device> element (root or embedded)."""

    device_type: str
    friendly_name: str
    udn: str
    manufacturer: str = ""
    model_name: str = ""
    services: tuple[ServiceDescription, ...] = ()
    devices: tuple[DeviceDescription, ...] = field(default=())

    def walk(self) -> list[DeviceDescription]:
        """This device followed by all embedded devices, depth first."""
        result = [self]
        for child in self.devices:
            result.extend(child.walk())
        return result

    def find_service(self, prefix: str) -> tuple[DeviceDescription, ServiceDescription] | None:
        """
        Find the first service whose type starts with `prefix`.

        Returns:
            (owning device, service), or None if no device offers it.
        """
        for device in self.walk():
            for service in device.services:
                if service.service_type.startswith(prefix):
                    return device, service
        return None


def _text(element: ET.Element | None, tag: str) -> str:
    if element is None:
        return ""
    child = element.find(f"{{*}}{tag}")
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _parse_device(element: ET.Element, base_url: str) -> DeviceDescription:
    services = []
    for service in element.findall("{*}serviceList/{*}service"):
        control = _text(service, "controlURL")
        if not control:
            continue
        services.append(
            ServiceDescription(
                service_type=_text(service, "serviceType"),
                service_id=_text(service, "serviceId"),
                control_url=urljoin(base_url, control),
                event_sub_url=urljoin(base_url, _text(service, "eventSubURL")),
                scpd_url=urljoin(base_url, _text(service, "SCPDURL")),
            )
        )

    children = tuple(
        _parse_device(child, base_url) for child in element.findall("{*}deviceList/{*}device")
    )

    return DeviceDescription(
        device_type=_text(element, "deviceType"),
        friendly_name=_text(element, "friendlyName"),
        udn=_text(element, "UDN"),
        manufacturer=_text(element, "manufacturer"),
        model_name=_text(element, "modelName"),
        services=tuple(services),
        devices=children,
    )


def parse_description(xml: str | bytes, location: str) -> DeviceDescription:
    """
    Parse device description XML.

    Args:
        xml: The document body.
        location: The URL it was fetched from, used to resolve relative URLs.

    Raises:
        DescriptionError: If the XML is malformed or has no <device>.
    """
    try:
        root = ET.fromstring(xml)
    except ET.ParseError as e:
        raise DescriptionError(f"Malformed device description at {location}: {e}") from e

    device = root.find("{*}device")
    if device is None:
        raise DescriptionError(f"No <device> element in description at {location}")

    base_url = _text(root, "URLBase") or location
    return _parse_device(device, base_url)


async def fetch_description(
    location: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 5.0,
) -> DeviceDescription:
    """
    GET and parse a device description.

    Args:
        location: Description URL (from SSDP or given by the user).
        client: Shared HTTP client. A temporary one is used if None.
        timeout: Request timeout in seconds.

    Raises:
        DescriptionError: On network errors, non-2xx answers or bad XML.
    """
    logger.debug("Fetching device description from %s", location)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as own_client:
                response = await own_client.get(location)
        else:
            response = await client.get(location, timeout=timeout)
        response.raise_for_status()
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise DescriptionError(f"Could not fetch device description {location}: {e}") from e

    return parse_description(response.content, location)
