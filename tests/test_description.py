"""
Tests for device description parsing and Render construction.

Tests cover:
- friendlyName / UDN / deviceType extraction
- controlURL resolution against URLBase or the description location
- AVTransport in embedded devices
- Devices without AVTransport
- Malformed XML
"""

import httpx
import pytest

from dlnacast.player.render import Render
from dlnacast.protocol.description import (
    DescriptionError,
    fetch_description,
    parse_description,
)

LOCATION = "http://192.168.1.50:49152/description.xml"

RENDERER_XML = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <specVersion><major>1</major><minor>0</minor></specVersion>
  <device>
    <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
    <friendlyName>Living Room TV</friendlyName>
    <manufacturer>ACME</manufacturer>
    <modelName>Screen 3000</modelName>
    <UDN>uuid:aaaa-bbbb</UDN>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:RenderingControl:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:RenderingControl</serviceId>
        <controlURL>/RenderingControl/control</controlURL>
      </service>
      <service>
        <serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType>
        <serviceId>urn:upnp-org:serviceId:AVTransport</serviceId>
        <controlURL>/AVTransport/control</controlURL>
        <eventSubURL>/AVTransport/event</eventSubURL>
        <SCPDURL>/AVTransport/scpd.xml</SCPDURL>
      </service>
    </serviceList>
  </device>
</root>
"""

URLBASE_XML = RENDERER_XML.replace(
    "<specVersion>", "<URLBase>http://192.168.1.50:8080/base/</URLBase><specVersion>"
).replace("/AVTransport/control", "AVTransport/control")

EMBEDDED_XML = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <device>
    <deviceType>urn:schemas-upnp-org:device:ZonePlayer:1</deviceType>
    <friendlyName>Kitchen</friendlyName>
    <UDN>uuid:root</UDN>
    <deviceList>
      <device>
        <deviceType>urn:schemas-upnp-org:device:MediaRenderer:1</deviceType>
        <friendlyName>Kitchen - Renderer</friendlyName>
        <UDN>uuid:child</UDN>
        <serviceList>
          <service>
            <serviceType>urn:schemas-upnp-org:service:AVTransport:1</serviceType>
            <serviceId>urn:upnp-org:serviceId:AVTransport</serviceId>
            <controlURL>/MediaRenderer/AVTransport/Control</controlURL>
          </service>
        </serviceList>
      </device>
    </deviceList>
  </device>
</root>
"""

SERVER_XML = """<?xml version="1.0"?>
<root xmlns="urn:schemas-upnp-org:device-1-0">
  <device>
    <deviceType>urn:schemas-upnp-org:device:MediaServer:1</deviceType>
    <friendlyName>NAS</friendlyName>
    <UDN>uuid:nas</UDN>
    <serviceList>
      <service>
        <serviceType>urn:schemas-upnp-org:service:ContentDirectory:1</serviceType>
        <controlURL>/cd/control</controlURL>
      </service>
    </serviceList>
  </device>
</root>
"""


class TestParseDescription:
    """Tests for parse_description."""

    def test_basic_fields(self) -> None:
        device = parse_description(RENDERER_XML, LOCATION)

        assert device.friendly_name == "Living Room TV"
        assert device.udn == "uuid:aaaa-bbbb"
        assert device.device_type == "urn:schemas-upnp-org:device:MediaRenderer:1"
        assert device.manufacturer == "ACME"
        assert len(device.services) == 2

    def test_control_url_resolved_against_location(self) -> None:
        device = parse_description(RENDERER_XML, LOCATION)
        _, service = device.find_service("urn:schemas-upnp-org:service:AVTransport:")

        assert service.control_url == "http://192.168.1.50:49152/AVTransport/control"
        assert service.scpd_url == "http://192.168.1.50:49152/AVTransport/scpd.xml"

    def test_control_url_resolved_against_url_base(self) -> None:
        device = parse_description(URLBASE_XML, LOCATION)
        _, service = device.find_service("urn:schemas-upnp-org:service:AVTransport:")

        assert service.control_url == "http://192.168.1.50:8080/base/AVTransport/control"

    def test_embedded_device(self) -> None:
        device = parse_description(EMBEDDED_XML, LOCATION)
        owner, service = device.find_service("urn:schemas-upnp-org:service:AVTransport:")

        assert owner.friendly_name == "Kitchen - Renderer"
        assert service.control_url == "http://192.168.1.50:49152/MediaRenderer/AVTransport/Control"

    def test_malformed_xml(self) -> None:
        with pytest.raises(DescriptionError):
            parse_description("<root><device>", LOCATION)

    def test_missing_device(self) -> None:
        with pytest.raises(DescriptionError):
            parse_description('<root xmlns="urn:schemas-upnp-org:device-1-0"/>', LOCATION)


class TestRenderFromDescription:
    """Tests for Render.from_description."""

    def test_render_fields(self) -> None:
        render = Render.from_description(LOCATION, parse_description(RENDERER_XML, LOCATION))

        assert render.friendly_name == "Living Room TV"
        assert render.udn == "uuid:aaaa-bbbb"
        assert render.location == LOCATION
        assert render.control_url == "http://192.168.1.50:49152/AVTransport/control"
        assert render.service_type == "urn:schemas-upnp-org:service:AVTransport:1"
        assert render.host == "192.168.1.50"

    def test_embedded_renderer_uses_child_identity(self) -> None:
        render = Render.from_description(LOCATION, parse_description(EMBEDDED_XML, LOCATION))

        assert render.friendly_name == "Kitchen - Renderer"
        assert render.udn == "uuid:child"

    def test_device_without_avtransport(self) -> None:
        with pytest.raises(DescriptionError):
            Render.from_description(LOCATION, parse_description(SERVER_XML, LOCATION))

    def test_str(self) -> None:
        render = Render.from_description(LOCATION, parse_description(RENDERER_XML, LOCATION))

        assert str(render) == (
            "[urn:schemas-upnp-org:device:MediaRenderer:1]"
            "[urn:schemas-upnp-org:service:AVTransport:1] Living Room TV @ " + LOCATION
        )

    def test_render_is_immutable(self) -> None:
        render = Render.from_description(LOCATION, parse_description(RENDERER_XML, LOCATION))

        with pytest.raises(AttributeError):
            render.friendly_name = "Other"  # type: ignore[misc]


class TestFetchDescription:
    """Tests for fetching descriptions over HTTP."""

    async def test_fetch(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == LOCATION
            return httpx.Response(200, text=RENDERER_XML)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            device = await fetch_description(LOCATION, client=client)

        assert device.friendly_name == "Living Room TV"

    async def test_http_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(404))

        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(DescriptionError):
                await fetch_description(LOCATION, client=client)

    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(DescriptionError):
                await fetch_description(LOCATION, client=client)

    async def test_url_rejected_by_http_client(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.InvalidURL("Invalid non-printable ASCII character in URL")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(DescriptionError):
                await fetch_description(LOCATION, client=client)
