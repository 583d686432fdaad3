"""
Render records and resolution requests.

A Render is the immutable handle for one media renderer: what to call it
and where to send AVTransport control requests. It is created once (by
discovery or by fetching a known description URL) and then shared by the
resolver, the session controller and the UI without copying or locking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlparse

from dlnacast.protocol.description import (
    AVTRANSPORT_PREFIX,
    DescriptionError,
    DeviceDescription,
)

if TYPE_CHECKING:
    from dlnacast.protocol.avtransport import PositionInfo, TransportInfo


@dataclass(frozen=True, slots=True)
class Render:
    """A playback-capable device with its AVTransport control endpoint."""

    friendly_name: str
    udn: str
    location: str
    control_url: str
    device_type: str = ""
    service_type: str = ""
    manufacturer: str = ""
    model_name: str = ""

    @classmethod
    def from_description(cls, location: str, description: DeviceDescription) -> Render:
        """
        Build a Render from a parsed description.

        Raises:
            DescriptionError: If no device in the description offers AVTransport.
        """
        found = description.find_service(AVTRANSPORT_PREFIX)
        if found is None:
            raise DescriptionError(f"Device at {location} has no AVTransport service")

        device, service = found
        return cls(
            friendly_name=device.friendly_name or description.friendly_name or location,
            udn=device.udn or description.udn,
            location=location,
            control_url=service.control_url,
            device_type=device.device_type,
            service_type=service.service_type,
            manufacturer=device.manufacturer,
            model_name=device.model_name,
        )

    @property
    def host(self) -> str:
        """Hostname or IP of the device, from its description URL."""
        return urlparse(self.location).hostname or ""

    def __str__(self) -> str:
        return f"[{self.device_type}][{self.service_type}] {self.friendly_name} @ {self.location}"


# Resolution requests


@dataclass(frozen=True, slots=True)
class ExplicitAddress:
    """Use the description at this URL; no discovery scan."""

    address: str


@dataclass(frozen=True, slots=True)
class NameQuery:
    """Discover, then pick the first device whose name contains `query`."""

    timeout: float
    query: str


@dataclass(frozen=True, slots=True)
class First:
    """Discover, then pick the first device that answered."""

    timeout: float


@dataclass(frozen=True, slots=True)
class All:
    """Discover and return every device."""

    timeout: float


RenderSpec = ExplicitAddress | NameQuery | First | All


class RendererControl(Protocol):
    """
    What the playback session needs from a device.

    Devices lacking an action report it as ControlCommandError at call time.
    """

    render: Render

    async def set_uri(self, media_url: str, metadata: str = "") -> None: ...

    async def play(self, speed: str = "1") -> None: ...

    async def pause(self) -> None: ...

    async def stop(self) -> None: ...

    async def get_transport_info(self) -> TransportInfo: ...

    async def get_position_info(self) -> PositionInfo: ...
