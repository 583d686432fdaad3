"""
SSDP search client for dlnacast.

Media renderers are found with the Simple Service Discovery Protocol: an
HTTP-over-UDP ``M-SEARCH`` request is multicast to 239.255.255.250:1900 and
every matching device answers with a unicast ``HTTP/1.1 200 OK`` whose
``LOCATION`` header points at its device description XML.

M-SEARCH request:
    M-SEARCH * HTTP/1.1
    HOST: 239.255.255.250:1900
    MAN: "ssdp:discover"
    MX: <max response delay in seconds>
    ST: <search target>

Reference: UPnP Device Architecture 1.1, section 1.3
"""

from __future__ import annotations

import asyncio
import logging
import socket
from dataclasses import dataclass

from dlnacast.core import DlnaCastError

logger = logging.getLogger(__name__)

SSDP_ADDR = "239.255.255.250"
SSDP_PORT = 1900

AVTRANSPORT_SERVICE = "urn:schemas-upnp-org:service:AVTransport:1"


class DiscoveryError(DlnaCastError):
    """Raised when the discovery socket cannot be opened or a search cannot be sent."""


@dataclass(frozen=True, slots=True)
class SSDPResponse:
    """A parsed search response."""

    location: str
    usn: str = ""
    st: str = ""
    server: str = ""


def build_msearch(search_target: str = AVTRANSPORT_SERVICE, mx: int = 3) -> bytes:
    """Build an M-SEARCH request packet."""
    lines = [
        "M-SEARCH * HTTP/1.1",
        f"HOST: {SSDP_ADDR}:{SSDP_PORT}",
        'MAN: "ssdp:discover"',
        f"MX: {mx}",
        f"ST: {search_target}",
        "",
        "",
    ]
    return "\r\n".join(lines).encode("ascii")


def parse_response(data: bytes) -> SSDPResponse | None:
    """
    Parse a unicast search response.

    Returns:
        The response, or None for NOTIFY packets, other requests, non-200
        answers and answers without a LOCATION header.
    """
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\r\n") if "\r\n" in text else text.split("\n")
    status = lines[0].split(None, 2)
    if len(status) < 2 or not status[0].upper().startswith("HTTP/") or status[1] != "200":
        return None

    headers: dict[str, str] = {}
    for line in lines[1:]:
        name, sep, value = line.partition(":")
        if sep:
            headers[name.strip().lower()] = value.strip()

    location = headers.get("location")
    if not location:
        return None

    return SSDPResponse(
        location=location,
        usn=headers.get("usn", ""),
        st=headers.get("st", ""),
        server=headers.get("server", ""),
    )


class SSDPSearchProtocol(asyncio.DatagramProtocol):
    """
    Asyncio UDP protocol that collects SSDP search responses.

    Parsed responses are put on `responses` in arrival order.
    """

    def __init__(self) -> None:
        self.transport: asyncio.DatagramTransport | None = None
        self.responses: asyncio.Queue[SSDPResponse] = asyncio.Queue()

    def connection_made(self, transport: asyncio.DatagramTransport) -> None:  # type: ignore[override]
        """Called when the UDP socket is ready."""
        self.transport = transport

    def datagram_received(self, data: bytes, addr: tuple[str, int]) -> None:
        response = parse_response(data)
        if response is None:
            logger.debug("Ignoring non-response SSDP packet from %s:%d", addr[0], addr[1])
            return
        logger.debug("SSDP response from %s:%d -> %s", addr[0], addr[1], response.location)
        self.responses.put_nowait(response)

    def error_received(self, exc: Exception) -> None:
        """Handle UDP socket errors."""
        logger.warning("SSDP socket error: %s", exc)


class SSDPSearch:
    """
    One SSDP search run.

    Usage:
        async with SSDPSearch(mx=3) as search:
            response = await search.responses.get()
    """

    def __init__(
        self,
        search_target: str = AVTRANSPORT_SERVICE,
        mx: int = 3,
        ttl: int = 3,
        attempts: int = 3,
    ) -> None:
        self.search_target = search_target
        self.mx = mx
        self.ttl = ttl
        self.attempts = attempts

        self._transport: asyncio.DatagramTransport | None = None
        self._protocol: SSDPSearchProtocol | None = None

    @property
    def responses(self) -> asyncio.Queue[SSDPResponse]:
        if self._protocol is None:
            raise RuntimeError("SSDP search not started")
        return self._protocol.responses

    async def start(self) -> None:
        """
        Open the UDP socket and send the M-SEARCH packets.

        Raises:
            DiscoveryError: If the socket cannot be created or the send fails.
        """
        loop = asyncio.get_running_loop()

        try:
            self._transport, self._protocol = await loop.create_datagram_endpoint(
                SSDPSearchProtocol,
                local_addr=("0.0.0.0", 0),
                family=socket.AF_INET,
            )

            sock = self._transport.get_extra_info("socket")
            if sock:
                sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, self.ttl)

            packet = build_msearch(self.search_target, self.mx)
            for _ in range(self.attempts):
                self._transport.sendto(packet, (SSDP_ADDR, SSDP_PORT))
        except OSError as e:
            self.close()
            raise DiscoveryError(f"Failed to send SSDP search: {e}") from e

        logger.debug(
            "Sent %d M-SEARCH packet(s) for %s (MX=%d, TTL=%d)",
            self.attempts,
            self.search_target,
            self.mx,
            self.ttl,
        )

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    async def __aenter__(self) -> SSDPSearch:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()
