"""
AVTransport:1 SOAP control client.

Every action is one HTTP POST of a SOAP 1.1 envelope to the control URL
taken from the device description:

    POST /AVTransport/Control HTTP/1.1
    Content-Type: text/xml; charset="utf-8"
    SOAPACTION: "urn:schemas-upnp-org:service:AVTransport:1#Play"

    <s:Envelope ...><s:Body>
      <u:Play xmlns:u="urn:schemas-upnp-org:service:AVTransport:1">
        <InstanceID>0</InstanceID><Speed>1</Speed>
      </u:Play>
    </s:Body></s:Envelope>

Errors come back as HTTP 500 with a SOAP Fault whose detail holds a
<UPnPError> with errorCode and errorDescription.

Retry policy:
    - GetTransportInfo / GetPositionInfo are retried once on timeout or
      connection failure
    - SetAVTransportURI / Play / Pause / Stop are never retried
    - device faults are never retried

Reference: UPnP AVTransport:1 Service Template, sections 2.4.1 - 2.4.12
"""

from __future__ import annotations

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING
from xml.sax.saxutils import escape

import httpx

from dlnacast.core import DlnaCastError

if TYPE_CHECKING:
    from dlnacast.player.render import Render

logger = logging.getLogger(__name__)

SERVICE_TYPE = "urn:schemas-upnp-org:service:AVTransport:1"
INSTANCE_ID = "0"
DEFAULT_TIMEOUT = 5.0

_DURATION = re.compile(r"^\s*(\d+):(\d{1,2}):(\d{1,2})(?:\.(\d+)(?:/(\d+))?)?\s*$")


class ControlErrorKind(Enum):
    """Why a control action failed."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    DEVICE_FAULT = "device_fault"
    HTTP = "http"
    PARSE = "parse"


class ControlCommandError(DlnaCastError):
    """
    Raised when an AVTransport action fails.

    For DEVICE_FAULT, `code` holds the UPnP errorCode (e.g. 701 "Transition
    not available") and the message holds errorDescription.
    """

    def __init__(
        self,
        kind: ControlErrorKind,
        message: str,
        *,
        action: str = "",
        code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.action = action
        self.code = code

    def __str__(self) -> str:
        prefix = f"{self.action}: " if self.action else ""
        if self.code is not None:
            return f"{prefix}device fault {self.code}: {self.args[0]}"
        return f"{prefix}{self.args[0]}"


class TransportState(Enum):
    """Transport state as reported by GetTransportInfo."""

    STOPPED = "Stopped"
    PLAYING = "Playing"
    PAUSED = "Paused"
    TRANSITIONING = "Transitioning"
    NO_MEDIA_PRESENT = "NoMediaPresent"
    ERROR = "Error"

    @classmethod
    def from_device(cls, value: str) -> TransportState:
        """Map a CurrentTransportState string; unknown values map to ERROR."""
        return _DEVICE_STATES.get(value.strip().upper(), cls.ERROR)

    @property
    def is_finished(self) -> bool:
        """True when the renderer has nothing playing any more."""
        return self in (TransportState.STOPPED, TransportState.NO_MEDIA_PRESENT)


_DEVICE_STATES = {
    "STOPPED": TransportState.STOPPED,
    "PLAYING": TransportState.PLAYING,
    "PAUSED_PLAYBACK": TransportState.PAUSED,
    "PAUSED_RECORDING": TransportState.PAUSED,
    "TRANSITIONING": TransportState.TRANSITIONING,
    "NO_MEDIA_PRESENT": TransportState.NO_MEDIA_PRESENT,
}


@dataclass(frozen=True, slots=True)
class TransportInfo:
    """GetTransportInfo result."""

    state: TransportState
    status: str = "OK"
    speed: str = "1"


@dataclass(frozen=True, slots=True)
class PositionInfo:
    """GetPositionInfo result, with times converted to seconds."""

    elapsed: float = 0.0
    duration: float = 0.0
    track: int = 0
    track_uri: str = ""
    track_metadata: str = ""
    rel_time: str = ""
    abs_time: str = ""

    @property
    def progress(self) -> float:
        """Fraction played in [0, 1], 0 when the duration is unknown."""
        if self.duration <= 0:
            return 0.0
        return max(0.0, min(1.0, self.elapsed / self.duration))


def parse_duration(value: str | None) -> float:
    """
    Parse an AVTransport time value into seconds.

    Accepts ``H+:MM:SS``, ``H+:MM:SS.F+`` and ``H+:MM:SS.F0/F1``. Anything
    else (``NOT_IMPLEMENTED``, empty, garbage) is 0.
    """
    if not value:
        return 0.0
    match = _DURATION.match(value)
    if match is None:
        return 0.0

    hours, minutes, seconds, frac, denominator = match.groups()
    total = int(hours) * 3600 + int(minutes) * 60 + int(seconds)
    if frac:
        if denominator and int(denominator) > 0:
            total += int(frac) / int(denominator)
        else:
            total += float(f"0.{frac}")
    return float(total)


def format_duration(seconds: float) -> str:
    """Format seconds as ``H:MM:SS``."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours}:{minutes:02d}:{secs:02d}"


def build_didl_lite(
    title: str,
    media_url: str,
    mime_type: str,
    *,
    subtitle_url: str | None = None,
    subtitle_type: str = "srt",
    upnp_class: str = "object.item.videoItem.movie",
) -> str:
    """
    Build DIDL-Lite metadata for SetAVTransportURI.

    Subtitles are announced three ways because renderers disagree on which
    one they read: a second <res>, Samsung's sec:CaptionInfo(Ex) and
    the pv:subtitleFileUri attribute.
    """
    title = escape(title)
    media_url = escape(media_url)

    subtitle_attrs = ""
    subtitle_elements = ""
    if subtitle_url:
        sub = escape(subtitle_url)
        subtitle_attrs = f' pv:subtitleFileUri="{sub}" pv:subtitleFileType="{subtitle_type}"'
        subtitle_elements = (
            f'<res protocolInfo="http-get:*:text/{subtitle_type}:*">{sub}</res>'
            f'<sec:CaptionInfoEx sec:type="{subtitle_type}">{sub}</sec:CaptionInfoEx>'
            f'<sec:CaptionInfo sec:type="{subtitle_type}">{sub}</sec:CaptionInfo>'
        )

    return (
        '<DIDL-Lite xmlns="urn:schemas-upnp-org:metadata-1-0/DIDL-Lite/" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:upnp="urn:schemas-upnp-org:metadata-1-0/upnp/" '
        'xmlns:dlna="urn:schemas-dlna-org:metadata-1-0/" '
        'xmlns:sec="http://www.sec.co.kr/" '
        'xmlns:pv="http://www.pv.com/pvns/">'
        '<item id="0" parentID="-1" restricted="1">'
        f"<dc:title>{title}</dc:title>"
        f"<upnp:class>{upnp_class}</upnp:class>"
        f'<res protocolInfo="http-get:*:{mime_type}:*"{subtitle_attrs}>{media_url}</res>'
        f"{subtitle_elements}"
        "</item>"
        "</DIDL-Lite>"
    )


def build_envelope(action: str, arguments: dict[str, str]) -> str:
    """Build the SOAP envelope for an action. Argument values are XML-escaped."""
    body = "".join(f"<{name}>{escape(value)}</{name}>" for name, value in arguments.items())
    return (
        '<?xml version="1.0" encoding="utf-8"?>'
        '<s:Envelope xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
        's:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">'
        "<s:Body>"
        f'<u:{action} xmlns:u="{SERVICE_TYPE}">{body}</u:{action}>'
        "</s:Body>"
        "</s:Envelope>"
    )


def _local_name(tag: str) -> str:
    return tag.rpartition("}")[2]


def parse_fault(content: bytes) -> tuple[int | None, str] | None:
    """
    Extract (errorCode, errorDescription) from a SOAP fault body.

    Returns:
        None if the body is not a SOAP fault.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError:
        return None

    fault = root.find(".//{*}Fault")
    if fault is None:
        return None

    error = fault.find(".//{*}UPnPError")
    if error is not None:
        code_text = (error.findtext("{*}errorCode") or "").strip()
        description = (error.findtext("{*}errorDescription") or "").strip()
        code = int(code_text) if code_text.isdigit() else None
        return code, description or "UPnP error"

    return None, (fault.findtext("faultstring") or "SOAP fault").strip()


def parse_action_response(content: bytes, action: str) -> dict[str, str]:
    """
    Return the output arguments of an ``<u:ActionResponse>`` element.

    Raises:
        ControlCommandError: PARSE if the body is not a SOAP response.
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise ControlCommandError(
            ControlErrorKind.PARSE, f"Malformed SOAP response: {e}", action=action
        ) from e

    body = root.find("{*}Body")
    if body is None or len(body) == 0:
        raise ControlCommandError(
            ControlErrorKind.PARSE, "SOAP response has no Body", action=action
        )

    return {_local_name(child.tag): (child.text or "").strip() for child in body[0]}


class AVTransportClient:
    """
    Typed AVTransport actions against one Render.

    The client owns an httpx.AsyncClient unless one is passed in. Use as an
    async context manager, or call `aclose()` when done.
    """

    def __init__(
        self,
        render: Render,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        status_retries: int = 1,
    ) -> None:
        self.render = render
        self.timeout = timeout
        # Status calls are retried at most once
        self.status_retries = max(0, min(status_retries, 1))
        self._client = client or httpx.AsyncClient()
        self._owns_client = client is None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> AVTransportClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _post(self, action: str, arguments: dict[str, str]) -> httpx.Response:
        """Send one request, translating transport failures."""
        headers = {
            "Content-Type": 'text/xml; charset="utf-8"',
            "SOAPACTION": f'"{SERVICE_TYPE}#{action}"',
        }
        envelope = build_envelope(action, arguments)
        try:
            return await self._client.post(
                self.render.control_url,
                content=envelope.encode("utf-8"),
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise ControlCommandError(
                ControlErrorKind.TIMEOUT,
                f"No response from {self.render.friendly_name} within {self.timeout:g}s",
                action=action,
            ) from e
        except httpx.TransportError as e:
            raise ControlCommandError(
                ControlErrorKind.CONNECTION,
                f"Cannot reach {self.render.friendly_name}: {e}",
                action=action,
            ) from e

    async def _invoke(
        self,
        action: str,
        arguments: dict[str, str] | None = None,
        *,
        idempotent: bool = False,
    ) -> dict[str, str]:
        """
        Invoke an action and return its output arguments.

        Only idempotent actions are retried, and only on TIMEOUT/CONNECTION.
        """
        args = {"InstanceID": INSTANCE_ID, **(arguments or {})}
        attempts = 1 + (self.status_retries if idempotent else 0)

        for attempt in range(1, attempts + 1):
            try:
                response = await self._post(action, args)
                break
            except ControlCommandError as e:
                if attempt >= attempts:
                    raise
                logger.debug("%s failed (%s), retrying (%d/%d)", action, e, attempt, attempts - 1)

        if response.status_code >= 400:
            fault = parse_fault(response.content)
            if fault is not None:
                code, description = fault
                logger.debug("%s fault from %s: %s %s", action, self.render.friendly_name, code, description)
                raise ControlCommandError(
                    ControlErrorKind.DEVICE_FAULT, description, action=action, code=code
                )
            raise ControlCommandError(
                ControlErrorKind.HTTP,
                f"HTTP {response.status_code} from {self.render.control_url}",
                action=action,
            )

        return parse_action_response(response.content, action)

    async def set_uri(self, media_url: str, metadata: str = "") -> None:
        """SetAVTransportURI. Must precede play() for a new item."""
        logger.info("Loading %s on %s", media_url, self.render.friendly_name)
        await self._invoke(
            "SetAVTransportURI",
            {"CurrentURI": media_url, "CurrentURIMetaData": metadata},
        )

    async def play(self, speed: str = "1") -> None:
        logger.debug("Play on %s", self.render.friendly_name)
        await self._invoke("Play", {"Speed": speed})

    async def pause(self) -> None:
        logger.debug("Pause on %s", self.render.friendly_name)
        await self._invoke("Pause")

    async def stop(self) -> None:
        logger.debug("Stop on %s", self.render.friendly_name)
        await self._invoke("Stop")

    async def get_transport_info(self) -> TransportInfo:
        result = await self._invoke("GetTransportInfo", idempotent=True)
        return TransportInfo(
            state=TransportState.from_device(result.get("CurrentTransportState", "")),
            status=result.get("CurrentTransportStatus", ""),
            speed=result.get("CurrentSpeed", ""),
        )

    async def get_position_info(self) -> PositionInfo:
        result = await self._invoke("GetPositionInfo", idempotent=True)
        track = result.get("Track", "0")
        return PositionInfo(
            elapsed=parse_duration(result.get("RelTime")),
            duration=parse_duration(result.get("TrackDuration")),
            track=int(track) if track.isdigit() else 0,
            track_uri=result.get("TrackURI", ""),
            track_metadata=result.get("TrackMetaData", ""),
            rel_time=result.get("RelTime", ""),
            abs_time=result.get("AbsTime", ""),
        )
