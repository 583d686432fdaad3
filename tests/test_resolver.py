"""
Tests for render resolution.

Discovery and description fetching are injected, so no network is used.
"""

from unittest.mock import AsyncMock

import pytest

from dlnacast.player.render import All, ExplicitAddress, First, NameQuery, Render
from dlnacast.player.resolver import (
    ResolutionError,
    ResolutionErrorKind,
    match_name,
    resolve,
    resolve_all,
)
from dlnacast.protocol.description import DescriptionError


def make_render(name: str) -> Render:
    location = f"http://{name.lower()}.local:1234/desc.xml"
    return Render(
        friendly_name=name,
        udn=f"uuid:{name}",
        location=location,
        control_url=f"http://{name.lower()}.local:1234/AVTransport/control",
        device_type="urn:schemas-upnp-org:device:MediaRenderer:1",
        service_type="urn:schemas-upnp-org:service:AVTransport:1",
    )


KODI = make_render("Kodi")
OSMC = make_render("osmc-player")


class TestMatchName:
    """Tests for friendly-name matching."""

    def test_substring_case_insensitive(self) -> None:
        assert match_name([KODI, OSMC], "OSMC") is OSMC

    def test_first_match_wins(self) -> None:
        other = make_render("osmc-bedroom")

        assert match_name([OSMC, other], "osmc") is OSMC

    def test_no_match(self) -> None:
        assert match_name([KODI], "sonos") is None


class TestResolve:
    """Tests for resolve()."""

    async def test_explicit_address_never_discovers(self) -> None:
        discover = AsyncMock(return_value=[KODI])
        fetch = AsyncMock(return_value=OSMC)

        render = await resolve(ExplicitAddress(OSMC.location), discover=discover, fetch=fetch)

        assert render is OSMC
        fetch.assert_awaited_once_with(OSMC.location)
        assert discover.await_count == 0

    async def test_explicit_address_unreachable(self) -> None:
        fetch = AsyncMock(side_effect=DescriptionError("connection refused"))

        with pytest.raises(ResolutionError) as exc_info:
            await resolve(ExplicitAddress("http://10.0.0.9/desc.xml"), discover=AsyncMock(), fetch=fetch)

        assert exc_info.value.kind is ResolutionErrorKind.NOT_FOUND

    @pytest.mark.parametrize(
        "address",
        ["not a url", "ftp://10.0.0.1/desc.xml", "http:///desc.xml", "http://[::1/desc.xml"],
    )
    async def test_explicit_address_invalid(self, address: str) -> None:
        fetch = AsyncMock()

        with pytest.raises(ResolutionError) as exc_info:
            await resolve(ExplicitAddress(address), discover=AsyncMock(), fetch=fetch)

        assert exc_info.value.kind is ResolutionErrorKind.INVALID_ADDRESS
        assert fetch.await_count == 0

    async def test_name_query(self) -> None:
        """Querying "osmc" picks osmc-player even when Kodi answered first."""
        discover = AsyncMock(return_value=[KODI, OSMC])

        render = await resolve(NameQuery(timeout=2.0, query="osmc"), discover=discover)

        assert render is OSMC
        discover.assert_awaited_once_with(2.0)

    async def test_name_query_not_found(self) -> None:
        discover = AsyncMock(return_value=[KODI, OSMC])

        with pytest.raises(ResolutionError) as exc_info:
            await resolve(NameQuery(timeout=1.0, query="sonos"), discover=discover)

        assert exc_info.value.kind is ResolutionErrorKind.NOT_FOUND

    async def test_first(self) -> None:
        discover = AsyncMock(return_value=[KODI, OSMC])

        assert await resolve(First(timeout=1.0), discover=discover) is KODI

    async def test_first_on_empty_network(self) -> None:
        with pytest.raises(ResolutionError) as exc_info:
            await resolve(First(timeout=1.0), discover=AsyncMock(return_value=[]))

        assert exc_info.value.kind is ResolutionErrorKind.NOT_FOUND

    async def test_all_is_rejected(self) -> None:
        """`All` belongs to resolve_all(); resolve() refuses it without scanning."""
        discover = AsyncMock(return_value=[KODI])

        with pytest.raises(TypeError, match="resolve_all"):
            await resolve(All(timeout=1.0), discover=discover)

        assert discover.await_count == 0


class TestResolveAll:
    """Tests for resolve_all()."""

    async def test_all_returns_everything(self) -> None:
        discover = AsyncMock(return_value=[KODI, OSMC])

        assert await resolve_all(All(timeout=1.0), discover=discover) == [KODI, OSMC]

    async def test_all_on_empty_network(self) -> None:
        assert await resolve_all(All(timeout=1.0), discover=AsyncMock(return_value=[])) == []

    async def test_single_spec_wrapped_in_list(self) -> None:
        discover = AsyncMock(return_value=[KODI, OSMC])

        assert await resolve_all(NameQuery(timeout=1.0, query="kodi"), discover=discover) == [KODI]
