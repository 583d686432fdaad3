"""
Render resolution.

Turns a RenderSpec into Render handles:

- ExplicitAddress: fetch that one description (no discovery)
- NameQuery: discover, first device whose friendly name contains the query
  (case-insensitive)
- First: discover, first device that answered
- All: discover, every device (used for listing)

The public contract is split by result shape: `resolve()` takes the three
single-device specs and returns one Render, `resolve_all()` takes any spec
(All included) and returns a list. An empty network is an error for
`resolve()` and an empty list for `resolve_all(All)`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Awaitable, Callable
from urllib.parse import urlparse

from dlnacast.core import DlnaCastError
from dlnacast.player import discovery
from dlnacast.player.render import All, ExplicitAddress, First, NameQuery, Render, RenderSpec
from dlnacast.protocol.description import DescriptionError

logger = logging.getLogger(__name__)

DiscoverFn = Callable[[float], Awaitable[list[Render]]]
FetchFn = Callable[[str], Awaitable[Render]]


class ResolutionErrorKind(Enum):
    NOT_FOUND = "not_found"
    INVALID_ADDRESS = "invalid_address"


class ResolutionError(DlnaCastError):
    """Raised when a RenderSpec cannot be turned into a device."""

    def __init__(self, kind: ResolutionErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind


def _validate_address(address: str) -> None:
    try:
        parsed = urlparse(address)
        hostname = parsed.hostname
    except ValueError as e:
        # Unbalanced IPv6 brackets and the like
        raise ResolutionError(
            ResolutionErrorKind.INVALID_ADDRESS,
            f"Not a device description URL: {address!r} ({e})",
        ) from e
    if parsed.scheme not in ("http", "https") or not hostname:
        raise ResolutionError(
            ResolutionErrorKind.INVALID_ADDRESS,
            f"Not a device description URL: {address!r}",
        )


def match_name(renders: list[Render], query: str) -> Render | None:
    """First render whose friendly name contains `query`, ignoring case."""
    needle = query.casefold()
    for render in renders:
        if needle in render.friendly_name.casefold():
            return render
    return None


async def resolve(
    spec: RenderSpec,
    *,
    discover: DiscoverFn | None = None,
    fetch: FetchFn | None = None,
) -> Render:
    """
    Resolve a spec to a single Render.

    Args:
        spec: ExplicitAddress, NameQuery or First. `All` describes a list,
            not a device; pass it to `resolve_all()` instead.
        discover: Discovery function, injectable for tests.
        fetch: Description fetcher for ExplicitAddress, injectable for tests.

    Raises:
        ResolutionError: NOT_FOUND or INVALID_ADDRESS.
        DiscoveryError: If discovery could not run at all.
        TypeError: If given `All`.
    """
    discover = discover or discovery.discover
    fetch = fetch or discovery.fetch_render

    if isinstance(spec, ExplicitAddress):
        _validate_address(spec.address)
        try:
            render = await fetch(spec.address)
        except DescriptionError as e:
            raise ResolutionError(ResolutionErrorKind.NOT_FOUND, str(e)) from e
        logger.info("Using renderer %s", render.friendly_name)
        return render

    if isinstance(spec, NameQuery):
        renders = await discover(spec.timeout)
        render = match_name(renders, spec.query)
        if render is None:
            raise ResolutionError(
                ResolutionErrorKind.NOT_FOUND,
                f"No renderer matching {spec.query!r} among {len(renders)} found",
            )
        logger.info("Renderer %s matches query %r", render.friendly_name, spec.query)
        return render

    if isinstance(spec, First):
        renders = await discover(spec.timeout)
        if not renders:
            raise ResolutionError(ResolutionErrorKind.NOT_FOUND, "No renderers found")
        return renders[0]

    raise TypeError(f"resolve() needs a single-device spec, got {spec!r}; use resolve_all()")


async def resolve_all(
    spec: RenderSpec,
    *,
    discover: DiscoverFn | None = None,
    fetch: FetchFn | None = None,
) -> list[Render]:
    """
    Resolve a spec to a list of Renders.

    `All` returns every discovered device and never fails on an empty
    network; other specs return a one-element list or raise like `resolve`.
    """
    if isinstance(spec, All):
        discover = discover or discovery.discover
        return await discover(spec.timeout)
    return [await resolve(spec, discover=discover, fetch=fetch)]
