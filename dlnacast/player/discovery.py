"""
Media renderer discovery.

Runs one SSDP search and turns the answers into Render records:

1. Send M-SEARCH for the AVTransport service
2. For each new LOCATION, start fetching the description right away
3. When the timeout expires, cancel fetches that are still running
4. Drop devices without AVTransport and duplicates (by UDN)

Results keep the order in which devices first answered, which makes
"first device" and name matching deterministic for a given network.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from dlnacast.config import DiscoverySettings, get_config
from dlnacast.player.render import Render
from dlnacast.protocol.description import DescriptionError, fetch_description
from dlnacast.protocol.ssdp import SSDPSearch

logger = logging.getLogger(__name__)


async def fetch_render(
    location: str,
    client: httpx.AsyncClient | None = None,
    timeout: float = 5.0,
) -> Render:
    """
    Fetch a description and build a Render from it.

    Raises:
        DescriptionError: If the description is unreachable, malformed, or
            the device has no AVTransport service.
    """
    description = await fetch_description(location, client=client, timeout=timeout)
    return Render.from_description(location, description)


async def _try_fetch_render(client: httpx.AsyncClient, location: str, timeout: float) -> Render | None:
    try:
        return await fetch_render(location, client=client, timeout=timeout)
    except DescriptionError as e:
        logger.warning("Skipping device at %s: %s", location, e)
        return None


async def discover(timeout: float, settings: DiscoverySettings | None = None) -> list[Render]:
    """
    Discover media renderers on the local network.

    Args:
        timeout: Seconds to wait. The call returns no later than this.
        settings: Discovery settings; defaults to the loaded config.

    Returns:
        Renders in first-response order. Empty if nothing answered.

    Raises:
        DiscoveryError: If the search could not be sent.
    """
    if settings is None:
        settings = get_config().discovery

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    mx = max(1, min(settings.mx, int(timeout)))

    seen_locations: set[str] = set()
    fetches: list[asyncio.Task[Render | None]] = []

    async with httpx.AsyncClient() as client:
        async with SSDPSearch(
            search_target=settings.search_target,
            mx=mx,
            ttl=settings.ttl,
            attempts=settings.attempts,
        ) as search:
            while (remaining := deadline - loop.time()) > 0:
                try:
                    response = await asyncio.wait_for(search.responses.get(), remaining)
                except asyncio.TimeoutError:
                    break

                if response.location in seen_locations:
                    continue
                seen_locations.add(response.location)
                fetches.append(
                    asyncio.create_task(_try_fetch_render(client, response.location, remaining))
                )

        pending = [task for task in fetches if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.debug("Cancelled %d description fetch(es) at discovery deadline", len(pending))
        await asyncio.gather(*fetches, return_exceptions=True)

    renders: list[Render] = []
    seen_udns: set[str] = set()
    for task in fetches:
        if task.cancelled() or task.exception() is not None:
            continue
        render = task.result()
        if render is None:
            continue
        key = render.udn or render.location
        if key in seen_udns:
            continue
        seen_udns.add(key)
        renders.append(render)

    logger.info("Discovered %d renderer(s)", len(renders))
    return renders
