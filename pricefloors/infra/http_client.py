from typing import Any

import httpx

from pricefloors.core.errors import FetchError

USER_AGENT = "pricefloors/0.1"


async def get_floors_payload(url: str, *, timeout: float = 10.0) -> Any:
    """
    GET the remote rule catalog.
    Returns the raw body text; the caller parses it.
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, headers={"User-Agent": USER_AGENT}) as client:
            r = await client.get(url)
    except httpx.HTTPError as e:
        raise FetchError(f"GET {url} failed: {e}") from e

    if r.status_code != 200:
        raise FetchError(f"GET {url} -> {r.status_code}")
    return r.text
