"""Outbound HTTP helpers shared by the vendor clients."""
from typing import Any, Dict, Optional

import httpx

from licenselink.core.errors import UpstreamError


async def send(client: httpx.AsyncClient, provider: str, method: str, url: str, **kwargs) -> httpx.Response:
    """Issue one request; transport failures become UpstreamError. Never retries."""
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TimeoutException:
        raise UpstreamError(provider, f"{method} {url} timed out", timeout=True)
    except httpx.HTTPError as e:
        raise UpstreamError(provider, f"{method} {url} failed: {e.__class__.__name__}")


def json_body(response: httpx.Response) -> Optional[Dict[str, Any]]:
    """Decode a JSON object body; empty or non-JSON bodies yield None."""
    if not response.content:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else {"data": body}
