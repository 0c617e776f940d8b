"""
Provider HTTP Helper
Shared httpx request wrapper that turns transport failures into ProviderError
"""
import logging
from typing import Any, Optional

import httpx

from salescaller.domain.exceptions import ProviderError

logger = logging.getLogger(__name__)


async def provider_request(
    provider: str,
    method: str,
    url: str,
    timeout: float = 30.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs: Any
) -> httpx.Response:
    """
    Send one request to a provider API.

    Args:
        provider: Provider name for error messages
        method: HTTP method
        url: Absolute URL
        timeout: Seconds before the request is abandoned
        transport: Optional httpx transport (tests use httpx.MockTransport)
        **kwargs: Passed to httpx (json, data, auth, headers, params)

    Returns:
        The successful response

    Raises:
        ProviderError: Timeout, connection failure or non-2xx status
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
            return response
    except httpx.TimeoutException as e:
        raise ProviderError(provider, f"Request timed out after {timeout}s: {e}")
    except httpx.HTTPStatusError as e:
        body = e.response.text[:300]
        logger.error(f"{provider} returned HTTP {e.response.status_code}: {body}")
        raise ProviderError(
            provider,
            f"HTTP {e.response.status_code}: {body}",
            {"status_code": e.response.status_code}
        )
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"Request failed: {e}")


def json_body(provider: str, response: httpx.Response) -> Any:
    """Decode a JSON response, raising ProviderError when the provider sent something else."""
    try:
        return response.json()
    except ValueError:
        raise ProviderError(provider, f"Unexpected non-JSON response: {response.text[:200]}")
