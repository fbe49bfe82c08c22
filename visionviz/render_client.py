"""
Client for the remote 3D rendering endpoint.

The endpoint accepts ``POST {endpoint}/render`` with JSON ``{"script": ...}``
(a Blender Python script) and answers with the binary model asset (GLB).
"""

import logging
import time
from typing import Optional

import httpx

from visionviz.errors import MissingEndpointError, RenderError

logger = logging.getLogger(__name__)


def normalize_endpoint(endpoint: Optional[str]) -> Optional[str]:
    if endpoint is None:
        return None
    endpoint = endpoint.strip().rstrip("/")
    return endpoint or None


class RenderClient:
    """Posts 3D scripts to the renderer and returns the asset bytes."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout: float = 300.0,
        verbose: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._endpoint = normalize_endpoint(endpoint)
        self.timeout = timeout
        self.verbose = verbose
        self._transport = transport
        self.call_count = 0

    @property
    def endpoint(self) -> Optional[str]:
        return self._endpoint

    @endpoint.setter
    def endpoint(self, value: Optional[str]) -> None:
        self._endpoint = normalize_endpoint(value)

    @property
    def configured(self) -> bool:
        return self._endpoint is not None

    async def render(self, script: str) -> bytes:
        """
        Render a 3D script remotely.

        Raises:
            MissingEndpointError: no endpoint configured (no request is made)
            RenderError: transport failure, non-200 status, or empty body
        """
        if self._endpoint is None:
            raise MissingEndpointError("3D render endpoint is not configured")

        url = f"{self._endpoint}/render"
        start_time = time.time()
        self.call_count += 1

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(url, json={"script": script})
        except httpx.HTTPError as e:
            raise RenderError(f"Render request failed: {e}") from e

        elapsed_ms = (time.time() - start_time) * 1000
        if self.verbose:
            logger.info(f"  Render: {response.status_code} in {elapsed_ms:.0f}ms")

        if response.status_code != 200:
            raise RenderError(
                f"Render endpoint returned {response.status_code}: {response.text[:200]}"
            )
        if not response.content:
            raise RenderError("Render endpoint returned an empty asset")
        return response.content
