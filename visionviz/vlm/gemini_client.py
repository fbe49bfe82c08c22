"""
Gemini Client: Google Gemini via the Generative Language REST API.

Requires: GEMINI_API_KEY environment variable (or api_key argument)

Used for both text detection (image in, 0-1000 boxes out) and
visualization planning (text in, 2D/3D plan out).
"""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import httpx

from visionviz.vlm.vlm_types import DETECTION_PROMPT, PLANNING_PROMPT, parse_json_response

logger = logging.getLogger(__name__)


class GeminiClient:
    """
    Gemini-based text detection and visualization planning.

    Cost: free tier / pay-per-token
    Speed: 1-3s per image
    """

    API_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "gemini-2.0-flash",
        timeout: float = 120.0,
        verbose: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        api_key = api_key or os.getenv("GEMINI_API_KEY")
        if not api_key:
            raise ValueError(
                "GEMINI_API_KEY not set. Either:\n"
                "  1. Set GEMINI_API_KEY environment variable, or\n"
                '  2. Use provider "ollama" for free local inference'
            )

        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.verbose = verbose
        self.call_count = 0
        self.total_time_ms = 0.0
        self._transport = transport

    async def detect_text(self, image_b64: str, mime_type: str = "image/jpeg") -> Dict:
        """
        Detect text blocks in a base64 image.

        Returns:
            {"blocks": [{"text": ..., "box_2d": [ymin, xmin, ymax, xmax]}]}
            or {"parse_error": ...} when the model answered with non-JSON.
        """
        parts = [
            {"text": DETECTION_PROMPT},
            {"inline_data": {"mime_type": mime_type, "data": image_b64}},
        ]
        text = await self._generate(parts, json_mode=True)
        if text is None:
            return {"blocks": []}

        result = parse_json_response(text)
        if self.verbose and "blocks" in result:
            logger.info(f"  Gemini: {len(result['blocks'])} blocks")
        return result

    async def plan_visualization(self, text: str) -> Dict[str, Any]:
        """Ask for a 2D/3D visualization plan for ``text``."""
        generated = await self._generate(
            [{"text": PLANNING_PROMPT.format(text=text)}], json_mode=False
        )
        if generated is None:
            raise RuntimeError("No response from Gemini")
        return parse_json_response(generated)

    async def _generate(self, parts: List[Dict], json_mode: bool) -> Optional[str]:
        """Make API call; returns the first candidate's text or None."""
        self.call_count += 1
        start_time = time.time()

        body: Dict[str, Any] = {"contents": [{"parts": parts}]}
        if json_mode:
            body["generationConfig"] = {"response_mime_type": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                self.API_URL.format(model=self.model),
                params={"key": self.api_key},
                json=body,
            )

        self.total_time_ms += (time.time() - start_time) * 1000

        if response.status_code != 200:
            raise RuntimeError(f"Gemini error: {response.status_code} - {_error_message(response)}")

        data = response.json()
        candidates = data.get("candidates") or []
        if not candidates:
            return None
        try:
            return candidates[0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None

    def get_stats(self) -> Dict:
        return {
            "call_count": self.call_count,
            "total_time_ms": self.total_time_ms,
            "avg_time_ms": self.total_time_ms / max(self.call_count, 1),
            "model": self.model,
        }


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error", {}).get("message") or response.text
    except (ValueError, AttributeError):
        return response.text
