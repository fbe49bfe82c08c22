"""
Ollama Client: local Qwen2.5-VL via Ollama for free on-device detection.

Uses Ollama to run Qwen2.5-VL locally - completely free, no API keys needed.

Setup:
    brew install ollama && ollama serve
    ollama pull qwen2.5vl:7b

Models:
    - qwen2.5vl:3b  (3.2GB) - edge/lightweight
    - qwen2.5vl:7b  (6GB)   - recommended
    - qwen2.5vl:32b (21GB)  - high quality
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from visionviz.vlm.vlm_types import DETECTION_PROMPT, PLANNING_PROMPT, parse_json_response

logger = logging.getLogger(__name__)


class OllamaClient:
    """
    Qwen2.5-VL via Ollama.

    Cost: $0 (local)
    Speed: 3-10s per image (depending on hardware)
    """

    def __init__(
        self,
        ollama_host: str = "http://localhost:11434",
        model: str = "qwen2.5vl:7b",
        timeout: float = 120.0,
        verbose: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.ollama_host = ollama_host.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.verbose = verbose
        self.call_count = 0
        self.total_time_ms = 0.0
        self._available: Optional[bool] = None
        self._transport = transport

    async def is_available(self) -> bool:
        """Check if Ollama is running and the model is pulled."""
        if self._available is not None:
            return self._available

        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self._transport) as client:
                response = await client.get(f"{self.ollama_host}/api/tags")
                if response.status_code != 200:
                    self._available = False
                    return False

                models = response.json().get("models", [])
                model_names = [m.get("name", "") for m in models]

                self._available = any(
                    self.model in name or name.startswith("qwen2.5vl")
                    for name in model_names
                )

                if not self._available and self.verbose:
                    logger.info(f"Model '{self.model}' not found in Ollama")
                    logger.info(f"  Available: {model_names}")
                    logger.info(f"  Run: ollama pull {self.model}")

                return self._available

        except (httpx.HTTPError, ValueError) as e:
            if self.verbose:
                logger.info(f"Ollama not available: {e}")
            self._available = False
            return False

    async def detect_text(self, image_b64: str) -> Dict:
        """
        Detect text blocks in a base64 image.

        Returns:
            {"blocks": [{"text": ..., "box_2d": [ymin, xmin, ymax, xmax]}]}
        """
        start_time = time.time()
        result = await self._call_ollama(DETECTION_PROMPT, images=[image_b64], json_format=True)
        elapsed = (time.time() - start_time) * 1000
        self.total_time_ms += elapsed

        if self.verbose and isinstance(result.get("blocks"), list):
            logger.info(f"  Ollama: {len(result['blocks'])} blocks ({elapsed:.0f}ms)")
        return result

    async def plan_visualization(self, text: str) -> Dict[str, Any]:
        """Ask for a 2D/3D visualization plan for ``text``."""
        return await self._call_ollama(PLANNING_PROMPT.format(text=text), json_format=True)

    async def _call_ollama(
        self, prompt: str, images: Optional[List[str]] = None, json_format: bool = False
    ) -> Dict:
        """Make API call to Ollama."""
        self.call_count += 1

        body: Dict[str, Any] = {"model": self.model, "prompt": prompt, "stream": False}
        if images:
            body["images"] = images
        if json_format:
            body["format"] = "json"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(f"{self.ollama_host}/api/generate", json=body)

            if response.status_code != 200:
                raise RuntimeError(f"Ollama error: {response.status_code} - {response.text}")

            result = response.json()
            response_text = result.get("response", "{}")
            return parse_json_response(response_text)

    def get_stats(self) -> Dict:
        """Get usage statistics."""
        return {
            "call_count": self.call_count,
            "total_time_ms": self.total_time_ms,
            "avg_time_ms": self.total_time_ms / max(self.call_count, 1),
            "model": self.model,
            "cost": 0.0,
        }
