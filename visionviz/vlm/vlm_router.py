"""
VLM Router: one detection capability and one planning capability over
interchangeable providers.

Detection providers:
- "gemini": Gemini REST API (remote)
- "ollama": Qwen2.5-VL via Ollama (local, free)
- "claude": Anthropic Claude (remote)
- "auto": Try Ollama first, fall back to Gemini

Planning providers: "gemini" | "ollama" | "claude"

Usage:
    from visionviz.vlm import VLMRouter

    router = VLMRouter.from_settings(Settings.from_env())
    blocks = await router.detect(frame)
    plan = await router.plan("Mitochondria")
"""

import asyncio
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from visionviz.config import Settings
from visionviz.errors import DetectionError, MalformedResponseError, PlanningError
from visionviz.frames import Frame, encode_jpeg_b64
from visionviz.schema import Block, VisualizationPlan
from visionviz.vlm.gemini_client import GeminiClient
from visionviz.vlm.ollama_client import OllamaClient
from visionviz.vlm.vlm_types import blocks_from_response

logger = logging.getLogger(__name__)


@dataclass
class VLMStats:
    """Track VLM usage across providers."""

    gemini_calls: int = 0
    ollama_calls: int = 0
    claude_calls: int = 0
    claude_cost_usd: float = 0.0
    total_time_ms: float = 0
    errors: int = 0


class VLMRouter:
    """
    Routes detection and planning requests to the configured provider.

    Callers never branch on the provider: ``detect`` always returns a
    normalized Block list and ``plan`` always returns a VisualizationPlan,
    or they raise DetectionError / PlanningError.
    """

    CLAUDE_COST_PER_CALL = 0.01

    def __init__(
        self,
        detection_provider: str = "gemini",
        planning_provider: str = "gemini",
        gemini_api_key: Optional[str] = None,
        gemini_model: str = "gemini-2.0-flash",
        ollama_host: str = "http://localhost:11434",
        ollama_model: str = "qwen2.5vl:7b",
        claude_model: str = "claude-sonnet-4-20250514",
        timeout: float = 120.0,
        jpeg_quality: int = 90,
        verbose: bool = False,
    ):
        self.detection_provider = detection_provider.lower()
        self.planning_provider = planning_provider.lower()
        self.verbose = verbose
        self.jpeg_quality = jpeg_quality
        self.stats = VLMStats()

        self._gemini_client: Optional[GeminiClient] = None
        self._ollama_client: Optional[OllamaClient] = None
        self._claude_client = None

        self._gemini_api_key = gemini_api_key
        self._gemini_model = gemini_model
        self._ollama_host = ollama_host
        self._ollama_model = ollama_model
        self._claude_model = claude_model
        self._timeout = timeout

        self._sequence = itertools.count(1)

        if self.verbose:
            logger.info(
                f"VLM Router: detection={self.detection_provider}, "
                f"planning={self.planning_provider}"
            )

    @classmethod
    def from_settings(cls, settings: Settings) -> "VLMRouter":
        return cls(
            detection_provider=settings.detection_provider,
            planning_provider=settings.planning_provider,
            gemini_api_key=settings.gemini_api_key,
            gemini_model=settings.gemini_model,
            ollama_host=settings.ollama_host,
            ollama_model=settings.ollama_model,
            claude_model=settings.claude_model,
            timeout=settings.http_timeout_s,
            jpeg_quality=settings.jpeg_quality,
            verbose=settings.verbose,
        )

    @property
    def gemini(self) -> Optional[GeminiClient]:
        """Get or create Gemini client (returns None if unconfigured)."""
        if self._gemini_client is None:
            try:
                self._gemini_client = GeminiClient(
                    api_key=self._gemini_api_key,
                    model=self._gemini_model,
                    timeout=self._timeout,
                    verbose=self.verbose,
                )
            except ValueError as e:
                if self.verbose:
                    logger.info(f"Gemini not available: {e}")
                return None
        return self._gemini_client

    @property
    def ollama(self) -> OllamaClient:
        """Get or create Ollama client."""
        if self._ollama_client is None:
            self._ollama_client = OllamaClient(
                ollama_host=self._ollama_host,
                model=self._ollama_model,
                timeout=self._timeout,
                verbose=self.verbose,
            )
        return self._ollama_client

    @property
    def claude(self):
        """Get or create Claude client (returns None if unavailable)."""
        if self._claude_client is None:
            try:
                from visionviz.vlm.claude_client import ClaudeClient

                self._claude_client = ClaudeClient(
                    model=self._claude_model, verbose=self.verbose
                )
            except (ImportError, ValueError) as e:
                if self.verbose:
                    logger.info(f"Claude not available: {e}")
                return None
        return self._claude_client

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    async def detect(self, frame: Frame) -> List[Block]:
        """
        Submit one frame and return its text blocks, normalized to [0, 1].

        Raises:
            MalformedResponseError: provider answered with an unusable payload
            DetectionError: provider unavailable or the call failed
        """
        start_time = time.time()
        try:
            image_b64 = encode_jpeg_b64(frame, self.jpeg_quality)
            raw = await self._detect_raw(image_b64)
        except DetectionError:
            self.stats.errors += 1
            raise
        except Exception as e:
            self.stats.errors += 1
            raise DetectionError(f"Detection failed: {e}") from e
        finally:
            self.stats.total_time_ms += (time.time() - start_time) * 1000

        try:
            return blocks_from_response(raw, next(self._sequence))
        except MalformedResponseError:
            self.stats.errors += 1
            raise
        except Exception as e:
            self.stats.errors += 1
            raise MalformedResponseError(f"Unusable detection response: {e}") from e

    async def _detect_raw(self, image_b64: str) -> Dict[str, Any]:
        if self.detection_provider == "gemini":
            return await self._detect_with_gemini(image_b64)

        elif self.detection_provider == "ollama":
            self.stats.ollama_calls += 1
            return await self.ollama.detect_text(image_b64)

        elif self.detection_provider == "claude":
            claude_client = self.claude
            if claude_client is None:
                raise DetectionError("Claude not available")
            self.stats.claude_calls += 1
            self.stats.claude_cost_usd += self.CLAUDE_COST_PER_CALL
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                None, lambda: claude_client.detect_text(image_b64)
            )

        else:  # auto
            if await self.ollama.is_available():
                try:
                    self.stats.ollama_calls += 1
                    result = await self.ollama.detect_text(image_b64)
                    if "parse_error" not in result:
                        return result
                except Exception as e:
                    if self.verbose:
                        logger.info(f"  Ollama failed: {e}")
                    self.stats.errors += 1

            # Fallback to Gemini
            return await self._detect_with_gemini(image_b64)

    async def _detect_with_gemini(self, image_b64: str) -> Dict[str, Any]:
        gemini = self.gemini
        if gemini is None:
            raise DetectionError("Gemini not available: GEMINI_API_KEY not set")
        self.stats.gemini_calls += 1
        return await gemini.detect_text(image_b64)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def plan(self, text: str) -> VisualizationPlan:
        """
        Ask the planner how to visualize ``text``. Exactly one call, no retry.

        Raises:
            PlanningError: provider unavailable, call failed, or plan invalid
        """
        try:
            raw = await self._plan_raw(text)
        except PlanningError:
            self.stats.errors += 1
            raise
        except Exception as e:
            self.stats.errors += 1
            raise PlanningError(f"Failed to fetch visualization plan: {e}") from e

        if not isinstance(raw, dict):
            self.stats.errors += 1
            raise PlanningError(f"Planner returned {type(raw).__name__}, expected a JSON object")
        if "parse_error" in raw:
            self.stats.errors += 1
            raise PlanningError(f"Invalid JSON from planner: {raw['parse_error']}")

        try:
            return VisualizationPlan.from_response(raw)
        except (ValidationError, ValueError) as e:
            self.stats.errors += 1
            raise PlanningError(f"Invalid visualization plan: {e}") from e

    async def _plan_raw(self, text: str) -> Dict[str, Any]:
        if self.planning_provider == "ollama":
            self.stats.ollama_calls += 1
            return await self.ollama.plan_visualization(text)

        elif self.planning_provider == "claude":
            claude_client = self.claude
            if claude_client is None:
                raise PlanningError("Claude not available")
            self.stats.claude_calls += 1
            self.stats.claude_cost_usd += self.CLAUDE_COST_PER_CALL
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(
                None, lambda: claude_client.plan_visualization(text)
            )

        gemini = self.gemini
        if gemini is None:
            raise PlanningError("Gemini not available: GEMINI_API_KEY not set")
        self.stats.gemini_calls += 1
        return await gemini.plan_visualization(text)

    def get_stats(self) -> Dict[str, Any]:
        """Get usage statistics."""
        return {
            "detection_provider": self.detection_provider,
            "planning_provider": self.planning_provider,
            "gemini_calls": self.stats.gemini_calls,
            "ollama_calls": self.stats.ollama_calls,
            "claude_calls": self.stats.claude_calls,
            "total_calls": self.get_call_count(),
            "claude_cost_usd": round(self.stats.claude_cost_usd, 4),
            "errors": self.stats.errors,
        }

    def get_call_count(self) -> int:
        """Total call count across all providers."""
        return self.stats.gemini_calls + self.stats.ollama_calls + self.stats.claude_calls
