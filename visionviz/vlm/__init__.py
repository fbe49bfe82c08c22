"""
VLM (Vision-Language Model) integration for text detection and
visualization planning.

Provides a unified interface to route requests between providers:
- Gemini (REST API) - the default remote detector and planner
- Qwen-VL via Ollama - free, runs locally
- Claude (Anthropic API) - best quality, costs money
- Auto mode (detection only) - tries Ollama first, falls back to Gemini

Usage:
    from visionviz.vlm import VLMRouter

    router = VLMRouter(detection_provider="auto")
    blocks = await router.detect(frame)
"""

from visionviz.vlm.vlm_types import blocks_from_response, parse_json_response
from visionviz.vlm.gemini_client import GeminiClient
from visionviz.vlm.ollama_client import OllamaClient
from visionviz.vlm.vlm_router import VLMRouter, VLMStats

# Claude client is optional (requires anthropic package)
try:
    from visionviz.vlm.claude_client import ClaudeClient
except ImportError:
    ClaudeClient = None

__all__ = [
    "VLMRouter",
    "VLMStats",
    "GeminiClient",
    "OllamaClient",
    "ClaudeClient",
    "blocks_from_response",
    "parse_json_response",
]
