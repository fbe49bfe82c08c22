"""
Claude Client: Anthropic Claude for high-quality detection and planning.

Requires: pip install anthropic
Requires: ANTHROPIC_API_KEY environment variable

Cost: ~$0.01 per image analysis
Speed: 2-3s per image
"""

import logging
import os
from typing import Any, Dict, List, Optional

from visionviz.vlm.vlm_types import DETECTION_PROMPT, PLANNING_PROMPT, parse_json_response

logger = logging.getLogger(__name__)

try:
    import anthropic

    ANTHROPIC_AVAILABLE = True
except ImportError:
    ANTHROPIC_AVAILABLE = False


class ClaudeClient:
    """
    Claude-based text detection and visualization planning.

    The SDK is synchronous; VLMRouter runs these methods in an executor.
    """

    COST_PER_CALL = 0.01

    def __init__(self, model: str = "claude-sonnet-4-20250514", verbose: bool = False):
        if not ANTHROPIC_AVAILABLE:
            raise ImportError(
                "anthropic package not installed. Install with: pip install anthropic"
            )

        api_key = os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ValueError(
                "ANTHROPIC_API_KEY not set. Either:\n"
                "  1. Set ANTHROPIC_API_KEY environment variable, or\n"
                '  2. Use provider "ollama" for free local inference'
            )

        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model
        self.call_count = 0
        self.verbose = verbose
        self.last_raw_response: Optional[str] = None

    def detect_text(self, image_b64: str, media_type: str = "image/jpeg") -> Dict:
        """Detect text blocks; same response shape as the other providers."""
        content: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": media_type,
                    "data": image_b64,
                },
            },
            {"type": "text", "text": DETECTION_PROMPT},
        ]
        result = self._parse_vlm_response(self._create(content, max_tokens=4096))
        if self.verbose and isinstance(result.get("blocks"), list):
            logger.info(f"  Claude: {len(result['blocks'])} blocks")
        return result

    def plan_visualization(self, text: str) -> Dict[str, Any]:
        content = [{"type": "text", "text": PLANNING_PROMPT.format(text=text)}]
        return self._parse_vlm_response(self._create(content, max_tokens=8192))

    def _create(self, content: List[Dict[str, Any]], max_tokens: int) -> str:
        self.call_count += 1
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": content}],
        )
        self.last_raw_response = response.content[0].text
        return self.last_raw_response

    def _parse_vlm_response(self, response_text: str) -> Dict:
        return parse_json_response(response_text)

    def get_call_count(self) -> int:
        return self.call_count
