"""Shared prompts, response parsing and block normalization for VLM modules."""

import json
import logging
import re
from typing import Any, Dict, List

from visionviz.errors import MalformedResponseError
from visionviz.geometry import NATIVE_BOX_SCALE, normalize_box_2d
from visionviz.schema import Block

logger = logging.getLogger(__name__)


DETECTION_PROMPT = """Detect all visible text blocks.
Return a JSON object with a key "blocks".
Each block: {"text": "string", "box_2d": [ymin, xmin, ymax, xmax]}
Scale: 0-1000."""


PLANNING_PROMPT = """You are an expert educational visualizer. Your goal is to convert textbook text into 3D or 2D visualizations.

Input Text: "{text}"

Decide whether to use a 3D model (Blender script) or a 2D animation (canvas script).

Decision Logic:
- Use "2D" for: Maps, troop movements, abstract concepts, simple diagrams, or scenarios with >50 entities.
- Use "3D" for: Biological models (cells, organs), mechanical models (engines, gears), specific historical artifacts, or single complex objects.

Output Format:
Return ONLY a raw JSON object (no markdown formatting) with the following structure:
{{
  "type": "3D" | "2D",
  "reasoning": "Short explanation of your choice",
  "script": "The code string"
}}

For "3D" type:
- The 'script' must be a valid Python script for Blender.
- It should delete all existing mesh objects first.
- It should create the described 3D model using 'bpy'.
- It should NOT render an image, just build the mesh.
- Keep it relatively simple to ensure execution speed.

For "2D" type:
- The 'script' is the body of a JavaScript function receiving 'ctx' (a 2D canvas context), 'width', 'height' and 'frameCount' (incrementing per frame).
- The code should draw a single frame of animation. Do NOT declare the outer function.
- Only use: let/const/var, if/else, for, while, functions, arrays, objects, Math.*, and ctx drawing calls
  (fillRect, strokeRect, clearRect, beginPath, moveTo, lineTo, arc, rect, closePath, fill, stroke,
  fillText, strokeText, save, restore, translate, rotate, scale) and ctx properties
  (fillStyle, strokeStyle, lineWidth, globalAlpha, font).
- Example 2D script: "ctx.fillStyle = 'red'; ctx.fillRect(10 + frameCount, 10, 50, 50);"
"""


def parse_json_response(text: str) -> Dict:
    """Parse JSON from VLM response (handles markdown wrappers)."""
    # Try direct parse
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError):
        pass

    # Try extracting from markdown code block
    json_match = re.search(r"```(?:json)?\s*(.*?)\s*```", text or "", re.DOTALL)
    if json_match:
        try:
            return json.loads(json_match.group(1))
        except json.JSONDecodeError:
            pass

    # Try bare JSON object
    json_match = re.search(r"\{.*\}", text or "", re.DOTALL)
    if json_match:
        try:
            return json.loads(json_match.group(0))
        except json.JSONDecodeError:
            pass

    return {"parse_error": (text or "")[:200]}


def blocks_from_response(
    data: Any, sequence: int, scale: float = NATIVE_BOX_SCALE
) -> List[Block]:
    """
    Turn a ``{"blocks": [{"text", "box_2d"}]}`` response into Blocks.

    Block ids are ``"<sequence>-<index>"`` so ids from different detections
    never collide. Individual unusable entries are skipped.

    Raises:
        MalformedResponseError: response is not an object with a block list
    """
    if not isinstance(data, dict) or "parse_error" in data:
        raise MalformedResponseError(f"Unparseable detection response: {str(data)[:200]}")

    raw_blocks = data.get("blocks")
    if raw_blocks is None:
        raw_blocks = []
    if not isinstance(raw_blocks, list):
        raise MalformedResponseError(
            f"'blocks' must be a list, got {type(raw_blocks).__name__}"
        )

    blocks: List[Block] = []
    for raw in raw_blocks:
        if not isinstance(raw, dict):
            logger.warning(f"Skipping non-object block: {raw!r}")
            continue
        text = raw.get("text")
        if not isinstance(text, str) or not text.strip():
            logger.warning(f"Skipping block without text: {raw!r}")
            continue
        try:
            bbox = normalize_box_2d(raw.get("box_2d") or [], scale)
        except (ValueError, TypeError) as e:
            logger.warning(f"Skipping block '{text[:30]}': {e}")
            continue
        blocks.append(Block(id=f"{sequence}-{len(blocks)}", text=text.strip(), bbox=bbox))

    return blocks
