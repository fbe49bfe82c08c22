"""
Settings: runtime configuration loaded from the environment.

Environment variables (all optional):
- VLM_DETECTION_PROVIDER: "gemini" | "ollama" | "claude" | "auto" (default: "gemini")
- VLM_PLANNING_PROVIDER: "gemini" | "ollama" | "claude" (default: "gemini")
- GEMINI_API_KEY / GEMINI_MODEL (default: gemini-2.0-flash)
- OLLAMA_HOST (default: http://localhost:11434) / OLLAMA_MODEL (default: qwen2.5vl:7b)
- CLAUDE_VLM_MODEL (default: claude-sonnet-4-20250514); key read from ANTHROPIC_API_KEY
- RENDER_ENDPOINT: base URL of the 3D renderer (no default)
- CAMERA_INDEX, CAMERA_WIDTH, CAMERA_HEIGHT
- SCAN_INTERVAL_S, ANIMATION_FPS, JPEG_QUALITY, HTTP_TIMEOUT_S
- PREPROCESS_GRAYSCALE ("1"/"true"), PREPROCESS_CONTRAST
- VISIONVIZ_VERBOSE ("1"/"true")
"""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, Field, validator

DETECTION_PROVIDERS = ("gemini", "ollama", "claude", "auto")
PLANNING_PROVIDERS = ("gemini", "ollama", "claude")


class Settings(BaseModel):
    """All tunables for one VisionViz process."""

    detection_provider: str = "gemini"
    planning_provider: str = "gemini"

    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.0-flash"
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "qwen2.5vl:7b"
    claude_model: str = "claude-sonnet-4-20250514"

    render_endpoint: Optional[str] = None

    camera_index: int = Field(0, ge=0)
    camera_width: int = Field(1920, gt=0)
    camera_height: int = Field(1080, gt=0)

    scan_interval_s: float = Field(1.5, gt=0)
    animation_fps: float = Field(30.0, gt=0, le=240)
    jpeg_quality: int = Field(90, ge=1, le=100)
    http_timeout_s: float = Field(120.0, gt=0)

    preprocess_grayscale: bool = False
    preprocess_contrast: float = Field(1.0, gt=0)

    verbose: bool = False

    @validator("detection_provider")
    def validate_detection_provider(cls, v):
        v = v.lower().strip()
        if v not in DETECTION_PROVIDERS:
            raise ValueError(f"Unknown detection provider: {v}")
        return v

    @validator("planning_provider")
    def validate_planning_provider(cls, v):
        v = v.lower().strip()
        if v not in PLANNING_PROVIDERS:
            raise ValueError(f"Unknown planning provider: {v}")
        return v

    @validator("render_endpoint")
    def normalize_endpoint(cls, v):
        """Blank means unconfigured; strip trailing slash."""
        if v is None:
            return None
        v = v.strip().rstrip("/")
        return v or None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ

        def _get(name: str, default=None):
            value = env.get(name)
            return default if value in (None, "") else value

        def _flag(name: str) -> bool:
            return str(_get(name, "")).lower() in ("1", "true", "yes", "on")

        return cls(
            detection_provider=_get("VLM_DETECTION_PROVIDER", "gemini"),
            planning_provider=_get("VLM_PLANNING_PROVIDER", "gemini"),
            gemini_api_key=_get("GEMINI_API_KEY"),
            gemini_model=_get("GEMINI_MODEL", "gemini-2.0-flash"),
            ollama_host=_get("OLLAMA_HOST", "http://localhost:11434"),
            ollama_model=_get("OLLAMA_MODEL", "qwen2.5vl:7b"),
            claude_model=_get("CLAUDE_VLM_MODEL", "claude-sonnet-4-20250514"),
            render_endpoint=_get("RENDER_ENDPOINT"),
            camera_index=_get("CAMERA_INDEX", 0),
            camera_width=_get("CAMERA_WIDTH", 1920),
            camera_height=_get("CAMERA_HEIGHT", 1080),
            scan_interval_s=_get("SCAN_INTERVAL_S", 1.5),
            animation_fps=_get("ANIMATION_FPS", 30.0),
            jpeg_quality=_get("JPEG_QUALITY", 90),
            http_timeout_s=_get("HTTP_TIMEOUT_S", 120.0),
            preprocess_grayscale=_flag("PREPROCESS_GRAYSCALE"),
            preprocess_contrast=_get("PREPROCESS_CONTRAST", 1.0),
            verbose=_flag("VISIONVIZ_VERBOSE"),
        )
