"""
Core schema: Pydantic models for detected text blocks and visualization plans.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, validator


class BoundingBox(BaseModel):
    """Axis-aligned box in normalized [0, 1] coordinates."""

    x0: float = Field(..., ge=0.0, le=1.0)
    y0: float = Field(..., ge=0.0, le=1.0)
    x1: float = Field(..., ge=0.0, le=1.0)
    y1: float = Field(..., ge=0.0, le=1.0)

    @validator("x1")
    def validate_x_order(cls, v, values):
        """Validate x0 <= x1."""
        if "x0" in values and v < values["x0"]:
            raise ValueError(f"x1 ({v}) is left of x0 ({values['x0']})")
        return v

    @validator("y1")
    def validate_y_order(cls, v, values):
        """Validate y0 <= y1."""
        if "y0" in values and v < values["y0"]:
            raise ValueError(f"y1 ({v}) is above y0 ({values['y0']})")
        return v

    @property
    def width(self) -> float:
        return self.x1 - self.x0

    @property
    def height(self) -> float:
        return self.y1 - self.y0

    def contains(self, x: float, y: float) -> bool:
        """Inclusive point-in-box test."""
        return self.x0 <= x <= self.x1 and self.y0 <= y <= self.y1

    class Config:
        frozen = True


class Block(BaseModel):
    """Detected text region."""

    id: str = Field(..., min_length=1, description="Unique across detections")
    text: str
    bbox: BoundingBox

    def contains(self, x: float, y: float) -> bool:
        return self.bbox.contains(x, y)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "3-0",
                "text": "Photosynthesis",
                "bbox": {"x0": 0.2, "y0": 0.1, "x1": 0.6, "y1": 0.3},
            }
        }


class VisualizationMode(str, Enum):
    """Rendering strategy chosen by the planner."""

    TWO_D = "2D"
    THREE_D = "3D"


class VisualizationPlan(BaseModel):
    """Planner output; immutable once produced."""

    mode: VisualizationMode
    script: str = Field(..., min_length=1)
    rationale: Optional[str] = None

    @validator("mode", pre=True)
    def normalize_mode(cls, v):
        """Accept '2d', '3D', ' 2D ' etc."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "VisualizationPlan":
        """
        Build a plan from a planner response.

        Planners answer with ``type`` or ``mode`` for the strategy and
        ``reasoning`` or ``rationale`` for the explanation.
        """
        if not isinstance(data, dict):
            raise ValueError(f"Plan must be a JSON object, got {type(data).__name__}")
        return cls(
            mode=data.get("mode") or data.get("type"),
            script=data.get("script") or "",
            rationale=data.get("reasoning") or data.get("rationale"),
        )

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "mode": "2D",
                "script": "ctx.fillStyle = 'red'; ctx.fillRect(10 + frameCount, 10, 50, 50);",
                "rationale": "Abstract concept, simple diagram",
            }
        }
