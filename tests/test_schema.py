"""Tests for the Pydantic block and plan models."""

import pytest
from pydantic import ValidationError

from visionviz.schema import Block, BoundingBox, VisualizationMode, VisualizationPlan


class TestBoundingBox:
    def test_valid_box(self):
        box = BoundingBox(x0=0.2, y0=0.1, x1=0.6, y1=0.3)
        assert box.width == pytest.approx(0.4)
        assert box.height == pytest.approx(0.2)

    def test_out_of_range(self):
        with pytest.raises(ValidationError):
            BoundingBox(x0=-0.1, y0=0, x1=0.5, y1=0.5)
        with pytest.raises(ValidationError):
            BoundingBox(x0=0, y0=0, x1=1.2, y1=0.5)

    def test_inverted_x(self):
        with pytest.raises(ValidationError):
            BoundingBox(x0=0.6, y0=0.1, x1=0.2, y1=0.3)

    def test_inverted_y(self):
        with pytest.raises(ValidationError):
            BoundingBox(x0=0.2, y0=0.3, x1=0.6, y1=0.1)

    def test_degenerate_box_allowed(self):
        box = BoundingBox(x0=0.5, y0=0.5, x1=0.5, y1=0.5)
        assert box.contains(0.5, 0.5)

    def test_contains_is_inclusive(self):
        box = BoundingBox(x0=0.2, y0=0.1, x1=0.6, y1=0.3)
        assert box.contains(0.2, 0.1)
        assert box.contains(0.6, 0.3)
        assert box.contains(0.4, 0.2)
        assert not box.contains(0.61, 0.2)
        assert not box.contains(0.4, 0.09)

    def test_frozen(self):
        box = BoundingBox(x0=0.2, y0=0.1, x1=0.6, y1=0.3)
        with pytest.raises(ValidationError):
            box.x0 = 0.0


class TestBlock:
    def test_create(self):
        block = Block(id="1-0", text="Photosynthesis", bbox=BoundingBox(x0=0.2, y0=0.1, x1=0.6, y1=0.3))
        assert block.contains(0.4, 0.2)
        assert not block.contains(0.9, 0.9)

    def test_empty_id_rejected(self):
        with pytest.raises(ValidationError):
            Block(id="", text="x", bbox=BoundingBox(x0=0, y0=0, x1=1, y1=1))


class TestVisualizationPlan:
    def test_from_response_type_and_reasoning(self):
        plan = VisualizationPlan.from_response(
            {"type": "3D", "script": "import bpy", "reasoning": "single biological object"}
        )
        assert plan.mode == VisualizationMode.THREE_D
        assert plan.script == "import bpy"
        assert plan.rationale == "single biological object"

    def test_from_response_mode_and_rationale(self):
        plan = VisualizationPlan.from_response(
            {"mode": "2D", "script": "ctx.fillRect(0,0,10,10)", "rationale": "simple"}
        )
        assert plan.mode == VisualizationMode.TWO_D
        assert plan.rationale == "simple"

    def test_mode_is_normalized(self):
        plan = VisualizationPlan(mode=" 2d ", script="x")
        assert plan.mode == VisualizationMode.TWO_D

    def test_unknown_mode_rejected(self):
        with pytest.raises(ValidationError):
            VisualizationPlan.from_response({"type": "4D", "script": "x"})

    def test_missing_script_rejected(self):
        with pytest.raises(ValidationError):
            VisualizationPlan.from_response({"type": "2D"})

    def test_missing_mode_rejected(self):
        with pytest.raises(ValidationError):
            VisualizationPlan.from_response({"script": "x"})

    def test_non_object_rejected(self):
        with pytest.raises(ValueError):
            VisualizationPlan.from_response(["2D", "x"])

    def test_rationale_optional(self):
        plan = VisualizationPlan.from_response({"type": "2D", "script": "x"})
        assert plan.rationale is None
