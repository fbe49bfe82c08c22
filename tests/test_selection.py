"""Tests for block hit testing and selection."""

from visionviz.selection import SelectionEngine

from conftest import make_block


class TestHitTest:
    def test_hit(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        assert engine.hit_test(0.4, 0.2).id == "1-0"

    def test_miss(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        assert engine.hit_test(0.95, 0.95) is None

    def test_overlap_first_in_result_order(self, sample_blocks):
        # (0.35, 0.55) lies in both "Chlorophyll" and "Light"
        engine = SelectionEngine(sample_blocks)
        assert engine.hit_test(0.35, 0.55).id == "1-1"

        reordered = SelectionEngine([sample_blocks[2], sample_blocks[1]])
        assert reordered.hit_test(0.35, 0.55).id == "1-2"

    def test_edge_is_inside(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        assert engine.hit_test(0.6, 0.3).id == "1-0"


class TestToggle:
    def test_toggle_on_and_off(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        engine.toggle_at(0.4, 0.2)
        assert engine.is_selected("1-0")
        engine.toggle_at(0.4, 0.2)
        assert not engine.is_selected("1-0")
        assert not engine.has_selection

    def test_miss_leaves_selection_unchanged(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        engine.toggle_at(0.4, 0.2)
        assert engine.toggle_at(0.99, 0.01) is None
        assert engine.selected_ids == ["1-0"]

    def test_selected_text_in_selection_order(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        engine.toggle_at(0.45, 0.65)  # Light
        engine.toggle_at(0.4, 0.2)  # Photosynthesis
        assert engine.selected_text() == "Light Photosynthesis"
        assert [b.id for b in engine.selected_blocks()] == ["1-2", "1-0"]

    def test_selected_text_empty(self, sample_blocks):
        assert SelectionEngine(sample_blocks).selected_text() == ""


class TestReplace:
    def test_replace_clears_selection(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        engine.toggle_at(0.4, 0.2)
        engine.replace_blocks([make_block("2-0", "Osmosis", 0.0, 0.0, 0.5, 0.5)])
        assert engine.selected_ids == []
        assert [b.id for b in engine.blocks] == ["2-0"]

    def test_selection_never_references_old_blocks(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        engine.toggle_at(0.4, 0.2)
        engine.replace_blocks([])
        assert engine.selected_blocks() == []

    def test_clear(self, sample_blocks):
        engine = SelectionEngine(sample_blocks)
        engine.toggle_at(0.4, 0.2)
        engine.clear()
        assert engine.blocks == []
        assert not engine.has_selection
