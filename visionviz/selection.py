"""
Selection Engine: pointer-to-block hit testing and selection state.

The engine owns the Block list it tests against. Replacing the list clears
the selection, so a selection can never name a block from a previous
detection result.
"""

from typing import Iterable, List, Optional

from visionviz.schema import Block


class SelectionEngine:
    """Hit-tests normalized points and toggles block selection."""

    def __init__(self, blocks: Optional[Iterable[Block]] = None):
        self._blocks: List[Block] = list(blocks or [])
        self._selected: List[str] = []

    @property
    def blocks(self) -> List[Block]:
        return list(self._blocks)

    @property
    def selected_ids(self) -> List[str]:
        """Selected ids in the order they were chosen."""
        return list(self._selected)

    @property
    def has_selection(self) -> bool:
        return bool(self._selected)

    def hit_test(self, x: float, y: float) -> Optional[Block]:
        """First block, in detection-result order, whose bbox contains (x, y)."""
        for block in self._blocks:
            if block.contains(x, y):
                return block
        return None

    def toggle_at(self, x: float, y: float) -> Optional[Block]:
        """
        Toggle the block under a normalized point.

        Returns:
            The toggled block, or None when the point is over no block
            (selection is left unchanged in that case).
        """
        block = self.hit_test(x, y)
        if block is None:
            return None
        if block.id in self._selected:
            self._selected.remove(block.id)
        else:
            self._selected.append(block.id)
        return block

    def is_selected(self, block_id: str) -> bool:
        return block_id in self._selected

    def selected_blocks(self) -> List[Block]:
        by_id = {b.id: b for b in self._blocks}
        return [by_id[i] for i in self._selected if i in by_id]

    def selected_text(self, separator: str = " ") -> str:
        return separator.join(b.text for b in self.selected_blocks())

    def replace_blocks(self, blocks: Iterable[Block]) -> None:
        """Atomically swap in a new detection result; clears the selection."""
        self._blocks = list(blocks)
        self._selected = []

    def clear(self) -> None:
        self._blocks = []
        self._selected = []
