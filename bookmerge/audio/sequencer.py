"""Merge sequence construction and trim-flag policy.

Responsibilities:
- Order converted items by their original index, interleaving the silence
  segment strictly between items.
- Define which edges of an item may have silence trimmed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

from ..models.datatypes import (
    SILENCE_INDEX,
    MergeSequence,
    SequenceEntry,
    TaskOutcome,
)


def trim_flags(index: int, item_count: int) -> tuple[bool, bool]:
    """Return `(trim_start, trim_end)` for the item at `index`.

    The first item keeps its leading silence, the last item keeps its
    trailing silence and the silence segment is never trimmed, so natural
    pauses survive at the very start and end of the merged output.
    """

    if index == SILENCE_INDEX:
        return False, False
    trim_start = index != 0
    trim_end = index != item_count - 1
    return trim_start, trim_end


def expected_sequence_length(item_count: int, with_silence: bool) -> int:
    """Return the merge sequence length for `item_count` inputs."""

    return item_count + max(0, item_count - 1) * (1 if with_silence else 0)


class MergeSequencer:
    """Build the ordered file list for the concatenation step."""

    def build_sequence(
        self,
        converted_items: Sequence[Path],
        silence_item: Path | None = None,
    ) -> MergeSequence:
        """Place `silence_item` after every item except the last."""

        entries: list[SequenceEntry] = []
        last_index = len(converted_items) - 1
        for index, path in enumerate(converted_items):
            entries.append(SequenceEntry(path=path, index=index))
            if silence_item is not None and index != last_index:
                entries.append(SequenceEntry(path=silence_item, index=SILENCE_INDEX))
        return MergeSequence(entries=tuple(entries))

    def from_outcomes(self, outcomes: Iterable[TaskOutcome]) -> MergeSequence:
        """Rebuild document order from task outcomes in any completion order."""

        items: dict[int, Path] = {}
        silence_item: Path | None = None
        for outcome in outcomes:
            if outcome.index == SILENCE_INDEX:
                silence_item = outcome.output_path
            else:
                items[outcome.index] = outcome.output_path
        ordered = [items[index] for index in sorted(items)]
        return self.build_sequence(ordered, silence_item)
