"""Unit tests for merge sequence construction and trim-flag policy."""

from __future__ import annotations

from pathlib import Path

import pytest

from bookmerge.audio.sequencer import MergeSequencer, expected_sequence_length, trim_flags
from bookmerge.models.datatypes import SILENCE_INDEX, TaskOutcome, TaskStatus


def test_build_sequence_interleaves_silence_strictly_between_items() -> None:
    """Silence should follow every item except the last."""

    items = [Path("a"), Path("b"), Path("c")]
    silence = Path("silence")

    sequence = MergeSequencer().build_sequence(items, silence)

    assert sequence.paths == [Path("a"), silence, Path("b"), silence, Path("c")]
    assert [entry.index for entry in sequence.entries] == [0, SILENCE_INDEX, 1, SILENCE_INDEX, 2]
    assert [entry.path for entry in sequence.item_entries] == items


def test_build_sequence_without_silence_keeps_items_only() -> None:
    """Without a silence item the sequence equals the item list."""

    sequence = MergeSequencer().build_sequence([Path("a"), Path("b")])

    assert sequence.paths == [Path("a"), Path("b")]


@pytest.mark.parametrize("item_count", [0, 1, 2, 5])
@pytest.mark.parametrize("with_silence", [False, True])
def test_sequence_length_matches_expected_formula(item_count: int, with_silence: bool) -> None:
    """Sequence length should equal items plus one silence per gap."""

    items = [Path(f"item-{index}") for index in range(item_count)]
    silence = Path("silence") if with_silence else None

    sequence = MergeSequencer().build_sequence(items, silence)

    assert len(sequence) == expected_sequence_length(item_count, with_silence)


def test_from_outcomes_restores_document_order() -> None:
    """Completion order should not influence the merge order."""

    outcomes = [
        TaskOutcome(2, Path("s2"), Path("c"), TaskStatus.DONE),
        TaskOutcome(SILENCE_INDEX, Path("silence.wav"), Path("silence"), TaskStatus.DONE),
        TaskOutcome(0, Path("s0"), Path("a"), TaskStatus.DONE),
        TaskOutcome(1, Path("s1"), Path("b"), TaskStatus.DONE),
    ]

    sequence = MergeSequencer().from_outcomes(outcomes)

    assert sequence.paths == [Path("a"), Path("silence"), Path("b"), Path("silence"), Path("c")]


def test_trim_flags_preserve_outer_edges_and_silence() -> None:
    """First keeps its start, last keeps its end, silence keeps both."""

    assert trim_flags(0, 3) == (False, True)
    assert trim_flags(1, 3) == (True, True)
    assert trim_flags(2, 3) == (True, False)
    assert trim_flags(SILENCE_INDEX, 3) == (False, False)
    assert trim_flags(0, 1) == (False, False)
