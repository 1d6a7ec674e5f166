"""Audio conversion, sequencing and encoder integration components."""

from .encoder import AudioEncoder, FfmpegEncoder, codec_for_extension
from .sequencer import MergeSequencer, expected_sequence_length, trim_flags
from .task_pool import ConversionTaskPool

__all__ = [
    "AudioEncoder",
    "ConversionTaskPool",
    "FfmpegEncoder",
    "MergeSequencer",
    "codec_for_extension",
    "expected_sequence_length",
    "trim_flags",
]
