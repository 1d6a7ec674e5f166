"""Tag accumulation, metadata sidecars and embedded tag access."""

from .composite import TagMergeComposite
from .embedded import SourceTagReader, TagWriter, chapters_sidecar_path, describe_tag
from .lookup import ChapterLookupError, MusicBrainzClient
from .providers import (
    ChapterLengthNormalizer,
    ChaptersFromFileTracks,
    ChaptersFromLookup,
    EquateProvider,
    OptionsTagProvider,
    SidecarTagProvider,
    TagProvider,
)
from .record import Chapter, TagRecord

__all__ = [
    "Chapter",
    "ChapterLengthNormalizer",
    "ChapterLookupError",
    "ChaptersFromFileTracks",
    "ChaptersFromLookup",
    "EquateProvider",
    "MusicBrainzClient",
    "OptionsTagProvider",
    "SidecarTagProvider",
    "SourceTagReader",
    "TagMergeComposite",
    "TagProvider",
    "TagRecord",
    "TagWriter",
    "chapters_sidecar_path",
    "describe_tag",
]
