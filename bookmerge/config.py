"""Configuration model and loaders for bookmerge.

Responsibilities:
- Define one merge run's settings as an immutable dataclass.
- Load defaults from YAML files and the environment.
- Validate values before any job is planned.

Key types:
- `MergeConfig`: normalized settings for a single or batch merge run.
- `ConfigLoader`: static construction helpers for `MergeConfig`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Mapping

import yaml

from .parsing import (
    normalize_optional_string,
    parse_csv_list,
    parse_duration_ms,
    parse_extension_list,
    parse_permissive_boolean,
)


DEFAULT_AUDIO_EXTENSIONS = (
    "aac",
    "alac",
    "flac",
    "m4a",
    "m4b",
    "mp3",
    "mp4",
    "oga",
    "ogg",
    "opus",
    "wav",
    "wma",
)
DEFAULT_IMAGE_EXTENSIONS = ("jpg", "jpeg", "png")
DEFAULT_DATA_EXTENSIONS = ("txt", "opf", "json")
DEFAULT_OUTPUT_EXTENSION = "m4b"
DEFAULT_SILENCE_MIN_LENGTH_MS = 2000

TAG_FIELD_NAMES = (
    "title",
    "sort_title",
    "album",
    "sort_album",
    "artist",
    "sort_artist",
    "album_artist",
    "genre",
    "writer",
    "year",
    "description",
    "long_description",
    "comment",
    "copyright",
    "encoded_by",
    "series",
    "series_part",
)


def parse_chapter_length_spec(value: str) -> tuple[int, int]:
    """Parse a `desired[,max]` chapter length spec into milliseconds.

    Both values are seconds (or timestamps). `max` defaults to `desired`.

    Raises:
        ValueError: If the spec is malformed or `max` is shorter than `desired`.
    """

    parts = parse_csv_list(value)
    if not parts or len(parts) > 2:
        raise ValueError(f"Invalid max chapter length `{value}`; expected `desired[,max]`.")
    desired_ms = parse_duration_ms(parts[0])
    max_ms = parse_duration_ms(parts[1]) if len(parts) == 2 else desired_ms
    if desired_ms <= 0 or max_ms < desired_ms:
        raise ValueError(
            f"Invalid max chapter length `{value}`; values must be positive and max >= desired."
        )
    return desired_ms, max_ms


@dataclass(frozen=True, slots=True)
class MergeConfig:
    """Settings for one merge run.

    Attributes:
        input_path: Primary input file or directory (the batch root in batch mode).
        output_path: Output target file, or output root directory in batch mode.
        extra_inputs: Additional input files or directories, appended in order.
        include_extensions: Lowercase audio extension allowlist.
        batch_patterns: Placeholder patterns; non-empty enables batch mode.
        jobs: Maximum number of concurrent conversion tasks.
        dry_run: Report batch jobs (or a single job plan) without converting.
        no_conversion: Concatenate inputs as-is instead of re-encoding them.
        force: Overwrite existing outputs and tolerate mixed extensions.
        silence_ms: Silence inserted between items, `0` disables insertion.
        audio_bitrate: Optional encoder bitrate (for example `64k`).
        audio_samplerate: Optional output sample rate in Hz.
        audio_channels: Optional output channel count.
        tag_options: Tag fields explicitly set by the caller.
        equate: Equate instructions (`artist,album_artist,...`).
        musicbrainz_id: Optional release id for chapter lookup.
        max_chapter_length: Optional `desired[,max]` chapter length in seconds.
        silence_min_length_ms: Minimum silence length for chapter split points.
        cover: Optional explicit cover image.
        ignore_source_tags: Skip fallback tags from the first source file.
        prepend_series_to_longdesc: Prefix long description with series/part.
        use_filenames_as_chapters: Use file stems instead of embedded titles.
        skip_cover: Skip cover extraction and embedding.
        keep_temp_files: Keep intermediate files after success.
        verbose: Surface diagnostic detail.
    """

    input_path: Path
    output_path: Path | None = None
    extra_inputs: tuple[Path, ...] = field(default_factory=tuple)
    include_extensions: tuple[str, ...] = DEFAULT_AUDIO_EXTENSIONS
    batch_patterns: tuple[str, ...] = field(default_factory=tuple)
    jobs: int = 1
    dry_run: bool = False
    no_conversion: bool = False
    force: bool = False
    silence_ms: int = 0
    audio_bitrate: str | None = None
    audio_samplerate: int | None = None
    audio_channels: int | None = None
    tag_options: Mapping[str, str] = field(default_factory=dict)
    equate: tuple[str, ...] = field(default_factory=tuple)
    musicbrainz_id: str | None = None
    max_chapter_length: str | None = None
    silence_min_length_ms: int = DEFAULT_SILENCE_MIN_LENGTH_MS
    cover: Path | None = None
    ignore_source_tags: bool = False
    prepend_series_to_longdesc: bool = False
    use_filenames_as_chapters: bool = False
    skip_cover: bool = False
    keep_temp_files: bool = False
    verbose: bool = False

    @property
    def is_batch(self) -> bool:
        """Return whether batch patterns were requested."""

        return len(self.batch_patterns) > 0

    def chapter_length_limits(self) -> tuple[int, int] | None:
        """Return `(desired_ms, max_ms)` when a max chapter length is configured."""

        if self.max_chapter_length is None:
            return None
        return parse_chapter_length_spec(self.max_chapter_length)

    def validate(self) -> None:
        """Validate runtime configuration values before any job is planned."""

        if self.jobs <= 0:
            raise ValueError("`jobs` must be a positive integer.")
        if self.silence_ms < 0:
            raise ValueError("`silence_ms` must not be negative.")
        if self.silence_min_length_ms < 0:
            raise ValueError("`silence_min_length_ms` must not be negative.")
        if not self.include_extensions:
            raise ValueError("`include_extensions` must list at least one extension.")
        for channels_or_rate, name in (
            (self.audio_channels, "audio_channels"),
            (self.audio_samplerate, "audio_samplerate"),
        ):
            if channels_or_rate is not None and channels_or_rate <= 0:
                raise ValueError(f"`{name}` must be a positive integer.")
        unknown_tags = sorted(set(self.tag_options).difference(TAG_FIELD_NAMES))
        if unknown_tags:
            raise ValueError(f"Unsupported tag option(s): {', '.join(unknown_tags)}.")
        for instruction in self.equate:
            parse_equate_instruction(instruction)
        self.chapter_length_limits()


class ConfigLoader:
    """Factory methods for creating `MergeConfig` from external sources."""

    _REQUIRED_YAML_KEYS = frozenset({"input_path", "output_path"})
    _SUPPORTED_YAML_KEYS = frozenset(
        {
            "input_path",
            "output_path",
            "extra_inputs",
            "include_extensions",
            "batch_patterns",
            "jobs",
            "dry_run",
            "no_conversion",
            "force",
            "silence_ms",
            "audio_bitrate",
            "audio_samplerate",
            "audio_channels",
            "tags",
            "equate",
            "musicbrainz_id",
            "max_chapter_length",
            "silence_min_length_ms",
            "cover",
            "ignore_source_tags",
            "prepend_series_to_longdesc",
            "use_filenames_as_chapters",
            "skip_cover",
            "keep_temp_files",
        }
    )
    _BOOLEAN_KEYS = (
        "dry_run",
        "no_conversion",
        "force",
        "ignore_source_tags",
        "prepend_series_to_longdesc",
        "use_filenames_as_chapters",
        "skip_cover",
        "keep_temp_files",
    )

    @staticmethod
    def from_yaml(path: Path) -> MergeConfig:
        """Create a validated config from a YAML file."""

        raw_text = path.read_text(encoding="utf-8")
        payload = yaml.safe_load(raw_text)
        if payload is None:
            payload = {}
        if not isinstance(payload, Mapping):
            raise ValueError(f"YAML config `{path}` must contain a top-level mapping/object.")
        return ConfigLoader.from_mapping(payload, source_label=f"YAML `{path}`")

    @staticmethod
    def from_mapping(payload: Mapping[str, Any], source_label: str) -> MergeConfig:
        """Build a validated config from a normalized mapping payload."""

        ConfigLoader._validate_keys(payload, source_label)

        booleans = {
            key: ConfigLoader._optional_boolean(payload, key, source_label, default=False)
            for key in ConfigLoader._BOOLEAN_KEYS
        }
        extensions = ConfigLoader._optional_string_list(
            payload, "include_extensions", source_label
        )
        cover = normalize_optional_string(payload.get("cover"))

        config = MergeConfig(
            input_path=ConfigLoader._required_path(payload, "input_path", source_label),
            output_path=ConfigLoader._required_path(payload, "output_path", source_label),
            extra_inputs=tuple(
                Path(item)
                for item in ConfigLoader._optional_string_list(
                    payload, "extra_inputs", source_label
                )
            ),
            include_extensions=(
                parse_extension_list(",".join(extensions))
                if extensions
                else DEFAULT_AUDIO_EXTENSIONS
            ),
            batch_patterns=ConfigLoader._optional_string_list(
                payload, "batch_patterns", source_label
            ),
            jobs=ConfigLoader._optional_int(payload, "jobs", source_label, default=1),
            silence_ms=ConfigLoader._optional_int(
                payload, "silence_ms", source_label, default=0
            ),
            audio_bitrate=normalize_optional_string(payload.get("audio_bitrate")),
            audio_samplerate=ConfigLoader._optional_int(
                payload, "audio_samplerate", source_label, default=None
            ),
            audio_channels=ConfigLoader._optional_int(
                payload, "audio_channels", source_label, default=None
            ),
            tag_options=ConfigLoader._optional_string_map(payload, "tags", source_label),
            equate=ConfigLoader._optional_string_list(payload, "equate", source_label),
            musicbrainz_id=normalize_optional_string(payload.get("musicbrainz_id")),
            max_chapter_length=normalize_optional_string(payload.get("max_chapter_length")),
            silence_min_length_ms=ConfigLoader._optional_int(
                payload,
                "silence_min_length_ms",
                source_label,
                default=DEFAULT_SILENCE_MIN_LENGTH_MS,
            ),
            cover=Path(cover) if cover is not None else None,
            **booleans,
        )
        config.validate()
        return config

    @staticmethod
    def jobs_from_env(env: Mapping[str, str] | None = None) -> int | None:
        """Read the default concurrency from `BOOKMERGE_JOBS`, if set."""

        env_map: Mapping[str, str] = os.environ if env is None else env
        raw_value = normalize_optional_string(env_map.get("BOOKMERGE_JOBS"))
        if raw_value is None:
            return None
        try:
            parsed = int(raw_value)
        except ValueError as exc:
            raise ValueError(
                "Environment variable `BOOKMERGE_JOBS` must be a positive integer."
            ) from exc
        if parsed <= 0:
            raise ValueError("Environment variable `BOOKMERGE_JOBS` must be a positive integer.")
        return parsed

    @staticmethod
    def _validate_keys(payload: Mapping[str, Any], source_label: str) -> None:
        """Validate supported and required keys."""

        unknown = sorted(set(payload).difference(ConfigLoader._SUPPORTED_YAML_KEYS))
        if unknown:
            key_list = ", ".join(unknown)
            raise ValueError(f"{source_label} includes unsupported key(s): {key_list}.")

        missing = sorted(
            key for key in ConfigLoader._REQUIRED_YAML_KEYS if key not in payload
        )
        if missing:
            key_list = ", ".join(missing)
            raise ValueError(f"{source_label} is missing required key(s): {key_list}.")

    @staticmethod
    def _required_path(payload: Mapping[str, Any], key: str, source_label: str) -> Path:
        """Read a required non-empty path-like field from a payload."""

        value = normalize_optional_string(payload.get(key))
        if value is None:
            raise ValueError(f"{source_label} requires non-empty `{key}`.")
        return Path(value)

    @staticmethod
    def _optional_int(
        payload: Mapping[str, Any], key: str, source_label: str, default: int | None
    ) -> int | None:
        """Read an optional integer payload field."""

        if key not in payload:
            return default

        raw_value = payload[key]
        if isinstance(raw_value, bool):
            raise ValueError(f"{source_label} field `{key}` must be an integer.")
        if isinstance(raw_value, int):
            return raw_value
        normalized = normalize_optional_string(raw_value)
        if normalized is None:
            return default
        try:
            return int(normalized)
        except ValueError as exc:
            raise ValueError(f"{source_label} field `{key}` must be an integer.") from exc

    @staticmethod
    def _optional_boolean(
        payload: Mapping[str, Any], key: str, source_label: str, default: bool
    ) -> bool:
        """Read and validate a boolean field from a payload."""

        if key not in payload:
            return default

        parsed = parse_permissive_boolean(payload[key])
        if parsed is None:
            raise ValueError(
                f"{source_label} field `{key}` must be a boolean value "
                "(`true`/`false`, `1`/`0`, `yes`/`no`)."
            )
        return parsed

    @staticmethod
    def _optional_string_list(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> tuple[str, ...]:
        """Read a list of strings, accepting a comma separated scalar as well."""

        if key not in payload or payload[key] is None:
            return tuple()
        raw = payload[key]
        if isinstance(raw, str):
            return parse_csv_list(raw) if key != "batch_patterns" else (raw.strip(),)
        if not isinstance(raw, list):
            raise ValueError(f"{source_label} field `{key}` must be a list.")
        values: list[str] = []
        for item in raw:
            normalized = normalize_optional_string(item)
            if normalized is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank entry.")
            values.append(normalized)
        return tuple(values)

    @staticmethod
    def _optional_string_map(
        payload: Mapping[str, Any], key: str, source_label: str
    ) -> dict[str, str]:
        """Read an optional mapping with non-empty string keys and values."""

        if key not in payload:
            return {}

        raw = payload[key]
        if raw is None:
            return {}
        if not isinstance(raw, Mapping):
            raise ValueError(f"{source_label} field `{key}` must be a mapping/object.")

        normalized: dict[str, str] = {}
        for raw_key, raw_value in raw.items():
            key_value = normalize_optional_string(raw_key)
            value_value = normalize_optional_string(raw_value)
            if key_value is None:
                raise ValueError(f"{source_label} field `{key}` contains a blank key.")
            if value_value is None:
                raise ValueError(
                    f"{source_label} field `{key}` contains blank value for `{key_value}`."
                )
            normalized[key_value] = value_value
        return normalized


_TAG_FIELD_ALIASES = {
    "name": "title",
    "sortname": "sort_title",
    "composer": "writer",
    "longdesc": "long_description",
    "encoder": "encoded_by",
    "part": "series_part",
}


def resolve_tag_field(name: str) -> str:
    """Map a user-facing tag field name (`albumartist`, `sort-artist`) to a field.

    Raises:
        ValueError: If the name does not denote a known tag field.
    """

    token = name.strip().lower().replace("-", "").replace("_", "")
    for field_name in TAG_FIELD_NAMES:
        if field_name.replace("_", "") == token:
            return field_name
    if token in _TAG_FIELD_ALIASES:
        return _TAG_FIELD_ALIASES[token]
    raise ValueError(f"Unknown tag field `{name}`.")


def parse_equate_instruction(instruction: str) -> tuple[str, tuple[str, ...]]:
    """Split `source,target[,target...]` into resolved field names.

    Raises:
        ValueError: If fewer than two fields are named or a field is unknown.
    """

    fields_in_order = [resolve_tag_field(token) for token in parse_csv_list(instruction)]
    if len(fields_in_order) < 2:
        raise ValueError(
            f"Equate instruction `{instruction}` must name a source and at least one target field."
        )
    return fields_in_order[0], tuple(fields_in_order[1:])
