"""External encoder collaborator backed by ffmpeg/ffprobe subprocesses.

Responsibilities:
- Convert single items, concatenate ordered items and generate silence.
- Probe durations and stream layouts, detect silence gaps.
- Extract embedded covers and embed chapter markers.
- Report plain exit statuses; callers verify resulting artifacts themselves.
"""

from __future__ import annotations

from pathlib import Path
import re
import subprocess
from typing import Protocol, Sequence

from ..errors import MergeStageError
from ..models.datatypes import ConverterOptions, Silence
from ..parsing import normalize_optional_string
from ..runtime_tools import resolve_executable
from ..telemetry.logger import RunLogger

EXTENSION_CODECS = {
    "aac": "aac",
    "m4a": "aac",
    "m4b": "aac",
    "mp4": "aac",
    "mp3": "libmp3lame",
    "oga": "libvorbis",
    "ogg": "libvorbis",
    "opus": "libopus",
    "flac": "flac",
    "wav": "pcm_s16le",
}
MP4_EXTENSIONS = frozenset({"m4b", "m4a", "mp4"})
DEFAULT_SAMPLERATE = 44100
DEFAULT_CHANNELS = 2

_CHANNEL_LAYOUTS = {1: "mono", 2: "stereo"}

_TRIM_FILTER = "silenceremove=start_periods=1:start_threshold=-60dB:start_silence=0.05"
_SILENCE_START_PATTERN = re.compile(r"silence_start:\s*(-?[0-9.]+)")
_SILENCE_END_PATTERN = re.compile(r"silence_end:\s*([0-9.]+)")
_LAYOUT_PATTERN = re.compile(r"^(sample_rate|channels)=(\d+)$", re.MULTILINE)


class AudioEncoder(Protocol):
    """Encoder operations the merge core depends on."""

    def convert(self, source: Path, destination: Path, options: ConverterOptions) -> int:
        """Convert one source item and return the process exit status."""

    def concat(
        self, sources: Sequence[Path], destination: Path, options: ConverterOptions
    ) -> int:
        """Concatenate ordered sources and return the process exit status."""

    def generate_silence(
        self, duration_ms: int, destination: Path, options: ConverterOptions
    ) -> int:
        """Generate a silence segment and return the process exit status."""

    def probe_duration_ms(self, path: Path) -> int | None:
        """Return the duration of an audio file, `None` when unknown."""

    def probe_audio_layout(self, path: Path) -> tuple[int, int] | None:
        """Return `(samplerate, channels)` of the first audio stream, if known."""

    def detect_silences(self, path: Path, min_length_ms: int) -> list[Silence]:
        """Return silence gaps of at least `min_length_ms`."""

    def extract_cover(self, source: Path, destination: Path) -> int:
        """Extract an embedded cover image and return the process exit status."""

    def embed_chapters(
        self, source: Path, metadata_path: Path, destination: Path, options: ConverterOptions
    ) -> int:
        """Copy `source` with the chapters of an ffmetadata file and return the status."""


def codec_for_extension(extension: str) -> str:
    """Return the encoder codec for an output container extension."""

    normalized = extension.lower().lstrip(".")
    try:
        return EXTENSION_CODECS[normalized]
    except KeyError as exc:
        supported = ", ".join(sorted(EXTENSION_CODECS))
        raise MergeStageError(
            stage="config",
            detail=f"Unsupported output format `{normalized}`.",
            hint=f"Use one of: {supported}.",
        ) from exc


class FfmpegEncoder:
    """Run ffmpeg/ffprobe commands for the merge stages."""

    def __init__(self, run_logger: RunLogger | None = None) -> None:
        """Resolve executables once per encoder instance."""

        self._ffmpeg = resolve_executable("ffmpeg")
        self._ffprobe = resolve_executable("ffprobe")
        self._run_logger = run_logger

    def convert(self, source: Path, destination: Path, options: ConverterOptions) -> int:
        """Re-encode one item, trimming edge silence according to its flags."""

        command = [self._ffmpeg, "-y", "-hide_banner", "-loglevel", "error", "-i", str(source)]
        filters: list[str] = []
        if options.trim_silence_start:
            filters.append(_TRIM_FILTER)
        if options.trim_silence_end:
            filters.extend(["areverse", _TRIM_FILTER, "areverse"])
        if filters:
            command.extend(["-af", ",".join(filters)])
        command.extend(["-vn", "-map_metadata", "-1"])
        command.extend(self._encoding_arguments(options))
        command.append(str(destination))
        return self._run(command, stage="convert").returncode

    def concat(
        self, sources: Sequence[Path], destination: Path, options: ConverterOptions
    ) -> int:
        """Concatenate ordered files with the concat demuxer and stream copy."""

        concat_path = destination.with_name(f"{destination.name}.concat.txt")
        concat_content = "\n".join(
            f"file '{self._escape_concat_path(path.resolve())}'" for path in sources
        )
        concat_path.write_text(concat_content + "\n", encoding="utf-8")
        command = [
            self._ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "concat",
            "-safe",
            "0",
            "-i",
            str(concat_path),
            "-vn",
            "-c",
            "copy",
            str(destination),
        ]
        try:
            return self._run(command, stage="assemble").returncode
        finally:
            if concat_path.exists():
                concat_path.unlink()

    def generate_silence(
        self, duration_ms: int, destination: Path, options: ConverterOptions
    ) -> int:
        """Generate a silence segment in the job's sample rate and channel layout.

        Without explicit values the segment is 44.1 kHz stereo.
        """

        channels = options.channels or DEFAULT_CHANNELS
        channel_layout = _CHANNEL_LAYOUTS.get(channels, f"{channels}c")
        samplerate = options.samplerate or DEFAULT_SAMPLERATE
        command = [
            self._ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-f",
            "lavfi",
            "-i",
            f"anullsrc=r={samplerate}:cl={channel_layout}",
            "-t",
            f"{duration_ms / 1000:.3f}",
            "-c:a",
            "pcm_s16le",
            str(destination),
        ]
        return self._run(command, stage="convert").returncode

    def probe_duration_ms(self, path: Path) -> int | None:
        """Read the container duration with ffprobe."""

        command = [
            self._ffprobe,
            "-v",
            "error",
            "-show_entries",
            "format=duration",
            "-of",
            "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        completed = self._run(command, stage="tag")
        raw = normalize_optional_string(completed.stdout)
        if completed.returncode != 0 or raw is None:
            return None
        try:
            return int(round(float(raw.splitlines()[0]) * 1000))
        except ValueError:
            return None

    def probe_audio_layout(self, path: Path) -> tuple[int, int] | None:
        """Read sample rate and channel count of the first audio stream."""

        command = [
            self._ffprobe,
            "-v",
            "error",
            "-select_streams",
            "a:0",
            "-show_entries",
            "stream=sample_rate,channels",
            "-of",
            "default=noprint_wrappers=1",
            str(path),
        ]
        completed = self._run(command, stage="convert")
        if completed.returncode != 0:
            return None
        found = dict(_LAYOUT_PATTERN.findall(completed.stdout or ""))
        if "sample_rate" not in found or "channels" not in found:
            return None
        return int(found["sample_rate"]), int(found["channels"])

    def detect_silences(self, path: Path, min_length_ms: int) -> list[Silence]:
        """Parse `silencedetect` output into silence gaps."""

        command = [
            self._ffmpeg,
            "-hide_banner",
            "-nostats",
            "-i",
            str(path),
            "-af",
            f"silencedetect=noise=-30dB:d={max(min_length_ms, 1) / 1000:.3f}",
            "-f",
            "null",
            "-",
        ]
        completed = self._run(command, stage="tag")
        silences: list[Silence] = []
        start_ms: int | None = None
        for line in (completed.stderr or "").splitlines():
            start_match = _SILENCE_START_PATTERN.search(line)
            if start_match is not None:
                start_ms = max(0, int(round(float(start_match.group(1)) * 1000)))
                continue
            end_match = _SILENCE_END_PATTERN.search(line)
            if end_match is not None and start_ms is not None:
                end_ms = int(round(float(end_match.group(1)) * 1000))
                if end_ms - start_ms >= min_length_ms:
                    silences.append(Silence(start_ms=start_ms, end_ms=end_ms))
                start_ms = None
        return silences

    def extract_cover(self, source: Path, destination: Path) -> int:
        """Copy the first attached picture stream into an image file."""

        command = [
            self._ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(source),
            "-an",
            "-vcodec",
            "copy",
            str(destination),
        ]
        return self._run(command, stage="extract_cover").returncode

    def embed_chapters(
        self, source: Path, metadata_path: Path, destination: Path, options: ConverterOptions
    ) -> int:
        """Remux `source` with the `[CHAPTER]` blocks of an ffmetadata file."""

        command = [
            self._ffmpeg,
            "-y",
            "-hide_banner",
            "-loglevel",
            "error",
            "-i",
            str(source),
            "-i",
            str(metadata_path),
            "-map",
            "0",
            "-map_metadata",
            "0",
            "-map_chapters",
            "1",
            "-c",
            "copy",
        ]
        if options.extension in MP4_EXTENSIONS:
            command.extend(["-f", "mp4"])
        command.append(str(destination))
        return self._run(command, stage="tag").returncode

    def _encoding_arguments(self, options: ConverterOptions) -> list[str]:
        """Return codec/bitrate/rate/channel arguments."""

        arguments = ["-c:a", options.codec or codec_for_extension(options.extension)]
        if options.bitrate:
            arguments.extend(["-b:a", options.bitrate])
        if options.samplerate:
            arguments.extend(["-ar", str(options.samplerate)])
        if options.channels:
            arguments.extend(["-ac", str(options.channels)])
        if options.extension in MP4_EXTENSIONS:
            arguments.extend(["-f", "mp4"])
        return arguments

    def _run(self, command: list[str], *, stage: str) -> subprocess.CompletedProcess[str]:
        """Run one command, mapping a missing executable to a stage error."""

        try:
            completed = subprocess.run(
                command,
                check=False,
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except FileNotFoundError as exc:
            raise MergeStageError(
                stage=stage,
                detail=f"Encoder tool `{command[0]}` is not available.",
                hint="Install ffmpeg or set `BOOKMERGE_FFMPEG` / `BOOKMERGE_FFPROBE`.",
            ) from exc
        if completed.returncode != 0 and self._run_logger is not None:
            stderr = normalize_optional_string(completed.stderr) or "no stderr output"
            self._run_logger.debug(f"{Path(command[0]).name} exited {completed.returncode}: {stderr}")
        return completed

    def _escape_concat_path(self, path: Path) -> str:
        """Escape one file path for ffmpeg concat list format."""

        return str(path).replace("'", "'\\''")
