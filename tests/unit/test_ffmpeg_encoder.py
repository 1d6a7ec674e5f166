"""Unit tests for ffmpeg command construction and output parsing."""

from __future__ import annotations

from pathlib import Path
import subprocess

import pytest

from bookmerge.audio.encoder import FfmpegEncoder, codec_for_extension
from bookmerge.errors import MergeStageError
from bookmerge.models.datatypes import ConverterOptions, Silence


class _RecordingRun:
    """Capture subprocess commands and return a canned result."""

    def __init__(self, *, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        self.commands: list[list[str]] = []
        self.concat_lists: list[str] = []
        self.run_options: list[dict[str, object]] = []

    def __call__(self, command: list[str], **options: object) -> subprocess.CompletedProcess[str]:
        self.commands.append(command)
        self.run_options.append(options)
        if "concat" in command:
            self.concat_lists.append(
                Path(command[command.index("-i") + 1]).read_text(encoding="utf-8")
            )
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def recording_run(monkeypatch: pytest.MonkeyPatch) -> _RecordingRun:
    """Replace `subprocess.run` inside the encoder module."""

    recorder = _RecordingRun()
    monkeypatch.setenv("BOOKMERGE_FFMPEG", "ffmpeg-test")
    monkeypatch.setenv("BOOKMERGE_FFPROBE", "ffprobe-test")
    monkeypatch.setattr("bookmerge.audio.encoder.subprocess.run", recorder)
    return recorder


def test_convert_applies_trim_filters_and_encoding_options(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Interior items should trim both edges and use the container codec."""

    options = ConverterOptions(
        extension="m4b",
        codec="aac",
        bitrate="64k",
        samplerate=22050,
        channels=1,
        trim_silence_start=True,
        trim_silence_end=True,
    )

    exit_code = FfmpegEncoder().convert(tmp_path / "in.mp3", tmp_path / "out.m4b", options)

    (command,) = recording_run.commands
    assert exit_code == 0
    assert command[0] == "ffmpeg-test"
    audio_filter = command[command.index("-af") + 1]
    assert audio_filter.startswith("silenceremove=")
    assert audio_filter.count("areverse") == 2
    assert command[command.index("-c:a") + 1] == "aac"
    assert command[command.index("-b:a") + 1] == "64k"
    assert command[command.index("-ar") + 1] == "22050"
    assert command[command.index("-ac") + 1] == "1"
    assert command[command.index("-f") + 1] == "mp4"
    assert command[-1] == str(tmp_path / "out.m4b")


def test_convert_without_trim_flags_has_no_filter(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """First-and-last single items should not get an audio filter."""

    FfmpegEncoder().convert(
        tmp_path / "in.mp3", tmp_path / "out.mp3", ConverterOptions(extension="mp3")
    )

    (command,) = recording_run.commands
    assert "-af" not in command
    assert command[command.index("-c:a") + 1] == "libmp3lame"


def test_concat_writes_escaped_list_file_and_removes_it(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """The concat list should hold absolute, quoted paths and be deleted afterwards."""

    sources = [tmp_path / "01-a.finished.m4b", tmp_path / "02-it's.finished.m4b"]

    FfmpegEncoder().concat(sources, tmp_path / "tmp_book.m4b", ConverterOptions(extension="m4b"))

    (listing,) = recording_run.concat_lists
    assert listing.splitlines() == [
        f"file '{sources[0].resolve()}'",
        "file '" + str(sources[1].resolve()).replace("'", "'\\''") + "'",
    ]
    assert not (tmp_path / "tmp_book.m4b.concat.txt").exists()
    assert recording_run.commands[0][-1] == str(tmp_path / "tmp_book.m4b")


def test_probe_duration_parses_seconds_and_handles_failures(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Durations should be reported in milliseconds, `None` when unknown."""

    recording_run.stdout = "12.3456\n"
    assert FfmpegEncoder().probe_duration_ms(tmp_path / "a.mp3") == 12346

    recording_run.stdout = "N/A\n"
    assert FfmpegEncoder().probe_duration_ms(tmp_path / "a.mp3") is None

    recording_run.returncode = 1
    recording_run.stdout = "5.0\n"
    assert FfmpegEncoder().probe_duration_ms(tmp_path / "a.mp3") is None


def test_detect_silences_parses_silencedetect_output(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Only complete gaps of at least the minimum length should be returned."""

    recording_run.stderr = "\n".join(
        [
            "[silencedetect @ 0x1] silence_start: 10.5",
            "[silencedetect @ 0x1] silence_end: 12.5 | silence_duration: 2",
            "[silencedetect @ 0x1] silence_start: 20",
            "[silencedetect @ 0x1] silence_end: 20.4 | silence_duration: 0.4",
            "[silencedetect @ 0x1] silence_start: 30",
        ]
    )

    silences = FfmpegEncoder().detect_silences(tmp_path / "merged.m4b", 1000)

    assert silences == [Silence(start_ms=10_500, end_ms=12_500)]
    assert "silencedetect=noise=-30dB:d=1.000" in recording_run.commands[0]


def test_missing_executable_raises_stage_error(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    """A missing ffmpeg binary should surface as a stage error with an install hint."""

    def _missing_ffmpeg(*_: object, **__: object) -> None:
        """Raise deterministic missing-binary error for subprocess execution."""

        raise FileNotFoundError("ffmpeg")

    monkeypatch.setattr("bookmerge.audio.encoder.subprocess.run", _missing_ffmpeg)

    with pytest.raises(MergeStageError, match="is not available") as error:
        FfmpegEncoder().generate_silence(500, tmp_path / "silence.wav", ConverterOptions("m4b"))

    assert error.value.stage == "convert"
    assert "BOOKMERGE_FFMPEG" in (error.value.hint or "")


def test_codec_for_extension_rejects_unknown_containers() -> None:
    """Unknown output extensions should be a config error."""

    assert codec_for_extension(".OPUS") == "libopus"
    with pytest.raises(MergeStageError) as error:
        codec_for_extension("xyz")
    assert error.value.stage == "config"


def test_generate_silence_defaults_to_stereo_and_follows_options(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Silence should use the job layout, 44.1 kHz stereo when none is given."""

    encoder = FfmpegEncoder()
    encoder.generate_silence(750, tmp_path / "silence.wav", ConverterOptions(extension="m4b"))
    encoder.generate_silence(
        500,
        tmp_path / "silence.wav",
        ConverterOptions(extension="m4b", samplerate=22050, channels=1),
    )

    default_command, mono_command = recording_run.commands
    assert "anullsrc=r=44100:cl=stereo" in default_command
    assert default_command[default_command.index("-t") + 1] == "0.750"
    assert "anullsrc=r=22050:cl=mono" in mono_command


def test_audio_layout_is_read_from_first_audio_stream(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Sample rate and channel count should be parsed from ffprobe key/value output."""

    recording_run.stdout = "sample_rate=48000\nchannels=2\n"
    assert FfmpegEncoder().probe_audio_layout(tmp_path / "a.mp3") == (48000, 2)
    assert recording_run.commands[0][0] == "ffprobe-test"
    assert "a:0" in recording_run.commands[0]

    recording_run.stdout = "sample_rate=48000\n"
    assert FfmpegEncoder().probe_audio_layout(tmp_path / "a.mp3") is None


def test_embed_chapters_maps_chapters_from_metadata_file(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Chapters should come from the second input while streams are copied."""

    FfmpegEncoder().embed_chapters(
        tmp_path / "tmp_book.m4b",
        tmp_path / "chapters.ffmetadata.txt",
        tmp_path / "chapters_tmp_book.m4b",
        ConverterOptions(extension="m4b"),
    )

    (command,) = recording_run.commands
    assert command[command.index("-map_chapters") + 1] == "1"
    assert command[command.index("-map_metadata") + 1] == "0"
    assert command[command.index("-c") + 1] == "copy"
    assert command[command.index("-f") + 1] == "mp4"
    assert command[-1] == str(tmp_path / "chapters_tmp_book.m4b")


def test_process_output_is_decoded_leniently(
    recording_run: _RecordingRun, tmp_path: Path
) -> None:
    """Non-UTF-8 encoder output should be replaced instead of raising."""

    FfmpegEncoder().probe_duration_ms(tmp_path / "a.mp3")

    (options,) = recording_run.run_options
    assert options["text"] is True
    assert options["errors"] == "replace"
