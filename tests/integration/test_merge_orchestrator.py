"""End-to-end merge job tests with an in-memory encoder."""

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest
from pytest import MonkeyPatch

from bookmerge.config import MergeConfig
from bookmerge.errors import MergeStageError
from bookmerge.models.datatypes import JobState
from bookmerge.pipeline import MergeOrchestrator, temp_dir_for
from bookmerge.pipeline import orchestrator as orchestrator_module
from bookmerge.tags.record import TagRecord
from tests.fakes import FakeEncoder, RecordingTagWriter, StaticTagReader


def _orchestrator(
    encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
    stages: list[str] | None = None,
) -> MergeOrchestrator:
    """Build an orchestrator wired to fake collaborators."""

    return MergeOrchestrator(
        encoder=encoder,
        stage_progress_callback=(
            (lambda stage, index, total: stages.append(stage)) if stages is not None else None
        ),
        tag_reader=tag_reader,
        tag_writer=tag_writer,
        progress_interval_seconds=0.01,
    )


def test_no_conversion_merge_keeps_extension_and_removes_temp_dir(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Three `.mp3` inputs merged without re-encoding should yield an `.mp3` output."""

    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "out" / "book.m4b",
        no_conversion=True,
    )
    stages: list[str] = []
    orchestrator = _orchestrator(fake_encoder, tag_writer, tag_reader, stages)

    result = orchestrator.run(config)

    expected_output = tmp_path / "out" / "book.mp3"
    assert result.output_path == expected_output
    assert result.merged_count == 3
    assert result.state is JobState.DONE
    assert orchestrator.state is JobState.DONE
    assert fake_encoder.converted == []
    assert fake_encoder.concat_calls == [audio_inputs]
    assert expected_output.read_bytes() == b"audio-1|audio-2|audio-10|chapters"
    ((chaptered_source, metadata),) = fake_encoder.chapter_calls
    assert chaptered_source.name == "tmp_book.mp3"
    assert metadata.startswith(";FFMETADATA1\n[CHAPTER]\nTIMEBASE=1/1000\nSTART=0\nEND=60000\n")
    assert "title=10 - part\n" in metadata
    assert not temp_dir_for(expected_output).exists()
    assert (tmp_path / "out" / "book.chapters.txt").read_text(encoding="utf-8") == (
        "00:00:00.000 1 - part\n00:01:00.000 2 - part\n00:02:00.000 10 - part\n"
    )
    assert stages == [
        "load_inputs",
        "extract_cover",
        "convert",
        "assemble",
        "tag",
        "finalize",
        "cleanup",
    ]


def test_conversion_with_silence_builds_interleaved_sequence_and_trim_flags(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Converted items should be merged in input order with silence between them."""

    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "out" / "book.m4b",
        silence_ms=750,
        jobs=2,
    )

    result = _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert result.output_path == tmp_path / "out" / "book.m4b"
    assert fake_encoder.silence_calls == [750]
    (sequence,) = fake_encoder.concat_calls
    assert [path.name for path in sequence] == [
        "01-1 - part.finished.m4b",
        "silence.finished.m4b",
        "02-2 - part.finished.m4b",
        "silence.finished.m4b",
        "03-10 - part.finished.m4b",
    ]
    flags = {
        source.name: (options.trim_silence_start, options.trim_silence_end)
        for source, _, options in fake_encoder.converted
    }
    assert flags == {
        "silence.wav": (False, False),
        "1 - part.mp3": (False, True),
        "2 - part.mp3": (True, True),
        "10 - part.mp3": (True, False),
    }
    assert all(options.codec == "aac" for _, _, options in fake_encoder.converted)
    assert {(options.samplerate, options.channels) for _, _, options in fake_encoder.converted} == {
        (44100, 2)
    }
    assert fake_encoder.layout_calls == [audio_inputs[0]]
    assert not temp_dir_for(result.output_path).exists()


def test_zero_byte_conversion_fails_before_assemble(
    tmp_path: Path,
    audio_inputs: list[Path],
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """An empty conversion artifact should fail the job naming the source item."""

    encoder = FakeEncoder(empty_outputs=frozenset({"2 - part.mp3"}))
    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "out" / "book.m4b",
    )
    orchestrator = _orchestrator(encoder, tag_writer, tag_reader)

    with pytest.raises(MergeStageError) as error:
        orchestrator.run(config)

    assert error.value.stage == "convert"
    assert "2 - part.mp3" in error.value.detail
    assert error.value.diagnostic == "output artifact is empty"
    assert orchestrator.state is JobState.FAILED
    assert encoder.concat_calls == []
    assert tag_writer.written == []
    assert not (tmp_path / "out" / "book.m4b").exists()
    assert temp_dir_for(tmp_path / "out" / "book.m4b").is_dir()


def test_existing_output_requires_force(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """An existing output should only be replaced when force is set."""

    output = tmp_path / "book.m4b"
    output.write_bytes(b"old")
    config = MergeConfig(input_path=audio_inputs[0].parent, output_path=output)

    with pytest.raises(MergeStageError, match="already exists") as error:
        _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)
    assert error.value.stage == "load_inputs"

    forced = MergeConfig(input_path=audio_inputs[0].parent, output_path=output, force=True)
    _orchestrator(fake_encoder, tag_writer, tag_reader).run(forced)

    assert output.read_bytes() != b"old"


def test_output_directory_and_empty_input_are_rejected(
    tmp_path: Path,
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """A directory output and zero eligible inputs should fail the load stage."""

    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "notes.txt").write_text("x", encoding="utf-8")
    (tmp_path / "out.m4b").mkdir()

    with pytest.raises(MergeStageError, match="is a directory"):
        _orchestrator(fake_encoder, tag_writer, tag_reader).run(
            MergeConfig(input_path=input_dir, output_path=tmp_path / "out.m4b")
        )
    with pytest.raises(MergeStageError, match="No eligible input files"):
        _orchestrator(fake_encoder, tag_writer, tag_reader).run(
            MergeConfig(input_path=input_dir, output_path=tmp_path / "book.m4b")
        )


def test_mixed_extensions_without_conversion_require_force(
    tmp_path: Path,
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """No-conversion mode should reject mixed input extensions."""

    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "1.mp3").write_bytes(b"a")
    (input_dir / "2.m4a").write_bytes(b"b")
    config = MergeConfig(
        input_path=input_dir, output_path=tmp_path / "book.m4b", no_conversion=True
    )

    with pytest.raises(MergeStageError, match="mixed extensions") as error:
        _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert error.value.stage == "load_inputs"
    assert fake_encoder.concat_calls == []


def test_unknown_output_extension_is_a_config_error(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Converting into an unsupported container should fail before any task runs."""

    config = MergeConfig(input_path=audio_inputs[0].parent, output_path=tmp_path / "book.xyz")

    with pytest.raises(MergeStageError) as error:
        _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert error.value.stage == "config"
    assert fake_encoder.converted == []


def test_tags_follow_sidecar_option_and_source_precedence(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
) -> None:
    """Sidecars, explicit options, equate and source fallback should combine in order."""

    input_dir = audio_inputs[0].parent
    (input_dir / "ffmetadata.txt").write_text(
        ";FFMETADATA1\nartist=Sidecar Artist\nalbum=Sidecar Album\n", encoding="utf-8"
    )
    (input_dir / "chapters.txt").write_text(
        "00:00:00.000 Intro\n00:02:00.000 Finale\n", encoding="utf-8"
    )
    (input_dir / "cover.jpg").write_bytes(b"jpeg")
    reader = StaticTagReader({"1 - part.mp3": TagRecord(title="Track One", genre="Audiobook")})
    config = MergeConfig(
        input_path=input_dir,
        output_path=tmp_path / "book.m4b",
        tag_options={"artist": "Explicit Artist"},
        equate=("artist,albumartist",),
    )

    result = _orchestrator(fake_encoder, tag_writer, reader).run(config)

    ((written_path, tag),) = tag_writer.written
    assert written_path.name == "tmp_book.m4b"
    assert tag.artist == "Explicit Artist"
    assert tag.album_artist == "Explicit Artist"
    assert tag.album == "Sidecar Album"
    assert tag.title == "Track One"
    assert tag.genre == "Audiobook"
    assert tag.cover == input_dir / "cover.jpg"
    assert [chapter.name for chapter in tag.chapters] == ["Intro", "Finale"]
    assert result.chapter_count == 2
    assert fake_encoder.cover_calls == []


def test_keep_temp_files_skips_cleanup(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Intermediate files should stay when keep-temp-files is requested."""

    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "book.m4b",
        keep_temp_files=True,
    )

    _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    temp_dir = temp_dir_for(tmp_path / "book.m4b")
    assert (temp_dir / "01-1 - part.finished.m4b").is_file()


def test_dry_run_stops_after_loading_inputs(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """A dry run should report the plan without running any encoder operation."""

    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "book.m4b",
        dry_run=True,
    )

    result = _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert result.dry_run is True
    assert result.merged_count == 3
    assert fake_encoder.converted == []
    assert fake_encoder.cover_calls == []
    assert not temp_dir_for(tmp_path / "book.m4b").exists()


def test_finalize_rename_failure_is_fatal_and_keeps_temp_files(
    monkeypatch: MonkeyPatch,
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """A rename failure should surface as a finalize error after conversion."""

    def _failing_replace(source: object, target: object) -> None:
        raise OSError("read-only file system")

    monkeypatch.setattr(orchestrator_module, "os", SimpleNamespace(replace=_failing_replace))
    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "book.m4b",
        no_conversion=True,
    )

    with pytest.raises(MergeStageError) as error:
        _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert error.value.stage == "finalize"
    assert error.value.diagnostic == "read-only file system"
    assert (temp_dir_for(tmp_path / "book.mp3") / "tmp_book.mp3").is_file()


def test_silence_is_ignored_without_conversion(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Stream-copy merges should never generate or convert a silence segment."""

    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "book.m4b",
        no_conversion=True,
        silence_ms=500,
    )

    result = _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert result.output_path == tmp_path / "book.mp3"
    assert fake_encoder.silence_calls == []
    assert fake_encoder.converted == []
    assert fake_encoder.layout_calls == []
    assert fake_encoder.concat_calls == [audio_inputs]


def test_silence_uses_source_layout_unless_options_are_explicit(
    tmp_path: Path,
    audio_inputs: list[Path],
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Items and silence should share one layout taken from options or the first input."""

    encoder = FakeEncoder(audio_layout=(22050, 1))
    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "book.m4b",
        silence_ms=500,
        audio_samplerate=48000,
    )

    _orchestrator(encoder, tag_writer, tag_reader).run(config)

    assert {(options.samplerate, options.channels) for _, _, options in encoder.converted} == {
        (48000, 1)
    }
    assert len(encoder.converted) == 4


def test_layout_is_left_alone_without_silence(
    tmp_path: Path,
    audio_inputs: list[Path],
    fake_encoder: FakeEncoder,
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """Without silence, items keep their source layout unless options set one."""

    config = MergeConfig(input_path=audio_inputs[0].parent, output_path=tmp_path / "book.m4b")

    _orchestrator(fake_encoder, tag_writer, tag_reader).run(config)

    assert fake_encoder.layout_calls == []
    assert {(options.samplerate, options.channels) for _, _, options in fake_encoder.converted} == {
        (None, None)
    }


def test_failed_chapter_embedding_keeps_chapters_sidecar(
    tmp_path: Path,
    audio_inputs: list[Path],
    tag_writer: RecordingTagWriter,
    tag_reader: StaticTagReader,
) -> None:
    """A failed chapter remux should warn and still finish with the chapters file."""

    encoder = FakeEncoder(chapter_embed_exit_code=1)
    config = MergeConfig(
        input_path=audio_inputs[0].parent,
        output_path=tmp_path / "book.m4b",
        no_conversion=True,
    )

    result = _orchestrator(encoder, tag_writer, tag_reader).run(config)

    assert len(encoder.chapter_calls) == 1
    assert result.output_path.read_bytes() == b"audio-1|audio-2|audio-10"
    assert (tmp_path / "book.chapters.txt").is_file()
    assert not temp_dir_for(result.output_path).exists()
