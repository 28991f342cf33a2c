import asyncio

import pytest

from shared.errors import ValidationError
from shared.models import AudioMetadata, MusicModel, extract_title
from shared.validators import UploadedFile


def test_extract_title():
    assert extract_title("01 - Morning_Song.mp3") == "Morning Song"
    assert extract_title("12.Track-Name.flac") == "Track Name"
    assert extract_title("plain.wav") == "plain"
    assert extract_title("2024") == ""


def test_from_upload_derives_title_and_hash(wav_file):
    track = MusicModel.from_upload(wav_file)
    assert track.metadata.title == "Morning Song"
    assert track.metadata.file_hash and len(track.metadata.file_hash) == 64
    assert track.data_url.startswith("data:audio/wav;base64,")


def test_generic_type_accepted_by_extension():
    track = MusicModel.from_upload(UploadedFile.from_bytes("song.flac", b"x" * 200, ""))
    assert track.data_url.startswith("data:application/octet-stream;")


def test_generic_type_with_unknown_extension_rejected():
    with pytest.raises(ValidationError):
        MusicModel.from_upload(UploadedFile.from_bytes("song.txt", b"x" * 200, ""))


def test_oversized_track_rejected():
    with pytest.raises(ValidationError) as exc:
        MusicModel(id="m1", filename="big.mp3", original_name="big.mp3",
                   data_url="data:audio/mpeg;base64,AAAA", size=16 * 1024 * 1024,
                   mime_type="audio/mpeg")
    assert "File size exceeds 15MB limit" in exc.value.reasons


def test_load_metadata_reads_duration(wav_file):
    track = asyncio.run(MusicModel.from_upload(wav_file).load_metadata())
    assert track.metadata.duration == pytest.approx(1.0, abs=0.01)
    assert track.metadata.sample_rate == 8000
    assert track.format_duration() == "0:01"


def test_load_metadata_failure_is_not_fatal():
    track = MusicModel.from_upload(UploadedFile.from_bytes("noise.mp3", b"\x00" * 300, "audio/mpeg"))
    asyncio.run(track.load_metadata())
    assert track.metadata.duration is None
    assert track.format_duration() == "Unknown"


def test_format_duration():
    track = MusicModel(id="m1", filename="a.mp3", original_name="a.mp3",
                       data_url="data:audio/mpeg;base64,AAAA", size=10, mime_type="audio/mpeg",
                       metadata=AudioMetadata(duration=185.7))
    assert track.format_duration() == "3:05"


def test_round_trip(wav_file):
    track = asyncio.run(MusicModel.from_upload(wav_file).load_metadata())
    assert MusicModel.from_dict(track.to_dict()) == track


def test_round_trip_of_storage_reference():
    track = MusicModel(id="m1", filename="a.mp3", original_name="a.mp3",
                       data_url="https://bucket.example/shared/audio/music_m1?sig=1",
                       size=2048, mime_type="audio/mpeg", is_storage_ref=True)
    assert MusicModel.from_dict(track.to_dict()) == track
