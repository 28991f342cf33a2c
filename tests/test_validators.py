import pytest

from conftest import image_bytes
from shared.errors import InvalidFormat, SignatureMismatch, TooLarge, TooSmall, UnsafeName, ValidationError
from shared.validators import (
    UploadedFile,
    sanitize_filename,
    validate_audio,
    validate_data_url,
    validate_image,
    validate_image_signature,
)


def test_valid_jpeg_passes(jpeg_file):
    validate_image(jpeg_file)
    validate_image_signature(jpeg_file.data, jpeg_file.mime_type, jpeg_file.name)


def test_every_allowed_image_type_passes():
    for mime in ["image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp"]:
        validate_image(UploadedFile("pic", mime, 5000))


def test_image_size_bounds():
    with pytest.raises(TooSmall):
        validate_image(UploadedFile("tiny.png", "image/png", 99))
    validate_image(UploadedFile("edge.png", "image/png", 100))
    validate_image(UploadedFile("edge.png", "image/png", 10 * 1024 * 1024))
    with pytest.raises(TooLarge):
        validate_image(UploadedFile("big.png", "image/png", 10 * 1024 * 1024 + 1))


def test_unsupported_image_type_rejected():
    with pytest.raises(InvalidFormat):
        validate_image(UploadedFile("scan.tiff", "image/tiff", 5000))


def test_unsafe_name_rejected():
    with pytest.raises(UnsafeName):
        validate_image(UploadedFile("holiday.jpg.exe", "image/jpeg", 5000))


def test_empty_name_rejected():
    with pytest.raises(InvalidFormat):
        validate_image(UploadedFile("", "image/jpeg", 5000))


def test_generic_type_falls_back_to_extension():
    validate_image(UploadedFile("photo.JPG", "", 5000))
    validate_image(UploadedFile("photo.webp", "application/octet-stream", 5000))
    with pytest.raises(InvalidFormat):
        validate_image(UploadedFile("notes.txt", "", 5000))


def test_validation_errors_are_validation_errors():
    with pytest.raises(ValidationError) as exc:
        validate_image(UploadedFile("big.gif", "image/gif", 20 * 1024 * 1024))
    assert exc.value.reasons == [str(exc.value)]


def test_audio_types_and_size():
    validate_audio(UploadedFile("song.mp3", "audio/mpeg", 1000))
    validate_audio(UploadedFile("song.m4a", "audio/x-m4a", 1000))
    validate_audio(UploadedFile("song.flac", "", 1000))
    validate_audio(UploadedFile("song.ogg", "application/octet-stream", 1000))
    with pytest.raises(InvalidFormat):
        validate_audio(UploadedFile("song.mid", "audio/midi", 1000))
    with pytest.raises(InvalidFormat):
        validate_audio(UploadedFile("song.txt", "", 1000))
    with pytest.raises(TooLarge):
        validate_audio(UploadedFile("song.mp3", "audio/mpeg", 15 * 1024 * 1024 + 1))


def test_signatures_match_declared_type():
    validate_image_signature(image_bytes("PNG"), "image/png")
    validate_image_signature(image_bytes("GIF"), "image/gif")
    validate_image_signature(image_bytes("WEBP"), "image/webp")
    validate_image_signature(image_bytes("JPEG"), "image/jpg")


def test_flipped_signature_byte_fails():
    for fmt, mime in [("JPEG", "image/jpeg"), ("PNG", "image/png"), ("GIF", "image/gif")]:
        data = bytearray(image_bytes(fmt))
        data[1] ^= 0xFF
        with pytest.raises(SignatureMismatch):
            validate_image_signature(bytes(data), mime)


def test_signature_of_other_type_fails():
    with pytest.raises(SignatureMismatch):
        validate_image_signature(image_bytes("PNG"), "image/jpeg")


def test_signature_uses_extension_when_type_unset():
    validate_image_signature(image_bytes("PNG"), "", "shot.png")
    with pytest.raises(SignatureMismatch):
        validate_image_signature(image_bytes("PNG"), "", "shot.jpg")


def test_sanitize_filename():
    assert sanitize_filename('my  holiday:pic?.jpg') == "my_holiday_pic_.jpg"
    assert sanitize_filename("a<>b.png") == "a_b.png"


def test_validate_data_url():
    validate_data_url("data:image/png;base64,AAAA", "image/")
    with pytest.raises(ValidationError):
        validate_data_url("http://example.com/x.png")
    with pytest.raises(ValidationError):
        validate_data_url("data:audio/mpeg;base64,AAAA", "image/")


def test_uploaded_file_from_path(tmp_path):
    path = tmp_path / "cover.png"
    path.write_bytes(image_bytes("PNG"))
    uploaded = UploadedFile.from_path(path)
    assert uploaded.name == "cover.png"
    assert uploaded.mime_type == "image/png"
    assert uploaded.size == path.stat().st_size
