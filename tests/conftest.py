"""
Shared fixtures: a local-folder backend under tmp_path with fault
injection, and generated image/audio payloads.
"""

import io
import struct
import time
import wave

import pytest
from PIL import Image

from cloud_store.connectivity import ConnectivityProbe
from cloud_store.gateway import StorageGateway
from cloud_store.local_provider import LocalStorageProvider
from shared.errors import BackendUnavailable
from shared.validators import UploadedFile


class FlakyProvider(LocalStorageProvider):
    """Local provider that can be told to fail or stall."""

    def __init__(self):
        super().__init__()
        self.upload_failures = 0
        self.upload_delay = 0.0
        self.fail_upload_prefix = None
        self.fail_delete_prefix = None
        self.uploads = []
        self.deletes = []
        self.metadata = {}

    def upload_bytes(self, data, remote_key, content_type=None, metadata=None):
        if self.upload_delay:
            time.sleep(self.upload_delay)
        if self.upload_failures > 0:
            self.upload_failures -= 1
            raise BackendUnavailable("injected upload failure", remote_key)
        if self.fail_upload_prefix and remote_key.startswith(self.fail_upload_prefix):
            raise BackendUnavailable("injected upload failure", remote_key)
        self.uploads.append(remote_key)
        self.metadata[remote_key] = metadata
        super().upload_bytes(data, remote_key, content_type, metadata)

    def delete_file(self, remote_key):
        if self.fail_delete_prefix and remote_key.startswith(self.fail_delete_prefix):
            raise BackendUnavailable("injected delete failure", remote_key)
        self.deletes.append(remote_key)
        super().delete_file(remote_key)


@pytest.fixture
def provider(tmp_path):
    p = FlakyProvider()
    assert p.authenticate({'endpoint': str(tmp_path / "store")})
    return p


@pytest.fixture
def gateway(provider):
    return StorageGateway(provider, origin_id="user_test", small_timeout=2, large_timeout=2,
                          probe=ConnectivityProbe(provider))


def image_bytes(fmt="JPEG", size=(64, 48), mode="RGB", **save_kwargs):
    """Smooth gradient image; compresses predictably."""
    gradient = Image.linear_gradient("L").resize(size)
    if mode == "RGBA":
        img = Image.merge("RGBA", (gradient, gradient.transpose(Image.Transpose.FLIP_LEFT_RIGHT),
                                   gradient, Image.new("L", size, 255)))
    else:
        img = Image.merge("RGB", (gradient, gradient.transpose(Image.Transpose.FLIP_LEFT_RIGHT),
                                  gradient))
    buf = io.BytesIO()
    img.save(buf, format=fmt, **save_kwargs)
    return buf.getvalue()


def wav_bytes(seconds=1.0, rate=8000):
    buf = io.BytesIO()
    with wave.open(buf, "wb") as w:
        w.setnchannels(1)
        w.setsampwidth(2)
        w.setframerate(rate)
        frames = int(seconds * rate)
        w.writeframes(b"".join(struct.pack("<h", (i * 37) % 2000 - 1000) for i in range(frames)))
    return buf.getvalue()


@pytest.fixture
def jpeg_file():
    return UploadedFile.from_bytes("beach.jpg", image_bytes("JPEG", quality=90), "image/jpeg")


@pytest.fixture
def png_file():
    return UploadedFile.from_bytes("logo.png", image_bytes("PNG", size=(200, 150), mode="RGBA"), "image/png")


@pytest.fixture
def wav_file():
    return UploadedFile.from_bytes("01 - Morning_Song.wav", wav_bytes(), "audio/wav")
