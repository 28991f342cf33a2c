import asyncio
from unittest.mock import MagicMock

import pytest

from conftest import image_bytes
from desk.desktop import Desktop
from desk.music import MusicController
from desk.notes import NotesController
from desk.optimistic import ItemState
from desk.photos import PhotosController
from shared.constants import NOTES_COLLECTION_KEY
from shared.errors import (
    BackendUnavailable,
    InvalidFormat,
    NetworkUnavailable,
    StorageTimeout,
    TooLarge,
    ValidationError,
)
from shared.validators import UploadedFile


class CountingGateway:
    """Gateway double whose save fails with queued errors."""

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.saves = 0

    async def save(self, key, data):
        self.saves += 1
        if self.errors:
            raise self.errors.pop(0)
        return True


def _record_views(controller):
    views = []
    controller.on_change(lambda c: views.append(c.render()))
    return views


def test_successful_insert_clears_pending(gateway, jpeg_file):
    photos = PhotosController(gateway, retry_backoff=0)
    views = _record_views(photos)

    photo = asyncio.run(photos.upload(jpeg_file))

    assert views[0]['items'][0]['pending'] is True
    assert views[-1]['items'][0]['pending'] is False
    assert photos.states[photo.id] == ItemState.COMMITTED
    assert asyncio.run(gateway.load(f"photo_{photo.id}")) is not None


def test_failed_insert_leaves_nothing_visible(gateway, provider, jpeg_file):
    photos = PhotosController(gateway, retry_backoff=0)
    messages = []
    seen_states = []
    photos.notify(lambda level, message: messages.append((level, message)))
    photos.on_change(lambda c: seen_states.extend(c.states.values()))
    provider.upload_failures = 10

    with pytest.raises(BackendUnavailable):
        asyncio.run(photos.upload(jpeg_file))

    assert photos.items == []
    assert photos.render()['items'] == []
    assert seen_states[-1] == ItemState.ROLLED_BACK
    assert photos.states == {}
    assert messages and messages[-1][0] == 'error'


def test_insert_retries_once_after_backend_error(gateway, provider, jpeg_file):
    photos = PhotosController(gateway, retry_backoff=0)
    provider.upload_failures = 1
    asyncio.run(photos.upload(jpeg_file))
    assert len(photos.items) == 1


def test_retry_policy():
    gateway = CountingGateway([StorageTimeout("slow"), StorageTimeout("slow")])
    photos = PhotosController(gateway, retry_backoff=0)
    with pytest.raises(StorageTimeout):
        asyncio.run(photos._save_with_retry("photo_x", {}))
    assert gateway.saves == 2

    gateway = CountingGateway([NetworkUnavailable("offline")])
    photos = PhotosController(gateway, retry_backoff=0)
    with pytest.raises(NetworkUnavailable):
        asyncio.run(photos._save_with_retry("photo_x", {}))
    assert gateway.saves == 1


def test_oversized_jpeg_rejected_before_network():
    gateway = MagicMock()
    photos = PhotosController(gateway)
    data = b"\xff\xd8\xff\xe0" + b"\x00" * (12 * 1024 * 1024)
    big = UploadedFile.from_bytes("huge.jpg", data, "image/jpeg")

    with pytest.raises(TooLarge):
        asyncio.run(photos.upload(big))

    assert photos.items == []
    gateway.save.assert_not_called()


def test_signature_mismatch_rejected(gateway):
    photos = PhotosController(gateway)
    fake = UploadedFile.from_bytes("fake.jpg", image_bytes("PNG"), "image/jpeg")
    with pytest.raises(ValidationError):
        asyncio.run(photos.upload(fake))
    assert photos.items == []


def test_large_photo_is_compressed_before_save(gateway):
    photos = PhotosController(gateway, retry_backoff=0)
    data = image_bytes("JPEG", size=(3000, 2000), quality=95)

    photo = asyncio.run(photos.upload(UploadedFile.from_bytes("wide.jpg", data, "image/jpeg")))

    assert photo.metadata.compressed
    assert photo.metadata.width <= 1920 and photo.metadata.height <= 1080
    assert photo.size < len(data)
    stored = gateway.provider.download_bytes(f"shared/photos/photo_{photo.id}")
    assert len(stored) == photo.size


def test_delete_offline_restores_item(gateway, jpeg_file, png_file):
    photos = PhotosController(gateway, retry_backoff=0)
    asyncio.run(photos.upload_many([jpeg_file, png_file]))
    order = [item.id for item in photos.items]

    gateway.set_online(False)
    with pytest.raises(NetworkUnavailable):
        asyncio.run(photos.delete(order[1]))

    assert [item.id for item in photos.items] == order
    assert photos.states[order[1]] == ItemState.COMMITTED


def test_delete_removes_item_and_storage(gateway, jpeg_file):
    photos = PhotosController(gateway, retry_backoff=0)
    photo = asyncio.run(photos.upload(jpeg_file))

    assert asyncio.run(photos.delete(photo.id))
    assert photos.items == []
    assert asyncio.run(gateway.load(f"photo_{photo.id}")) is None
    with pytest.raises(KeyError):
        asyncio.run(photos.delete(photo.id))


def test_init_loads_stored_items(gateway, jpeg_file, png_file):
    asyncio.run(PhotosController(gateway, retry_backoff=0).upload_many([jpeg_file, png_file]))

    fresh = PhotosController(gateway)
    asyncio.run(fresh.init())

    assert len(fresh.items) == 2
    assert all(item.is_storage_ref for item in fresh.items)
    assert fresh.render()['stats']['count'] == 2


def test_upload_many_tallies_results(gateway, jpeg_file):
    photos = PhotosController(gateway, retry_backoff=0)
    bad = UploadedFile.from_bytes("notes.txt", b"x" * 500, "text/plain")

    tally = asyncio.run(photos.upload_many([jpeg_file, bad]))

    assert tally['succeeded'] == 1
    assert tally['failed'] == 1
    assert tally['errors'][0][0] == "notes.txt"
    assert len(photos.items) == 1


def test_music_upload_loads_metadata(gateway, wav_file):
    music = MusicController(gateway, retry_backoff=0)
    track = asyncio.run(music.upload(wav_file))

    assert track.metadata.duration == pytest.approx(1.0, abs=0.01)
    view = music.render()
    assert view['items'][0]['title'] == "Morning Song"
    assert view['items'][0]['duration'] == "0:01"


def test_music_rejects_unknown_format(gateway):
    music = MusicController(gateway)
    with pytest.raises(InvalidFormat):
        asyncio.run(music.upload(UploadedFile.from_bytes("song.mid", b"x" * 200, "audio/midi")))


def test_notes_persist_and_reload(gateway):
    notes = NotesController(gateway, retry_backoff=0)
    asyncio.run(notes.init())
    first = asyncio.run(notes.add("ramen crawl"))
    asyncio.run(notes.add("planetarium"))
    asyncio.run(notes.toggle(first.id))

    fresh = NotesController(gateway)
    asyncio.run(fresh.init())
    assert fresh.collection.stats() == {'total': 2, 'completed': 1, 'active': 1}

    assert asyncio.run(fresh.clear_completed()) == 1
    assert [e.content for e in fresh.collection] == ["planetarium"]


def test_notes_failure_undoes_the_mutation(gateway, provider):
    notes = NotesController(gateway, retry_backoff=0)
    asyncio.run(notes.init())
    kept = asyncio.run(notes.add("board games"))

    provider.upload_failures = 10
    with pytest.raises(BackendUnavailable):
        asyncio.run(notes.add("escape room"))
    with pytest.raises(BackendUnavailable):
        asyncio.run(notes.edit(kept.id, "board games cafe"))

    assert [e.content for e in notes.collection] == ["board games"]
    assert notes.collection.get(kept.id).version == 1
    assert not notes.pending_ids


def test_failed_note_save_keeps_concurrent_commit(gateway, provider):
    notes = NotesController(gateway, max_save_attempts=1, retry_backoff=0)
    asyncio.run(notes.init())
    provider.upload_delay = 0.1
    provider.upload_failures = 1

    async def both():
        return await asyncio.gather(notes.add("mini golf"), notes.add("food market"),
                                    return_exceptions=True)

    first, second = asyncio.run(both())

    assert isinstance(first, BackendUnavailable)
    assert second.content == "food market"
    assert [e.content for e in notes.collection] == ["food market"]
    assert not notes.pending_ids
    stored = asyncio.run(gateway.load(NOTES_COLLECTION_KEY))
    assert [e["content"] for e in stored] == ["food market"]


def test_failed_delete_puts_entry_back_in_place(gateway, provider):
    notes = NotesController(gateway, retry_backoff=0)
    asyncio.run(notes.init())
    ids = [asyncio.run(notes.add(text)).id for text in ("a", "b", "c")]

    provider.upload_failures = 10
    with pytest.raises(BackendUnavailable):
        asyncio.run(notes.delete(ids[1]))

    assert [e.id for e in notes.collection] == ids


def test_refresh_adopts_newer_remote_entries(gateway):
    mine = NotesController(gateway, retry_backoff=0)
    asyncio.run(mine.init())
    shared_entry = asyncio.run(mine.add("aquarium"))
    dropped = asyncio.run(mine.add("zoo"))

    theirs = NotesController(gateway, retry_backoff=0)
    asyncio.run(theirs.init())
    asyncio.run(theirs.edit(shared_entry.id, "aquarium and dinner"))
    asyncio.run(theirs.delete(dropped.id))
    added = asyncio.run(theirs.add("bike ride"))

    messages = []
    mine.notify(lambda level, message: messages.append((level, message)))
    assert asyncio.run(mine.refresh()) == 3

    assert mine.collection.get(shared_entry.id).content == "aquarium and dinner"
    assert mine.collection.get(shared_entry.id).version == 2
    assert dropped.id not in mine.collection
    assert added.id in mine.collection
    assert ('info', "Ideas updated from cloud") in messages
    assert asyncio.run(mine.refresh()) == 0


def test_refresh_keeps_local_entry_with_higher_version(gateway):
    mine = NotesController(gateway, retry_backoff=0)
    asyncio.run(mine.init())
    entry = asyncio.run(mine.add("arcade"))
    asyncio.run(mine.edit(entry.id, "retro arcade"))

    mine.collection.get(entry.id).update_content("retro arcade night")
    assert asyncio.run(mine.refresh()) == 0
    assert mine.collection.get(entry.id).content == "retro arcade night"


def test_unreadable_notes_are_not_overwritten(gateway):
    asyncio.run(gateway.save(NOTES_COLLECTION_KEY, {"not": "a list"}))
    notes = NotesController(gateway, retry_backoff=0)
    asyncio.run(notes.init())

    assert not notes.initialized
    assert notes.load_error is not None
    with pytest.raises(BackendUnavailable):
        asyncio.run(notes.add("pottery class"))
    assert len(notes.collection) == 0
    assert asyncio.run(gateway.load(NOTES_COLLECTION_KEY)) == {"not": "a list"}


def test_notes_validation_rejected_before_save():
    gateway = CountingGateway()
    notes = NotesController(gateway)
    with pytest.raises(ValidationError):
        asyncio.run(notes.add("   "))
    assert gateway.saves == 0
    assert len(notes.collection) == 0


def test_desktop_open_and_close(gateway):
    desktop = Desktop(gateway, message="Hello")
    view = asyncio.run(desktop.open_app('notes'))
    assert view['app'] == 'notes'
    assert 'notes' in desktop.open_apps

    assert asyncio.run(desktop.open_app('message')) == {'app': 'message', 'message': 'Hello'}

    desktop.close_app('notes')
    assert 'notes' not in desktop.open_apps
    with pytest.raises(KeyError):
        asyncio.run(desktop.open_app('calculator'))
