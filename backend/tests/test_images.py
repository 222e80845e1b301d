import pytest

from facememory.game.errors import ValidationError
from facememory.game.images import ImageStore, MemoryImageStore, name_from_url


class HalfStore(ImageStore):
    def load(self, name):
        return None


def test_store_must_implement_every_storage_hook():
    with pytest.raises(TypeError):
        ImageStore()
    with pytest.raises(TypeError):
        HalfStore()


def test_memory_store_round_trip_and_discard():
    store = MemoryImageStore(max_bytes=16)
    url = store.save(b'\x89PNGdata', 'image/png')
    name = name_from_url(url)
    assert store.load(name) == (b'\x89PNGdata', 'image/png')
    store.discard(url)
    assert store.load(name) is None


def test_memory_store_limits():
    store = MemoryImageStore(max_bytes=4)
    with pytest.raises(ValidationError):
        store.save(b'12345', 'image/png')
    with pytest.raises(ValidationError):
        store.save(b'', 'image/png')
    with pytest.raises(ValidationError):
        store.save(b'1', 'application/pdf')
