import pytest

from face_presence.exceptions import IdentityMissing
from face_presence.identity import IdentityStore


def test_save_load_clear(tmp_path, identity):
    store = IdentityStore(tmp_path / "state" / "identity.json")

    store.save(identity)
    assert store.load() == identity

    store.clear()
    with pytest.raises(IdentityMissing):
        store.load()


def test_incomplete_identity_is_missing(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text('{"roll": "21CS042", "name": "", "email": "a@example.edu"}', encoding="utf-8")

    with pytest.raises(IdentityMissing):
        IdentityStore(path).load()


def test_corrupt_identity_is_missing(tmp_path):
    path = tmp_path / "identity.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(IdentityMissing):
        IdentityStore(path).load()
