"""Tests for KeyManager."""

import pytest

from mindjournal import crypto, db
from mindjournal.errors import DecryptionFailed, KeyUnavailable
from mindjournal.keys import RESET_CONFIRMATION, KeyManager
from mindjournal.state import DeviceState

from .conftest import run


class TestDeviceKey:
    def test_created_once_and_persisted(self, keys, store):
        first = run(keys.get_or_create_device_key())
        second = run(keys.get_or_create_device_key())
        assert first == second
        assert crypto.import_key(run(store.get_item(db.KEY_ITEM))) == first

    def test_survives_new_state(self, keys, store):
        key = run(keys.get_or_create_device_key())
        fresh = KeyManager(run(DeviceState.load(store)))
        assert run(fresh.get_or_create_device_key()) == key

    def test_corrupt_stored_key_is_unavailable(self, keys, store):
        run(store.set_item(db.KEY_ITEM, "garbage"))
        with pytest.raises(KeyUnavailable):
            run(keys.get_or_create_device_key())


class TestPasswordKey:
    def test_same_password_same_key(self, keys):
        a = run(keys.derive_key_from_password("correct horse"))
        b = run(keys.derive_key_from_password("correct horse"))
        assert a.key == b.key
        assert a.salt == b.salt
        assert len(a.salt) == crypto.SALT_LEN

    def test_enables_password_protection(self, keys, store):
        assert run(keys.is_password_protected()) is False
        run(keys.derive_key_from_password("pw"))
        assert run(keys.is_password_protected()) is True
        assert run(store.get_item(db.PASSWORD_ENABLED_ITEM)) is True

    def test_wrong_password_rejected(self, keys):
        run(keys.derive_key_from_password("right"))
        with pytest.raises(DecryptionFailed):
            run(keys.derive_key_from_password("wrong"))

    def test_unverified_wrong_password_derives_other_key(self, keys):
        right = run(keys.current_key("right"))
        wrong = run(keys.current_key("wrong", verify=False))
        assert len(wrong) == len(right)
        assert wrong != right

    def test_current_key_requires_password_once_protected(self, keys):
        run(keys.derive_key_from_password("pw"))
        with pytest.raises(KeyUnavailable):
            run(keys.current_key())
        assert run(keys.current_key("pw")) == run(keys.derive_key_from_password("pw")).key

    def test_current_key_defaults_to_device_key(self, keys):
        assert run(keys.current_key()) == run(keys.get_or_create_device_key())

    def test_empty_password_rejected(self, keys):
        with pytest.raises(KeyUnavailable):
            run(keys.derive_key_from_password(""))


class TestReset:
    def test_requires_confirmation(self, keys, store):
        run(keys.get_or_create_device_key())
        with pytest.raises(ValueError):
            run(keys.reset_key("yes"))
        assert run(store.has_item(db.KEY_ITEM))

    def test_removes_all_key_material(self, keys, store):
        old = run(keys.get_or_create_device_key())
        run(keys.derive_key_from_password("pw"))
        run(keys.reset_key(RESET_CONFIRMATION))
        for item in (db.KEY_ITEM, db.SALT_ITEM, db.PASSWORD_ENABLED_ITEM, db.PASSWORD_HASH_ITEM):
            assert not run(store.has_item(item))
        assert run(keys.is_password_protected()) is False
        assert run(keys.get_or_create_device_key()) != old
