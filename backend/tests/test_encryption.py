import os

import pytest

from nosuite.core.encryption import (
    DECRYPT_FAILED,
    V2_HEADER,
    CipherEngine,
    create_key,
    hash_password,
)
from nosuite.core.errors import ServiceNotReady

IV = bytes(range(16))


@pytest.fixture
def cipher():
    engine = CipherEngine(IV, iterations=1000)
    engine.set_master_key(b"\x01" * 32)
    return engine


@pytest.fixture
def legacy_cipher():
    engine = CipherEngine(IV, iterations=1000, random_nonce=False)
    engine.set_master_key(b"\x01" * 32)
    return engine


@pytest.mark.parametrize("payload", [b"", b"a", b"hello world", bytes(range(256)), os.urandom(4096)])
def test_round_trip(cipher, payload):
    key = cipher.derive_user_key(hash_password("pw1"))
    assert cipher.decrypt(cipher.encrypt(payload, key), key) == payload


def test_wrong_key_returns_none(cipher):
    key = cipher.derive_user_key(hash_password("pw1"))
    wrong = cipher.derive_user_key(hash_password("pw2"))
    ciphertext = cipher.encrypt(b"secret notes", key)
    assert cipher.decrypt(ciphertext, wrong) is None


def test_random_nonce_per_message(cipher):
    key = cipher.derive_user_key(None)
    first = cipher.encrypt(b"same", key)
    second = cipher.encrypt(b"same", key)
    assert first.startswith(V2_HEADER)
    assert first != second


def test_legacy_format_is_deterministic_and_readable(cipher, legacy_cipher):
    key = legacy_cipher.derive_user_key(hash_password("pw1"))
    first = legacy_cipher.encrypt(b"same", key)
    assert first == legacy_cipher.encrypt(b"same", key)
    assert not first.startswith(V2_HEADER)
    # a v2 engine still reads legacy files
    assert cipher.decrypt(first, key) == b"same"


def test_garbage_does_not_raise(cipher):
    key = cipher.derive_user_key(None)
    assert cipher.decrypt(b"", key) is None
    assert cipher.decrypt(b"not ciphertext", key) is None
    assert cipher.decrypt(V2_HEADER + b"short", key) is None
    assert cipher.decrypt(os.urandom(31), key) is None


def test_derive_user_key(cipher):
    assert cipher.derive_user_key(None) == b"\x01" * 32
    first = cipher.derive_user_key(hash_password("pw1"))
    assert len(first) == 32
    assert first == cipher.derive_user_key(hash_password("pw1"))
    assert first != cipher.derive_user_key(hash_password("pw2"))


def test_locked_engine_has_no_master_key():
    engine = CipherEngine(IV)
    assert not engine.has_master_key
    with pytest.raises(ServiceNotReady):
        engine.derive_user_key("abc")


def test_json_layer_distinguishes_null_from_failure(cipher):
    key = cipher.derive_user_key(None)
    assert cipher.decrypt_json(cipher.encrypt_json(None, key), key) is None
    assert cipher.decrypt_json(cipher.encrypt_json({"a": [1, 2]}, key), key) == {"a": [1, 2]}
    assert cipher.decrypt_json(b"junk", key) is DECRYPT_FAILED


def test_plain_files_bypass_encryption(cipher, tmp_path):
    path = tmp_path / "name.enc"
    cipher.write_json(path, "Ann", None)
    assert path.read_text() == '"Ann"'
    assert cipher.read_json(path, None) == "Ann"


def test_encrypted_files(cipher, tmp_path):
    key = cipher.derive_user_key(hash_password("pw1"))
    path = tmp_path / "blob"
    cipher.write_encrypted(path, b"\x00\xff data", key)
    assert b"data" not in path.read_bytes()
    assert cipher.read_encrypted(path, key) == b"\x00\xff data"


def test_helpers():
    assert hash_password("pw1") == hash_password("pw1")
    assert len(hash_password("pw1")) == 64
    assert len(bytes.fromhex(create_key())) == 32
