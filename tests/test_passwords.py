"""
tests/test_passwords.py -- Unit tests for auth/passwords.py.

bcrypt is slow by design; each test hashes at most a couple of passwords.
"""

from auth.passwords import DUMMY_HASH, hash_password, verify_password


def test_hash_is_not_plaintext():
    digest = hash_password("hunter22")
    assert digest != "hunter22"
    assert digest.startswith("$2")


def test_same_password_hashes_differently():
    """A fresh salt per call means two digests of one password differ."""
    assert hash_password("hunter22") != hash_password("hunter22")


def test_verify_accepts_exact_password_only():
    digest = hash_password("correct horse")
    assert verify_password("correct horse", digest) is True
    assert verify_password("correct horse ", digest) is False
    assert verify_password("Correct horse", digest) is False


def test_verify_malformed_digest_returns_false():
    assert verify_password("anything", "not-a-bcrypt-hash") is False
    assert verify_password("anything", "") is False
    assert verify_password("anything", None) is False


def test_dummy_hash_is_a_valid_digest():
    assert DUMMY_HASH.startswith("$2")
    assert verify_password("wrong", DUMMY_HASH) is False
