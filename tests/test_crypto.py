"""
SafeChat - Cryptographic primitive tests.

Created by SafeChat contributors

Tests for key generation, key agreement, authenticated encryption and the
transport helpers.
"""

import pytest

from safechat import crypto
from safechat.errors import AuthenticationFailure, CryptoError, ErrorCode


def test_keypair_generation():
    """Test X25519 keypair generation."""
    keypair = crypto.generate_key_pair()

    assert len(keypair.get_public_key_bytes()) == 32
    assert len(keypair.get_secret_key_bytes()) == 32
    assert keypair.get_public_key_bytes() != keypair.get_secret_key_bytes()


def test_keypairs_are_unique():
    """Test that every generated keypair is different."""
    keys = {crypto.generate_key_pair().get_public_key_bytes() for _ in range(20)}
    assert len(keys) == 20


def test_public_key_b64():
    """Test transport encoding of the public key."""
    keypair = crypto.generate_key_pair()
    encoded = keypair.public_key_b64()

    assert crypto.decode_b64(encoded) == keypair.get_public_key_bytes()
    assert keypair.to_dict() == {"public": encoded}


def test_key_exchange():
    """Test X25519 key exchange produces matching keys."""
    alice = crypto.generate_key_pair()
    bob = crypto.generate_key_pair()

    alice_key = crypto.derive_shared_secret(alice.private_key, bob.get_public_key_bytes())
    bob_key = crypto.derive_shared_secret(bob.private_key, alice.get_public_key_bytes())

    assert alice_key == bob_key
    assert len(alice_key) == 32


def test_key_exchange_differs_per_peer():
    """Test that different peers yield different shared keys."""
    alice = crypto.generate_key_pair()
    bob = crypto.generate_key_pair()
    carol = crypto.generate_key_pair()

    with_bob = crypto.derive_shared_secret(alice.private_key, bob.get_public_key_bytes())
    with_carol = crypto.derive_shared_secret(alice.private_key, carol.get_public_key_bytes())

    assert with_bob != with_carol


def test_load_public_key_wrong_length():
    """Test that keys of the wrong size are rejected."""
    with pytest.raises(CryptoError) as exc_info:
        crypto.load_public_key(b"\x01" * 31)
    assert exc_info.value.code == ErrorCode.E103_INVALID_KEY


def test_low_order_point_rejected():
    """Test that an all-zero public key cannot be used for agreement."""
    keypair = crypto.generate_key_pair()
    with pytest.raises(CryptoError) as exc_info:
        crypto.derive_shared_secret(keypair.private_key, b"\x00" * 32)
    assert exc_info.value.code == ErrorCode.E103_INVALID_KEY


def test_encryption_decryption():
    """Test authenticated encryption round trip."""
    key = b"k" * 32
    nonce = crypto.generate_nonce()
    plaintext = b"Hello, World! This is a test message."

    ciphertext = crypto.auth_encrypt(plaintext, nonce, key)

    assert ciphertext != plaintext
    assert len(ciphertext) == len(plaintext) + 16
    assert crypto.auth_decrypt(ciphertext, nonce, key) == plaintext


def test_decrypt_with_wrong_key():
    """Test that decryption with the wrong key fails."""
    nonce = crypto.generate_nonce()
    ciphertext = crypto.auth_encrypt(b"secret", nonce, b"a" * 32)

    with pytest.raises(AuthenticationFailure):
        crypto.auth_decrypt(ciphertext, nonce, b"b" * 32)


def test_decrypt_with_bad_nonce_length():
    """Test that a malformed nonce is reported as an authentication failure."""
    ciphertext = crypto.auth_encrypt(b"secret", crypto.generate_nonce(), b"a" * 32)

    with pytest.raises(AuthenticationFailure):
        crypto.auth_decrypt(ciphertext, b"short", b"a" * 32)


def test_nonce_size():
    """Test nonce generation."""
    nonce = crypto.generate_nonce()
    assert len(nonce) == 12
    assert crypto.generate_nonce() != nonce


def test_hash_bytes():
    """Test SHA-512 hashing."""
    digest = crypto.hash_bytes(b"abc")
    assert len(digest) == 64
    assert digest == crypto.hash_bytes(b"abc")
    assert digest != crypto.hash_bytes(b"abd")


def test_decode_b64_rejects_garbage():
    """Test that invalid base64 raises ValueError."""
    with pytest.raises(ValueError):
        crypto.decode_b64("not base64!!")
    with pytest.raises(ValueError):
        crypto.decode_b64("ünïcode")


def test_generated_ids():
    """Test identifier lengths and alphabet."""
    member_id = crypto.generate_member_id()
    message_id = crypto.generate_message_id()
    room_id = crypto.generate_room_id()

    assert len(member_id) == 8
    assert len(message_id) == 21
    assert len(room_id) == 10
    for value in (member_id, message_id, room_id):
        assert set(value) <= set(crypto.ID_ALPHABET)
