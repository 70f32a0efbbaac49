"""
SafeChat - Cryptographic primitives.

This module is the primitive provider used by the session layer. It knows how
to compute things, not when: key caching, nonce discipline and failure policy
live in session.py.

- X25519 Elliptic Curve Diffie-Hellman for key agreement
- HKDF-SHA256 to turn the raw shared secret into a 256-bit session key
- ChaCha20-Poly1305 authenticated encryption
- SHA-512 hashing for safety numbers
- Base64 transport encoding for binary fields

All cryptographic operations use the cryptography library (Apache 2.0/BSD License).
"""

import base64
import binascii
import hashlib
import os
import secrets
import string
from typing import Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import x25519
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .constants import (
    KEY_SIZE,
    MEMBER_ID_LENGTH,
    MESSAGE_ID_LENGTH,
    NONCE_SIZE,
    ROOM_ID_LENGTH,
    SESSION_KEY_INFO,
)
from .errors import AuthenticationFailure, CryptoError, EncryptionFailure, ErrorCode

# URL-safe alphabet used for every generated identifier
ID_ALPHABET = string.ascii_letters + string.digits + "_-"


class KeyPair:
    """
    A session key pair for X25519 key agreement.

    The secret half never leaves the process. The public half is shared with
    the relay on join and handed to every other room member.
    """

    def __init__(self, private_key: Optional[x25519.X25519PrivateKey] = None):
        if private_key is None:
            private_key = x25519.X25519PrivateKey.generate()
        self.private_key = private_key
        self.public_key = private_key.public_key()

    def get_public_key_bytes(self) -> bytes:
        """Get public key as raw bytes."""
        return self.public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def get_secret_key_bytes(self) -> bytes:
        """Get secret key as raw bytes."""
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def public_key_b64(self) -> str:
        """Public key in the transport encoding."""
        return encode_b64(self.get_public_key_bytes())

    def to_dict(self) -> Dict[str, str]:
        """Export the public half for display or debugging."""
        return {"public": self.public_key_b64()}


def generate_key_pair() -> KeyPair:
    """Generate a fresh X25519 key pair."""
    return KeyPair()


def load_public_key(public_bytes: bytes) -> x25519.X25519PublicKey:
    """
    Load a peer's public key from raw bytes.

    Raises:
        CryptoError: If the bytes are not a valid X25519 public key
    """
    if len(public_bytes) != KEY_SIZE:
        raise CryptoError(
            ErrorCode.E103_INVALID_KEY,
            f"Public key must be {KEY_SIZE} bytes, got {len(public_bytes)}",
        )
    try:
        return x25519.X25519PublicKey.from_public_bytes(public_bytes)
    except ValueError as e:
        raise CryptoError(ErrorCode.E103_INVALID_KEY, f"Invalid public key: {e}") from e


def derive_shared_secret(
    own_secret: x25519.X25519PrivateKey, peer_public: bytes
) -> bytes:
    """
    Derive the symmetric session key shared with a peer.

    X25519 is commutative, so both sides compute the same raw secret from
    their own secret key and the other side's public key. HKDF-SHA256 then
    stretches it into a uniformly random 32-byte key.

    Raises:
        CryptoError: If the peer key is invalid or the agreement fails
    """
    peer_key = load_public_key(peer_public)
    try:
        shared_secret = own_secret.exchange(peer_key)
    except ValueError as e:
        # Low-order points produce an all-zero secret
        raise CryptoError(ErrorCode.E103_INVALID_KEY, f"Key agreement failed: {e}") from e

    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=SESSION_KEY_INFO,
    )
    return hkdf.derive(shared_secret)


def generate_nonce() -> bytes:
    """96-bit random nonce for ChaCha20-Poly1305."""
    return os.urandom(NONCE_SIZE)


def auth_encrypt(plaintext: bytes, nonce: bytes, key: bytes) -> bytes:
    """
    Authenticate-and-encrypt with ChaCha20-Poly1305.

    Returns ciphertext with the 16-byte Poly1305 tag appended.

    Raises:
        EncryptionFailure: If the primitive rejects the input for any reason
    """
    try:
        return ChaCha20Poly1305(key).encrypt(nonce, plaintext, None)
    except Exception as e:
        raise EncryptionFailure(details={"error": str(e)}) from e


def auth_decrypt(ciphertext: bytes, nonce: bytes, key: bytes) -> bytes:
    """
    Verify and decrypt a ChaCha20-Poly1305 ciphertext.

    Raises:
        AuthenticationFailure: If the tag does not verify or the input is malformed
    """
    try:
        return ChaCha20Poly1305(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise AuthenticationFailure() from e
    except (ValueError, TypeError) as e:
        raise AuthenticationFailure(details={"error": str(e)}) from e


def hash_bytes(data: bytes) -> bytes:
    """SHA-512 digest of data."""
    return hashlib.sha512(data).digest()


def encode_b64(data: bytes) -> str:
    """Encode binary data for a text channel."""
    return base64.b64encode(data).decode("utf-8")


def decode_b64(text: str) -> bytes:
    """
    Decode a base64 field received over a text channel.

    Raises:
        ValueError: If the text is not valid base64
    """
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise ValueError(f"Invalid base64 data: {e}") from e


def generate_id(length: int) -> str:
    """Random identifier drawn from a 64-character URL-safe alphabet."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def generate_member_id() -> str:
    """Room-scoped member identifier."""
    return generate_id(MEMBER_ID_LENGTH)


def generate_message_id() -> str:
    """Client-side message identifier used for correlation and deduplication."""
    return generate_id(MESSAGE_ID_LENGTH)


def generate_room_id() -> str:
    """High-entropy room identifier for clients creating a new room."""
    return generate_id(ROOM_ID_LENGTH)
