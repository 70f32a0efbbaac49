"""
SafeChat - Client-side encrypted session management.

A SessionManager owns one X25519 key pair for the lifetime of a chat session
and lazily derives one symmetric key per remote peer. Every outgoing message
gets a fresh random nonce; every incoming message is authenticated before any
plaintext is released.

Failure policy:
- Encryption is fail-closed: on any primitive failure an EncryptionFailure is
  raised and nothing is produced. Callers never fall back to plaintext.
- Decryption failures raise AuthenticationFailure. The caller marks that one
  message undeliverable and keeps the session running.
- clear() is the forward-secrecy boundary. The key pair and all derived keys
  are dropped, and every later operation raises SessionClosedError until a new
  session is created.

Both the raising API (encrypt/decrypt) and a result-returning API
(try_encrypt/try_decrypt) are provided. The result form makes the failure
branch an explicit value the caller has to inspect.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Generic, Mapping, Optional, TypeVar, Union

from . import crypto
from .constants import SAFETY_NUMBER_PAIRS, SAFETY_NUMBER_PAIRS_PER_GROUP
from .errors import (
    AuthenticationFailure,
    CryptoError,
    EncryptionFailure,
    ErrorCode,
    SessionClosedError,
)

logger = logging.getLogger(__name__)

PeerKey = Union[str, bytes]
T = TypeVar("T")


@dataclass(frozen=True)
class EncryptedFragment:
    """Ciphertext and nonce for one recipient, base64 encoded for the wire."""

    ciphertext: str
    nonce: str

    def to_dict(self) -> Dict[str, str]:
        return {"ciphertext": self.ciphertext, "nonce": self.nonce}


@dataclass(frozen=True)
class CryptoResult(Generic[T]):
    """Success-or-failure value returned by the try_* operations.

    Exactly one of ``value`` and ``error`` is meaningful, selected by ``ok``.
    """

    ok: bool
    value: Optional[T] = None
    error: Optional[CryptoError] = None

    @classmethod
    def success(cls, value: T) -> "CryptoResult[T]":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: CryptoError) -> "CryptoResult[T]":
        return cls(ok=False, error=error)

    def unwrap(self) -> T:
        """Return the value or raise the stored error."""
        if not self.ok:
            raise self.error
        return self.value


def _peer_bytes(peer_public_key: PeerKey) -> bytes:
    """Normalize a peer public key given in transport (base64) or raw form."""
    if isinstance(peer_public_key, (bytes, bytearray)):
        return bytes(peer_public_key)
    try:
        return crypto.decode_b64(peer_public_key)
    except ValueError as e:
        raise CryptoError(ErrorCode.E103_INVALID_KEY, "Peer public key is not valid base64") from e


class SessionManager:
    """
    Per-session key material and encryption operations.

    The shared-key cache is keyed by the peer's raw public key and is bounded
    by room size, so it is only ever cleared wholesale.
    """

    def __init__(self, key_pair: Optional[crypto.KeyPair] = None):
        """
        Initialize a session manager.

        Args:
            key_pair: Existing key pair to adopt (optional). When omitted the
                manager stays inactive until create_session() is called.
        """
        self._key_pair: Optional[crypto.KeyPair] = key_pair
        self._shared_keys: Dict[bytes, bytes] = {}
        self._lock = threading.Lock()

    def __enter__(self) -> "SessionManager":
        if self._key_pair is None:
            self.create_session()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.clear()

    @property
    def is_active(self) -> bool:
        return self._key_pair is not None

    @property
    def key_pair(self) -> crypto.KeyPair:
        return self._require_key_pair()

    @property
    def public_key(self) -> str:
        """Own public key in transport encoding, as sent in a join request."""
        return self._require_key_pair().public_key_b64()

    @property
    def cached_peer_count(self) -> int:
        with self._lock:
            return len(self._shared_keys)

    def create_session(self) -> crypto.KeyPair:
        """
        Generate the key pair for a new logical chat session.

        Raises:
            CryptoError: If a session is already active
        """
        with self._lock:
            if self._key_pair is not None:
                raise CryptoError(ErrorCode.E100_CRYPTO_ERROR, "Session already created")
            self._key_pair = crypto.generate_key_pair()
            self._shared_keys.clear()
        logger.debug("Session key pair created")
        return self._key_pair

    def derive_or_fetch(self, peer_public_key: PeerKey) -> bytes:
        """
        Return the shared key for a peer, deriving and caching it on first use.

        Repeated calls for the same peer return the identical cached key.

        Raises:
            SessionClosedError: If the session has been cleared
            CryptoError: If the peer key is invalid
        """
        peer = _peer_bytes(peer_public_key)
        with self._lock:
            key_pair = self._require_key_pair()
            shared = self._shared_keys.get(peer)
            if shared is None:
                shared = crypto.derive_shared_secret(key_pair.private_key, peer)
                self._shared_keys[peer] = shared
            return shared

    def encrypt_bytes(self, data: bytes, peer_public_key: PeerKey) -> EncryptedFragment:
        """
        Encrypt binary data for one peer under a fresh random nonce.

        Raises:
            SessionClosedError: If the session has been cleared
            EncryptionFailure: On any other failure; nothing is produced
        """
        try:
            key = self.derive_or_fetch(peer_public_key)
            nonce = crypto.generate_nonce()
            ciphertext = crypto.auth_encrypt(bytes(data), nonce, key)
        except (SessionClosedError, EncryptionFailure):
            raise
        except CryptoError as e:
            raise EncryptionFailure(f"Encryption failed: {e.message}", e.details) from e

        return EncryptedFragment(
            ciphertext=crypto.encode_b64(ciphertext),
            nonce=crypto.encode_b64(nonce),
        )

    def encrypt(self, plaintext: str, peer_public_key: PeerKey) -> EncryptedFragment:
        """Encrypt a text message for one peer. See encrypt_bytes()."""
        return self.encrypt_bytes(plaintext.encode("utf-8"), peer_public_key)

    def decrypt_bytes(self, ciphertext: str, nonce: str, peer_public_key: PeerKey) -> bytes:
        """
        Authenticate and decrypt binary data from one peer.

        Raises:
            SessionClosedError: If the session has been cleared
            AuthenticationFailure: If the message cannot be authenticated
        """
        try:
            key = self.derive_or_fetch(peer_public_key)
        except SessionClosedError:
            raise
        except CryptoError as e:
            raise AuthenticationFailure(f"Cannot authenticate sender: {e.message}") from e

        try:
            raw_ciphertext = crypto.decode_b64(ciphertext)
            raw_nonce = crypto.decode_b64(nonce)
        except ValueError as e:
            raise AuthenticationFailure("Malformed ciphertext or nonce") from e

        return crypto.auth_decrypt(raw_ciphertext, raw_nonce, key)

    def decrypt(self, ciphertext: str, nonce: str, peer_public_key: PeerKey) -> str:
        """Authenticate and decrypt a text message. See decrypt_bytes()."""
        data = self.decrypt_bytes(ciphertext, nonce, peer_public_key)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AuthenticationFailure("Decrypted payload is not valid UTF-8") from e

    def try_encrypt(self, plaintext: str, peer_public_key: PeerKey) -> CryptoResult[EncryptedFragment]:
        """Result-returning form of encrypt()."""
        try:
            return CryptoResult.success(self.encrypt(plaintext, peer_public_key))
        except CryptoError as e:
            logger.warning(f"Encryption failed: {e.message}")
            return CryptoResult.failure(e)

    def try_decrypt(self, ciphertext: str, nonce: str, peer_public_key: PeerKey) -> CryptoResult[str]:
        """Result-returning form of decrypt()."""
        try:
            return CryptoResult.success(self.decrypt(ciphertext, nonce, peer_public_key))
        except CryptoError as e:
            logger.warning(f"Decryption failed: {e.message}")
            return CryptoResult.failure(e)

    def encrypt_for_group(
        self, plaintext: str, recipients: Mapping[str, PeerKey]
    ) -> Dict[str, EncryptedFragment]:
        """
        Encrypt one message individually for several recipients.

        Args:
            plaintext: Message text
            recipients: Mapping of member id to that member's public key

        Returns:
            Mapping of member id to its encrypted fragment

        Raises:
            EncryptionFailure: If any recipient fails; no partial result is returned
        """
        return {
            member_id: self.encrypt(plaintext, public_key)
            for member_id, public_key in recipients.items()
        }

    def safety_number(self, peer_public_key: PeerKey) -> str:
        """
        Human-comparable digest of both public keys.

        The two keys are ordered bytewise before hashing, so both parties get
        the same result. Rendered as six space-separated groups of ten digits.
        """
        peer = _peer_bytes(peer_public_key)
        own = self._require_key_pair().get_public_key_bytes()
        combined = own + peer if own < peer else peer + own
        digest = crypto.hash_bytes(combined)

        pairs = [f"{digest[i] % 100:02d}" for i in range(SAFETY_NUMBER_PAIRS)]
        groups = [
            "".join(pairs[i : i + SAFETY_NUMBER_PAIRS_PER_GROUP])
            for i in range(0, SAFETY_NUMBER_PAIRS, SAFETY_NUMBER_PAIRS_PER_GROUP)
        ]
        return " ".join(groups)

    def clear(self) -> None:
        """Discard the key pair and every cached shared key."""
        with self._lock:
            self._shared_keys.clear()
            self._key_pair = None
        logger.debug("Session cleared")

    def _require_key_pair(self) -> crypto.KeyPair:
        if self._key_pair is None:
            raise SessionClosedError()
        return self._key_pair

    def to_dict(self) -> Dict[str, Any]:
        """Non-secret session summary for diagnostics."""
        return {
            "active": self.is_active,
            "public_key": self.public_key if self.is_active else None,
            "cached_peers": self.cached_peer_count,
        }
