# services/crypto_utils.py
"""
Encrypted envelope used on every relay connection.

The relay opens with a plain ``handshake`` message carrying its X25519 public
key and a salt; the client answers with its own public key. Both sides derive
the same AES-256 key with HKDF-SHA256 and from then on every message is JSON
sealed with AES-GCM into ``{"nonce", "ciphertext", "tag"}`` (base64 fields).
"""
import base64
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

logger = logging.getLogger(__name__)

ENVELOPE_FIELDS = ("nonce", "ciphertext", "tag")
HKDF_INFO = b"cabin signaling"
NONCE_SIZE = 12
TAG_SIZE = 16


class CryptoError(Exception):
    """Raised when a handshake or envelope cannot be completed."""


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


class KeyExchange:
    """
    One side of the X25519 handshake.

    A fresh key pair is generated per connection; `derive` turns the other
    side's public key into the connection's AES key.
    """

    def __init__(self) -> None:
        self._private_key = X25519PrivateKey.generate()

    @property
    def public_key(self) -> str:
        """Base64 of the raw 32-byte public key, as sent in the handshake."""
        raw = self._private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        return _b64(raw)

    def derive(self, peer_public_key: str, salt: str) -> bytes:
        """
        Derive the shared AES-256 key.

        Args:
            peer_public_key (str): Base64 public key received from the other side.
            salt (str): Salt chosen by the relay for this connection.

        Returns:
            bytes: 32-byte AES key.

        Raises:
            CryptoError: If the peer key is malformed.
        """
        try:
            peer = X25519PublicKey.from_public_bytes(base64.b64decode(peer_public_key))
            shared_secret = self._private_key.exchange(peer)
        except ValueError as e:
            raise CryptoError(f"Invalid peer public key: {e}") from e
        hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=salt.encode(), info=HKDF_INFO)
        return hkdf.derive(shared_secret)


def new_salt() -> str:
    return _b64(os.urandom(16))


def encrypt_message(aes_key: bytes, plaintext: bytes) -> dict:
    """
    Encrypt bytes with AES-GCM under a fresh 96-bit nonce.

    Returns:
        dict: {'nonce': bytes, 'ciphertext': bytes, 'tag': bytes}
    """
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(aes_key).encrypt(nonce, plaintext, None)
    return {"nonce": nonce, "ciphertext": sealed[:-TAG_SIZE], "tag": sealed[-TAG_SIZE:]}


def decrypt_message(aes_key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
    """
    Reverse encrypt_message().

    Raises:
        CryptoError: If the authentication tag does not match.
    """
    try:
        return AESGCM(aes_key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise CryptoError("Decryption failed: authentication tag mismatch") from e


def seal(aes_key: bytes, message: dict) -> str:
    encrypted = encrypt_message(aes_key, json.dumps(message).encode("utf-8"))
    return json.dumps({field: _b64(encrypted[field]) for field in ENVELOPE_FIELDS})


def open_envelope(aes_key: Optional[bytes], raw: str) -> dict:
    """
    Parse one websocket message, decrypting it when it is an envelope.

    Plain JSON (the handshake) is returned as is.

    Raises:
        CryptoError: If the envelope cannot be decrypted.
        ValueError: If the text is not valid JSON.
    """
    data = json.loads(raw)
    if not all(field in data for field in ENVELOPE_FIELDS):
        return data
    if aes_key is None:
        raise CryptoError("Envelope received before the handshake completed")
    parts = (base64.b64decode(data[field]) for field in ENVELOPE_FIELDS)
    return json.loads(decrypt_message(aes_key, *parts))


def build_message(msg_type: str, payload: Optional[dict] = None,
                  error_code: Optional[str] = None, error_message: Optional[str] = None) -> dict:
    """
    Build a relay message. A message with an error code is a failed response.

    Every message gets a fresh ``message_id`` and a UTC ``timestamp``;
    ``error_code``/``error_message`` are only present on failures.
    """
    message = {
        "message_id": str(uuid.uuid4()),
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "msg_type": msg_type,
        "success": error_code is None,
        "payload": payload or {},
    }
    if error_code is not None:
        message["error_code"] = error_code
        message["error_message"] = error_message or "An unknown error occurred."
    return message


async def send_message(websocket, aes_key: bytes, msg_type: str, payload: Optional[dict] = None,
                       error_code: Optional[str] = None, error_message: Optional[str] = None) -> bool:
    """
    Seal and send one relay message.

    A failed send (usually a socket that is already closing) is logged, not
    raised, so one broken member never interrupts a broadcast.

    Returns:
        bool: True if the message was handed to the websocket.
    """
    message = build_message(msg_type, payload, error_code, error_message)
    try:
        await websocket.send(seal(aes_key, message))
        return True
    except Exception as e:
        logger.error(f"Failed to send {msg_type}: {e}")
        return False


async def send_error(websocket, aes_key: bytes, msg_type: str, error_code: str, error_message: str) -> bool:
    return await send_message(websocket, aes_key, msg_type, error_code=error_code, error_message=error_message)
