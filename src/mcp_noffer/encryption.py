"""Payload encryption between two secp256k1 keys.

Payload format (base64 encoded):
- Version (1 byte): 0x02
- Nonce (32 bytes)
- Ciphertext (variable): ChaCha20 over a padded, length-prefixed plaintext
- MAC (32 bytes): HMAC-SHA256 over nonce + ciphertext

The conversation key is HKDF-extract(salt="nip44-v2", ikm=ECDH x-coordinate)
and is identical for both sides of an exchange.
"""

import base64
import os
from typing import Optional

import coincurve
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms
from cryptography.hazmat.primitives.kdf.hkdf import HKDFExpand

from mcp_noffer.errors import DecryptionError


VERSION = 2
SALT = b"nip44-v2"
NONCE_LENGTH = 32
MAC_LENGTH = 32
MIN_PLAINTEXT_LENGTH = 1
MAX_PLAINTEXT_LENGTH = 0xFFFF


def _hmac_sha256(key: bytes, *parts: bytes) -> bytes:
    h = hmac.HMAC(key, hashes.SHA256())
    for part in parts:
        h.update(part)
    return h.finalize()


def get_shared_x(secret: bytes, pubkey: str) -> bytes:
    """Unhashed ECDH x-coordinate between a secret key and an x-only pubkey."""
    try:
        point = coincurve.PublicKey(b"\x02" + bytes.fromhex(pubkey))
    except ValueError as e:
        raise ValueError(f"Invalid public key {pubkey!r}: {e}") from e
    return point.multiply(secret).format(compressed=True)[1:]


def get_conversation_key(secret: bytes, pubkey: str) -> bytes:
    """Derive the symmetric conversation key shared with `pubkey`.

    Args:
        secret: Local 32-byte secret key
        pubkey: Remote x-only public key (hex)

    Returns:
        32-byte conversation key
    """
    return _hmac_sha256(SALT, get_shared_x(secret, pubkey))


def _message_keys(conversation_key: bytes, nonce: bytes) -> tuple[bytes, bytes, bytes]:
    keys = HKDFExpand(
        algorithm=hashes.SHA256(),
        length=76,
        info=nonce,
    ).derive(conversation_key)
    return keys[0:32], keys[32:44], keys[44:76]


def _chacha20(key: bytes, nonce: bytes, data: bytes) -> bytes:
    # cryptography takes a 16 byte nonce: 4 byte counter + 12 byte nonce
    cipher = Cipher(algorithms.ChaCha20(key, b"\x00" * 4 + nonce), mode=None)
    return cipher.encryptor().update(data)


def calc_padded_len(unpadded_len: int) -> int:
    """Padded plaintext length: 32 bytes minimum, then power-of-two chunks."""
    if unpadded_len <= 32:
        return 32
    next_power = 1 << (unpadded_len - 1).bit_length()
    chunk = 32 if next_power <= 256 else next_power // 8
    return chunk * ((unpadded_len - 1) // chunk + 1)


def _pad(plaintext: str) -> bytes:
    raw = plaintext.encode("utf-8")
    if not MIN_PLAINTEXT_LENGTH <= len(raw) <= MAX_PLAINTEXT_LENGTH:
        raise ValueError(f"Plaintext length out of range: {len(raw)}")
    padding = calc_padded_len(len(raw)) - len(raw)
    return len(raw).to_bytes(2, "big") + raw + b"\x00" * padding


def _unpad(padded: bytes) -> str:
    length = int.from_bytes(padded[:2], "big")
    raw = padded[2:2 + length]
    if (
        length < MIN_PLAINTEXT_LENGTH
        or len(raw) != length
        or len(padded) != 2 + calc_padded_len(length)
    ):
        raise DecryptionError("Invalid padding")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionError("Plaintext is not valid UTF-8")


def encrypt(plaintext: str, conversation_key: bytes, nonce: Optional[bytes] = None) -> str:
    """Encrypt text for the other side of a conversation.

    Args:
        plaintext: Text to encrypt (1 to 65535 UTF-8 bytes)
        conversation_key: Key from get_conversation_key
        nonce: 32-byte nonce; random when omitted

    Returns:
        Base64 payload
    """
    if nonce is None:
        nonce = os.urandom(NONCE_LENGTH)
    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    ciphertext = _chacha20(chacha_key, chacha_nonce, _pad(plaintext))
    mac = _hmac_sha256(hmac_key, nonce, ciphertext)
    return base64.b64encode(bytes([VERSION]) + nonce + ciphertext + mac).decode("ascii")


def decrypt(payload: str, conversation_key: bytes) -> str:
    """Decrypt a payload produced by `encrypt`.

    Raises:
        DecryptionError: If the payload is malformed or fails authentication
    """
    if not payload or payload[0] == "#":
        raise DecryptionError("Unknown encryption version")
    try:
        data = base64.b64decode(payload, validate=True)
    except ValueError:
        raise DecryptionError("Payload is not valid base64")

    if len(data) < 1 + NONCE_LENGTH + 32 + MAC_LENGTH:
        raise DecryptionError("Payload too short")
    if data[0] != VERSION:
        raise DecryptionError(f"Unknown encryption version: {data[0]}")

    nonce = data[1:1 + NONCE_LENGTH]
    ciphertext = data[1 + NONCE_LENGTH:-MAC_LENGTH]
    mac = data[-MAC_LENGTH:]

    chacha_key, chacha_nonce, hmac_key = _message_keys(conversation_key, nonce)
    h = hmac.HMAC(hmac_key, hashes.SHA256())
    h.update(nonce)
    h.update(ciphertext)
    try:
        h.verify(mac)
    except InvalidSignature:
        raise DecryptionError("Payload MAC does not verify")

    return _unpad(_chacha20(chacha_key, chacha_nonce, ciphertext))
