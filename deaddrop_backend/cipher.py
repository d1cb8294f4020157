"""Passphrase encryption for the /encrypt and /decrypt endpoints.

Output format (hex encoded)::

    [16 B scrypt salt] [12 B AES-GCM nonce] [ciphertext + 16 B GCM tag]

Nothing is stored; both directions are pure transforms.
"""
from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt


SALT_LEN = 16
NONCE_LEN = 12
TAG_LEN = 16
KEY_LEN = 32

# scrypt cost; interactive-request friendly
SCRYPT_N = 1 << 14
SCRYPT_R = 8
SCRYPT_P = 1


class CipherError(ValueError):
    pass


def derive_key(passphrase: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_LEN, n=SCRYPT_N, r=SCRYPT_R, p=SCRYPT_P)
    return kdf.derive(passphrase.encode("utf-8"))


def encrypt(data: str, passphrase: str) -> str:
    if not passphrase:
        raise CipherError("Key must not be empty")
    salt = os.urandom(SALT_LEN)
    nonce = os.urandom(NONCE_LEN)
    ct = AESGCM(derive_key(passphrase, salt)).encrypt(nonce, data.encode("utf-8"), None)
    return (salt + nonce + ct).hex()


def decrypt(encrypted_hex: str, passphrase: str) -> str:
    """Reverse encrypt(). Raises CipherError on a wrong key or damaged input."""
    if not passphrase:
        raise CipherError("Key must not be empty")
    try:
        blob = bytes.fromhex(encrypted_hex)
    except ValueError as exc:
        raise CipherError("Encrypted data is not valid hex") from exc
    if len(blob) < SALT_LEN + NONCE_LEN + TAG_LEN:
        raise CipherError("Encrypted data is too short")

    salt = blob[:SALT_LEN]
    nonce = blob[SALT_LEN:SALT_LEN + NONCE_LEN]
    ct = blob[SALT_LEN + NONCE_LEN:]
    try:
        pt = AESGCM(derive_key(passphrase, salt)).decrypt(nonce, ct, None)
    except InvalidTag as exc:
        raise CipherError("Wrong key or corrupted data") from exc
    try:
        return pt.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CipherError("Decrypted data is not text") from exc
