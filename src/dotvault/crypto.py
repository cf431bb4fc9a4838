"""
Envelope encryption for variable blobs.

Keys are derived with PBKDF2-HMAC-SHA512 (100,000 iterations, 256-bit
output) from either a password or the raw bytes of a private key file,
salted with a single per-vault salt. Blobs are sealed with AES-256-GCM.

Envelope layout (base64 of):
    iv (16 bytes, random per call) || auth tag (16 bytes) || ciphertext

The salt is created once and reused forever; regenerating it would
orphan every blob sealed under the old one.
"""

from __future__ import annotations

import base64
import binascii
import logging
import secrets
import struct
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from .errors import CryptoFailure, NotFound, PreconditionViolation

logger = logging.getLogger("dotvault.crypto")

SALT_FILE = ".dotvault-salt"
SALT_LENGTH = 32
KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16
ITERATIONS = 100_000
VERIFY_TEXT = "dotvault-verification-test"

_OPENSSH_MAGIC = b"openssh-key-v1\x00"


# ---------------------------------------------------------------------------
# Secrets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Password:
    """A user-supplied password."""

    value: str = field(repr=False)

    def material(self) -> bytes:
        return self.value.encode("utf-8")


@dataclass(frozen=True)
class KeyMaterial:
    """Raw bytes of a private key file, used directly as KDF input.

    No passphrase unlocking is attempted; protected keys are refused
    by :meth:`from_file`.
    """

    data: bytes = field(repr=False)
    source: Optional[Path] = None

    def material(self) -> bytes:
        return self.data

    @classmethod
    def from_file(cls, path: Path | str) -> "KeyMaterial":
        """Load a private key file.

        Args:
            path: Path to an unencrypted private key (PEM or OpenSSH).

        Returns:
            KeyMaterial holding the file's bytes.

        Raises:
            NotFound: If the file cannot be read.
            PreconditionViolation: If it is not a private key, or it is
                passphrase-protected.
        """
        key_path = Path(path).expanduser()
        try:
            data = key_path.read_bytes()
        except OSError as exc:
            raise NotFound("Key file not readable", str(key_path)) from exc

        if b"PRIVATE KEY" not in data:
            raise PreconditionViolation("Not a private key file", str(key_path))
        if _is_passphrase_protected(data):
            raise PreconditionViolation(
                "Passphrase-protected key files are not supported", str(key_path)
            )
        return cls(data=data, source=key_path)


Secret = Union[Password, KeyMaterial]


def _is_passphrase_protected(data: bytes) -> bool:
    """Detect PEM and OpenSSH private keys that need a passphrase."""
    if b"ENCRYPTED PRIVATE KEY" in data or b"Proc-Type: 4,ENCRYPTED" in data:
        return True
    if b"BEGIN OPENSSH PRIVATE KEY" not in data:
        return False

    body = b"".join(
        line.strip()
        for line in data.splitlines()
        if line.strip() and not line.startswith(b"-----")
    )
    try:
        blob = base64.b64decode(body)
    except (binascii.Error, ValueError):
        return False
    if not blob.startswith(_OPENSSH_MAGIC):
        return False

    offset = len(_OPENSSH_MAGIC)
    try:
        (cipher_len,) = struct.unpack_from(">I", blob, offset)
        cipher_name = blob[offset + 4 : offset + 4 + cipher_len]
    except struct.error:
        return False
    return cipher_name != b"none"


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------


def derive_key(secret: Secret, salt: bytes) -> bytes:
    """Derive a 256-bit AES key from a secret and the vault salt.

    Args:
        secret: Password or KeyMaterial.
        salt: The 32-byte vault salt.

    Returns:
        32 bytes of key material.
    """
    from cryptography.hazmat.primitives.hashes import SHA512
    from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

    if not isinstance(secret, (Password, KeyMaterial)):
        raise TypeError(f"Unsupported secret type: {type(secret).__name__}")
    if len(salt) != SALT_LENGTH:
        raise CryptoFailure(f"Salt must be {SALT_LENGTH} bytes, got {len(salt)}")

    kdf = PBKDF2HMAC(
        algorithm=SHA512(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(secret.material())


def seal(plaintext: str, key: bytes) -> str:
    """Encrypt text into a base64 envelope with a fresh random IV."""
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    iv = secrets.token_bytes(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
    return base64.b64encode(iv + tag + ciphertext).decode("ascii")


def open_envelope(envelope: str, key: bytes) -> str:
    """Decrypt and authenticate an envelope.

    Raises:
        CryptoFailure: On malformed input, short input, or tag mismatch.
    """
    from cryptography.exceptions import InvalidTag
    from cryptography.hazmat.primitives.ciphers.aead import AESGCM

    try:
        raw = base64.b64decode(envelope.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoFailure("Malformed envelope") from exc

    if len(raw) < IV_LENGTH + TAG_LENGTH:
        raise CryptoFailure("Envelope too short")

    iv = raw[:IV_LENGTH]
    tag = raw[IV_LENGTH : IV_LENGTH + TAG_LENGTH]
    ciphertext = raw[IV_LENGTH + TAG_LENGTH :]

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as exc:
        raise CryptoFailure("Decryption failed (wrong secret or tampered data)") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CryptoFailure("Decrypted payload is not valid UTF-8") from exc


# ---------------------------------------------------------------------------
# Salt + envelope service
# ---------------------------------------------------------------------------


class SaltStore:
    """The vault's single salt file."""

    def __init__(self, vault_dir: Path):
        self.path = Path(vault_dir) / SALT_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def get_or_create(self) -> bytes:
        """Return the vault salt, creating it on first use only."""
        if self.path.exists():
            salt = self.path.read_bytes()
            if len(salt) != SALT_LENGTH:
                raise CryptoFailure("Salt file is corrupt", str(self.path))
            return salt

        salt = secrets.token_bytes(SALT_LENGTH)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(salt)
        logger.info("Created vault salt at %s", self.path)
        return salt


class CryptoEnvelope:
    """Seals and opens blobs under secrets derived against one salt.

    Derived keys are cached per secret for the lifetime of the
    instance, since each derivation costs 100,000 hash rounds.
    """

    def __init__(self, salt_store: SaltStore):
        self.salt_store = salt_store
        self._keys: dict[Secret, bytes] = {}

    def key_for(self, secret: Secret) -> bytes:
        key = self._keys.get(secret)
        if key is None:
            key = derive_key(secret, self.salt_store.get_or_create())
            self._keys[secret] = key
        return key

    def seal(self, plaintext: str, secret: Secret) -> str:
        return seal(plaintext, self.key_for(secret))

    def open(self, envelope: str, secret: Secret) -> str:
        return open_envelope(envelope, self.key_for(secret))

    def verify(self, secret: Secret, probe: Optional[str] = None) -> bool:
        """Check that a secret yields a working key.

        Seals and opens a fixed test string. When ``probe`` (an existing
        envelope from the vault) is given, it must open as well, which
        is what actually distinguishes a wrong password.
        """
        try:
            if self.open(self.seal(VERIFY_TEXT, secret), secret) != VERIFY_TEXT:
                return False
            if probe is not None:
                self.open(probe, secret)
        except CryptoFailure:
            logger.debug("Secret verification failed")
            return False
        return True
