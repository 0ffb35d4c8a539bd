# Vault - Encryption Service
#
# Master password → Encryption key (PBKDF2)
# Vault payload encryption (AES-256-GCM)
# Password generation and strength scoring

import base64
import math
import os
import uuid
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .exceptions import AuthenticationFailed, InvalidRecordFormat
from .models import PasswordStrength

PasswordLike = Union[str, bytes, bytearray]

# Hash names as stored in a record's "encryption.hash" field
SUPPORTED_HASHES = {
    "SHA-256": hashes.SHA256,
    "SHA-384": hashes.SHA384,
    "SHA-512": hashes.SHA512,
}

UPPERCASE = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
LOWERCASE = "abcdefghijklmnopqrstuvwxyz"
NUMBERS = "0123456789"
SYMBOLS = "!@#$%^&*()_+-=[]{}|;:,.<>?"

STRENGTH_LABELS = ("Very Weak", "Weak", "Fair", "Strong", "Very Strong")


class _RandomStream:
    """Unbiased integers drawn from one per-call random byte buffer."""

    def __init__(self, size: int):
        self._buffer = EncryptionService.random_bytes(size)
        self._pos = 0

    def _next_byte(self) -> int:
        if self._pos >= len(self._buffer):
            self._buffer = EncryptionService.random_bytes(len(self._buffer) or 32)
            self._pos = 0
        value = self._buffer[self._pos]
        self._pos += 1
        return value

    def below(self, n: int) -> int:
        """Uniform integer in [0, n) by rejection sampling."""
        if n <= 1:
            return 0
        nbytes = (n.bit_length() + 7) // 8
        span = 1 << (8 * nbytes)
        limit = span - (span % n)
        while True:
            value = 0
            for _ in range(nbytes):
                value = (value << 8) | self._next_byte()
            if value < limit:
                return value % n


class EncryptionService:
    """
    Key derivation and authenticated encryption for the vault.

    Flow:
    1. User enters master password
    2. PBKDF2 derives 256-bit key from password + salt
    3. AES-256-GCM encrypts/decrypts the serialized vault payload
    4. Every encryption uses a fresh random nonce

    Holds no state: every parameter is passed explicitly, so records
    written with older KDF settings stay decryptable.
    """

    ALGORITHM = "AES-256-GCM"
    KDF = "PBKDF2"
    DEFAULT_HASH = "SHA-256"
    PBKDF2_ITERATIONS = 600_000  # OWASP 2023: 600k iterations for PBKDF2-SHA256
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 32  # 256-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)

    @staticmethod
    def derive_key(
        master_password: PasswordLike,
        salt: bytes,
        iterations: int = PBKDF2_ITERATIONS,
        hash_name: str = DEFAULT_HASH,
    ) -> bytes:
        """
        Derive encryption key from master password using PBKDF2.

        Args:
            master_password: User's master password (str is UTF-8 encoded)
            salt: Random salt (stored with vault)
            iterations: PBKDF2 iteration count taken from the record
            hash_name: PBKDF2 hash name taken from the record

        Returns:
            256-bit encryption key

        Raises:
            InvalidRecordFormat: Unknown hash name or iteration count < 1
        """
        algorithm = SUPPORTED_HASHES.get(hash_name)
        if algorithm is None:
            raise InvalidRecordFormat(f"Unsupported KDF hash: {hash_name}")
        if iterations < 1:
            raise InvalidRecordFormat(f"Invalid KDF iteration count: {iterations}")

        if isinstance(master_password, str):
            secret = master_password.encode('utf-8')
        else:
            secret = bytes(master_password)

        kdf = PBKDF2HMAC(
            algorithm=algorithm(),
            length=EncryptionService.KEY_LENGTH,
            salt=salt,
            iterations=iterations,
        )
        return kdf.derive(secret)

    @staticmethod
    def random_bytes(length: int) -> bytes:
        """Cryptographically secure random bytes."""
        return os.urandom(length)

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return EncryptionService.random_bytes(EncryptionService.SALT_LENGTH)

    @staticmethod
    def generate_id() -> str:
        """Opaque unique identifier for a vault entry."""
        return str(uuid.UUID(bytes=EncryptionService.random_bytes(16), version=4))

    @staticmethod
    def encrypt(plaintext: bytes, key: bytes) -> Tuple[bytes, bytes]:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            plaintext: Serialized payload
            key: 256-bit encryption key (from derive_key)

        Returns:
            Tuple of (nonce, ciphertext_with_tag)
        """
        # Fresh nonce per call; never reused with the same key
        nonce = EncryptionService.random_bytes(EncryptionService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
        return nonce, ciphertext

    @staticmethod
    def decrypt(nonce: bytes, ciphertext: bytes, key: bytes) -> bytes:
        """
        Decrypt ciphertext using AES-256-GCM.

        Raises:
            AuthenticationFailed: Wrong key or tampered data. The two are
                indistinguishable by design of GCM.
        """
        try:
            return AESGCM(key).decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError):
            # ValueError: malformed nonce length, treated as tampering
            raise AuthenticationFailed("Authentication tag verification failed") from None

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data as base64 text for the JSON record."""
        return base64.b64encode(data).decode('ascii')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64 text from the JSON record (strict alphabet)."""
        return base64.b64decode(data.encode('ascii'), validate=True)

    @staticmethod
    def generate_password(
        length: int = 16,
        uppercase: bool = True,
        lowercase: bool = True,
        numbers: bool = True,
        symbols: bool = True,
    ) -> str:
        """
        Generate a random password.

        One character of every selected class is placed first, the rest is
        drawn from the union of classes, then the whole password is shuffled
        with the same random stream so the forced characters land anywhere.

        Raises:
            ValueError: If length < 1
        """
        if length < 1:
            raise ValueError("Password length must be at least 1")

        selected = [
            charset for enabled, charset in (
                (uppercase, UPPERCASE),
                (lowercase, LOWERCASE),
                (numbers, NUMBERS),
                (symbols, SYMBOLS),
            ) if enabled
        ] or [LOWERCASE]
        alphabet = "".join(selected)

        stream = _RandomStream(length * 3)
        chars = [charset[stream.below(len(charset))] for charset in selected[:length]]
        while len(chars) < length:
            chars.append(alphabet[stream.below(len(alphabet))])

        # Fisher-Yates
        for i in range(len(chars) - 1, 0, -1):
            j = stream.below(i + 1)
            chars[i], chars[j] = chars[j], chars[i]

        return "".join(chars)

    @staticmethod
    def password_strength(password: str) -> PasswordStrength:
        """
        Score a password 0-4 from length and character variety.

        Advisory only; never used to accept or reject a master password.
        """
        if not password:
            return PasswordStrength(score=0, label="Enter a password")

        total = 0.0
        length = len(password)
        for threshold in (8, 12, 16):
            if length >= threshold:
                total += 1

        if any(c in LOWERCASE for c in password):
            total += 0.5
        if any(c in UPPERCASE for c in password):
            total += 0.5
        if any(c in NUMBERS for c in password):
            total += 0.5
        if any(not (c.isascii() and c.isalnum()) for c in password):
            total += 0.5

        if len(set(password)) >= length * 0.7:
            total += 0.5

        score = min(4, math.floor(total))
        return PasswordStrength(score=score, label=STRENGTH_LABELS[score])
