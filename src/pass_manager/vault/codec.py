# Vault - Record Codec
#
# VaultPayload <-> encrypted VaultRecord.
# Canonical JSON payload, PBKDF2 parameters stored per record,
# fresh nonce on every write.

import binascii
import json
import logging
from typing import Any, Mapping, Optional

from .encryption import EncryptionService, PasswordLike, SUPPORTED_HASHES
from .exceptions import (
    AuthenticationFailed,
    InvalidCredentialsOrCorrupt,
    InvalidRecordFormat,
)
from .models import (
    FORMAT_VERSION,
    VaultPayload,
    VaultRecord,
    format_timestamp,
    utcnow,
)

logger = logging.getLogger(__name__)


def _encode_payload(payload: VaultPayload) -> bytes:
    data = payload.to_dict()
    data["modifiedAt"] = format_timestamp(utcnow())
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


class VaultCodec:
    """
    Serializes and encrypts vault payloads into VaultRecords.

    Args:
        iterations: PBKDF2 iterations for *new* vaults. Existing records
            always use the iteration count stored in them.
        hash_name: PBKDF2 hash for new vaults.
    """

    def __init__(
        self,
        iterations: int = EncryptionService.PBKDF2_ITERATIONS,
        hash_name: str = EncryptionService.DEFAULT_HASH,
    ):
        if iterations < 1:
            raise ValueError("iterations must be positive")
        if hash_name not in SUPPORTED_HASHES:
            raise ValueError(f"Unsupported KDF hash: {hash_name}")
        self.iterations = iterations
        self.hash_name = hash_name

    def create_record(self, password: PasswordLike, payload: VaultPayload) -> VaultRecord:
        """Encrypt ``payload`` under a new salt with the default KDF settings."""
        salt = EncryptionService.generate_salt()
        key = EncryptionService.derive_key(password, salt, self.iterations, self.hash_name)
        nonce, ciphertext = EncryptionService.encrypt(_encode_payload(payload), key)

        now = format_timestamp(utcnow())
        return VaultRecord(
            algorithm=EncryptionService.ALGORITHM,
            kdf=EncryptionService.KDF,
            iterations=self.iterations,
            hash_name=self.hash_name,
            salt=EncryptionService.encode_for_storage(salt),
            nonce=EncryptionService.encode_for_storage(nonce),
            ciphertext=EncryptionService.encode_for_storage(ciphertext),
            created_at=now,
            modified_at=now,
        )

    def update_record(
        self,
        password: PasswordLike,
        existing: VaultRecord,
        payload: VaultPayload,
    ) -> VaultRecord:
        """
        Re-encrypt ``payload`` reusing the salt and KDF parameters of
        ``existing``. The nonce is always new; createdAt is preserved.
        """
        salt = self._decode(existing.salt, "salt")
        key = EncryptionService.derive_key(password, salt, existing.iterations, existing.hash_name)
        nonce, ciphertext = EncryptionService.encrypt(_encode_payload(payload), key)

        return VaultRecord(
            format_version=existing.format_version,
            algorithm=existing.algorithm,
            kdf=existing.kdf,
            iterations=existing.iterations,
            hash_name=existing.hash_name,
            salt=existing.salt,
            nonce=EncryptionService.encode_for_storage(nonce),
            ciphertext=EncryptionService.encode_for_storage(ciphertext),
            created_at=existing.created_at,
            modified_at=format_timestamp(utcnow()),
        )

    def open_record(self, password: PasswordLike, record: VaultRecord) -> VaultPayload:
        """
        Decrypt and parse a record.

        Raises:
            InvalidRecordFormat: Record is structurally invalid
            InvalidCredentialsOrCorrupt: Wrong password, tampered data, or
                a payload that does not parse
        """
        self.parse_record(record.to_dict())

        salt = EncryptionService.decode_from_storage(record.salt)
        nonce = EncryptionService.decode_from_storage(record.nonce)
        ciphertext = EncryptionService.decode_from_storage(record.ciphertext)
        key = EncryptionService.derive_key(password, salt, record.iterations, record.hash_name)

        try:
            plaintext = EncryptionService.decrypt(nonce, ciphertext, key)
            return VaultPayload.from_dict(json.loads(plaintext.decode("utf-8")))
        except (AuthenticationFailed, UnicodeDecodeError, ValueError, KeyError, TypeError):
            # json.JSONDecodeError is a ValueError
            logger.debug("Vault record rejected on open")
            raise InvalidCredentialsOrCorrupt() from None

    @staticmethod
    def validate_record_shape(record: Any) -> bool:
        """Structural check, done before any decryption attempt."""
        try:
            VaultCodec.parse_record(record)
        except InvalidRecordFormat:
            return False
        return True

    @staticmethod
    def parse_record(data: Any) -> VaultRecord:
        """
        Validate a JSON object and convert it into a VaultRecord.

        Raises:
            InvalidRecordFormat: With the specific structural problem
        """
        if not isinstance(data, Mapping):
            raise InvalidRecordFormat("Vault record must be a JSON object")

        version = data.get("formatVersion")
        if version != FORMAT_VERSION:
            raise InvalidRecordFormat(f"Unsupported vault format version: {version!r}")

        encryption = data.get("encryption")
        if not isinstance(encryption, Mapping):
            raise InvalidRecordFormat("Missing encryption parameters")
        for name in ("algorithm", "kdf", "hash", "salt"):
            if not isinstance(encryption.get(name), str):
                raise InvalidRecordFormat(f"Missing encryption.{name}")
        if encryption["algorithm"] != EncryptionService.ALGORITHM:
            raise InvalidRecordFormat(f"Unsupported algorithm: {encryption['algorithm']}")
        if encryption["kdf"] != EncryptionService.KDF:
            raise InvalidRecordFormat(f"Unsupported KDF: {encryption['kdf']}")
        if encryption["hash"] not in SUPPORTED_HASHES:
            raise InvalidRecordFormat(f"Unsupported KDF hash: {encryption['hash']}")
        iterations = encryption.get("iterations")
        if isinstance(iterations, bool) or not isinstance(iterations, int) or iterations < 1:
            raise InvalidRecordFormat("Invalid encryption.iterations")

        for name in ("nonce", "ciphertext"):
            if not isinstance(data.get(name), str):
                raise InvalidRecordFormat(f"Missing {name}")

        salt = VaultCodec._decode(encryption["salt"], "salt")
        nonce = VaultCodec._decode(data["nonce"], "nonce")
        ciphertext = VaultCodec._decode(data["ciphertext"], "ciphertext")
        if len(salt) != EncryptionService.SALT_LENGTH:
            raise InvalidRecordFormat("Invalid salt length")
        if len(nonce) != EncryptionService.NONCE_LENGTH:
            raise InvalidRecordFormat("Invalid nonce length")
        if not ciphertext:
            raise InvalidRecordFormat("Empty ciphertext")

        return VaultRecord.from_dict(data)

    @staticmethod
    def parse_vault_file(content: str) -> VaultRecord:
        """Parse an exported vault file (JSON text)."""
        try:
            data = json.loads(content)
        except (TypeError, ValueError):
            raise InvalidRecordFormat("Failed to parse vault file") from None
        return VaultCodec.parse_record(data)

    @staticmethod
    def dumps_record(record: VaultRecord) -> str:
        """Export file content for a record."""
        return json.dumps(record.to_dict(), indent=2)

    @staticmethod
    def _decode(value: Optional[str], name: str) -> bytes:
        try:
            return EncryptionService.decode_from_storage(value)
        except (binascii.Error, ValueError, AttributeError):
            raise InvalidRecordFormat(f"Invalid base64 in {name}") from None
