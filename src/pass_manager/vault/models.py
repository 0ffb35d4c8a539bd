"""
Vault Data Models
"""

from dataclasses import dataclass, field, fields
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

FORMAT_VERSION = "1.0"


class EntryType(str, Enum):
    """Closed set of entry variants"""
    LOGIN = "login"
    CARD = "card"
    NOTE = "note"


class Category(str, Enum):
    """Listing filters: everything, favorites, or one entry type"""
    ALL = "all"
    FAVORITES = "favorites"
    LOGIN = "login"
    CARD = "card"
    NOTE = "note"


class ChangeKind(str, Enum):
    ADDED = "added"
    UPDATED = "updated"
    DELETED = "deleted"


class VaultEventKind(str, Enum):
    UNLOCKED = "vaultUnlocked"
    LOCKED = "vaultLocked"
    ENTRY_CHANGED = "entryChanged"


@dataclass(frozen=True)
class VaultEvent:
    """Notification delivered to session observers"""
    kind: VaultEventKind
    entry_id: Optional[str] = None
    change: Optional[ChangeKind] = None
    auto: bool = False  # True when a lock came from the inactivity timer


@dataclass(frozen=True)
class PasswordStrength:
    score: int
    label: str


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not isinstance(value, str):
        raise TypeError("Timestamp must be a string")
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# attribute name -> JSON key, for the optional type-specific fields
_TEXT_FIELDS = {
    "url": "url",
    "username": "username",
    "password": "password",
    "notes": "notes",
    "card_holder": "cardHolder",
    "card_number": "cardNumber",
    "card_expiry": "cardExpiry",
    "card_cvv": "cardCvv",
    "note_content": "noteContent",
}
_JSON_TO_ATTR = {json_key: attr for attr, json_key in _TEXT_FIELDS.items()}

# Fields searched by the vault's text search, in entry JSON terms
SEARCH_FIELDS = ("title", "username", "url", "notes", "card_holder", "note_content")

# Keys a caller may never set through add/update
PROTECTED_KEYS = frozenset({"id", "createdAt", "modifiedAt", "created_at", "modified_at"})


@dataclass
class Entry:
    """A single vault secret: login, card or note."""
    id: str
    type: EntryType
    title: str
    created_at: datetime
    modified_at: datetime
    favorite: bool = False
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    notes: Optional[str] = None
    card_holder: Optional[str] = None
    card_number: Optional[str] = None
    card_expiry: Optional[str] = None
    card_cvv: Optional[str] = None
    note_content: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON form (camelCase keys, unset optional fields omitted)."""
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "favorite": self.favorite,
            "createdAt": format_timestamp(self.created_at),
            "modifiedAt": format_timestamp(self.modified_at),
        }
        for attr, json_key in _TEXT_FIELDS.items():
            value = getattr(self, attr)
            if value is not None:
                data[json_key] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Entry":
        """
        Build an entry from its JSON form.

        Raises:
            KeyError, ValueError, TypeError: Missing or malformed fields
        """
        if not isinstance(data, Mapping):
            raise TypeError("Entry must be a JSON object")
        title = data["title"]
        if not isinstance(title, str):
            raise TypeError("Entry title must be a string")
        kwargs: Dict[str, Any] = {
            "id": str(data["id"]),
            "type": EntryType(data["type"]),
            "title": title,
            "favorite": bool(data.get("favorite", False)),
            "created_at": parse_timestamp(data["createdAt"]),
            "modified_at": parse_timestamp(data["modifiedAt"]),
        }
        for json_key, attr in _JSON_TO_ATTR.items():
            value = data.get(json_key)
            if value is not None:
                kwargs[attr] = str(value)
        return cls(**kwargs)

    def matches(self, needle: str) -> bool:
        """Case-insensitive substring match over the searchable fields."""
        for attr in SEARCH_FIELDS:
            value = getattr(self, attr)
            if value and needle in value.lower():
                return True
        return False

    def in_category(self, category: Category) -> bool:
        if category is Category.ALL:
            return True
        if category is Category.FAVORITES:
            return self.favorite
        return self.type.value == category.value


def normalize_fields(fields_in: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Map caller-supplied entry fields (camelCase or snake_case) onto Entry
    attribute names, dropping protected keys.

    Raises:
        ValueError: Unknown field name
    """
    known = {f.name for f in fields(Entry)} - {"id", "created_at", "modified_at"}
    result: Dict[str, Any] = {}
    for key, value in fields_in.items():
        if key in PROTECTED_KEYS:
            continue
        attr = _JSON_TO_ATTR.get(key, key)
        if attr not in known:
            raise ValueError(f"Unknown entry field: {key}")
        result[attr] = value
    return result


def next_timestamp(previous: Optional[datetime] = None) -> datetime:
    """Current time, forced strictly after ``previous`` when given."""
    now = utcnow()
    if previous is not None and now <= previous:
        now = previous + timedelta(microseconds=1)
    return now


@dataclass
class VaultPayload:
    """Decrypted vault contents; exists only in memory."""
    entries: List[Entry] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "createdAt": format_timestamp(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VaultPayload":
        if not isinstance(data, Mapping):
            raise TypeError("Payload must be a JSON object")
        raw_entries = data.get("entries", [])
        if not isinstance(raw_entries, list):
            raise TypeError("Payload entries must be a list")
        entries = [Entry.from_dict(item) for item in raw_entries]
        if len({entry.id for entry in entries}) != len(entries):
            raise ValueError("Duplicate entry id in payload")
        created = data.get("createdAt")
        return cls(
            entries=entries,
            created_at=parse_timestamp(created) if created else utcnow(),
        )


@dataclass
class VaultRecord:
    """The persisted (and exported) encrypted vault."""
    algorithm: str
    kdf: str
    iterations: int
    hash_name: str
    salt: str  # base64
    nonce: str  # base64
    ciphertext: str  # base64
    created_at: str
    modified_at: str
    format_version: str = FORMAT_VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "formatVersion": self.format_version,
            "encryption": {
                "algorithm": self.algorithm,
                "kdf": self.kdf,
                "iterations": self.iterations,
                "hash": self.hash_name,
                "salt": self.salt,
            },
            "nonce": self.nonce,
            "ciphertext": self.ciphertext,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "VaultRecord":
        """Unchecked conversion; call VaultCodec.parse_record for validation."""
        encryption = data["encryption"]
        return cls(
            format_version=data["formatVersion"],
            algorithm=encryption["algorithm"],
            kdf=encryption["kdf"],
            iterations=encryption["iterations"],
            hash_name=encryption["hash"],
            salt=encryption["salt"],
            nonce=data["nonce"],
            ciphertext=data["ciphertext"],
            created_at=data.get("createdAt", ""),
            modified_at=data.get("modifiedAt", ""),
        )
