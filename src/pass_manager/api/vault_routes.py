# Vault API - RESTful endpoints for the vault UI
#
# - Create/unlock/lock the vault, activity pings for auto-lock
# - Entry CRUD, category listing, search, counts
# - Import/export of the encrypted vault file
# - Password generator and strength meter
#
# Handlers are plain `def` so FastAPI runs them in its threadpool:
# key derivation is slow on purpose and must not block the event loop.

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from ..vault import (
    Category,
    EncryptionService,
    EntryNotFound,
    EntryType,
    InvalidCredentialsOrCorrupt,
    InvalidEntry,
    InvalidRecordFormat,
    VaultAlreadyExists,
    VaultError,
    VaultLocked,
    VaultManager,
    VaultNotFound,
)
from .security import verify_session_token

router = APIRouter(
    prefix="/api/vault",
    tags=["vault"],
    dependencies=[Depends(verify_session_token)],
)


def get_vault_manager(request: Request) -> VaultManager:
    """The VaultManager owned by the application (see create_app)."""
    return request.app.state.vault_manager


def _http_error(error: VaultError) -> HTTPException:
    if isinstance(error, VaultLocked):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(error, (EntryNotFound, VaultNotFound)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, InvalidCredentialsOrCorrupt):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(error, (InvalidRecordFormat, InvalidEntry)):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, VaultAlreadyExists):
        code = status.HTTP_409_CONFLICT
    else:
        # PersistenceFailure and anything unexpected
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(status_code=code, detail=str(error))


# Request Models

class CreateVaultRequest(BaseModel):
    master_password: str = Field(..., min_length=1)
    overwrite: bool = False


class UnlockVaultRequest(BaseModel):
    master_password: str


class EntryRequest(BaseModel):
    """Entry fields; camelCase names as in the vault payload."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    type: Optional[EntryType] = None
    title: Optional[str] = Field(None, max_length=200)
    favorite: Optional[bool] = None
    url: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    notes: Optional[str] = None
    card_holder: Optional[str] = Field(None, alias="cardHolder")
    card_number: Optional[str] = Field(None, alias="cardNumber")
    card_expiry: Optional[str] = Field(None, alias="cardExpiry")
    card_cvv: Optional[str] = Field(None, alias="cardCvv")
    note_content: Optional[str] = Field(None, alias="noteContent")

    def to_fields(self) -> dict:
        data = self.model_dump(exclude_unset=True)
        if isinstance(data.get("type"), EntryType):
            data["type"] = data["type"].value
        return data


class ImportVaultRequest(BaseModel):
    content: str
    master_password: str


class SettingsRequest(BaseModel):
    auto_lock_timeout: float = Field(..., ge=0)


class GeneratePasswordRequest(BaseModel):
    length: int = Field(16, ge=1, le=256)
    uppercase: bool = True
    lowercase: bool = True
    numbers: bool = True
    symbols: bool = True


class PasswordStrengthRequest(BaseModel):
    password: str


# Endpoints

@router.get("/status")
def get_vault_status(manager: VaultManager = Depends(get_vault_manager)):
    """Whether a vault exists and whether it is unlocked."""
    return {
        "vault_exists": manager.has_vault(),
        "is_unlocked": manager.is_unlocked,
        "auto_lock_timeout": manager.auto_lock_timeout,
    }


@router.post("/initialize")
def initialize_vault(
    request: CreateVaultRequest,
    manager: VaultManager = Depends(get_vault_manager),
):
    """Create a new vault (unlocked on success)."""
    try:
        manager.create_vault(request.master_password, overwrite=request.overwrite)
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "message": "Vault created successfully!"}


@router.post("/unlock")
def unlock_vault(
    request: UnlockVaultRequest,
    manager: VaultManager = Depends(get_vault_manager),
):
    try:
        entries = manager.unlock(request.master_password)
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "entries": [entry.to_dict() for entry in entries]}


@router.post("/lock")
def lock_vault(manager: VaultManager = Depends(get_vault_manager)):
    manager.lock()
    return {"success": True, "message": "Vault locked"}


@router.post("/activity")
def record_activity(manager: VaultManager = Depends(get_vault_manager)):
    """UI activity ping; postpones the auto-lock."""
    manager.record_activity()
    return {"success": True, "is_unlocked": manager.is_unlocked}


@router.get("/entries")
def list_entries(
    category: Category = Category.ALL,
    q: Optional[str] = None,
    manager: VaultManager = Depends(get_vault_manager),
):
    """Entries in a category, optionally filtered by search text."""
    try:
        entries = manager.list_entries(category=category, query=q)
    except VaultError as e:
        raise _http_error(e)
    return {"entries": [entry.to_dict() for entry in entries]}


@router.post("/entries", status_code=status.HTTP_201_CREATED)
def add_entry(
    request: EntryRequest,
    manager: VaultManager = Depends(get_vault_manager),
):
    try:
        entry = manager.add_entry(request.to_fields())
    except VaultError as e:
        raise _http_error(e)
    return entry.to_dict()


@router.get("/entries/{entry_id}")
def get_entry(
    entry_id: str,
    manager: VaultManager = Depends(get_vault_manager),
):
    try:
        entry = manager.require_entry(entry_id)
    except VaultError as e:
        raise _http_error(e)
    return entry.to_dict()


@router.patch("/entries/{entry_id}")
def update_entry(
    entry_id: str,
    request: EntryRequest,
    manager: VaultManager = Depends(get_vault_manager),
):
    try:
        entry = manager.update_entry(entry_id, request.to_fields())
    except VaultError as e:
        raise _http_error(e)
    return entry.to_dict()


@router.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: str,
    manager: VaultManager = Depends(get_vault_manager),
):
    try:
        manager.delete_entry(entry_id)
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "message": "Entry deleted successfully"}


@router.get("/counts")
def get_counts(manager: VaultManager = Depends(get_vault_manager)):
    try:
        return manager.get_counts()
    except VaultError as e:
        raise _http_error(e)


@router.get("/export")
def export_vault(manager: VaultManager = Depends(get_vault_manager)):
    """Encrypted vault file content (JSON text)."""
    try:
        return {"content": manager.export_vault()}
    except VaultError as e:
        raise _http_error(e)


@router.post("/import")
def import_vault(
    request: ImportVaultRequest,
    manager: VaultManager = Depends(get_vault_manager),
):
    """Replace the vault with an exported file; unlocks it on success."""
    try:
        entries = manager.import_vault(request.content, request.master_password)
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "entries": [entry.to_dict() for entry in entries]}


@router.get("/settings")
def get_settings(manager: VaultManager = Depends(get_vault_manager)):
    return manager.get_settings()


@router.put("/settings")
def update_settings(
    request: SettingsRequest,
    manager: VaultManager = Depends(get_vault_manager),
):
    try:
        return manager.update_settings(auto_lock_timeout=request.auto_lock_timeout)
    except VaultError as e:
        raise _http_error(e)


@router.post("/generate-password")
def generate_password(request: GeneratePasswordRequest):
    password = EncryptionService.generate_password(
        length=request.length,
        uppercase=request.uppercase,
        lowercase=request.lowercase,
        numbers=request.numbers,
        symbols=request.symbols,
    )
    strength = EncryptionService.password_strength(password)
    return {"password": password, "score": strength.score, "label": strength.label}


@router.post("/password-strength")
def password_strength(request: PasswordStrengthRequest):
    strength = EncryptionService.password_strength(request.password)
    return {"score": strength.score, "label": strength.label}
