"""Vault entry API endpoints."""

import base64
import binascii

from fastapi import APIRouter, Depends, HTTPException, status

from certvault.api.errors import raise_for_error
from certvault.api.schemas import (
    SecretResponse,
    StoreSecretRequest,
    VaultEntryListResponse,
)
from certvault.errors import VaultError
from certvault.vault.index import VaultEntry
from certvault.vault.key_vault import KeyVault

router = APIRouter(prefix="/api/vault", tags=["vault"])

# Global key vault instance
_vault: KeyVault | None = None


def set_key_vault(vault: KeyVault | None) -> None:
    """Set the global key vault instance."""
    global _vault
    _vault = vault


def get_key_vault() -> KeyVault:
    """Get the global key vault instance."""
    if _vault is None:
        raise RuntimeError("KeyVault not initialized")
    return _vault


@router.get("/entries", response_model=VaultEntryListResponse)
async def list_entries(vault: KeyVault = Depends(get_key_vault)) -> VaultEntryListResponse:
    """List entry metadata. Key bytes are never included."""
    entries = await vault.list_entries()
    return VaultEntryListResponse(items=entries, total=len(entries))


@router.post("/entries", status_code=status.HTTP_201_CREATED, response_model=VaultEntry)
async def store_entry(
    body: StoreSecretRequest,
    vault: KeyVault = Depends(get_key_vault),
) -> VaultEntry:
    """
    Store a new secret.

    - Errors: 400 (bad name or encoding), 409 (name taken)
    """
    try:
        secret = base64.b64decode(body.secret_base64, validate=True)
    except binascii.Error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="secret_base64 is not valid base64",
        ) from None

    try:
        return await vault.store(body.name, secret, kind=body.kind)
    except VaultError as e:
        raise_for_error(e)


@router.get("/entries/{name}", response_model=SecretResponse)
async def get_entry(name: str, vault: KeyVault = Depends(get_key_vault)) -> SecretResponse:
    try:
        secret = await vault.get(name)
    except VaultError as e:
        raise_for_error(e)
    return SecretResponse(name=name, secret_base64=base64.b64encode(secret).decode("ascii"))


@router.delete("/entries/{name}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_entry(name: str, vault: KeyVault = Depends(get_key_vault)) -> None:
    """Delete an entry. Deleting a missing entry returns 404; the vault call itself is idempotent."""
    try:
        deleted = await vault.delete(name)
    except VaultError as e:
        raise_for_error(e)
    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Vault entry not found: {name}",
        )
