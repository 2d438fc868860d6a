from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

class _Base(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, from_attributes=True, extra="ignore")

class Ok(_Base):
    status: str = Field("ok", description="Fixed OK status for successful responses.")

class TransferItem(_Base):
    note_id: str = Field(..., description="Note identifier in the note store.")
    stealth_address: str = Field(..., description="One-time stealth address holding the funds (base58).")
    ephemeral_public_key: str = Field(..., description="Sender's ephemeral public key (base58).")
    amount: int = Field(..., ge=0, description="Amount in base units (lamports or token units).")
    token_id: Optional[str] = Field(None, description="Token mint, or null/'native' for SOL.")
    token_symbol: Optional[str] = None
    created_at: int = Field(..., description="Epoch milliseconds.")
    status: str = Field(..., description="unclaimed | claimed")
    is_native: bool

class TransferList(Ok):
    wallet_address: str
    recipient_hash: str = Field(..., description="base58(sha256(wallet_address)), the note-store lookup key.")
    claimable_count: int = Field(..., ge=0)
    transfers: List[TransferItem]

class CountRes(Ok):
    recipient_hash: str
    claimable_count: int = Field(..., ge=0, description="Unclaimed notes according to the note store.")

class RevealRes(Ok):
    note_id: str
    amount: int = Field(..., ge=0)
    token_id: Optional[str] = None
    memo: Optional[str] = None

class ClaimRes(_Base):
    """Outcome of one claim attempt. Expected failures come back with success=false."""
    success: bool
    note_id: str
    state: str = Field(..., description="Last claim state reached.")
    signature: Optional[str] = Field(None, description="Sweep transaction signature, if one was submitted.")
    error: Optional[str] = Field(None, description="Error kind when success is false.")
    message: Optional[str] = None
    retryable: bool = False
    swept_amount: int = Field(0, ge=0)
    swept_native: int = Field(0, ge=0)

class ReconcileRes(Ok):
    reconciled: List[str] = Field(default_factory=list, description="Note ids whose bookkeeping was repaired.")
    pending: int = Field(0, ge=0, description="Divergent notes still waiting for reconciliation.")
