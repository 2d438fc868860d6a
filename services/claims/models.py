# services/claims/models.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from services.claims.errors import ClaimErrorKind

# Wrapped SOL mint; notes for native SOL sometimes carry it instead of "native"
WSOL_MINT = "So11111111111111111111111111111111111111112"
NATIVE_TOKEN_IDS = frozenset({"", "native", "sol", WSOL_MINT.lower()})


def is_native_token(token_id: Optional[str]) -> bool:
    return token_id is None or token_id.strip().lower() in NATIVE_TOKEN_IDS


class NoteStatus(str, Enum):
    UNCLAIMED = "unclaimed"
    CLAIMED = "claimed"


class PrivateTransferNote(BaseModel):
    """One note as returned by the note store (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    id: str = Field(..., validation_alias=AliasChoices("id", "_id", "noteId"), description="Note identifier assigned by the store.")
    stealth_address: str = Field(..., alias="stealthAddress", description="One-time destination (base58).")
    ephemeral_public_key: str = Field(..., alias="ephemeralPublicKey", description="Sender's ephemeral public key (base58).")
    encrypted_payload: Optional[str] = Field(None, alias="encryptedPayload", description="nonce||box, base58.")
    recipient_hash: Optional[str] = Field(None, alias="recipientHash")
    amount: int = Field(0, ge=0, description="Amount in base units (lamports or token units).")
    token_id: Optional[str] = Field(None, alias="tokenId")
    token_symbol: Optional[str] = Field(None, alias="tokenSymbol")
    created_at: int = Field(0, alias="createdAt", description="Epoch milliseconds.")
    status: NoteStatus = NoteStatus.UNCLAIMED
    claim_transaction_signature: Optional[str] = Field(None, alias="claimTransactionSignature")

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v):
        return str(v) if v is not None else v

    @field_validator("amount", "created_at", mode="before")
    @classmethod
    def _int_like(cls, v):
        if v is None:
            return 0
        if isinstance(v, float):
            return int(v)
        return v

    @property
    def is_native(self) -> bool:
        return is_native_token(self.token_id)


@dataclass(frozen=True)
class ClaimableTransfer:
    """Display/claim projection of a note. No identity beyond note_id."""

    note_id: str
    stealth_address: str
    ephemeral_public_key: str
    amount: int
    token_id: Optional[str]
    token_symbol: Optional[str]
    created_at: int
    status: NoteStatus

    @property
    def is_native(self) -> bool:
        return is_native_token(self.token_id)

    @property
    def is_claimed(self) -> bool:
        return self.status is NoteStatus.CLAIMED

    @classmethod
    def from_note(cls, note: PrivateTransferNote) -> "ClaimableTransfer":
        return cls(
            note_id=note.id,
            stealth_address=note.stealth_address,
            ephemeral_public_key=note.ephemeral_public_key,
            amount=note.amount,
            token_id=note.token_id,
            token_symbol=note.token_symbol,
            created_at=note.created_at,
            status=note.status,
        )


class ClaimState(str, Enum):
    UNCLAIMED = "unclaimed"
    VERIFYING = "verifying"
    BUILDING = "building"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


@dataclass
class ClaimResult:
    success: bool
    note_id: str
    state: ClaimState
    signature: Optional[str] = None
    error: Optional[ClaimErrorKind] = None
    message: Optional[str] = None
    swept_amount: int = 0
    swept_native: int = 0
    history: List[ClaimState] = field(default_factory=list)

    @property
    def retryable(self) -> bool:
        return (not self.success) and self.error is not None and self.error.retryable

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "note_id": self.note_id,
            "state": self.state.value,
            "signature": self.signature,
            "error": self.error.value if self.error else None,
            "message": self.message,
            "retryable": self.retryable,
            "swept_amount": self.swept_amount,
            "swept_native": self.swept_native,
        }
