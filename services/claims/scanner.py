# services/claims/scanner.py
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from services.api.logging_config import _short, get_logger
from services.claims.errors import ClaimErrorKind
from services.claims.executor import ClaimExecutor
from services.claims.key_store import KeyStore
from services.claims.models import ClaimableTransfer, ClaimResult, ClaimState, NoteStatus, PrivateTransferNote
from services.claims.note_store import NoteStore, Subscription
from services.crypto_core.messages import BoxNoteEncryptor, NoteContent, NoteEncryptor
from services.crypto_core.recipient_hash import compute_recipient_hash

logger = get_logger("scanner")


class Scanner:
    """
    Claimable transfers for one wallet.

    State is derived entirely from the last snapshot the note store delivered
    (pushed via start() or pulled via refresh()). Applying a snapshot replaces
    everything, so a repeated or stale delivery is harmless. The scanner holds
    no key material; reveal() asks the key store at call time.
    """

    def __init__(
        self,
        wallet_address: str,
        note_store: NoteStore,
        executor: ClaimExecutor,
        key_store: Optional[KeyStore] = None,
        encryptor: Optional[NoteEncryptor] = None,
    ):
        self.wallet_address = wallet_address
        self.recipient_hash = compute_recipient_hash(wallet_address)
        self.note_store = note_store
        self.executor = executor
        self.key_store = key_store if key_store is not None else executor.key_store
        self.encryptor = encryptor or BoxNoteEncryptor()
        self._notes: Dict[str, PrivateTransferNote] = {}
        self._transfers: List[ClaimableTransfer] = []
        self._loading = True
        self._subscription: Optional[Subscription] = None
        self._observers: List[Callable[[List[ClaimableTransfer]], None]] = []

    # ---------- subscription ----------
    def start(self) -> None:
        if self._subscription is None:
            logger.info("watching notes for %s", _short(self.wallet_address))
            self._subscription = self.note_store.subscribe(self.recipient_hash, self.apply_snapshot)

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    @property
    def is_subscribed(self) -> bool:
        return self._subscription is not None

    def on_change(self, observer: Callable[[List[ClaimableTransfer]], None]) -> None:
        self._observers.append(observer)

    # ---------- snapshots ----------
    def apply_snapshot(self, raw_notes: Iterable[Dict[str, Any]]) -> None:
        notes: Dict[str, PrivateTransferNote] = {}
        transfers: List[ClaimableTransfer] = []
        for raw in raw_notes or []:
            try:
                note = PrivateTransferNote.model_validate(raw)
            except ValidationError as e:
                logger.warning("skipping malformed note: %s", e.errors()[0].get("msg") if e.errors() else e)
                continue
            if note.recipient_hash and note.recipient_hash != self.recipient_hash:
                continue
            if note.id in notes:
                continue
            notes[note.id] = note
            transfers.append(ClaimableTransfer.from_note(note))

        self._notes = notes
        self._transfers = transfers
        self._loading = False
        for observer in list(self._observers):
            observer(list(transfers))

    async def refresh(self) -> List[ClaimableTransfer]:
        self.apply_snapshot(await self.note_store.get_notes_for_recipient(self.recipient_hash))
        return self.transfers

    @property
    def transfers(self) -> List[ClaimableTransfer]:
        return list(self._transfers)

    @property
    def claimable_count(self) -> int:
        return sum(1 for t in self._transfers if t.status is NoteStatus.UNCLAIMED)

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def fetch_claimable_count(self) -> int:
        return await self.note_store.get_claimable_count(self.recipient_hash)

    # ---------- actions ----------
    def get_transfer(self, note_id: str) -> Optional[ClaimableTransfer]:
        for t in self._transfers:
            if t.note_id == note_id:
                return t
        return None

    async def claim_transfer(self, note_id: str) -> ClaimResult:
        transfer = self.get_transfer(note_id)
        if transfer is None:
            return ClaimResult(
                success=False,
                note_id=note_id,
                state=ClaimState.FAILED,
                error=ClaimErrorKind.UNKNOWN,
                message=f"note {note_id} is not in the current snapshot",
            )
        return await self.executor.claim(transfer)

    def reveal(self, note_id: str) -> Optional[NoteContent]:
        """Decrypt a note's amount/token/memo for display. None when it cannot be read."""
        note = self._notes.get(note_id)
        if note is None or not note.encrypted_payload:
            return None
        keypair = self.key_store.get_local_signing_keypair() if self.key_store else None
        if keypair is None:
            return None
        return self.encryptor.try_decrypt(note.encrypted_payload, note.ephemeral_public_key, keypair)


__all__ = ["Scanner"]
