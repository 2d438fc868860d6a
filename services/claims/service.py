# services/claims/service.py
from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from services.api.logging_config import _short, get_logger
from services.claims import config
from services.claims.executor import ClaimExecutor, StateObserver
from services.claims.journal import ClaimJournal
from services.claims.key_store import KeyfileKeyStore, KeyStore
from services.claims.ledger import Ledger, SolanaLedger
from services.claims.locks import RefreshLockRegistry
from services.claims.models import ClaimableTransfer, ClaimResult
from services.claims.note_store import HttpNoteStore, NoteStore
from services.claims.scanner import Scanner
from services.crypto_core.messages import BoxNoteEncryptor, NoteEncryptor
from services.crypto_core.stealth import HashStealthDeriver, KeyDeriver

logger = get_logger("service")


class PrivateTransferService:
    """
    Long-lived owner of the claim subsystem: one executor, one scanner per
    wallet address, and the refresh-lock registry that keeps pull refreshes
    for the same wallet from overlapping.
    """

    def __init__(
        self,
        ledger: Ledger,
        note_store: NoteStore,
        key_store: KeyStore,
        deriver: Optional[KeyDeriver] = None,
        encryptor: Optional[NoteEncryptor] = None,
        journal: Optional[ClaimJournal] = None,
        fee_reserve: int = config.FEE_RESERVE_LAMPORTS,
        include_reclaimed_rent: bool = config.SWEEP_RECLAIMED_RENT,
        mark_claimed_retries: int = config.MARK_CLAIMED_RETRIES,
        retry_base_delay: float = 0.5,
        on_state: Optional[StateObserver] = None,
        locks: Optional[RefreshLockRegistry] = None,
    ):
        self.ledger = ledger
        self.note_store = note_store
        self.key_store = key_store
        self.deriver = deriver or HashStealthDeriver()
        self.encryptor = encryptor or BoxNoteEncryptor()
        self.journal = journal
        self.locks = locks or RefreshLockRegistry()
        self.executor = ClaimExecutor(
            ledger=ledger,
            key_store=key_store,
            note_store=note_store,
            deriver=self.deriver,
            fee_reserve=fee_reserve,
            include_reclaimed_rent=include_reclaimed_rent,
            journal=journal,
            on_state=on_state,
            mark_claimed_retries=mark_claimed_retries,
            retry_base_delay=retry_base_delay,
        )
        self._scanners: Dict[str, Scanner] = {}
        self._inflight: Dict[str, asyncio.Event] = {}

    @classmethod
    def from_env(cls) -> "PrivateTransferService":
        """Wire the production bindings from services.claims.config."""
        return cls(
            ledger=SolanaLedger(config.SOLANA_RPC_URL, config.SOLANA_COMMITMENT, config.CONFIRM_POLL_SEC),
            note_store=HttpNoteStore(config.NOTE_STORE_URL, config.NOTE_STORE_POLL_SEC, config.NOTE_STORE_TIMEOUT_SEC),
            key_store=KeyfileKeyStore(config.KEYPAIR_PATH),
            deriver=HashStealthDeriver(),
            encryptor=BoxNoteEncryptor(),
            journal=ClaimJournal(config.CLAIM_JOURNAL_PATH),
        )

    # ---------- scanners ----------
    def scanner_for(self, wallet_address: str) -> Scanner:
        scanner = self._scanners.get(wallet_address)
        if scanner is None:
            scanner = Scanner(wallet_address, self.note_store, self.executor, self.key_store, self.encryptor)
            self._scanners[wallet_address] = scanner
        return scanner

    async def refresh(self, wallet_address: str) -> Optional[List[ClaimableTransfer]]:
        """Pull a fresh snapshot. Returns None when a refresh for this wallet is already running."""
        with self.locks.hold(wallet_address) as acquired:
            if not acquired:
                logger.debug("refresh for %s already in progress", _short(wallet_address))
                return None
            done = self._inflight[wallet_address] = asyncio.Event()
            try:
                return await self.scanner_for(wallet_address).refresh()
            finally:
                self._inflight.pop(wallet_address, None)
                done.set()

    async def claim(self, wallet_address: str, note_id: str) -> ClaimResult:
        scanner = self.scanner_for(wallet_address)
        if scanner.get_transfer(note_id) is None and await self.refresh(wallet_address) is None:
            # another refresh owns the lock; its snapshot is the one to claim against
            inflight = self._inflight.get(wallet_address)
            if inflight is not None:
                await inflight.wait()
        return await scanner.claim_transfer(note_id)

    async def reconcile(self) -> List[str]:
        if self.journal is None:
            return []
        return await self.journal.reconcile(self.note_store)

    async def aclose(self) -> None:
        for scanner in self._scanners.values():
            scanner.stop()
        self._scanners.clear()
        close_ledger = getattr(self.ledger, "close", None)
        if close_ledger is not None:
            await close_ledger()
        close_store = getattr(self.note_store, "aclose", None)
        if close_store is not None:
            await close_store()


__all__ = ["PrivateTransferService"]
