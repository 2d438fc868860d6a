# services/claims/executor.py
"""
Claim executor: sweeps a private transfer out of its stealth account.

One claim is one coroutine with sequential awaits:

    unclaimed -> verifying -> building -> signed -> submitted -> confirmed

and `failed` from any non-terminal state. There is no lock around a claim.
Two concurrent claims for the same note race on-chain, and the loser either
fails to land, lands with an execution error (TransactionFailed) or finds the
stealth account already drained (InsufficientBalance / ZeroBalance). Only a
transaction that confirmed without error reaches bookkeeping. Every failure
is returned as a ClaimResult; expected failures never raise out of claim().
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams as SysTransferParams
from solders.system_program import transfer as sys_transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import CloseAccountParams, close_account, get_associated_token_address
from spl.token.instructions import TransferParams as TokenTransferParams
from spl.token.instructions import transfer as token_transfer

from services.api.logging_config import _short, get_logger
from services.claims import config
from services.claims.errors import ClaimError, ClaimErrorKind, NoteStoreError
from services.claims.journal import ClaimJournal
from services.claims.key_store import KeyStore
from services.claims.ledger import Ledger
from services.claims.models import ClaimableTransfer, ClaimResult, ClaimState, PrivateTransferNote
from services.claims.note_store import NoteStore
from services.claims.retry import RetryError, call_with_retry
from services.crypto_core.stealth import HashStealthDeriver, KeyDeriver

logger = get_logger("executor")

StateObserver = Callable[[str, ClaimState], None]


@dataclass
class SweepPlan:
    instructions: List[Instruction]
    swept_amount: int
    swept_native: int = 0


@dataclass
class _Attempt:
    note_id: str
    on_state: Optional[StateObserver] = None
    state: ClaimState = ClaimState.UNCLAIMED
    signature: Optional[str] = None
    history: List[ClaimState] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.history.append(self.state)

    def advance(self, state: ClaimState) -> None:
        logger.info("claim %s: %s -> %s", self.note_id, self.state.value, state.value)
        self.state = state
        self.history.append(state)
        if self.on_state:
            self.on_state(self.note_id, state)


class ClaimExecutor:
    def __init__(
        self,
        ledger: Ledger,
        key_store: KeyStore,
        note_store: NoteStore,
        deriver: Optional[KeyDeriver] = None,
        fee_reserve: int = config.FEE_RESERVE_LAMPORTS,
        include_reclaimed_rent: bool = config.SWEEP_RECLAIMED_RENT,
        journal: Optional[ClaimJournal] = None,
        on_state: Optional[StateObserver] = None,
        mark_claimed_retries: int = config.MARK_CLAIMED_RETRIES,
        retry_base_delay: float = 0.5,
    ):
        if fee_reserve < 0:
            raise ValueError("fee_reserve must be >= 0")
        self.ledger = ledger
        self.key_store = key_store
        self.note_store = note_store
        self.deriver = deriver or HashStealthDeriver()
        self.fee_reserve = fee_reserve
        self.include_reclaimed_rent = include_reclaimed_rent
        self.journal = journal
        self.on_state = on_state
        self.mark_claimed_retries = mark_claimed_retries
        self.retry_base_delay = retry_base_delay

    # ===== Public =====
    async def claim(self, transfer: Union[ClaimableTransfer, PrivateTransferNote]) -> ClaimResult:
        if isinstance(transfer, PrivateTransferNote):
            transfer = ClaimableTransfer.from_note(transfer)
        attempt = _Attempt(transfer.note_id, self.on_state)
        try:
            return await self._run(transfer, attempt)
        except ClaimError as e:
            return self._fail(attempt, e.kind, e.message)
        except Exception as e:
            logger.exception("claim %s: unexpected failure", transfer.note_id)
            return self._fail(attempt, ClaimErrorKind.UNKNOWN, f"{type(e).__name__}: {e}")

    # ===== Steps =====
    async def _run(self, transfer: ClaimableTransfer, attempt: _Attempt) -> ClaimResult:
        attempt.advance(ClaimState.VERIFYING)
        owner = self.key_store.get_local_signing_keypair()
        if owner is None:
            raise ClaimError(ClaimErrorKind.NO_SIGNING_KEY, "no local signing key available")

        stealth = self.deriver.derive(transfer.ephemeral_public_key, owner)
        derived = str(stealth.pubkey())
        if derived != transfer.stealth_address:
            raise ClaimError(
                ClaimErrorKind.ADDRESS_MISMATCH,
                f"derived {_short(derived)} does not match note address {_short(transfer.stealth_address)}",
            )

        attempt.advance(ClaimState.BUILDING)
        if transfer.is_native:
            plan = await self.plan_native_sweep(stealth.pubkey(), owner.pubkey())
        else:
            plan = await self.plan_token_sweep(stealth.pubkey(), owner.pubkey(), transfer.token_id)

        blockhash, last_valid_block_height = await self.ledger.get_latest_blockhash()
        tx = self.sign_sweep(plan, stealth, blockhash)
        attempt.advance(ClaimState.SIGNED)

        signature = await self.ledger.send_raw_transaction(bytes(tx))
        attempt.signature = signature
        attempt.advance(ClaimState.SUBMITTED)
        self._journal("ClaimSubmitted", note_id=transfer.note_id, signature=signature)
        logger.info(
            "claim %s submitted %s (amount=%s native=%s)",
            transfer.note_id, signature, plan.swept_amount, plan.swept_native,
        )

        await self.ledger.confirm(signature, last_valid_block_height)
        attempt.advance(ClaimState.CONFIRMED)

        return await self._bookkeep(transfer.note_id, attempt, plan)

    async def plan_native_sweep(self, stealth_pk: Pubkey, owner_pk: Pubkey) -> SweepPlan:
        balance = await self.ledger.get_balance(stealth_pk)
        if balance <= self.fee_reserve:
            raise ClaimError(
                ClaimErrorKind.INSUFFICIENT_BALANCE,
                f"stealth balance {balance} does not exceed fee reserve {self.fee_reserve}",
            )
        lamports = balance - self.fee_reserve
        ix = sys_transfer(SysTransferParams(from_pubkey=stealth_pk, to_pubkey=owner_pk, lamports=lamports))
        return SweepPlan(instructions=[ix], swept_amount=lamports, swept_native=lamports)

    async def plan_token_sweep(self, stealth_pk: Pubkey, owner_pk: Pubkey, token_id: str) -> SweepPlan:
        try:
            mint = Pubkey.from_string(token_id)
        except ValueError as e:
            raise ClaimError(ClaimErrorKind.UNKNOWN, f"invalid token mint {token_id!r}") from e

        stealth_ata = get_associated_token_address(stealth_pk, mint)
        dest_ata = get_associated_token_address(owner_pk, mint)

        if not await self.ledger.account_exists(stealth_ata):
            raise ClaimError(ClaimErrorKind.NO_TOKEN_ACCOUNT, f"no token account {_short(str(stealth_ata))}")
        amount = await self.ledger.get_token_balance(stealth_ata)
        if amount == 0:
            raise ClaimError(ClaimErrorKind.ZERO_BALANCE, f"token account {_short(str(stealth_ata))} is empty")

        # Read before the close below credits the ATA rent to the stealth account
        native = await self.ledger.get_balance(stealth_pk)
        if self.include_reclaimed_rent:
            native += await self.ledger.get_balance(stealth_ata)

        instructions = [
            token_transfer(
                TokenTransferParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=stealth_ata,
                    dest=dest_ata,
                    owner=stealth_pk,
                    amount=amount,
                )
            ),
            close_account(
                CloseAccountParams(
                    program_id=TOKEN_PROGRAM_ID,
                    account=stealth_ata,
                    dest=stealth_pk,
                    owner=stealth_pk,
                )
            ),
        ]
        swept_native = 0
        if native > self.fee_reserve:
            swept_native = native - self.fee_reserve
            instructions.append(
                sys_transfer(SysTransferParams(from_pubkey=stealth_pk, to_pubkey=owner_pk, lamports=swept_native))
            )
        return SweepPlan(instructions=instructions, swept_amount=amount, swept_native=swept_native)

    @staticmethod
    def sign_sweep(plan: SweepPlan, stealth: Keypair, blockhash) -> Transaction:
        """The stealth keypair pays the fee and is the only signer."""
        message = Message.new_with_blockhash(plan.instructions, stealth.pubkey(), blockhash)
        tx = Transaction.new_unsigned(message)
        tx.sign([stealth], blockhash)
        return tx

    async def _bookkeep(self, note_id: str, attempt: _Attempt, plan: SweepPlan) -> ClaimResult:
        signature = attempt.signature

        async def _mark() -> bool:
            ok = await self.note_store.mark_note_claimed(note_id, signature)
            if not ok:
                raise NoteStoreError(f"store refused claim signature for {note_id}")
            return ok

        try:
            await call_with_retry(
                _mark,
                max_retries=self.mark_claimed_retries,
                base_delay=self.retry_base_delay,
                retry_on=(NoteStoreError,),
                description=f"markNoteClaimed({note_id})",
            )
        except RetryError as e:
            logger.warning("claim %s landed as %s but the note store was not updated: %s", note_id, signature, e)
            self._journal("BookkeepingDivergence", note_id=note_id, signature=signature, error=str(e))
            return ClaimResult(
                success=False,
                note_id=note_id,
                state=attempt.state,
                signature=signature,
                error=ClaimErrorKind.BOOKKEEPING_DIVERGENCE,
                message=f"funds swept in {signature} but the note could not be marked claimed",
                swept_amount=plan.swept_amount,
                swept_native=plan.swept_native,
                history=list(attempt.history),
            )

        self._journal("ClaimConfirmed", note_id=note_id, signature=signature)
        return ClaimResult(
            success=True,
            note_id=note_id,
            state=attempt.state,
            signature=signature,
            swept_amount=plan.swept_amount,
            swept_native=plan.swept_native,
            history=list(attempt.history),
        )

    # ===== Helpers =====
    def _fail(self, attempt: _Attempt, kind: ClaimErrorKind, message: str) -> ClaimResult:
        if attempt.state is not ClaimState.FAILED:
            attempt.advance(ClaimState.FAILED)
        logger.info("claim %s failed: %s (%s)", attempt.note_id, kind.value, message)
        self._journal("ClaimFailed", note_id=attempt.note_id, signature=attempt.signature, error=kind.value)
        return ClaimResult(
            success=False,
            note_id=attempt.note_id,
            state=ClaimState.FAILED,
            signature=attempt.signature,
            error=kind,
            message=message,
            history=list(attempt.history),
        )

    def _journal(self, kind: str, **payload) -> None:
        if self.journal is None:
            return
        try:
            self.journal.append_event(kind, **payload)
        except Exception:
            # journal errors never change the claim outcome
            logger.exception("journal append %s failed for %s", kind, payload.get("note_id"))


__all__ = ["ClaimExecutor", "SweepPlan", "StateObserver"]
