import asyncio
import itertools
from typing import Dict, List, Optional, Tuple

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID

from services.claims.errors import LedgerError, TransactionFailed
from services.claims.executor import ClaimExecutor
from services.claims.key_store import StaticKeyStore
from services.claims.note_store import InMemoryNoteStore
from services.crypto_core.messages import NoteContent, seal_note
from services.crypto_core.recipient_hash import compute_recipient_hash
from services.crypto_core.stealth import derive_stealth_keypair

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
TX_FEE = 5000


class FakeLedger:
    """
    In-memory ledger. Applies system transfers, token transfers and
    close-account from the submitted transaction bytes, charging a flat fee
    to the fee payer, so double claims see drained balances.

    With preflight on, a transaction that would fail is rejected at send
    time. With preflight off it still lands: only the fee is charged and
    confirm() reports the execution error.
    """

    def __init__(self) -> None:
        self.balances: Dict[Pubkey, int] = {}
        self.token_balances: Dict[Pubkey, int] = {}
        self.calls: List[str] = []
        self.sent: List[Transaction] = []
        self.fail_with: Dict[str, Exception] = {}
        self.confirm_error: Optional[Exception] = None
        self.last_valid_block_height = 1_000
        self.preflight = True
        self.landed_errors: Dict[str, str] = {}

    def _call(self, name: str) -> None:
        self.calls.append(name)
        if name in self.fail_with:
            raise self.fail_with[name]

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        self._call("get_latest_blockhash")
        # yield so concurrent claims interleave between planning and sending
        await asyncio.sleep(0)
        return Hash.new_unique(), self.last_valid_block_height

    async def get_balance(self, pubkey: Pubkey) -> int:
        self._call("get_balance")
        return self.balances.get(pubkey, 0)

    async def account_exists(self, pubkey: Pubkey) -> bool:
        self._call("account_exists")
        return pubkey in self.token_balances or self.balances.get(pubkey, 0) > 0

    async def get_token_balance(self, token_account: Pubkey) -> int:
        self._call("get_token_balance")
        if token_account not in self.token_balances:
            raise LedgerError(f"could not find account {token_account}")
        return self.token_balances[token_account]

    async def send_raw_transaction(self, raw: bytes) -> str:
        self._call("send_raw_transaction")
        tx = Transaction.from_bytes(raw)
        signature = str(tx.signatures[0])
        try:
            self._apply(tx)
        except LedgerError as e:
            if self.preflight:
                raise
            self._debit(tx.message.account_keys[0], TX_FEE)
            self.landed_errors[signature] = str(e)
        self.sent.append(tx)
        return signature

    async def confirm(self, signature: str, last_valid_block_height: int) -> None:
        self._call("confirm")
        if self.confirm_error is not None:
            raise self.confirm_error
        if signature in self.landed_errors:
            raise TransactionFailed(signature, self.landed_errors[signature])

    def _debit(self, pk: Pubkey, lamports: int, balances: Optional[Dict[Pubkey, int]] = None) -> None:
        balances = self.balances if balances is None else balances
        have = balances.get(pk, 0)
        if have < lamports:
            raise LedgerError(f"insufficient lamports in {pk}: {have} < {lamports}")
        balances[pk] = have - lamports

    def _apply(self, tx: Transaction) -> None:
        # all-or-nothing: work on copies, commit at the end
        balances = dict(self.balances)
        token_balances = dict(self.token_balances)
        keys = tx.message.account_keys
        payer = keys[0]
        self._debit(payer, TX_FEE, balances)
        for ci in tx.message.instructions:
            program = keys[ci.program_id_index]
            accounts = [keys[i] for i in ci.accounts]
            data = bytes(ci.data)
            if program == SYSTEM_PROGRAM_ID and int.from_bytes(data[:4], "little") == 2:
                lamports = int.from_bytes(data[4:12], "little")
                self._debit(accounts[0], lamports, balances)
                balances[accounts[1]] = balances.get(accounts[1], 0) + lamports
            elif program == TOKEN_PROGRAM_ID and data[0] == 3:
                amount = int.from_bytes(data[1:9], "little")
                source, dest = accounts[0], accounts[1]
                if token_balances.get(source, 0) < amount:
                    raise LedgerError("insufficient token balance")
                token_balances[source] -= amount
                token_balances[dest] = token_balances.get(dest, 0) + amount
            elif program == TOKEN_PROGRAM_ID and data[0] == 9:
                account, dest = accounts[0], accounts[1]
                if token_balances.get(account, 0) != 0:
                    raise LedgerError("non-native account can only be closed if its balance is zero")
                token_balances.pop(account, None)
                rent = balances.pop(account, 0)
                balances[dest] = balances.get(dest, 0) + rent
            else:
                raise AssertionError(f"unexpected instruction for program {program}")
        self.balances = balances
        self.token_balances = token_balances


@pytest.fixture
def recipient() -> Keypair:
    return Keypair.from_seed(bytes([7]) * 32)


@pytest.fixture
def stranger() -> Keypair:
    return Keypair.from_seed(bytes([9]) * 32)


@pytest.fixture
def wallet_address(recipient) -> str:
    return str(recipient.pubkey())


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.fixture
def key_store(recipient) -> StaticKeyStore:
    return StaticKeyStore(recipient)


@pytest.fixture
def executor(ledger, key_store, store) -> ClaimExecutor:
    return ClaimExecutor(ledger=ledger, key_store=key_store, note_store=store, retry_base_delay=0)


@pytest.fixture
def honest_note():
    """
    Factory for notes addressed to a given recipient. Returns (raw_note, stealth_keypair).
    The raw note is the camelCase dict the note store hands out.
    """
    seeds = itertools.count(100)

    def make(
        owner: Keypair,
        amount: int = 1_000_000,
        token_id: Optional[str] = None,
        memo: Optional[str] = None,
        created_at: Optional[int] = None,
        stealth_override: Optional[str] = None,
    ):
        n = next(seeds)
        eph = Keypair.from_seed(bytes([n % 256]) * 32)
        stealth = derive_stealth_keypair(eph.pubkey(), owner)
        raw = {
            "_id": f"note_{n}",
            "stealthAddress": stealth_override or str(stealth.pubkey()),
            "ephemeralPublicKey": str(eph.pubkey()),
            "encryptedPayload": seal_note(NoteContent(amount=amount, token_id=token_id, memo=memo), eph, owner.pubkey()),
            "recipientHash": compute_recipient_hash(str(owner.pubkey())),
            "amount": amount,
            "tokenId": token_id,
            "createdAt": created_at if created_at is not None else 1_700_000_000_000 + n,
            "status": "unclaimed",
        }
        return raw, stealth

    return make
