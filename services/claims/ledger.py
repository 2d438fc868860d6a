# services/claims/ledger.py
from __future__ import annotations

from typing import Optional, Protocol, Tuple

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException, TransactionExpiredBlockheightExceededError, UnconfirmedTxError
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature

from services.api.logging_config import get_logger
from services.claims import config
from services.claims.errors import ConfirmationTimeout, LedgerError, TransactionFailed

logger = get_logger("ledger")

# Anything the RPC client can raise for transport/RPC-level failures
_RPC_ERRORS = (RPCException, SolanaRpcException, httpx.HTTPError, OSError)


class Ledger(Protocol):
    """The ledger RPC surface the claim path needs. All amounts are integers in base units."""

    async def get_latest_blockhash(self) -> Tuple[Hash, int]: ...

    async def get_balance(self, pubkey: Pubkey) -> int: ...

    async def account_exists(self, pubkey: Pubkey) -> bool: ...

    async def get_token_balance(self, token_account: Pubkey) -> int: ...

    async def send_raw_transaction(self, raw: bytes) -> str: ...

    async def confirm(self, signature: str, last_valid_block_height: int) -> None: ...


class SolanaLedger:
    """
    Ledger over solana-py's AsyncClient.
    RPC/transport errors surface as LedgerError (NetworkFailure);
    blockhash expiry during confirmation surfaces as ConfirmationTimeout;
    a transaction that landed with an execution error surfaces as TransactionFailed.
    """

    def __init__(
        self,
        rpc_url: str = config.SOLANA_RPC_URL,
        commitment: str = config.SOLANA_COMMITMENT,
        poll_sec: float = config.CONFIRM_POLL_SEC,
        client: Optional[AsyncClient] = None,
    ):
        self.rpc_url = rpc_url
        self.commitment = Commitment(commitment)
        self.poll_sec = poll_sec
        self._client = client or AsyncClient(rpc_url, commitment=self.commitment)

    async def close(self) -> None:
        await self._client.close()

    async def get_latest_blockhash(self) -> Tuple[Hash, int]:
        try:
            resp = await self._client.get_latest_blockhash(commitment=self.commitment)
        except _RPC_ERRORS as e:
            raise LedgerError(f"getLatestBlockhash failed: {e}") from e
        return resp.value.blockhash, int(resp.value.last_valid_block_height)

    async def get_balance(self, pubkey: Pubkey) -> int:
        try:
            resp = await self._client.get_balance(pubkey, commitment=self.commitment)
        except _RPC_ERRORS as e:
            raise LedgerError(f"getBalance({pubkey}) failed: {e}") from e
        return int(resp.value)

    async def account_exists(self, pubkey: Pubkey) -> bool:
        try:
            resp = await self._client.get_account_info(pubkey, commitment=self.commitment)
        except _RPC_ERRORS as e:
            raise LedgerError(f"getAccountInfo({pubkey}) failed: {e}") from e
        return resp.value is not None

    async def get_token_balance(self, token_account: Pubkey) -> int:
        try:
            resp = await self._client.get_token_account_balance(token_account, commitment=self.commitment)
        except _RPC_ERRORS as e:
            raise LedgerError(f"getTokenAccountBalance({token_account}) failed: {e}") from e
        return int(resp.value.amount)

    async def send_raw_transaction(self, raw: bytes) -> str:
        opts = TxOpts(skip_confirmation=True, preflight_commitment=self.commitment)
        try:
            resp = await self._client.send_raw_transaction(raw, opts=opts)
        except _RPC_ERRORS as e:
            raise LedgerError(f"sendTransaction failed: {e}") from e
        logger.debug("sent %s via %s", resp.value, self.rpc_url)
        return str(resp.value)

    async def confirm(self, signature: str, last_valid_block_height: int) -> None:
        try:
            resp = await self._client.confirm_transaction(
                Signature.from_string(signature),
                commitment=self.commitment,
                sleep_seconds=self.poll_sec,
                last_valid_block_height=last_valid_block_height,
            )
        except (TransactionExpiredBlockheightExceededError, UnconfirmedTxError) as e:
            raise ConfirmationTimeout(
                f"{signature} not confirmed before block height {last_valid_block_height}"
            ) from e
        except _RPC_ERRORS as e:
            raise LedgerError(f"confirmTransaction({signature}) failed: {e}") from e

        # confirm_transaction only waits for the commitment level; it never looks at err
        status = resp.value[0] if resp.value else None
        if status is not None and status.err is not None:
            logger.warning("%s landed with error %s", signature, status.err)
            raise TransactionFailed(signature, status.err)
