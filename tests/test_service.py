import asyncio

import pytest

from services.claims import config
from services.claims.ledger import SolanaLedger
from services.claims.note_store import HttpNoteStore, InMemoryNoteStore
from services.claims.service import PrivateTransferService


@pytest.fixture
def service(ledger, store, key_store):
    return PrivateTransferService(ledger=ledger, note_store=store, key_store=key_store, retry_base_delay=0)


def test_one_scanner_per_wallet(service, wallet_address):
    assert service.scanner_for(wallet_address) is service.scanner_for(wallet_address)
    assert service.scanner_for("other") is not service.scanner_for(wallet_address)


@pytest.mark.asyncio
async def test_refresh_skips_when_already_running(service, store, recipient, wallet_address, honest_note):
    store.add_note(honest_note(recipient)[0])

    assert service.locks.acquire(wallet_address)
    assert await service.refresh(wallet_address) is None
    service.locks.release(wallet_address)

    assert len(await service.refresh(wallet_address)) == 1
    assert not service.locks.is_held(wallet_address)


@pytest.mark.asyncio
async def test_claim_pulls_snapshot_on_demand(service, store, ledger, recipient, wallet_address, honest_note):
    raw, stealth = honest_note(recipient)
    ledger.balances[stealth.pubkey()] = 30_000
    note_id = store.add_note(raw)

    result = await service.claim(wallet_address, note_id)

    assert result.success
    assert result.swept_amount == 25_000


class GatedNoteStore(InMemoryNoteStore):
    """Holds every pull until the gate opens."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def get_notes_for_recipient(self, recipient_hash):
        await self.gate.wait()
        return await super().get_notes_for_recipient(recipient_hash)


@pytest.mark.asyncio
async def test_claim_waits_for_refresh_in_flight(ledger, key_store, recipient, wallet_address, honest_note):
    store = GatedNoteStore()
    service = PrivateTransferService(ledger=ledger, note_store=store, key_store=key_store, retry_base_delay=0)
    raw, stealth = honest_note(recipient)
    ledger.balances[stealth.pubkey()] = 30_000
    note_id = store.add_note(raw)

    refreshing = asyncio.create_task(service.refresh(wallet_address))
    await asyncio.sleep(0)
    assert service.locks.is_held(wallet_address)

    claiming = asyncio.create_task(service.claim(wallet_address, note_id))
    await asyncio.sleep(0)
    assert not claiming.done()

    store.gate.set()
    result = await claiming

    assert result.success, result.message
    assert len(await refreshing) == 1
    assert not service.locks.is_held(wallet_address)


@pytest.mark.asyncio
async def test_reconcile_without_journal_is_noop(service):
    assert await service.reconcile() == []


@pytest.mark.asyncio
async def test_from_env_wires_production_bindings(monkeypatch, tmp_path):
    monkeypatch.setattr(config, "CLAIM_JOURNAL_PATH", str(tmp_path / "claims.db"))
    monkeypatch.setattr(config, "KEYPAIR_PATH", str(tmp_path / "missing.json"))

    svc = PrivateTransferService.from_env()
    try:
        assert isinstance(svc.ledger, SolanaLedger)
        assert isinstance(svc.note_store, HttpNoteStore)
        assert svc.key_store.get_local_signing_keypair() is None
        assert svc.journal.path == tmp_path / "claims.db"
    finally:
        await svc.aclose()
