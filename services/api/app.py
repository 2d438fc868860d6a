# services/api/app.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request

from services.api.health_checks import comprehensive_health_check
from services.api.logging_config import _short, configure_logging, get_logger
from services.api.schemas_api import ClaimRes, CountRes, ReconcileRes, RevealRes, TransferItem, TransferList
from services.claims.errors import NoteStoreError
from services.claims.models import ClaimableTransfer
from services.claims.service import PrivateTransferService

logger = get_logger("api")


def _item(t: ClaimableTransfer) -> TransferItem:
    return TransferItem(
        note_id=t.note_id,
        stealth_address=t.stealth_address,
        ephemeral_public_key=t.ephemeral_public_key,
        amount=t.amount,
        token_id=t.token_id,
        token_symbol=t.token_symbol,
        created_at=t.created_at,
        status=t.status.value,
        is_native=t.is_native,
    )


def get_service(request: Request) -> PrivateTransferService:
    return request.app.state.service


def create_app(service: Optional[PrivateTransferService] = None) -> FastAPI:
    """
    Build the API. Without an explicit service the production bindings are
    wired from the environment when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging()
        app.state.service = service or PrivateTransferService.from_env()
        logger.info("private transfer API ready")
        try:
            yield
        finally:
            await app.state.service.aclose()

    app = FastAPI(title="Private Transfer Claims API", version="0.1.0", lifespan=lifespan)

    # ---------- Health ----------
    @app.get("/health")
    async def health(svc: PrivateTransferService = Depends(get_service)):
        return await comprehensive_health_check(
            rpc_url=getattr(svc.ledger, "rpc_url", None),
            note_store=svc.note_store,
        )

    # ---------- Transfers ----------
    @app.get("/transfers/{wallet_address}", response_model=TransferList)
    async def list_transfers(wallet_address: str, svc: PrivateTransferService = Depends(get_service)):
        try:
            await svc.refresh(wallet_address)
        except NoteStoreError as e:
            raise HTTPException(status_code=502, detail=f"note store unavailable: {e}")
        scanner = svc.scanner_for(wallet_address)
        return TransferList(
            wallet_address=wallet_address,
            recipient_hash=scanner.recipient_hash,
            claimable_count=scanner.claimable_count,
            transfers=[_item(t) for t in scanner.transfers],
        )

    @app.get("/transfers/{wallet_address}/count", response_model=CountRes)
    async def claimable_count(wallet_address: str, svc: PrivateTransferService = Depends(get_service)):
        scanner = svc.scanner_for(wallet_address)
        try:
            n = await scanner.fetch_claimable_count()
        except NoteStoreError as e:
            raise HTTPException(status_code=502, detail=f"note store unavailable: {e}")
        return CountRes(recipient_hash=scanner.recipient_hash, claimable_count=n)

    @app.get("/transfers/{wallet_address}/{note_id}/reveal", response_model=RevealRes)
    async def reveal(wallet_address: str, note_id: str, svc: PrivateTransferService = Depends(get_service)):
        scanner = svc.scanner_for(wallet_address)
        if scanner.get_transfer(note_id) is None:
            try:
                await svc.refresh(wallet_address)
            except NoteStoreError as e:
                raise HTTPException(status_code=502, detail=f"note store unavailable: {e}")
        content = scanner.reveal(note_id)
        if content is None:
            raise HTTPException(status_code=404, detail="Note not found or not readable with the local key")
        return RevealRes(note_id=note_id, amount=content.amount, token_id=content.token_id, memo=content.memo)

    @app.post("/transfers/{wallet_address}/{note_id}/claim", response_model=ClaimRes)
    async def claim(wallet_address: str, note_id: str, svc: PrivateTransferService = Depends(get_service)):
        try:
            result = await svc.claim(wallet_address, note_id)
        except NoteStoreError as e:
            raise HTTPException(status_code=502, detail=f"note store unavailable: {e}")
        logger.info("claim %s for %s -> %s", note_id, _short(wallet_address), result.state.value)
        return ClaimRes(**result.to_dict())

    # ---------- Admin ----------
    @app.post("/admin/reconcile", response_model=ReconcileRes)
    async def admin_reconcile(svc: PrivateTransferService = Depends(get_service)):
        fixed = await svc.reconcile()
        pending = len(svc.journal.pending_bookkeeping()) if svc.journal is not None else 0
        return ReconcileRes(reconciled=fixed, pending=pending)

    return app


app = create_app()
