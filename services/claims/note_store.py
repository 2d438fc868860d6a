# services/claims/note_store.py
from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from services.api.logging_config import get_logger
from services.claims import config
from services.claims.errors import NoteStoreError

logger = get_logger("note_store")

Listener = Callable[[List[Dict[str, Any]]], None]

# Function paths on the query/mutation API
Q_NOTES_FOR_RECIPIENT = "privateTransfers:getNotesForRecipient"
Q_CLAIMABLE_COUNT = "privateTransfers:getClaimableCount"
M_MARK_NOTE_CLAIMED = "privateTransfers:markNoteClaimed"


class Subscription(Protocol):
    def close(self) -> None: ...


class NoteStore(Protocol):
    """Remote note store. Notes come back as raw JSON dicts (camelCase keys)."""

    async def get_notes_for_recipient(self, recipient_hash: str) -> List[Dict[str, Any]]: ...

    async def get_claimable_count(self, recipient_hash: str) -> int: ...

    async def mark_note_claimed(self, note_id: str, claim_transaction_signature: str) -> bool: ...

    def subscribe(self, recipient_hash: str, listener: Listener) -> Subscription: ...


# ===== In-memory store =====
class _ListenerSubscription:
    def __init__(self, store: "InMemoryNoteStore", recipient_hash: str, listener: Listener):
        self._store = store
        self._recipient_hash = recipient_hash
        self._listener = listener
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._store._detach(self._recipient_hash, self._listener)


class InMemoryNoteStore:
    """
    Process-local note store. Every change pushes a full snapshot to the
    listeners of the affected recipient hash, newest note first.
    """

    def __init__(self) -> None:
        self._notes: Dict[str, Dict[str, Any]] = {}
        self._listeners: Dict[str, List[Listener]] = {}
        self._next_id = 1
        # test knobs
        self.fail_mark_claimed = 0
        self.fail_queries = False
        self.mark_calls: List[tuple] = []

    # ---------- writes ----------
    def add_note(self, note: Dict[str, Any]) -> str:
        row = dict(note)
        note_id = str(row.get("id") or row.get("_id") or f"note_{self._next_id}")
        self._next_id += 1
        row.pop("_id", None)
        row["id"] = note_id
        row.setdefault("status", "unclaimed")
        row.setdefault("createdAt", int(time.time() * 1000))
        self._notes[note_id] = row
        self._publish(row.get("recipientHash"))
        return note_id

    def get(self, note_id: str) -> Optional[Dict[str, Any]]:
        row = self._notes.get(note_id)
        return copy.deepcopy(row) if row else None

    # ---------- NoteStore ----------
    def _snapshot(self, recipient_hash: str) -> List[Dict[str, Any]]:
        rows = [copy.deepcopy(n) for n in self._notes.values() if n.get("recipientHash") == recipient_hash]
        rows.sort(key=lambda n: n.get("createdAt", 0), reverse=True)
        return rows

    async def get_notes_for_recipient(self, recipient_hash: str) -> List[Dict[str, Any]]:
        if self.fail_queries:
            raise NoteStoreError("note store unavailable")
        return self._snapshot(recipient_hash)

    async def get_claimable_count(self, recipient_hash: str) -> int:
        if self.fail_queries:
            raise NoteStoreError("note store unavailable")
        return sum(1 for n in self._snapshot(recipient_hash) if n.get("status") == "unclaimed")

    async def mark_note_claimed(self, note_id: str, claim_transaction_signature: str) -> bool:
        self.mark_calls.append((note_id, claim_transaction_signature))
        if self.fail_mark_claimed > 0:
            self.fail_mark_claimed -= 1
            raise NoteStoreError(f"markNoteClaimed({note_id}) failed")
        row = self._notes.get(note_id)
        if row is None:
            raise NoteStoreError(f"note {note_id} not found")
        if row.get("status") == "claimed":
            return row.get("claimTransactionSignature") == claim_transaction_signature
        row["status"] = "claimed"
        row["claimTransactionSignature"] = claim_transaction_signature
        self._publish(row.get("recipientHash"))
        return True

    def subscribe(self, recipient_hash: str, listener: Listener) -> Subscription:
        self._listeners.setdefault(recipient_hash, []).append(listener)
        listener(self._snapshot(recipient_hash))
        return _ListenerSubscription(self, recipient_hash, listener)

    def _detach(self, recipient_hash: str, listener: Listener) -> None:
        subs = self._listeners.get(recipient_hash, [])
        if listener in subs:
            subs.remove(listener)

    def _publish(self, recipient_hash: Optional[str]) -> None:
        if recipient_hash is None:
            return
        for listener in list(self._listeners.get(recipient_hash, [])):
            listener(self._snapshot(recipient_hash))


# ===== HTTP store =====
class _TaskSubscription:
    def __init__(self, task: "asyncio.Task[None]"):
        self._task = task

    def close(self) -> None:
        self._task.cancel()

    @property
    def closed(self) -> bool:
        return self._task.done()


class HttpNoteStore:
    """
    Client for the note store's query/mutation HTTP API:

        POST {base}/api/query     {"path": ..., "args": {...}, "format": "json"}
        POST {base}/api/mutation  {"path": ..., "args": {...}, "format": "json"}

    Responses are {"status": "success", "value": ...} or
    {"status": "error", "errorMessage": ...}. Subscriptions poll and deliver a
    snapshot whenever it differs from the previous one.
    """

    def __init__(
        self,
        base_url: str = config.NOTE_STORE_URL,
        poll_sec: float = config.NOTE_STORE_POLL_SEC,
        timeout: float = config.NOTE_STORE_TIMEOUT_SEC,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_sec = poll_sec
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _call(self, kind: str, path: str, args: Dict[str, Any]) -> Any:
        body = {"path": path, "args": args, "format": "json"}
        try:
            r = await self._client.post(f"/api/{kind}", json=body)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NoteStoreError(f"{kind} {path} failed: {e}") from e
        if not isinstance(data, dict) or data.get("status") != "success":
            msg = data.get("errorMessage") if isinstance(data, dict) else data
            raise NoteStoreError(f"{kind} {path} returned error: {msg}")
        return data.get("value")

    async def get_notes_for_recipient(self, recipient_hash: str) -> List[Dict[str, Any]]:
        value = await self._call("query", Q_NOTES_FOR_RECIPIENT, {"recipientHash": recipient_hash})
        return list(value or [])

    async def get_claimable_count(self, recipient_hash: str) -> int:
        value = await self._call("query", Q_CLAIMABLE_COUNT, {"recipientHash": recipient_hash})
        return int(value or 0)

    async def mark_note_claimed(self, note_id: str, claim_transaction_signature: str) -> bool:
        value = await self._call(
            "mutation",
            M_MARK_NOTE_CLAIMED,
            {"noteId": note_id, "claimTransactionSignature": claim_transaction_signature},
        )
        # Older deployments return null on success
        return True if value is None else bool(value)

    def subscribe(self, recipient_hash: str, listener: Listener) -> Subscription:
        return _TaskSubscription(asyncio.get_running_loop().create_task(self._poll(recipient_hash, listener)))

    async def _poll(self, recipient_hash: str, listener: Listener) -> None:
        last: Optional[List[Dict[str, Any]]] = None
        while True:
            try:
                notes = await self.get_notes_for_recipient(recipient_hash)
            except NoteStoreError as e:
                logger.warning("poll for %s failed: %s", recipient_hash[:8], e)
            else:
                if notes != last:
                    try:
                        listener(notes)
                    except Exception:
                        # redeliver this snapshot on the next poll
                        logger.exception("listener for %s failed", recipient_hash[:8])
                    else:
                        last = notes
            await asyncio.sleep(self.poll_sec)


__all__ = [
    "Listener",
    "Subscription",
    "NoteStore",
    "InMemoryNoteStore",
    "HttpNoteStore",
    "Q_NOTES_FOR_RECIPIENT",
    "Q_CLAIMABLE_COUNT",
    "M_MARK_NOTE_CLAIMED",
]
