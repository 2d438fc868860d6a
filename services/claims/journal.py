# services/claims/journal.py
from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from services.api.logging_config import get_logger
from services.claims import config
from services.claims.errors import NoteStoreError

logger = get_logger("journal")

DDL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS tx_log(
  id TEXT PRIMARY KEY,
  kind TEXT NOT NULL,
  ts TEXT NOT NULL,
  payload TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS claims(
  note_id TEXT PRIMARY KEY,
  signature TEXT,
  status TEXT NOT NULL,
  error TEXT,
  updated_at TEXT NOT NULL
);
"""

# Event kind -> projected claims.status
EVENT_STATUS = {
    "ClaimSubmitted": "submitted",
    "ClaimConfirmed": "confirmed",
    "ClaimFailed": "failed",
    "BookkeepingDivergence": "divergent",
    "BookkeepingReconciled": "reconciled",
}
_SETTLED = ("confirmed", "divergent", "reconciled")


def _now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def apply_event_row(cx: sqlite3.Connection, kind: str, payload: Dict[str, Any]) -> None:
    status = EVENT_STATUS.get(kind)
    if status is None:
        raise ValueError(f"Unknown event kind: {kind}")
    note_id = payload["note_id"]
    ts = payload.get("ts") or _now()
    prev = cx.execute("SELECT signature, status FROM claims WHERE note_id=?", (note_id,)).fetchone()
    if kind == "ClaimFailed" and prev and prev[1] in _SETTLED:
        # re-claiming an already swept note fails degenerately; the sweep still stands
        return
    signature = payload.get("signature") or (prev[0] if prev else None)
    cx.execute(
        "INSERT OR REPLACE INTO claims(note_id,signature,status,error,updated_at) VALUES(?,?,?,?,?)",
        (note_id, signature, status, payload.get("error"), ts),
    )


class ClaimJournal:
    """
    Append-only sqlite event log of claim attempts with a `claims` projection.
    The projection can always be rebuilt from tx_log with replay().
    """

    def __init__(self, path: Union[str, Path] = config.CLAIM_JOURNAL_PATH):
        self.path = Path(path)
        self._ready = False

    # ---------- storage ----------
    def _conn(self) -> sqlite3.Connection:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        return sqlite3.connect(self.path)

    def _init(self) -> None:
        if self._ready:
            return
        with self._conn() as cx:
            cx.executescript(DDL)
        self._ready = True

    # ---------- events ----------
    def append_event(self, kind: str, **payload) -> str:
        self._init()
        event_id = payload.get("event_id") or str(uuid.uuid4())
        ts = payload.get("ts") or _now()
        row = {"event_id": event_id, "kind": kind, "ts": ts, **payload}
        blob = json.dumps(row, separators=(",", ":"))
        with self._conn() as cx:
            if cx.execute("SELECT 1 FROM tx_log WHERE id=?", (event_id,)).fetchone():
                return event_id
            cx.execute("INSERT INTO tx_log(id,kind,ts,payload) VALUES(?,?,?,?)", (event_id, kind, ts, blob))
            apply_event_row(cx, kind, row)
        return event_id

    def replay(self) -> int:
        self._init()
        with self._conn() as cx:
            cx.execute("DELETE FROM claims")
            rows: Iterable[Tuple[str, str]] = cx.execute(
                "SELECT kind, payload FROM tx_log ORDER BY rowid ASC"
            ).fetchall()
            n = 0
            for kind, payload in rows:
                apply_event_row(cx, kind, json.loads(payload))
                n += 1
            return n

    def events(self, note_id: Optional[str] = None) -> List[Dict[str, Any]]:
        self._init()
        with self._conn() as cx:
            rows = cx.execute("SELECT payload FROM tx_log ORDER BY rowid ASC").fetchall()
        out = [json.loads(p) for (p,) in rows]
        return [e for e in out if note_id is None or e.get("note_id") == note_id]

    # ---------- projection ----------
    def claim_status(self, note_id: str) -> Optional[Dict[str, Any]]:
        self._init()
        with self._conn() as cx:
            row = cx.execute(
                "SELECT note_id, signature, status, error, updated_at FROM claims WHERE note_id=?",
                (note_id,),
            ).fetchone()
        if row is None:
            return None
        return dict(zip(("note_id", "signature", "status", "error", "updated_at"), row))

    def pending_bookkeeping(self) -> List[Tuple[str, str]]:
        """(note_id, signature) for sweeps that landed but were never marked claimed."""
        self._init()
        with self._conn() as cx:
            return cx.execute(
                "SELECT note_id, signature FROM claims WHERE status='divergent' ORDER BY updated_at, note_id"
            ).fetchall()

    async def reconcile(self, note_store) -> List[str]:
        """Re-apply mark_note_claimed for every divergent note. Returns the note ids fixed."""
        fixed: List[str] = []
        for note_id, signature in self.pending_bookkeeping():
            try:
                ok = await note_store.mark_note_claimed(note_id, signature)
            except NoteStoreError as e:
                logger.warning("reconcile %s still failing: %s", note_id, e)
                continue
            if not ok:
                logger.warning("reconcile %s: store refused signature %s", note_id, signature)
                continue
            self.append_event("BookkeepingReconciled", note_id=note_id, signature=signature)
            logger.info("reconciled %s (%s)", note_id, signature)
            fixed.append(note_id)
        return fixed


__all__ = ["DDL", "EVENT_STATUS", "apply_event_row", "ClaimJournal"]
