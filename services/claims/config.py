# services/claims/config.py
from __future__ import annotations

import os
from pathlib import Path

# ===== Ledger =====
SOLANA_RPC_URL: str = os.getenv("SOLANA_RPC_URL", "http://127.0.0.1:8899")
SOLANA_COMMITMENT: str = os.getenv("SOLANA_COMMITMENT", "confirmed")
CONFIRM_POLL_SEC: float = float(os.getenv("CONFIRM_POLL_SEC", "0.5"))

# Lamports left behind on every native sweep to cover the signature fee
FEE_RESERVE_LAMPORTS: int = int(os.getenv("FEE_RESERVE_LAMPORTS", "5000"))
# Fold the stealth ATA rent (refunded by close-account) into the native sweep
SWEEP_RECLAIMED_RENT: bool = bool(int(os.getenv("SWEEP_RECLAIMED_RENT", "0")))

# ===== Note store =====
NOTE_STORE_URL: str = os.getenv("NOTE_STORE_URL", "http://127.0.0.1:3210")
NOTE_STORE_POLL_SEC: float = float(os.getenv("NOTE_STORE_POLL_SEC", "5.0"))
NOTE_STORE_TIMEOUT_SEC: float = float(os.getenv("NOTE_STORE_TIMEOUT_SEC", "10.0"))
MARK_CLAIMED_RETRIES: int = int(os.getenv("MARK_CLAIMED_RETRIES", "3"))

# ===== Local key store =====
KEYPAIR_PATH: str = os.getenv("KEYPAIR_PATH", os.path.expanduser("~/.config/solana/id.json"))

# ===== Journal =====
DATA_DIR: str = os.getenv("DATA_DIR", str(Path.cwd() / "data"))
CLAIM_JOURNAL_PATH: str = os.getenv("CLAIM_JOURNAL_PATH", os.path.join(DATA_DIR, "claims.db"))

__all__ = [
    "SOLANA_RPC_URL",
    "SOLANA_COMMITMENT",
    "CONFIRM_POLL_SEC",
    "FEE_RESERVE_LAMPORTS",
    "SWEEP_RECLAIMED_RENT",
    "NOTE_STORE_URL",
    "NOTE_STORE_POLL_SEC",
    "NOTE_STORE_TIMEOUT_SEC",
    "MARK_CLAIMED_RETRIES",
    "KEYPAIR_PATH",
    "DATA_DIR",
    "CLAIM_JOURNAL_PATH",
]
