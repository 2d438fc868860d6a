# services/crypto_core/recipient_hash.py
from __future__ import annotations

import hashlib

import base58


def compute_recipient_hash(address: str) -> str:
    """
    Opaque lookup key for the note store: base58(sha256(utf8(address))).
    Must stay byte-identical to the note-writing side or notes are never found.
    """
    return base58.b58encode(hashlib.sha256(address.encode("utf-8")).digest()).decode()
