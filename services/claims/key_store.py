# services/claims/key_store.py
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Protocol, Union

import base58
from solders.keypair import Keypair

from services.api.logging_config import _short, get_logger
from services.claims import config

logger = get_logger("key_store")


class KeyStore(Protocol):
    def get_local_signing_keypair(self) -> Optional[Keypair]: ...


def read_secret_64_from_json_value(v: Any) -> bytes:
    """
    solana-keygen JSON ([64 ints]), a base58 string, or a bare 32-byte seed
    (as ints or base58). Always returns the 64-byte secret||public form.
    """
    if isinstance(v, list) and all(isinstance(x, int) and 0 <= x < 256 for x in v):
        raw = bytes(v)
    elif isinstance(v, str):
        raw = base58.b58decode(v.strip())
    else:
        raise ValueError("Unsupported secret key JSON format")

    if len(raw) == 32:
        return bytes(Keypair.from_seed(raw))
    if len(raw) >= 64:
        return raw[:64]
    raise ValueError(f"secret key must be 32 or 64 bytes, got {len(raw)}")


def keypair_from_json_value(v: Any) -> Keypair:
    return Keypair.from_bytes(read_secret_64_from_json_value(v))


class KeyfileKeyStore:
    """
    Reads the local signing key from a keyfile on every call; nothing is cached
    in memory between claims. A missing or unreadable file means "no key".
    """

    def __init__(self, path: Union[str, Path] = config.KEYPAIR_PATH):
        self.path = Path(path).expanduser()

    def get_local_signing_keypair(self) -> Optional[Keypair]:
        if not self.path.exists():
            logger.info("no keyfile at %s", self.path)
            return None
        try:
            text = self.path.read_text(encoding="utf-8").strip()
            try:
                value = json.loads(text)
            except json.JSONDecodeError:
                # plain base58 secret on one line
                value = text
            kp = keypair_from_json_value(value)
        except (OSError, ValueError) as e:
            logger.warning("keyfile %s unreadable: %s", self.path, e)
            return None
        logger.debug("loaded signing key %s", _short(str(kp.pubkey())))
        return kp


class StaticKeyStore:
    def __init__(self, keypair: Optional[Keypair] = None):
        self._keypair = keypair

    def get_local_signing_keypair(self) -> Optional[Keypair]:
        return self._keypair


__all__ = [
    "KeyStore",
    "KeyfileKeyStore",
    "StaticKeyStore",
    "read_secret_64_from_json_value",
    "keypair_from_json_value",
]
