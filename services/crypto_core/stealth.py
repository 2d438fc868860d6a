# services/crypto_core/stealth.py
from __future__ import annotations

import hashlib
from typing import Protocol, Union

import base58
from solders.keypair import Keypair
from solders.pubkey import Pubkey

PublicKeyLike = Union[str, bytes, Pubkey]
SecretKeyLike = Union[str, bytes, Keypair]


def public_key_bytes(value: PublicKeyLike) -> bytes:
    """Accept a base58 string, raw bytes or a solders Pubkey."""
    if isinstance(value, Pubkey):
        return bytes(value)
    if isinstance(value, str):
        return base58.b58decode(value)
    return bytes(value)


def secret_key_bytes(value: SecretKeyLike) -> bytes:
    """Accept a base58 string, raw bytes (32-byte seed or 64-byte secret) or a solders Keypair."""
    if isinstance(value, Keypair):
        return bytes(value)
    if isinstance(value, str):
        return base58.b58decode(value)
    return bytes(value)


def derive_stealth_keypair(ephemeral_public_key: PublicKeyLike, recipient_private_key: SecretKeyLike) -> Keypair:
    """
    Recipient-side one-time keypair for a note.

    shared = sha256(recipient_sk[:32] || ephemeral_pk[:32])
    seed   = sha256(shared)
    keypair = Keypair.from_seed(seed)

    Deterministic for a given pair of inputs. Whether the result matches the
    note's stealth address is checked by the caller.
    """
    sk = secret_key_bytes(recipient_private_key)[:32]
    eph = public_key_bytes(ephemeral_public_key)[:32]
    shared = hashlib.sha256(sk + eph).digest()
    seed = hashlib.sha256(shared).digest()
    return Keypair.from_seed(seed)


class KeyDeriver(Protocol):
    def derive(self, ephemeral_public_key: PublicKeyLike, recipient_private_key: SecretKeyLike) -> Keypair: ...


class HashStealthDeriver:
    """Default KeyDeriver: the double-sha256 construction above."""

    def derive(self, ephemeral_public_key: PublicKeyLike, recipient_private_key: SecretKeyLike) -> Keypair:
        return derive_stealth_keypair(ephemeral_public_key, recipient_private_key)


__all__ = [
    "PublicKeyLike",
    "SecretKeyLike",
    "public_key_bytes",
    "secret_key_bytes",
    "derive_stealth_keypair",
    "KeyDeriver",
    "HashStealthDeriver",
]
