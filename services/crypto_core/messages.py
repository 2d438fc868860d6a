from __future__ import annotations
import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Tuple, Union

import base58
from nacl.public import PrivateKey, PublicKey, Box
from nacl.bindings import crypto_sign_ed25519_sk_to_curve25519, crypto_sign_ed25519_pk_to_curve25519
from nacl.exceptions import CryptoError
from nacl.utils import random as nacl_random
from solders.keypair import Keypair

from services.crypto_core.stealth import PublicKeyLike, SecretKeyLike, public_key_bytes, secret_key_bytes

NONCE_LEN = Box.NONCE_SIZE  # 24

@dataclass(frozen=True)
class NoteContent:
    amount: int
    token_id: Optional[str] = None
    memo: Optional[str] = None

    def to_json_bytes(self) -> bytes:
        body = {"amount": self.amount, "tokenMint": self.token_id, "memo": self.memo or "", "version": 1}
        return json.dumps(body, separators=(",", ":")).encode("utf-8")

def _ed_sk64(secret: SecretKeyLike) -> bytes:
    raw = secret_key_bytes(secret)
    if len(raw) == 32:
        # bare seed: expand to seed||pub
        raw = bytes(Keypair.from_seed(raw))
    if len(raw) < 64:
        raise ValueError(f"secret key must be 32 or 64 bytes, got {len(raw)}")
    return raw[:64]

def ed25519_to_curve25519_keys(ed_sk_64: bytes, ed_pk_32: bytes) -> Tuple[bytes, bytes]:
    return (
        crypto_sign_ed25519_sk_to_curve25519(ed_sk_64),
        crypto_sign_ed25519_pk_to_curve25519(ed_pk_32),
    )

def note_box(my_secret: SecretKeyLike, peer_public: PublicKeyLike) -> Box:
    # Both sides hold Ed25519 keys; the box runs X25519 on their Curve25519 images.
    my_curve_sk, peer_curve_pk = ed25519_to_curve25519_keys(_ed_sk64(my_secret), public_key_bytes(peer_public)[:32])
    return Box(PrivateKey(my_curve_sk), PublicKey(peer_curve_pk))

def _parse_amount(v: Any) -> int:
    if isinstance(v, bool):
        raise ValueError("amount must be numeric")
    if isinstance(v, int):
        return v
    if isinstance(v, float) and v.is_integer():
        return int(v)
    if isinstance(v, str) and v.strip().isdigit():
        return int(v.strip())
    raise ValueError(f"unsupported amount: {v!r}")

def parse_note_plaintext(plaintext: bytes) -> NoteContent:
    content = json.loads(plaintext.decode("utf-8"))
    if not isinstance(content, dict) or "amount" not in content:
        raise ValueError("note plaintext is not a note object")
    token = content.get("tokenMint") or content.get("tokenId") or content.get("token")
    memo = content.get("memo") or None
    return NoteContent(amount=_parse_amount(content["amount"]), token_id=token, memo=memo)

def seal_note(content: NoteContent, ephemeral_secret: SecretKeyLike, recipient_public: PublicKeyLike) -> str:
    """nonce(24) || box ciphertext, base58. Counterpart of try_decrypt_note."""
    box = note_box(ephemeral_secret, recipient_public)
    sealed = box.encrypt(content.to_json_bytes(), nacl_random(NONCE_LEN))  # nonce||cipher
    return base58.b58encode(bytes(sealed)).decode()

def try_decrypt_note(
    ciphertext: Union[str, bytes],
    ephemeral_public_key: PublicKeyLike,
    recipient_private_key: SecretKeyLike,
) -> Optional[NoteContent]:
    """
    Open a note addressed to us. Returns None on any failure (wrong keys,
    corruption, malformed plaintext): a note sharing our hash bucket may
    simply belong to someone else.
    """
    try:
        raw = base58.b58decode(ciphertext) if isinstance(ciphertext, str) else bytes(ciphertext)
        if len(raw) <= NONCE_LEN:
            return None
        nonce, body = raw[:NONCE_LEN], raw[NONCE_LEN:]
        plaintext = note_box(recipient_private_key, ephemeral_public_key).decrypt(body, nonce)
        return parse_note_plaintext(plaintext)
    except (CryptoError, ValueError, TypeError, KeyError):
        return None

class NoteEncryptor(Protocol):
    def try_decrypt(
        self, ciphertext: Union[str, bytes], ephemeral_public_key: PublicKeyLike, recipient_private_key: SecretKeyLike
    ) -> Optional[NoteContent]: ...

    def seal(self, content: NoteContent, ephemeral_secret: SecretKeyLike, recipient_public: PublicKeyLike) -> str: ...

class BoxNoteEncryptor:
    """NaCl box (X25519 + XSalsa20-Poly1305) over Ed25519 wallet keys."""

    def try_decrypt(self, ciphertext, ephemeral_public_key, recipient_private_key) -> Optional[NoteContent]:
        return try_decrypt_note(ciphertext, ephemeral_public_key, recipient_private_key)

    def seal(self, content, ephemeral_secret, recipient_public) -> str:
        return seal_note(content, ephemeral_secret, recipient_public)
