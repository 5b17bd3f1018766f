"""
Wallet management for Lockstake.

A wallet wraps a secp256k1 key-pair and provides:
  - Address derivation (``"ls" + RIPEMD160(SHA256(pubkey))``)
  - Signing of API request envelopes
  - Serialisable import / export (encrypted with passphrase)

Request envelopes carry the signer's public key, the JSON payload and
a DER signature over SHA-256 of the payload's canonical encoding:

    {"public_key": "04ab…", "payload": {"op": "stake", …, "nonce": 7},
     "signature": "3045…"}
"""

from __future__ import annotations

import hashlib
import json
import os
from typing import Any

from Crypto.Cipher import AES
from Crypto.Hash import RIPEMD160
from ecdsa import BadSignatureError, MalformedPointError, SECP256k1, SigningKey, VerifyingKey
from ecdsa.util import sigdecode_der, sigencode_der

ADDRESS_PREFIX = "ls"
SEED_ITERATIONS = 600_000
EXPORT_ITERATIONS = 600_000


class InvalidSignature(ValueError):
    """Envelope is malformed or its signature does not verify."""


def hash160(data: bytes) -> bytes:
    return RIPEMD160.new(hashlib.sha256(data).digest()).digest()


def derive_address(public_key: bytes) -> str:
    return ADDRESS_PREFIX + hash160(public_key).hex()


def canonical_json(payload: dict) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _public_from_private(private_key: bytes) -> bytes:
    sk = SigningKey.from_string(private_key, curve=SECP256k1)
    return b"\x04" + sk.get_verifying_key().to_string()


class Wallet:
    """A secp256k1 identity able to sign API requests."""

    def __init__(self, private_key: bytes, public_key: bytes | None = None):
        self.private_key = private_key
        self.public_key = public_key or _public_from_private(private_key)
        self.address = derive_address(self.public_key)
        self._nonce = 0

    # ---- factory methods ----

    @classmethod
    def create(cls) -> Wallet:
        sk = SigningKey.generate(curve=SECP256k1)
        return cls(sk.to_string())

    @classmethod
    def from_seed(cls, seed: str) -> Wallet:
        """
        Derive a wallet deterministically from a seed phrase.

        PBKDF2-HMAC-SHA256 with ``SEED_ITERATIONS`` rounds and a fixed
        salt.
        """
        priv = hashlib.pbkdf2_hmac(
            "sha256", seed.encode("utf-8"), b"Lockstake/seed/v1", SEED_ITERATIONS,
        )
        return cls(priv)

    # ---- signing ----

    def sign(self, message: bytes) -> bytes:
        sk = SigningKey.from_string(self.private_key, curve=SECP256k1)
        return sk.sign_deterministic(message, hashfunc=hashlib.sha256, sigencode=sigencode_der)

    def next_nonce(self) -> int:
        self._nonce += 1
        return self._nonce

    def sign_payload(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Return a signed envelope.  A fresh nonce is added if absent."""
        payload = dict(payload)
        payload.setdefault("nonce", self.next_nonce())
        return {
            "public_key": self.public_key.hex(),
            "payload": payload,
            "signature": self.sign(canonical_json(payload)).hex(),
        }

    # ---- serialisation ----

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "public_key": self.public_key.hex(),
            "private_key": self.private_key.hex(),
        }

    def export_encrypted(self, passphrase: str) -> dict:
        """AES-256-GCM under a PBKDF2-HMAC-SHA256 key."""
        salt = os.urandom(16)
        key = hashlib.pbkdf2_hmac("sha256", passphrase.encode("utf-8"), salt, EXPORT_ITERATIONS)
        nonce = os.urandom(12)
        cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(self.private_key)
        return {
            "version": 1,
            "address": self.address,
            "public_key": self.public_key.hex(),
            "encrypted_private_key": ciphertext.hex(),
            "nonce": nonce.hex(),
            "tag": tag.hex(),
            "salt": salt.hex(),
            "kdf": "pbkdf2-hmac-sha256",
            "kdf_iterations": EXPORT_ITERATIONS,
        }

    @classmethod
    def import_encrypted(cls, data: dict, passphrase: str) -> Wallet:
        """Raises ``ValueError`` on a wrong passphrase or tampered data."""
        iterations = data.get("kdf_iterations", EXPORT_ITERATIONS)
        key = hashlib.pbkdf2_hmac(
            "sha256", passphrase.encode("utf-8"), bytes.fromhex(data["salt"]), iterations,
        )
        cipher = AES.new(key, AES.MODE_GCM, nonce=bytes.fromhex(data["nonce"]))
        priv = cipher.decrypt_and_verify(
            bytes.fromhex(data["encrypted_private_key"]), bytes.fromhex(data["tag"]),
        )
        return cls(priv, bytes.fromhex(data["public_key"]))

    def __repr__(self) -> str:
        return f"Wallet({self.address})"


def verify_envelope(envelope: Any) -> tuple[str, dict]:
    """
    Check an envelope's signature.  Returns ``(address, payload)``.

    Raises ``InvalidSignature`` for any malformed or non-verifying input.
    """
    if not isinstance(envelope, dict):
        raise InvalidSignature("Envelope must be an object")
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        raise InvalidSignature("Envelope payload must be an object")
    try:
        pub = bytes.fromhex(envelope.get("public_key", ""))
        sig = bytes.fromhex(envelope.get("signature", ""))
        vk = VerifyingKey.from_string(pub, curve=SECP256k1)
        vk.verify(sig, canonical_json(payload), hashfunc=hashlib.sha256, sigdecode=sigdecode_der)
    except (TypeError, ValueError, BadSignatureError, MalformedPointError) as exc:
        raise InvalidSignature("Signature verification failed") from exc
    return derive_address(pub), payload
