"""Signing keys for the payout source account.

A ``Key`` wraps a secret key of any supported curve. The curve is picked by
sniffing the key's textual prefix, so callers only ever deal with the
base58check strings found in configuration files.

Usage:
    key = Key.from_encoded_key("edsk...")
    signed = key.sign_operation(forged.raw)
    node.submit_signed_operation(signed.signed_bytes)
"""

import hashlib
from dataclasses import dataclass

import structlog
from nacl.exceptions import CryptoError
from nacl.secret import SecretBox

from bakerpay.services.errors import EncodingError, SignatureSelfCheckFailed
from bakerpay.tezos.curves import CURVES, Curve, CurveKind, curve_for_prefix, sniff_prefix
from bakerpay.tezos.encoding import (
    b58decode,
    b58encode,
    blake2b_160,
    blake2b_256,
    operation_hash,
)

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

GENERIC_OPERATION_WATERMARK: bytes = b"\x03"
SIGNATURE_LENGTH: int = 64

_PBKDF2_ITERATIONS: int = 32768
_SALT_LENGTH: int = 8


@dataclass(frozen=True)
class SignedOperation:
    forged: bytes
    signature: bytes
    signature_b58: str
    operation_hash: str

    @property
    def signed_bytes(self) -> bytes:
        return self.forged + self.signature

    @property
    def signed_hex(self) -> str:
        return self.signed_bytes.hex()


def _decrypt_secret(encrypted: bytes, passphrase: str) -> bytes:
    salt: bytes = encrypted[:_SALT_LENGTH]
    box_key: bytes = hashlib.pbkdf2_hmac(
        "sha512", passphrase.encode(), salt, _PBKDF2_ITERATIONS, dklen=32
    )
    try:
        return SecretBox(box_key).decrypt(
            encrypted[_SALT_LENGTH:], bytes(SecretBox.NONCE_SIZE)
        )
    except CryptoError as exc:
        raise EncodingError("failed to decrypt secret key: wrong passphrase?") from exc


def _decode_secret(encoded: str, passphrase: str | None) -> tuple[Curve, bytes]:
    prefix: str = sniff_prefix(encoded)
    curve: Curve = curve_for_prefix(encoded)

    if prefix == curve.encrypted_secret_key_prefix:
        if passphrase is None:
            raise EncodingError(f"'{prefix}' key is encrypted and no passphrase was given")
        secret: bytes = _decrypt_secret(b58decode(encoded, prefix), passphrase)
        return curve, secret

    if prefix != curve.secret_key_prefix:
        raise EncodingError(f"expected a secret key, got a '{prefix}' value")

    if curve.kind is CurveKind.ED25519:
        # 54-character keys are bare seeds; 98-character keys are seed + public key.
        try:
            return curve, b58decode(encoded, "edsk", 64)
        except EncodingError:
            return curve, b58decode(encoded, "edsk_seed", 32)
    return curve, b58decode(encoded, prefix, 32)


class Key:
    """Secret key bound to its curve, with derived public key and address."""

    def __init__(self, curve: Curve, secret: bytes) -> None:
        self.curve: Curve = curve
        self._secret: bytes = secret
        self._public: bytes = curve.derive_public_key(secret)

    @classmethod
    def from_encoded_key(cls, encoded: str, passphrase: str | None = None) -> "Key":
        """Build a key from an ``edsk``/``spsk``/``p2sk`` (or encrypted) string."""
        encoded = encoded.strip().removeprefix("unencrypted:")
        curve, secret = _decode_secret(encoded, passphrase)
        return cls(curve, secret)

    @classmethod
    def from_secret_bytes(cls, kind: CurveKind, secret: bytes) -> "Key":
        return cls(CURVES[kind], secret)

    @property
    def kind(self) -> CurveKind:
        return self.curve.kind

    @property
    def public_key_bytes(self) -> bytes:
        return self._public

    @property
    def public_key(self) -> str:
        return b58encode(self._public, self.curve.public_key_prefix)

    @property
    def public_key_hash(self) -> str:
        return b58encode(blake2b_160(self._public), self.curve.address_prefix)

    @property
    def secret_key(self) -> str:
        if self.curve.kind is CurveKind.ED25519 and len(self._secret) == 32:
            return b58encode(self._secret, "edsk_seed")
        return b58encode(self._secret, self.curve.secret_key_prefix)

    def sign(self, message: bytes) -> bytes:
        """Sign the BLAKE2b-256 digest of *message*; returns the raw 64-byte signature."""
        return self.curve.sign(self._secret, blake2b_256(message))

    def verify(self, message: bytes, signature: bytes) -> bool:
        return self.curve.verify(self._public, blake2b_256(message), signature)

    def encode_signature(self, signature: bytes) -> str:
        return b58encode(signature, self.curve.signature_prefix)

    def sign_operation(self, forged: bytes) -> SignedOperation:
        """Sign forged operation bytes (branch included) under the generic watermark.

        The signature is verified again before it is returned; a mismatch
        raises SignatureSelfCheckFailed.
        """
        message: bytes = GENERIC_OPERATION_WATERMARK + forged
        signature: bytes = self.sign(message)
        if len(signature) != SIGNATURE_LENGTH or not self.verify(message, signature):
            logger.critical(
                "Signature failed self-check",
                curve=self.kind.value,
                source=self.public_key_hash,
            )
            raise SignatureSelfCheckFailed(
                f"{self.kind.value} signature does not verify under {self.public_key}"
            )

        signed: bytes = forged + signature
        return SignedOperation(
            forged=forged,
            signature=signature,
            signature_b58=self.encode_signature(signature),
            operation_hash=operation_hash(signed),
        )


def decode_public_key(public_key: str) -> tuple[Curve, bytes]:
    curve: Curve = curve_for_prefix(public_key)
    if sniff_prefix(public_key) != curve.public_key_prefix:
        raise EncodingError(f"'{public_key}' is not a public key")
    length: int = 32 if curve.kind is CurveKind.ED25519 else 33
    return curve, b58decode(public_key, curve.public_key_prefix, length)


def decode_signature(signature: str) -> tuple[Curve, bytes]:
    curve: Curve = curve_for_prefix(signature)
    if not signature.startswith(curve.signature_prefix):
        raise EncodingError(f"'{signature[:8]}…' is not a {curve.kind.value} signature")
    return curve, b58decode(signature, curve.signature_prefix, SIGNATURE_LENGTH)


def public_key_hash(public_key: str) -> str:
    curve, raw = decode_public_key(public_key)
    return b58encode(blake2b_160(raw), curve.address_prefix)


def verify_signature(public_key: str, signature: str, message: bytes) -> bool:
    """Check an encoded signature over *message* (watermark included by the caller)."""
    key_curve, raw_key = decode_public_key(public_key)
    sig_curve, raw_sig = decode_signature(signature)
    if key_curve.kind is not sig_curve.kind:
        return False
    return key_curve.verify(raw_key, blake2b_256(message), raw_sig)
