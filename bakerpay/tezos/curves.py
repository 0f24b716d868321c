"""Curve families and their prefix-driven dispatch table.

Each supported curve is a ``Curve`` record: the base58 prefixes it owns and
the three primitive functions (public key derivation, signing, verification).
Signing functions take the 32-byte message digest; ECDSA signatures are the
64-byte ``r || s`` form the network expects, normalised to low-S.
"""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from bakerpay.services.errors import EncodingError, UnknownCurve


class CurveKind(str, Enum):
    ED25519 = "ed25519"
    SECP256K1 = "secp256k1"
    NISTP256 = "nistp256"


@dataclass(frozen=True)
class Curve:
    kind: CurveKind
    address_prefix: str
    public_key_prefix: str
    secret_key_prefix: str
    encrypted_secret_key_prefix: str
    signature_prefix: str
    derive_public_key: Callable[[bytes], bytes]
    sign: Callable[[bytes, bytes], bytes]
    verify: Callable[[bytes, bytes, bytes], bool]

    @property
    def prefixes(self) -> tuple[str, ...]:
        return (
            self.address_prefix,
            self.public_key_prefix,
            self.secret_key_prefix,
            self.encrypted_secret_key_prefix,
            self.signature_prefix,
        )


# ── Ed25519 ──────────────────────────────────────────────────────────────────


def _ed25519_private(secret: bytes) -> ed25519.Ed25519PrivateKey:
    # 64-byte secret keys carry the public key after the seed.
    return ed25519.Ed25519PrivateKey.from_private_bytes(secret[:32])


def _ed25519_public_key(secret: bytes) -> bytes:
    return _ed25519_private(secret).public_key().public_bytes(
        serialization.Encoding.Raw, serialization.PublicFormat.Raw
    )


def _ed25519_sign(secret: bytes, digest: bytes) -> bytes:
    return _ed25519_private(secret).sign(digest)


def _ed25519_verify(public_key: bytes, digest: bytes, signature: bytes) -> bool:
    try:
        ed25519.Ed25519PublicKey.from_public_bytes(public_key).verify(signature, digest)
    except (InvalidSignature, ValueError):
        return False
    return True


# ── ECDSA (secp256k1, P-256) ─────────────────────────────────────────────────

# The digest is already BLAKE2b-256; Prehashed only needs a 32-byte algorithm.
_PREHASHED = ec.ECDSA(Prehashed(hashes.SHA256()))


def _ecdsa_functions(
    curve: ec.EllipticCurve, order: int
) -> tuple[
    Callable[[bytes], bytes],
    Callable[[bytes, bytes], bytes],
    Callable[[bytes, bytes, bytes], bool],
]:
    def private(secret: bytes) -> ec.EllipticCurvePrivateKey:
        if len(secret) != 32:
            raise EncodingError(f"{curve.name} secret key must be 32 bytes, got {len(secret)}")
        scalar: int = int.from_bytes(secret, "big")
        if not 0 < scalar < order:
            raise EncodingError(f"{curve.name} secret key is out of range")
        return ec.derive_private_key(scalar, curve)

    def derive_public_key(secret: bytes) -> bytes:
        return private(secret).public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
        )

    def sign(secret: bytes, digest: bytes) -> bytes:
        der: bytes = private(secret).sign(digest, _PREHASHED)
        r, s = decode_dss_signature(der)
        if s > order // 2:
            s = order - s
        return r.to_bytes(32, "big") + s.to_bytes(32, "big")

    def verify(public_key: bytes, digest: bytes, signature: bytes) -> bool:
        if len(signature) != 64:
            return False
        r: int = int.from_bytes(signature[:32], "big")
        s: int = int.from_bytes(signature[32:], "big")
        try:
            key = ec.EllipticCurvePublicKey.from_encoded_point(curve, public_key)
            key.verify(encode_dss_signature(r, s), digest, _PREHASHED)
        except (InvalidSignature, ValueError):
            return False
        return True

    return derive_public_key, sign, verify


_SECP256K1_ORDER: int = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
_NISTP256_ORDER: int = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551

_secp256k1_pk, _secp256k1_sign, _secp256k1_verify = _ecdsa_functions(
    ec.SECP256K1(), _SECP256K1_ORDER
)
_p256_pk, _p256_sign, _p256_verify = _ecdsa_functions(ec.SECP256R1(), _NISTP256_ORDER)


CURVES: dict[CurveKind, Curve] = {
    CurveKind.ED25519: Curve(
        kind=CurveKind.ED25519,
        address_prefix="tz1",
        public_key_prefix="edpk",
        secret_key_prefix="edsk",
        encrypted_secret_key_prefix="edesk",
        signature_prefix="edsig",
        derive_public_key=_ed25519_public_key,
        sign=_ed25519_sign,
        verify=_ed25519_verify,
    ),
    CurveKind.SECP256K1: Curve(
        kind=CurveKind.SECP256K1,
        address_prefix="tz2",
        public_key_prefix="sppk",
        secret_key_prefix="spsk",
        encrypted_secret_key_prefix="spesk",
        signature_prefix="spsig1",
        derive_public_key=_secp256k1_pk,
        sign=_secp256k1_sign,
        verify=_secp256k1_verify,
    ),
    CurveKind.NISTP256: Curve(
        kind=CurveKind.NISTP256,
        address_prefix="tz3",
        public_key_prefix="p2pk",
        secret_key_prefix="p2sk",
        encrypted_secret_key_prefix="p2esk",
        signature_prefix="p2sig",
        derive_public_key=_p256_pk,
        sign=_p256_sign,
        verify=_p256_verify,
    ),
}

# Textual prefix -> curve. "spsig" covers the "spsig1" signature form.
PREFIX_TO_CURVE: dict[str, CurveKind] = {
    "tz1": CurveKind.ED25519,
    "edpk": CurveKind.ED25519,
    "edsk": CurveKind.ED25519,
    "edesk": CurveKind.ED25519,
    "edsig": CurveKind.ED25519,
    "tz2": CurveKind.SECP256K1,
    "sppk": CurveKind.SECP256K1,
    "spsk": CurveKind.SECP256K1,
    "spesk": CurveKind.SECP256K1,
    "spsig": CurveKind.SECP256K1,
    "tz3": CurveKind.NISTP256,
    "p2pk": CurveKind.NISTP256,
    "p2sk": CurveKind.NISTP256,
    "p2esk": CurveKind.NISTP256,
    "p2sig": CurveKind.NISTP256,
}


def sniff_prefix(text: str) -> str:
    """Return the recognised textual prefix of *text* (longest match wins)."""
    for length in (5, 4, 3):
        candidate: str = text[:length]
        if candidate in PREFIX_TO_CURVE:
            return candidate
    raise UnknownCurve(f"failed to find curve with prefix '{text[:5]}'")


def curve_for_prefix(text: str) -> Curve:
    return CURVES[PREFIX_TO_CURVE[sniff_prefix(text)]]
