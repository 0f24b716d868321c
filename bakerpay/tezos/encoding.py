"""Base58check prefixes, Zarith integers and address encodings.

Every binary value that crosses the wire in a transfer operation is produced
here: public key hashes, contract ids, block hashes and the variable-length
natural numbers used for fees, counters and amounts.
"""

import hashlib

import base58

from bakerpay.services.errors import EncodingError, InvariantViolation

# Raw byte prefixes that make base58check strings start with a given tag.
PREFIXES: dict[str, bytes] = {
    # Public key hashes / contracts
    "tz1": bytes([6, 161, 159]),
    "tz2": bytes([6, 161, 161]),
    "tz3": bytes([6, 161, 164]),
    "KT1": bytes([2, 90, 121]),
    # Public keys
    "edpk": bytes([13, 15, 37, 217]),
    "sppk": bytes([3, 254, 226, 86]),
    "p2pk": bytes([3, 178, 139, 127]),
    # Secret keys (edsk comes in a 32-byte seed and a 64-byte expanded form)
    "edsk": bytes([43, 246, 78, 7]),
    "edsk_seed": bytes([13, 15, 58, 7]),
    "spsk": bytes([17, 162, 224, 201]),
    "p2sk": bytes([16, 81, 238, 189]),
    # Encrypted secret keys
    "edesk": bytes([7, 90, 60, 179, 41]),
    "spesk": bytes([9, 237, 241, 174, 150]),
    "p2esk": bytes([9, 48, 57, 115, 171]),
    # Signatures
    "edsig": bytes([9, 245, 205, 134, 18]),
    "spsig1": bytes([13, 115, 101, 19, 63]),
    "p2sig": bytes([54, 240, 44, 52]),
    "sig": bytes([4, 130, 43]),
    # Hashes
    "B": bytes([1, 52]),
    "o": bytes([5, 116]),
}

# Curve tag byte used inside a forged public key hash.
PKH_TAGS: dict[str, int] = {"tz1": 0, "tz2": 1, "tz3": 2}

PKH_LENGTH: int = 20
BLOCK_HASH_LENGTH: int = 32


def blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


def blake2b_160(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=20).digest()


def b58encode(payload: bytes, prefix: str) -> str:
    """Encode *payload* as base58check with the named prefix."""
    return base58.b58encode_check(PREFIXES[prefix] + payload).decode()


def b58decode(value: str, prefix: str, length: int | None = None) -> bytes:
    """Decode a base58check string and strip the named prefix.

    Raises EncodingError on a bad checksum, a prefix mismatch or, when
    *length* is given, a payload of the wrong size.
    """
    try:
        raw: bytes = base58.b58decode_check(value)
    except ValueError as exc:
        raise EncodingError(f"invalid base58check value '{value}': {exc}") from exc

    expected: bytes = PREFIXES[prefix]
    if not raw.startswith(expected):
        raise EncodingError(f"value '{value}' does not carry the '{prefix}' prefix")

    payload: bytes = raw[len(expected):]
    if length is not None and len(payload) != length:
        raise EncodingError(
            f"value '{value}' decodes to {len(payload)} bytes, expected {length}"
        )
    return payload


# ── Zarith ───────────────────────────────────────────────────────────────────


def forge_nat(value: int) -> bytes:
    """Encode a natural number as little-endian base-128 with continuation bits."""
    if value < 0:
        raise InvariantViolation(f"cannot encode negative natural {value}")

    out: bytearray = bytearray()
    while True:
        byte: int = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def parse_nat(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a Zarith natural starting at *offset*; returns (value, next_offset)."""
    value: int = 0
    shift: int = 0
    while True:
        if offset >= len(data):
            raise EncodingError("truncated Zarith natural")
        byte: int = data[offset]
        offset += 1
        value |= (byte & 0x7F) << shift
        shift += 7
        if not byte & 0x80:
            return value, offset


# ── Addresses ────────────────────────────────────────────────────────────────


def address_prefix(address: str) -> str:
    prefix: str = address[:3]
    if prefix not in PKH_TAGS and prefix != "KT1":
        raise EncodingError(f"unrecognized address format '{address}'")
    return prefix


def forge_public_key_hash(address: str) -> bytes:
    """21 bytes: curve tag followed by the 20-byte hash. Implicit accounts only."""
    prefix: str = address_prefix(address)
    if prefix == "KT1":
        raise EncodingError(f"'{address}' is an originated contract, not a key hash")
    payload: bytes = b58decode(address, prefix, PKH_LENGTH)
    return bytes([PKH_TAGS[prefix]]) + payload


def forge_contract_id(address: str) -> bytes:
    """22 bytes: 0x00 + key hash for implicit, 0x01 + hash + 0x00 for originated."""
    prefix: str = address_prefix(address)
    if prefix == "KT1":
        return b"\x01" + b58decode(address, "KT1", PKH_LENGTH) + b"\x00"
    return b"\x00" + forge_public_key_hash(address)


def forge_branch(block_hash: str) -> bytes:
    return b58decode(block_hash, "B", BLOCK_HASH_LENGTH)


def operation_hash(signed_bytes: bytes) -> str:
    return b58encode(blake2b_256(signed_bytes), "o")
