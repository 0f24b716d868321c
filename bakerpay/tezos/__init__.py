"""Tezos wire encodings, curves and signing keys."""

from bakerpay.tezos.curves import CURVES, Curve, CurveKind, curve_for_prefix
from bakerpay.tezos.forge import ForgedOperation, OperationForger, TransferInstruction
from bakerpay.tezos.keys import Key, SignedOperation, verify_signature

__all__ = [
    "CURVES",
    "Curve",
    "CurveKind",
    "ForgedOperation",
    "Key",
    "OperationForger",
    "SignedOperation",
    "TransferInstruction",
    "curve_for_prefix",
    "verify_signature",
]
