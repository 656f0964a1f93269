"""
Owner keys and operation-hash signatures on secp256k1.

An owner authorizes a relayed operation by signing its 32-byte keccak-256
hash directly; the hash is not digested a second time. Signatures travel as
64 raw bytes ``r || s`` with ``s`` in the lower half of the curve order, so a
(key, hash) pair has exactly one accepted signature and a third party cannot
produce a second valid encoding of it.

Account identities are Ethereum-style: the last 20 bytes of keccak-256 over
the 64-byte uncompressed public key.
"""

from __future__ import annotations

from typing import Tuple

from Crypto.Hash import keccak
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

CURVE = ec.SECP256K1()
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
HALF_CURVE_ORDER = CURVE_ORDER // 2

OPERATION_HASH_LENGTH = 32
SIGNATURE_LENGTH = 64
PUBLIC_KEY_LENGTH = 64

# The operation hash is already a 32-byte digest
_OPERATION_ECDSA = ec.ECDSA(Prehashed(hashes.SHA256()))


def keccak256(data: bytes) -> bytes:
    """Ethereum keccak-256 (original padding, not FIPS SHA3-256)."""
    return keccak.new(digest_bits=256, data=data).digest()


# ==================== Keys ====================


def _signing_key(private_hex: str) -> ec.EllipticCurvePrivateKey:
    scalar = int(private_hex, 16)
    if not 1 <= scalar < CURVE_ORDER:
        raise ValueError("Private key is outside the secp256k1 scalar range")
    return ec.derive_private_key(scalar, CURVE)


def _verifying_key(public_hex: str) -> ec.EllipticCurvePublicKey:
    raw = bytes.fromhex(public_hex)
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise ValueError(f"Public key must be {PUBLIC_KEY_LENGTH} bytes (x || y), got {len(raw)}")
    # Raises ValueError when the point is not on the curve
    return ec.EllipticCurvePublicKey.from_encoded_point(CURVE, b"\x04" + raw)


def public_key_for(private_hex: str) -> str:
    """Uncompressed public key (x || y, hex, no 04 prefix) of a private key."""
    numbers = _signing_key(private_hex).public_key().public_numbers()
    return f"{numbers.x:064x}{numbers.y:064x}"


def owner_keypair_from_seed(seed: bytes) -> Tuple[str, str]:
    """
    Derive a reproducible owner keypair from arbitrary seed bytes.

    The scalar is keccak256(seed) folded into [1, n - 1].

    Returns:
        (private_hex, public_hex)
    """
    scalar = int.from_bytes(keccak256(seed), "big") % (CURVE_ORDER - 1) + 1
    private_hex = f"{scalar:064x}"
    return private_hex, public_key_for(private_hex)


def owner_address(public_hex: str) -> str:
    """
    Account identity controlled by a public key.

    Raises:
        ValueError: If the key is not 64 bytes of hex
    """
    raw = bytes.fromhex(public_hex)
    if len(raw) != PUBLIC_KEY_LENGTH:
        raise ValueError(f"Public key must be {PUBLIC_KEY_LENGTH} bytes (x || y), got {len(raw)}")
    return "0x" + keccak256(raw)[-20:].hex()


# ==================== Operation Signatures ====================


def _require_operation_hash(op_hash: bytes) -> None:
    if len(op_hash) != OPERATION_HASH_LENGTH:
        raise ValueError(f"Operation hash must be {OPERATION_HASH_LENGTH} bytes, got {len(op_hash)}")


def sign_operation_hash(private_hex: str, op_hash: bytes) -> bytes:
    """
    Sign an operation hash as its owner.

    Returns:
        64-byte ``r || s`` signature in low-S form
    """
    _require_operation_hash(op_hash)
    r, s = decode_dss_signature(_signing_key(private_hex).sign(op_hash, _OPERATION_ECDSA))
    if s > HALF_CURVE_ORDER:
        s = CURVE_ORDER - s
    return r.to_bytes(32, "big") + s.to_bytes(32, "big")


def signature_matches_owner(public_hex: str, op_hash: bytes, signature: bytes) -> bool:
    """
    Check that ``signature`` is the owner's signature over ``op_hash``.

    High-S and out-of-range components never match.

    Raises:
        ValueError: If the key, hash or signature is malformed
    """
    _require_operation_hash(op_hash)
    if len(signature) != SIGNATURE_LENGTH:
        raise ValueError(f"Signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}")

    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    if not (1 <= r < CURVE_ORDER and 1 <= s <= HALF_CURVE_ORDER):
        return False

    try:
        _verifying_key(public_hex).verify(encode_dss_signature(r, s), op_hash, _OPERATION_ECDSA)
    except InvalidSignature:
        return False
    return True
