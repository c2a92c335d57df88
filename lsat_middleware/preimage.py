"""
Proof-of-payment check.

A Lightning payment hash is SHA256(preimage); holding the preimage proves the
invoice was paid.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac

from .errors import (
    InvalidPreimageEncodingError,
    MalformedPreimageError,
    PreimageMismatchError,
)

PREIMAGE_SIZE = 32


def decode_preimage(preimage_hex: str) -> bytes:
    """
    Decode a hex-encoded preimage.

    Raises:
        InvalidPreimageEncodingError: If the text is empty or not hex.
    """
    if not preimage_hex or not isinstance(preimage_hex, str):
        raise InvalidPreimageEncodingError("Invalid preimage string")
    try:
        return binascii.unhexlify(preimage_hex.strip())
    except (binascii.Error, ValueError) as exc:
        raise InvalidPreimageEncodingError(f"Invalid preimage string: {exc}") from exc


def verify_preimage(preimage: bytes, payment_hash: bytes) -> None:
    """
    Check that SHA256(preimage) equals payment_hash, in constant time.

    Raises:
        MalformedPreimageError: If the preimage is not 32 bytes.
        PreimageMismatchError: If the hash does not match.
    """
    if not isinstance(preimage, (bytes, bytearray)) or len(preimage) != PREIMAGE_SIZE:
        raise MalformedPreimageError(f"Preimage must be {PREIMAGE_SIZE} bytes")

    computed = hashlib.sha256(preimage).digest()
    if not hmac.compare_digest(computed, bytes(payment_hash)):
        raise PreimageMismatchError(bytes(preimage).hex(), bytes(payment_hash).hex())
