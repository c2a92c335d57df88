"""
Macaroon identifier codec.

The identifier is a fixed 66-byte layout embedded verbatim in the macaroon:

    version (uint16, big-endian) | payment hash (32 bytes) | token id (32 bytes)

It binds the token to exactly one Lightning invoice. It never contains key
material.
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass

from .errors import MalformedIdentifierError

LATEST_VERSION = 0
SUPPORTED_VERSIONS = frozenset({0})

HASH_SIZE = 32
TOKEN_ID_SIZE = 32

_VERSION_FORMAT = ">H"
_VERSION_SIZE = struct.calcsize(_VERSION_FORMAT)
IDENTIFIER_SIZE = _VERSION_SIZE + HASH_SIZE + TOKEN_ID_SIZE


@dataclass(frozen=True)
class MacaroonIdentifier:
    """Decoded macaroon identifier."""
    version: int
    payment_hash: bytes
    token_id: bytes

    def __post_init__(self) -> None:
        if len(self.payment_hash) != HASH_SIZE:
            raise ValueError(f"payment_hash must be {HASH_SIZE} bytes")
        if len(self.token_id) != TOKEN_ID_SIZE:
            raise ValueError(f"token_id must be {TOKEN_ID_SIZE} bytes")

    @classmethod
    def new(cls, payment_hash: bytes) -> "MacaroonIdentifier":
        """Build a latest-version identifier with a fresh random token id."""
        return cls(
            version=LATEST_VERSION,
            payment_hash=payment_hash,
            token_id=secrets.token_bytes(TOKEN_ID_SIZE),
        )


def encode_identifier(identifier: MacaroonIdentifier) -> bytes:
    """
    Serialize an identifier to its fixed binary layout.

    Raises:
        MalformedIdentifierError: If the version is not supported.
    """
    if identifier.version not in SUPPORTED_VERSIONS:
        raise MalformedIdentifierError(f"Unsupported identifier version {identifier.version}")
    return (
        struct.pack(_VERSION_FORMAT, identifier.version)
        + identifier.payment_hash
        + identifier.token_id
    )


def decode_identifier(data: bytes) -> MacaroonIdentifier:
    """
    Parse the binary identifier layout.

    Raises:
        MalformedIdentifierError: On wrong length or unsupported version.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise MalformedIdentifierError("Identifier must be bytes")

    if len(data) < _VERSION_SIZE:
        raise MalformedIdentifierError(f"Identifier too short: {len(data)} bytes")

    (version,) = struct.unpack_from(_VERSION_FORMAT, data)
    if version not in SUPPORTED_VERSIONS:
        raise MalformedIdentifierError(f"Unsupported identifier version {version}")

    # Fixed layout; any trailing or missing byte is non-canonical.
    if len(data) != IDENTIFIER_SIZE:
        raise MalformedIdentifierError(
            f"Identifier must be {IDENTIFIER_SIZE} bytes, got {len(data)}"
        )

    offset = _VERSION_SIZE
    payment_hash = bytes(data[offset:offset + HASH_SIZE])
    offset += HASH_SIZE
    token_id = bytes(data[offset:offset + TOKEN_ID_SIZE])

    return MacaroonIdentifier(version=version, payment_hash=payment_hash, token_id=token_id)
