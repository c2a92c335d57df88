"""
LSAT macaroon minting and verification.

A token is a standard (libmacaroons-compatible, v2 binary) macaroon whose
identifier is the 66-byte MacaroonIdentifier. Its root key is never stored:
it is re-derived as HMAC-SHA256(server secret, payment hash) whenever the
macaroon is minted or checked, so a macaroon on its own never reveals the key
that signed it.

Signature chaining and the binary format are delegated to pymacaroons.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from pymacaroons import MACAROON_V2, Macaroon, Verifier
from pymacaroons.exceptions import MacaroonException

from .caveats import Caveat, CaveatRegistry, attach_caveats, macaroon_caveats, satisfy_caveats
from .errors import InvalidMacaroonEncodingError, MalformedIdentifierError, SignatureInvalidError
from .identifier import MacaroonIdentifier, decode_identifier, encode_identifier
from .preimage import verify_preimage
from .request import RequestContext

DEFAULT_LOCATION = "lsat"


@dataclass(frozen=True)
class VerifiedToken:
    """Outcome of a successful verify_macaroon()."""
    identifier: MacaroonIdentifier
    preimage: bytes

    @property
    def payment_hash(self) -> bytes:
        return self.identifier.payment_hash


def derive_root_key(secret: bytes, payment_hash: bytes) -> bytes:
    """
    Derive the per-invoice macaroon root key.

    Deterministic: the same (secret, payment_hash) always yields the same key.
    """
    if not secret:
        raise ValueError("Root key secret is required")
    return hmac.new(secret, payment_hash, hashlib.sha256).digest()


def mint_macaroon(
    secret: bytes,
    identifier: MacaroonIdentifier,
    caveats: Sequence[Caveat] = (),
    location: str = DEFAULT_LOCATION,
) -> Macaroon:
    """
    Create a signed macaroon for an identifier.

    Args:
        secret: Server secret the root key is derived from.
        identifier: Identifier binding the token to an invoice.
        caveats: First-party caveats to append, in order.
        location: Macaroon location hint.

    Returns:
        pymacaroons Macaroon (version 2).
    """
    root_key = derive_root_key(secret, identifier.payment_hash)
    macaroon = Macaroon(
        location=location,
        identifier=encode_identifier(identifier),
        key=root_key,
        version=MACAROON_V2,
    )
    return attach_caveats(macaroon, caveats)


def _urlsafe_b64decode(data: Union[str, bytes]) -> bytes:
    if isinstance(data, bytes):
        data = data.decode("ascii")
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def encode_macaroon(macaroon: Macaroon) -> str:
    """Serialize to the binary format, standard base64 (the header wire form)."""
    raw = _urlsafe_b64decode(macaroon.serialize())
    return base64.b64encode(raw).decode("ascii")


def decode_macaroon(encoded: str) -> Macaroon:
    """
    Decode a standard-base64 binary macaroon.

    Raises:
        InvalidMacaroonEncodingError: If the text is not base64 or not a macaroon.
    """
    if not encoded or not isinstance(encoded, str):
        raise InvalidMacaroonEncodingError("Invalid macaroon string")
    try:
        raw = base64.b64decode(encoded.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidMacaroonEncodingError(f"Invalid macaroon string: {exc}") from exc
    if not raw:
        raise InvalidMacaroonEncodingError("Invalid macaroon string")

    try:
        return Macaroon.deserialize(base64.urlsafe_b64encode(raw).decode("ascii"))
    except Exception as exc:
        # pymacaroons surfaces corrupt packets as a mix of its own and builtin errors
        raise InvalidMacaroonEncodingError(f"Invalid macaroon: {exc}") from exc


def macaroon_identifier(macaroon: Macaroon) -> MacaroonIdentifier:
    """
    Extract the LSAT identifier from a macaroon.

    Raises:
        InvalidMacaroonEncodingError: If the identifier is not a valid LSAT identifier.
    """
    try:
        return decode_identifier(macaroon.identifier_bytes)
    except MalformedIdentifierError as exc:
        raise InvalidMacaroonEncodingError(exc.detail) from exc


def _check_signature(macaroon: Macaroon, root_key: bytes) -> None:
    # Caveat semantics are checked separately; here only the HMAC chain matters.
    verifier = Verifier()
    verifier.satisfy_general(lambda predicate: True)
    try:
        verifier.verify(macaroon, root_key)
    except MacaroonException as exc:
        raise SignatureInvalidError(f"Invalid macaroon signature: {exc}") from exc


def verify_macaroon(
    macaroon: Macaroon,
    caveats: Sequence[Caveat],
    secret: bytes,
    preimage: bytes,
    request: Optional[RequestContext] = None,
    registry: Optional[CaveatRegistry] = None,
) -> VerifiedToken:
    """
    Verify an LSAT macaroon and its proof of payment.

    Checks, in order: identifier decoding, signature chain under the derived
    root key, caveat satisfaction, and SHA256(preimage) == payment hash.
    A tampered identifier that no longer decodes (for example a rewritten
    version field) is reported as InvalidMacaroonEncoding, not SignatureInvalid.

    Args:
        macaroon: Decoded macaroon.
        caveats: Caveats expected for this request (the caveat function's output).
        secret: Server secret.
        preimage: 32-byte payment preimage.
        request: Current request metadata for caveat satisfiers.
        registry: Caveat satisfiers; defaults to the built-ins.

    Returns:
        VerifiedToken with the identifier and preimage.

    Raises:
        LsatError: The specific failure (InvalidMacaroonEncoding,
            SignatureInvalid, CaveatMismatch, MalformedPreimage or
            PreimageMismatch).
    """
    identifier = macaroon_identifier(macaroon)
    root_key = derive_root_key(secret, identifier.payment_hash)
    _check_signature(macaroon, root_key)
    satisfy_caveats(macaroon_caveats(macaroon), caveats, request, registry)
    verify_preimage(preimage, identifier.payment_hash)
    return VerifiedToken(identifier=identifier, preimage=bytes(preimage))
