"""
Error taxonomy for LSAT issuance and verification.

Every failure inside the token engine is raised as an LsatError subclass
carrying a flat ErrorKind and a human-readable detail. The orchestrators in
middleware.py catch these and turn them into an ERROR classification.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    MALFORMED_HEADER = "MalformedHeader"
    INVALID_MACAROON_ENCODING = "InvalidMacaroonEncoding"
    INVALID_PREIMAGE_ENCODING = "InvalidPreimageEncoding"
    MALFORMED_IDENTIFIER = "MalformedIdentifier"
    MALFORMED_PREIMAGE = "MalformedPreimage"
    SIGNATURE_INVALID = "SignatureInvalid"
    CAVEAT_MISMATCH = "CaveatMismatch"
    PREIMAGE_MISMATCH = "PreimageMismatch"
    INVOICE_GENERATION_FAILED = "InvoiceGenerationFailed"
    UNSUPPORTED_BACKEND = "UnsupportedBackend"


class LsatError(Exception):
    """Base exception for lsat-middleware."""

    kind: ErrorKind

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.kind.value
        super().__init__(self.detail)


class MalformedHeaderError(LsatError):
    """Authorization header is not `<scheme> <macaroon>:<preimage>`."""

    kind = ErrorKind.MALFORMED_HEADER


class InvalidMacaroonEncodingError(LsatError):
    kind = ErrorKind.INVALID_MACAROON_ENCODING


class InvalidPreimageEncodingError(LsatError):
    kind = ErrorKind.INVALID_PREIMAGE_ENCODING


class MalformedIdentifierError(LsatError):
    """Macaroon identifier has the wrong length or an unknown version."""

    kind = ErrorKind.MALFORMED_IDENTIFIER


class MalformedPreimageError(LsatError):
    kind = ErrorKind.MALFORMED_PREIMAGE


class SignatureInvalidError(LsatError):
    kind = ErrorKind.SIGNATURE_INVALID


class CaveatMismatchError(LsatError):
    """A caveat was not satisfied. `caveat` names the offending condition."""

    kind = ErrorKind.CAVEAT_MISMATCH

    def __init__(self, caveat: str, reason: Optional[str] = None):
        self.caveat = caveat
        detail = f"Caveats don't match: {caveat}"
        if reason:
            detail = f"{detail} ({reason})"
        super().__init__(detail)


class PreimageMismatchError(LsatError):
    kind = ErrorKind.PREIMAGE_MISMATCH

    def __init__(self, preimage_hex: str, payment_hash_hex: str):
        self.preimage_hex = preimage_hex
        self.payment_hash_hex = payment_hash_hex
        super().__init__(f"Invalid Preimage {preimage_hex} for PaymentHash {payment_hash_hex}")


class InvoiceGenerationFailedError(LsatError):
    """The Lightning backend could not produce an invoice.

    Raise with ``raise InvoiceGenerationFailedError(...) from exc`` so the
    backend's underlying cause stays attached.
    """

    kind = ErrorKind.INVOICE_GENERATION_FAILED


class UnsupportedBackendError(LsatError):
    kind = ErrorKind.UNSUPPORTED_BACKEND
