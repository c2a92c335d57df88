"""
L402 (formerly LSAT) HTTP header parsing and formatting.

WWW-Authenticate: L402 macaroon=<base64 macaroon>, invoice=<bolt11>
Authorization: L402 <base64 macaroon>:<hex preimage>

The legacy LSAT scheme name is accepted on input.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from .errors import MalformedHeaderError
from .request import RequestContext

SCHEME_L402 = "L402"
SCHEME_LSAT = "LSAT"
ACCEPTED_SCHEMES = (SCHEME_L402, SCHEME_LSAT)

# Protocol-support signal sent by clients that understand the challenge
LSAT_HEADER_NAME = "Accept-Authenticate"
LSAT_ACCEPT_MEDIA_TYPE = "application/vnd.lsat.v1.full+json"

FREE_CONTENT_MESSAGE = "Free Content"
PROTECTED_CONTENT_MESSAGE = "Protected Content"
PAYMENT_REQUIRED_MESSAGE = "Payment Required"


@dataclass(frozen=True)
class L402Credentials:
    """Parsed Authorization credentials (still text-encoded)."""
    scheme: str
    macaroon: str
    preimage: str


def format_challenge(macaroon: str, invoice: str, scheme: str = SCHEME_L402) -> str:
    """
    Format a WWW-Authenticate header value for a 402 response.

    Args:
        macaroon: Base64-encoded macaroon.
        invoice: BOLT11 payment request.
        scheme: Authentication scheme name.
    """
    return f"{scheme} macaroon={macaroon}, invoice={invoice}"


def format_challenge_body(invoice: str, payment_hash: str, amount_sats: int) -> Dict[str, Any]:
    """JSON body accompanying a 402 challenge."""
    return {
        "code": 402,
        "message": PAYMENT_REQUIRED_MESSAGE,
        "invoice": invoice,
        "paymentHash": payment_hash,
        "amountSats": amount_sats,
    }


def has_credentials(auth_header: Optional[str]) -> bool:
    """True if the header uses an L402/LSAT scheme, whether or not it is well formed."""
    if not auth_header or not isinstance(auth_header, str):
        return False
    scheme = auth_header.strip().split(" ", 1)[0]
    return scheme.upper() in ACCEPTED_SCHEMES


def parse_authorization(auth_header: Optional[str]) -> L402Credentials:
    """
    Parse an ``Authorization: L402 <macaroon>:<preimage>`` header.

    Raises:
        MalformedHeaderError: If the header is missing or not in that form.
    """
    if not auth_header or not isinstance(auth_header, str):
        raise MalformedHeaderError("LSAT Header is not present")

    parts = auth_header.strip().split(None, 1)
    if len(parts) != 2 or parts[0].upper() not in ACCEPTED_SCHEMES:
        raise MalformedHeaderError("Authorization header is not an L402/LSAT credential")

    token = parts[1].strip()
    macaroon, sep, preimage = token.partition(":")
    macaroon = macaroon.strip()
    preimage = preimage.strip()

    if not sep or not macaroon or not preimage:
        raise MalformedHeaderError("Expected <macaroon>:<preimage>")
    if ":" in preimage:
        raise MalformedHeaderError("Unexpected ':' in preimage")

    return L402Credentials(scheme=parts[0].upper(), macaroon=macaroon, preimage=preimage)


def supports_lsat(request: RequestContext) -> bool:
    """Whether the client signalled it understands L402/LSAT challenges."""
    signal = request.header(LSAT_HEADER_NAME)
    if signal and signal.strip().upper() in ACCEPTED_SCHEMES:
        return True

    accept = request.header("Accept") or ""
    media_types = [item.split(";", 1)[0].strip().lower() for item in accept.split(",")]
    return LSAT_ACCEPT_MEDIA_TYPE in media_types
