"""
⚡ lsat-middleware: L402/LSAT Lightning paywalls.

Gate any HTTP resource behind a Lightning micropayment. Tokens are macaroons
whose identifier commits to an invoice's payment hash; a request is paid
once it presents the macaroon together with the invoice preimage.

Usage:
    from fastapi import Depends
    from lsat_middleware import LNClientConfig, LNDOptions, create_lsat, path_caveat

    lsat = create_lsat(
        root_key=b"your-secret",
        amount_func=lambda request: 5,
        caveat_func=lambda request: [path_caveat(request.path)],
        ln_config=LNClientConfig("LND", lnd=LNDOptions("https://localhost:8080", "0201...")),
    )

    @app.get("/protected")
    async def protected(info=Depends(lsat)):
        return {"paid": info.type == "PAID"}
"""

from .caveats import (
    Caveat,
    CaveatRegistry,
    ExpirySatisfier,
    MethodSatisfier,
    PathSatisfier,
    expiry_caveat,
    method_caveat,
    path_caveat,
)
from .config import LNClientConfig, LNDOptions, LNURLOptions, LsatConfig, NWCOptions
from .errors import ErrorKind, LsatError
from .fastapilsat import FastAPILsat, create_lsat
from .identifier import MacaroonIdentifier, decode_identifier, encode_identifier
from .l402 import (
    FREE_CONTENT_MESSAGE,
    PAYMENT_REQUIRED_MESSAGE,
    PROTECTED_CONTENT_MESSAGE,
    format_challenge,
    parse_authorization,
)
from .ln import Invoice, InvoiceStatus, LNClient, init_ln_client
from .macaroon import derive_root_key, mint_macaroon, verify_macaroon
from .middleware import (
    LSAT_TYPE_CHALLENGE,
    LSAT_TYPE_ERROR,
    LSAT_TYPE_FREE,
    LSAT_TYPE_PAID,
    Challenge,
    LsatInfo,
    LsatMiddleware,
)
from .preimage import verify_preimage
from .request import RequestContext

__version__ = "0.1.0"

__all__ = [
    "Caveat",
    "CaveatRegistry",
    "Challenge",
    "ErrorKind",
    "ExpirySatisfier",
    "FastAPILsat",
    "FREE_CONTENT_MESSAGE",
    "Invoice",
    "InvoiceStatus",
    "LNClient",
    "LNClientConfig",
    "LNDOptions",
    "LNURLOptions",
    "LSAT_TYPE_CHALLENGE",
    "LSAT_TYPE_ERROR",
    "LSAT_TYPE_FREE",
    "LSAT_TYPE_PAID",
    "LsatConfig",
    "LsatError",
    "LsatInfo",
    "LsatMiddleware",
    "MacaroonIdentifier",
    "MethodSatisfier",
    "NWCOptions",
    "PAYMENT_REQUIRED_MESSAGE",
    "PROTECTED_CONTENT_MESSAGE",
    "PathSatisfier",
    "RequestContext",
    "create_lsat",
    "decode_identifier",
    "derive_root_key",
    "encode_identifier",
    "expiry_caveat",
    "format_challenge",
    "init_ln_client",
    "method_caveat",
    "mint_macaroon",
    "parse_authorization",
    "path_caveat",
    "verify_macaroon",
    "verify_preimage",
]

