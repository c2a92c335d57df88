"""
FastAPI adapter.

Usage:
    from fastapi import Depends, FastAPI
    from lsat_middleware import (
        FREE_CONTENT_MESSAGE,
        LSAT_TYPE_FREE,
        PROTECTED_CONTENT_MESSAGE,
        LNClientConfig,
        LNURLOptions,
        create_lsat,
    )

    lsat = create_lsat(
        ln_config=LNClientConfig("LNURL", lnurl=LNURLOptions("me@getalby.com")),
        root_key=b"...",
        amount_func=lambda request: 5,
    )

    @app.get("/protected")
    async def protected(info=Depends(lsat)):
        if info.type == LSAT_TYPE_FREE:
            return {"message": FREE_CONTENT_MESSAGE}
        return {"message": PROTECTED_CONTENT_MESSAGE}

Challenges are raised as 402 responses carrying WWW-Authenticate; errors
as 500 responses. PAID and FREE classifications reach the route handler.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import HTTPException, Request

from .caveats import CaveatRegistry
from .config import LNClientConfig, LsatConfig
from .l402 import format_challenge_body
from .ln import LNClient, init_ln_client
from .middleware import (
    LSAT_TYPE_CHALLENGE,
    LSAT_TYPE_ERROR,
    AmountFunc,
    CaveatFunc,
    LsatInfo,
    LsatMiddleware,
)
from .request import RequestContext

logger = logging.getLogger(__name__)


def request_context(request: Request) -> RequestContext:
    """Snapshot the parts of a Starlette request the token engine looks at."""
    return RequestContext(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        client_host=request.client.host if request.client else None,
    )


class FastAPILsat:
    """FastAPI dependency wrapping an LsatMiddleware."""

    def __init__(self, middleware: LsatMiddleware):
        self.middleware = middleware

    async def __call__(self, request: Request) -> LsatInfo:
        info = await self.middleware.handle(request_context(request))

        if info.type == LSAT_TYPE_CHALLENGE:
            challenge = info.challenge
            raise HTTPException(
                status_code=402,
                detail=format_challenge_body(
                    invoice=challenge.invoice.payment_request,
                    payment_hash=challenge.invoice.payment_hash_hex,
                    amount_sats=challenge.invoice.amount_sats,
                ),
                headers={"WWW-Authenticate": challenge.header},
            )

        if info.type == LSAT_TYPE_ERROR:
            raise HTTPException(
                status_code=500,
                detail={
                    "code": 500,
                    "kind": info.error.kind.value,
                    "message": info.error.detail,
                },
            )

        return info


def create_lsat(
    root_key: Any,
    amount_func: AmountFunc,
    ln_config: Optional[LNClientConfig] = None,
    ln_client: Optional[LNClient] = None,
    caveat_func: Optional[CaveatFunc] = None,
    registry: Optional[CaveatRegistry] = None,
    **config_opts: Any,
) -> FastAPILsat:
    """
    Build a FastAPI LSAT dependency.

    Args:
        root_key: Server secret for deriving macaroon root keys (required).
        amount_func: Prices a request in satoshis.
        ln_config: Backend configuration, used when ln_client is not given.
        ln_client: Pre-built backend (must implement issue_invoice).
        caveat_func: Scopes tokens to requests.
        registry: Custom caveat satisfiers.
        **config_opts: Extra LsatConfig fields (scheme, memo, invoice_timeout, ...).

    Returns:
        FastAPILsat instance usable with Depends().
    """
    config = LsatConfig(root_key=root_key, **config_opts)

    if ln_client is not None:
        if not hasattr(ln_client, "issue_invoice"):
            raise ValueError("lsat-middleware: ln_client must have an issue_invoice() method")
    elif ln_config is not None:
        ln_client = init_ln_client(ln_config)
    else:
        raise ValueError("lsat-middleware: ln_config or ln_client is required")

    logger.info("LSAT middleware using %s backend", type(ln_client).__name__)
    middleware = LsatMiddleware(config, ln_client, amount_func, caveat_func, registry)
    return FastAPILsat(middleware)
