"""
⚡ lsat-middleware FastAPI Demo

Run:
    pip install -e ".[dev]"
    LN_CLIENT_TYPE=LNURL LNURL_ADDRESS=you@getalby.com ROOT_KEY=your-secret python examples/fastapi_demo.py

Or without a real backend (mock invoices, preimages printed to the console):
    python examples/fastapi_demo.py

Then:
    curl -i -H "Accept-Authenticate: L402" http://localhost:8080/protected
    curl -i -H "Authorization: L402 <macaroon>:<preimage>" http://localhost:8080/protected
"""

import hashlib
import os
import secrets

import uvicorn
from fastapi import Depends, FastAPI

from lsat_middleware import (
    FREE_CONTENT_MESSAGE,
    LSAT_TYPE_FREE,
    PROTECTED_CONTENT_MESSAGE,
    Invoice,
    LNClient,
    LNClientConfig,
    LNDOptions,
    LNURLOptions,
    NWCOptions,
    create_lsat,
    path_caveat,
)


class MockLNClient(LNClient):
    """Fake backend; prints the preimage so the flow can be completed by hand."""

    async def issue_invoice(self, amount_sats, memo, request=None):
        preimage = secrets.token_bytes(32)
        print(f"🧪 preimage for this invoice: {preimage.hex()}")
        return Invoice(
            payment_hash=hashlib.sha256(preimage).digest(),
            payment_request=f"lnbc{amount_sats}0n1demo{secrets.token_hex(20)}",
            amount_sats=amount_sats,
        )


def ln_config_from_env():
    client_type = os.environ.get("LN_CLIENT_TYPE")
    if client_type == "LND":
        return LNClientConfig(
            client_type,
            lnd=LNDOptions(
                address=os.environ["LND_ADDRESS"],
                macaroon_hex=os.environ["MACAROON_HEX"],
                tls_cert_path=os.environ.get("LND_TLS_CERT_PATH"),
            ),
        )
    if client_type == "LNURL":
        return LNClientConfig(client_type, lnurl=LNURLOptions(os.environ["LNURL_ADDRESS"]))
    if client_type == "NWC":
        return LNClientConfig(client_type, nwc=NWCOptions(os.environ["NWC_URL"]))
    return None


app = FastAPI(
    title="lsat-middleware Demo",
    description="L402 Lightning paywall demo with FastAPI",
    version="0.1.0",
)

root_key = os.environ.get("ROOT_KEY", "demo-secret-change-me-in-production").encode("utf-8")
ln_config = ln_config_from_env()

lsat = create_lsat(
    root_key=root_key,
    amount_func=lambda request: 5,
    caveat_func=lambda request: [path_caveat(request.path)],
    ln_config=ln_config,
    ln_client=None if ln_config else MockLNClient(),
    macaroon_expiry=3600,
)


@app.get("/")
async def index():
    return {"code": 202, "message": FREE_CONTENT_MESSAGE}


@app.get("/protected")
async def protected(info=Depends(lsat)):
    if info.type == LSAT_TYPE_FREE:
        return {"code": 202, "message": FREE_CONTENT_MESSAGE}
    return {
        "code": 202,
        "message": PROTECTED_CONTENT_MESSAGE,
        "paymentHash": info.payment_hash.hex(),
    }


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8080)
