"""LND REST backend, authenticated with a hex-encoded macaroon."""

from __future__ import annotations

import base64
import binascii
import logging
import ssl
from typing import Any, Dict, Optional, Union

import httpx

from ..errors import InvoiceGenerationFailedError
from ..request import RequestContext
from . import Invoice, InvoiceStatus, LNClient

logger = logging.getLogger(__name__)


def _decode_bytes_field(value: str) -> bytes:
    # LND's REST gateway renders `bytes` fields as standard base64
    return base64.b64decode(value, validate=True)


class LNDClient(LNClient):
    """Issue invoices directly on an LND node.

    Requires:
        - address: REST endpoint, e.g. "https://localhost:8080"
        - macaroon_hex: invoice (or admin) macaroon in hex format
        - tls_cert_path (optional): path to the node's tls.cert
    """

    def __init__(
        self,
        address: str,
        macaroon_hex: str,
        tls_cert_path: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not address:
            raise ValueError("LND address is required")
        if not macaroon_hex:
            raise ValueError("LND macaroon_hex is required")
        if "://" not in address:
            address = f"https://{address}"
        self._address = address.rstrip("/")
        self._macaroon_hex = macaroon_hex
        self._tls_cert_path = tls_cert_path
        self._timeout = timeout
        self._transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        verify: Union[bool, ssl.SSLContext] = True
        if self._tls_cert_path:
            ctx = ssl.create_default_context()
            ctx.load_verify_locations(self._tls_cert_path)
            verify = ctx

        return httpx.AsyncClient(
            base_url=self._address,
            headers={"Grpc-Metadata-macaroon": self._macaroon_hex},
            verify=verify,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        async with self._build_client() as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as exc:
                logger.error("LND connection error on %s %s: %s", method, path, exc)
                raise InvoiceGenerationFailedError(f"LND connection error: {exc}") from exc

        if response.status_code != 200:
            logger.error("LND returned %s for %s %s", response.status_code, method, path)
            raise InvoiceGenerationFailedError(
                f"LND returned {response.status_code}: {response.text}"
            )

        try:
            return response.json()
        except ValueError as exc:
            raise InvoiceGenerationFailedError("LND returned a non-JSON body") from exc

    async def issue_invoice(
        self,
        amount_sats: int,
        memo: str,
        request: Optional[RequestContext] = None,
    ) -> Invoice:
        """Create an invoice via POST /v1/invoices."""
        data = await self._request(
            "POST",
            "/v1/invoices",
            json={"value": str(int(amount_sats)), "memo": memo},
        )

        payment_request = data.get("payment_request")
        r_hash = data.get("r_hash")
        if not payment_request or not r_hash:
            raise InvoiceGenerationFailedError("LND response missing payment_request or r_hash")

        try:
            payment_hash = _decode_bytes_field(r_hash)
        except (binascii.Error, ValueError) as exc:
            raise InvoiceGenerationFailedError(f"LND returned an invalid r_hash: {r_hash}") from exc

        return Invoice(
            payment_hash=payment_hash,
            payment_request=payment_request,
            amount_sats=int(amount_sats),
        )

    async def lookup_invoice(self, payment_hash: bytes) -> InvoiceStatus:
        """Look up an invoice via GET /v1/invoice/{r_hash_str}."""
        data = await self._request("GET", f"/v1/invoice/{payment_hash.hex()}")

        settled = data.get("state") == "SETTLED" or bool(data.get("settled"))
        preimage = None
        if settled and data.get("r_preimage"):
            try:
                preimage = _decode_bytes_field(data["r_preimage"])
            except (binascii.Error, ValueError):
                logger.warning("LND returned an undecodable r_preimage for %s", payment_hash.hex())
        return InvoiceStatus(settled=settled, preimage=preimage)
