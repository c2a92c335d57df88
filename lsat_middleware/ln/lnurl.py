"""
LNURL-pay backend.

Invoices are requested from a Lightning Address (user@domain) or an https
LNURL-pay endpoint; no node credentials are needed. The service only returns
a BOLT11 payment request, so the payment hash is decoded from it.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import InvoiceGenerationFailedError
from ..request import RequestContext
from . import Invoice, LNClient
from .bolt11 import Bolt11Error, decode_payment_hash, extract_amount_sats

logger = logging.getLogger(__name__)

MSATS_PER_SAT = 1000


def lnurlp_url(address: str) -> str:
    """Resolve a Lightning Address to its LNURL-pay endpoint (LUD-16)."""
    if address.startswith("https://") or address.startswith("http://"):
        return address
    user, sep, domain = address.partition("@")
    if not sep or not user or not domain:
        raise ValueError(f"Invalid lightning address: {address}")
    return f"https://{domain}/.well-known/lnurlp/{user}"


class LNURLClient(LNClient):
    """
    Request invoices from an LNURL-pay service.

    LNURL-pay has no invoice status endpoint, so lookup_invoice is not
    supported and raises NotImplementedError.
    """

    def __init__(
        self,
        address: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not address:
            raise ValueError("LNURL address is required")
        self.address = address
        self._url = lnurlp_url(address)
        self._timeout = timeout
        self._transport = transport

    def _build_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=True,
        )

    async def _get_json(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        try:
            response = await client.get(url, params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            logger.error("LNURL request to %s failed: %s", url, exc)
            raise InvoiceGenerationFailedError(f"LNURL request failed: {exc}") from exc
        except ValueError as exc:
            raise InvoiceGenerationFailedError(f"LNURL returned a non-JSON body from {url}") from exc

        if not isinstance(data, dict):
            raise InvoiceGenerationFailedError(f"LNURL returned an unexpected payload from {url}")
        if str(data.get("status", "")).upper() == "ERROR":
            raise InvoiceGenerationFailedError(f"LNURL error: {data.get('reason', 'unknown')}")
        return data

    async def issue_invoice(
        self,
        amount_sats: int,
        memo: str,
        request: Optional[RequestContext] = None,
    ) -> Invoice:
        amount_msats = int(amount_sats) * MSATS_PER_SAT

        async with self._build_client() as client:
            params = await self._get_json(client, self._url)

            if params.get("tag") != "payRequest" or not params.get("callback"):
                raise InvoiceGenerationFailedError(f"{self.address} is not an LNURL-pay endpoint")

            min_sendable = int(params.get("minSendable", 0))
            max_sendable = int(params.get("maxSendable", amount_msats))
            if not min_sendable <= amount_msats <= max_sendable:
                raise InvoiceGenerationFailedError(
                    f"Amount {amount_msats} msat outside [{min_sendable}, {max_sendable}]"
                )

            query: Dict[str, Any] = {"amount": amount_msats}
            if memo and int(params.get("commentAllowed", 0)) >= len(memo):
                query["comment"] = memo

            result = await self._get_json(client, params["callback"], params=query)

        payment_request = result.get("pr")
        if not payment_request:
            raise InvoiceGenerationFailedError("LNURL callback returned no payment request")

        try:
            payment_hash = decode_payment_hash(payment_request)
        except Bolt11Error as exc:
            raise InvoiceGenerationFailedError(f"LNURL returned an undecodable invoice: {exc}") from exc

        invoice_amount = extract_amount_sats(payment_request)
        if invoice_amount is not None and invoice_amount != int(amount_sats):
            raise InvoiceGenerationFailedError(
                f"LNURL invoice amount {invoice_amount} does not match requested {amount_sats}"
            )

        return Invoice(
            payment_hash=payment_hash,
            payment_request=payment_request,
            amount_sats=int(amount_sats),
        )
