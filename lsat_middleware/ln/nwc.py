"""
Nostr Wallet Connect (NIP-47) backend.

Invoices are created by a remote wallet service reached through a Nostr
relay; the server never holds node credentials.

Flow per request:
1. Open a websocket to the relay from the connection URL
2. Subscribe to kind 23195 responses referencing our request
3. Publish a NIP-04 encrypted, Schnorr-signed kind 23194 request
4. Decrypt the first matching response

NIP-04 encryption is AES-256-CBC keyed with the x coordinate of the ECDH
point between our secret key and the wallet's x-only public key.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import secrets
import time
from base64 import b64decode, b64encode
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import websockets
from coincurve import PrivateKey, PublicKey
from Crypto.Cipher import AES
from Crypto.Util.Padding import pad, unpad
from websockets.exceptions import WebSocketException

from ..errors import InvoiceGenerationFailedError
from ..request import RequestContext
from . import Invoice, InvoiceStatus, LNClient
from .bolt11 import Bolt11Error, decode_payment_hash

logger = logging.getLogger(__name__)

NWC_SCHEME = "nostr+walletconnect"
KIND_NWC_REQUEST = 23194
KIND_NWC_RESPONSE = 23195
MSATS_PER_SAT = 1000


@dataclass(frozen=True)
class NWCConnection:
    """Parsed NWC connection URL."""
    relay_url: str
    wallet_pubkey: str
    secret_key: str
    client_pubkey: str


def xonly_public_key(secret_key_hex: str) -> str:
    """x-only (32 byte) public key hex for a secret key."""
    compressed = PrivateKey(bytes.fromhex(secret_key_hex)).public_key.format(compressed=True)
    return compressed[1:].hex()


def parse_nwc_url(nwc_url: str) -> NWCConnection:
    """
    Parse ``nostr+walletconnect://<wallet_pubkey>?relay=<relay_url>&secret=<hex>``.

    Raises:
        ValueError: If the scheme, pubkey, relay or secret is missing.
    """
    parsed = urlparse(nwc_url)
    if parsed.scheme != NWC_SCHEME:
        raise ValueError(f"Invalid NWC URL scheme: {parsed.scheme} (expected {NWC_SCHEME})")

    wallet_pubkey = parsed.netloc or parsed.path.lstrip("/")
    if not wallet_pubkey:
        raise ValueError("NWC URL missing wallet pubkey")

    params = parse_qs(parsed.query)
    relay_url = params.get("relay", [None])[0]
    secret_key = params.get("secret", [None])[0]
    if not relay_url:
        raise ValueError("NWC URL missing relay parameter")
    if not secret_key:
        raise ValueError("NWC URL missing secret parameter")

    return NWCConnection(
        relay_url=relay_url,
        wallet_pubkey=wallet_pubkey,
        secret_key=secret_key,
        client_pubkey=xonly_public_key(secret_key),
    )


class Nip04Cipher:
    """NIP-04 encryption between our key and one peer."""

    def __init__(self, secret_key_hex: str, peer_pubkey_hex: str):
        peer = PublicKey(b"\x02" + bytes.fromhex(peer_pubkey_hex))
        point = peer.multiply(bytes.fromhex(secret_key_hex))
        self._key = point.format(compressed=True)[1:]

    def encrypt(self, plaintext: str) -> str:
        iv = os.urandom(16)
        cipher = AES.new(self._key, AES.MODE_CBC, iv)
        ciphertext = cipher.encrypt(pad(plaintext.encode("utf-8"), AES.block_size))
        return f"{b64encode(ciphertext).decode('ascii')}?iv={b64encode(iv).decode('ascii')}"

    def decrypt(self, payload: str) -> str:
        ciphertext_b64, sep, iv_b64 = payload.partition("?iv=")
        if not sep:
            raise ValueError("Invalid NIP-04 ciphertext format (expected '...?iv=...')")
        cipher = AES.new(self._key, AES.MODE_CBC, b64decode(iv_b64))
        return unpad(cipher.decrypt(b64decode(ciphertext_b64)), AES.block_size).decode("utf-8")


def sign_event(event: Dict[str, Any], secret_key_hex: str) -> Dict[str, Any]:
    """Fill in NIP-01 ``id`` and Schnorr ``sig`` for an event."""
    serialized = json.dumps(
        [0, event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"]],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    event_hash = hashlib.sha256(serialized.encode("utf-8")).digest()
    signature = PrivateKey(bytes.fromhex(secret_key_hex)).sign_schnorr(event_hash)
    return {**event, "id": event_hash.hex(), "sig": signature.hex()}


class NWCClient(LNClient):
    """Issue invoices through a Nostr Wallet Connect wallet service."""

    def __init__(self, nwc_url: str, timeout: float = 30.0):
        self.connection = parse_nwc_url(nwc_url)
        self._cipher = Nip04Cipher(self.connection.secret_key, self.connection.wallet_pubkey)
        self._timeout = timeout

    def _build_request_event(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        content = self._cipher.encrypt(json.dumps({"method": method, "params": params}))
        event = {
            "kind": KIND_NWC_REQUEST,
            "pubkey": self.connection.client_pubkey,
            "created_at": int(time.time()),
            "tags": [["p", self.connection.wallet_pubkey]],
            "content": content,
        }
        return sign_event(event, self.connection.secret_key)

    async def _exchange(self, ws: Any, event: Dict[str, Any]) -> Dict[str, Any]:
        sub_id = secrets.token_hex(16)
        sub_filter = {
            "kinds": [KIND_NWC_RESPONSE],
            "authors": [self.connection.wallet_pubkey],
            "#p": [self.connection.client_pubkey],
            "#e": [event["id"]],
        }
        await ws.send(json.dumps(["REQ", sub_id, sub_filter]))
        await ws.send(json.dumps(["EVENT", event]))

        try:
            while True:
                msg = json.loads(await ws.recv())
                if isinstance(msg, list) and len(msg) >= 3 and msg[0] == "EVENT" and msg[1] == sub_id:
                    return json.loads(self._cipher.decrypt(msg[2]["content"]))
        finally:
            await ws.send(json.dumps(["CLOSE", sub_id]))

    async def _send_request(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send a NIP-47 request and return its ``result`` object."""
        event = self._build_request_event(method, params)
        try:
            async with websockets.connect(self.connection.relay_url) as ws:
                response = await asyncio.wait_for(self._exchange(ws, event), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise InvoiceGenerationFailedError(
                f"NWC {method} timed out after {self._timeout}s"
            ) from exc
        except (OSError, ValueError, WebSocketException) as exc:
            logger.error("NWC %s via %s failed: %s", method, self.connection.relay_url, exc)
            raise InvoiceGenerationFailedError(f"NWC {method} failed: {exc}") from exc

        error = response.get("error")
        if error:
            raise InvoiceGenerationFailedError(
                f"NWC error: {error.get('message', 'Unknown error')} (code: {error.get('code', 'N/A')})"
            )
        return response.get("result") or {}

    async def issue_invoice(
        self,
        amount_sats: int,
        memo: str,
        request: Optional[RequestContext] = None,
    ) -> Invoice:
        result = await self._send_request("make_invoice", {
            "amount": int(amount_sats) * MSATS_PER_SAT,
            "description": memo,
        })

        payment_request = result.get("invoice")
        if not payment_request:
            raise InvoiceGenerationFailedError("NWC make_invoice returned no invoice")

        try:
            if result.get("payment_hash"):
                payment_hash = bytes.fromhex(result["payment_hash"])
            else:
                payment_hash = decode_payment_hash(payment_request)
        except (ValueError, Bolt11Error) as exc:
            raise InvoiceGenerationFailedError(f"NWC returned an invalid payment hash: {exc}") from exc

        return Invoice(
            payment_hash=payment_hash,
            payment_request=payment_request,
            amount_sats=int(amount_sats),
        )

    async def lookup_invoice(self, payment_hash: bytes) -> InvoiceStatus:
        result = await self._send_request("lookup_invoice", {"payment_hash": payment_hash.hex()})

        preimage = None
        if result.get("preimage"):
            try:
                preimage = bytes.fromhex(result["preimage"])
            except ValueError:
                logger.warning("NWC returned a non-hex preimage for %s", payment_hash.hex())

        settled = result.get("settled_at") is not None or preimage is not None
        return InvoiceStatus(settled=settled, preimage=preimage)
