"""
LSAT issuance and verification orchestration.

LsatMiddleware is framework-neutral: it takes explicit request metadata and
returns an explicit LsatInfo classification. Framework adapters (see
fastapilsat.py) turn that classification into HTTP responses.

Per request the flow is terminal after one classification:

    Authorization present  -> PAID | ERROR
    client supports LSAT   -> CHALLENGE | ERROR
    otherwise              -> FREE
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Union

from .caveats import CONDITION_EXPIRES_AT, Caveat, CaveatRegistry, expiry_caveat
from .config import LsatConfig
from .errors import CaveatMismatchError, ErrorKind, InvoiceGenerationFailedError, LsatError
from .identifier import HASH_SIZE, MacaroonIdentifier
from .l402 import format_challenge, has_credentials, parse_authorization, supports_lsat
from .ln import Invoice, LNClient
from .macaroon import decode_macaroon, encode_macaroon, mint_macaroon, verify_macaroon
from .preimage import decode_preimage
from .request import RequestContext

logger = logging.getLogger(__name__)

LSAT_TYPE_FREE = "FREE"
LSAT_TYPE_PAID = "PAID"
LSAT_TYPE_CHALLENGE = "CHALLENGE"
LSAT_TYPE_ERROR = "ERROR"

AmountFunc = Callable[[RequestContext], Union[int, Awaitable[int]]]
CaveatFunc = Callable[[RequestContext], Sequence[Caveat]]


@dataclass(frozen=True)
class Challenge:
    """A freshly issued, not yet paid token."""
    macaroon: str  # base64 wire form
    invoice: Invoice
    header: str  # WWW-Authenticate value


@dataclass(frozen=True)
class LsatInfo:
    """Classification of one request."""
    type: str
    preimage: Optional[bytes] = None
    payment_hash: Optional[bytes] = None
    identifier: Optional[MacaroonIdentifier] = None
    challenge: Optional[Challenge] = None
    error: Optional[LsatError] = None

    @property
    def error_kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    @classmethod
    def free(cls) -> "LsatInfo":
        return cls(type=LSAT_TYPE_FREE)

    @classmethod
    def failed(cls, error: LsatError) -> "LsatInfo":
        return cls(type=LSAT_TYPE_ERROR, error=error)


class LsatMiddleware:
    """
    Issue and verify LSAT tokens for one protected resource configuration.

    Args:
        config: Immutable server configuration (root key, scheme, timeouts).
        ln_client: Backend selected at start-up (see ln.init_ln_client).
        amount_func: Prices a request in satoshis; may return an awaitable.
        caveat_func: Caveats to scope a token to a request. Used both when
            issuing and, as the expected set, when verifying.
        registry: Satisfiers for caveat conditions; defaults to path, method
            and expires_at.
    """

    def __init__(
        self,
        config: LsatConfig,
        ln_client: LNClient,
        amount_func: AmountFunc,
        caveat_func: Optional[CaveatFunc] = None,
        registry: Optional[CaveatRegistry] = None,
    ):
        if not callable(amount_func):
            raise ValueError("lsat-middleware: amount_func must be callable")
        self.config = config
        self.ln_client = ln_client
        self.amount_func = amount_func
        self.caveat_func = caveat_func
        self.registry = registry if registry is not None else CaveatRegistry.default()
        if config.macaroon_expiry and CONDITION_EXPIRES_AT not in self.registry:
            raise ValueError(
                "lsat-middleware: macaroon_expiry requires an expires_at satisfier in the registry"
            )

    def _expected_caveats(self, request: RequestContext) -> List[Caveat]:
        if self.caveat_func is None:
            return []
        return list(self.caveat_func(request))

    async def _resolve_amount(self, request: RequestContext) -> int:
        try:
            amount = self.amount_func(request)
            if inspect.isawaitable(amount):
                amount = await amount
        except Exception as exc:
            raise InvoiceGenerationFailedError(f"Could not price request: {exc}") from exc

        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise InvoiceGenerationFailedError(f"Invalid invoice amount: {amount!r}")
        return amount

    async def _request_invoice(self, amount_sats: int, request: RequestContext) -> Invoice:
        try:
            invoice = await asyncio.wait_for(
                self.ln_client.issue_invoice(amount_sats, self.config.memo, request),
                timeout=self.config.invoice_timeout,
            )
        except LsatError:
            raise
        except asyncio.TimeoutError as exc:
            raise InvoiceGenerationFailedError(
                f"Lightning backend timed out after {self.config.invoice_timeout}s"
            ) from exc
        except Exception as exc:
            raise InvoiceGenerationFailedError(f"Error generating invoice: {exc}") from exc

        if len(invoice.payment_hash) != HASH_SIZE:
            raise InvoiceGenerationFailedError(
                f"Backend returned a {len(invoice.payment_hash)}-byte payment hash"
            )
        return invoice

    async def issue_challenge(self, request: RequestContext) -> Challenge:
        """
        Create an invoice and a macaroon bound to its payment hash.

        Raises:
            LsatError: Nothing is issued if any step fails.
        """
        amount_sats = await self._resolve_amount(request)
        try:
            caveats = self._expected_caveats(request)
        except LsatError:
            raise
        except Exception as exc:
            raise InvoiceGenerationFailedError(f"Could not scope token: {exc!r}") from exc

        invoice = await self._request_invoice(amount_sats, request)

        identifier = MacaroonIdentifier.new(invoice.payment_hash)
        if self.config.macaroon_expiry:
            caveats.append(expiry_caveat(int(time.time()) + self.config.macaroon_expiry))

        macaroon = mint_macaroon(
            self.config.root_key,
            identifier,
            caveats,
            location=self.config.location,
        )
        encoded = encode_macaroon(macaroon)

        logger.info(
            "Issued LSAT challenge for %d sats, payment hash %s",
            amount_sats,
            invoice.payment_hash_hex,
        )
        return Challenge(
            macaroon=encoded,
            invoice=invoice,
            header=format_challenge(encoded, invoice.payment_request, self.config.scheme),
        )

    def verify_credential(self, auth_header: Optional[str], request: RequestContext) -> LsatInfo:
        """
        Verify an Authorization header value. Pure computation, no I/O.

        Returns:
            LsatInfo of type PAID, or ERROR carrying the failure kind.
        """
        try:
            credentials = parse_authorization(auth_header)
            macaroon = decode_macaroon(credentials.macaroon)
            preimage = decode_preimage(credentials.preimage)
            try:
                expected = self._expected_caveats(request)
            except LsatError:
                raise
            except Exception as exc:
                raise CaveatMismatchError("expected caveats", reason=repr(exc)) from exc
            token = verify_macaroon(
                macaroon,
                expected,
                self.config.root_key,
                preimage,
                request=request,
                registry=self.registry,
            )
        except LsatError as exc:
            logger.warning("LSAT verification failed on %s: %s", request.path, exc.kind.value)
            return LsatInfo.failed(exc)

        return LsatInfo(
            type=LSAT_TYPE_PAID,
            preimage=token.preimage,
            payment_hash=token.payment_hash,
            identifier=token.identifier,
        )

    async def handle(self, request: RequestContext) -> LsatInfo:
        """Classify a request, issuing a challenge when the client supports LSAT."""
        auth_header = request.header("Authorization")
        if has_credentials(auth_header):
            return self.verify_credential(auth_header, request)

        if not supports_lsat(request):
            return LsatInfo.free()

        try:
            challenge = await self.issue_challenge(request)
        except LsatError as exc:
            logger.error("LSAT issuance failed on %s: %s", request.path, exc.detail)
            return LsatInfo.failed(exc)

        return LsatInfo(
            type=LSAT_TYPE_CHALLENGE,
            payment_hash=challenge.invoice.payment_hash,
            challenge=challenge,
        )
