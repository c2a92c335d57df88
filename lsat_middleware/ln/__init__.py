"""
Lightning backends that issue invoices for LSAT challenges.

Each backend implements LNClient.issue_invoice(). The backend is chosen once,
from an LNClientConfig, and injected into LsatMiddleware.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..config import (
    LND_CLIENT_TYPE,
    LNURL_CLIENT_TYPE,
    NWC_CLIENT_TYPE,
    LNClientConfig,
)
from ..errors import UnsupportedBackendError
from ..request import RequestContext


@dataclass(frozen=True)
class Invoice:
    """Invoice issued by a backend."""
    payment_hash: bytes
    payment_request: str
    amount_sats: int

    @property
    def payment_hash_hex(self) -> str:
        return self.payment_hash.hex()


@dataclass(frozen=True)
class InvoiceStatus:
    """Settlement state reported by a backend lookup."""
    settled: bool
    preimage: Optional[bytes] = None


class LNClient(ABC):
    """
    Abstract base for invoice-issuing Lightning backends.

    Only issue_invoice is required; verification never contacts the backend.
    lookup_invoice is an optional capability for hosts that want to poll
    settlement. Backends without a lookup API (LNURL-pay) keep the default,
    which raises NotImplementedError.
    """

    @abstractmethod
    async def issue_invoice(
        self,
        amount_sats: int,
        memo: str,
        request: Optional[RequestContext] = None,
    ) -> Invoice:
        """Create an invoice.

        Raises:
            InvoiceGenerationFailedError: With the backend cause attached.
        """

    async def lookup_invoice(self, payment_hash: bytes) -> InvoiceStatus:
        """Look up settlement by payment hash, where the backend supports it."""
        raise NotImplementedError(f"{type(self).__name__} does not support invoice lookups")

    async def close(self) -> None:
        """Release any long-lived connection."""


def init_ln_client(config: LNClientConfig) -> LNClient:
    """
    Build the configured backend.

    Raises:
        UnsupportedBackendError: Unknown type, or options missing for the type.
    """
    client_type = (config.ln_client_type or "").upper()

    if client_type == LND_CLIENT_TYPE:
        if config.lnd is None:
            raise UnsupportedBackendError("LND client type requires LNDOptions")
        from .lnd import LNDClient

        return LNDClient(
            address=config.lnd.address,
            macaroon_hex=config.lnd.macaroon_hex,
            tls_cert_path=config.lnd.tls_cert_path,
        )

    if client_type == LNURL_CLIENT_TYPE:
        if config.lnurl is None:
            raise UnsupportedBackendError("LNURL client type requires LNURLOptions")
        from .lnurl import LNURLClient

        return LNURLClient(address=config.lnurl.address)

    if client_type == NWC_CLIENT_TYPE:
        if config.nwc is None:
            raise UnsupportedBackendError("NWC client type requires NWCOptions")
        from .nwc import NWCClient

        return NWCClient(config.nwc.connection_url)

    raise UnsupportedBackendError(f"LN Client type not recognized: {config.ln_client_type}")


__all__ = [
    "Invoice",
    "InvoiceStatus",
    "LNClient",
    "init_ln_client",
]
