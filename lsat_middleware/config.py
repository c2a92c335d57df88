"""
Immutable configuration, built once at process start.

The host application maps its own settings (env vars, files, ...) onto these
dataclasses; nothing in the package reads the environment.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .l402 import SCHEME_L402
from .macaroon import DEFAULT_LOCATION

LND_CLIENT_TYPE = "LND"
LNURL_CLIENT_TYPE = "LNURL"
NWC_CLIENT_TYPE = "NWC"


@dataclass(frozen=True)
class LsatConfig:
    root_key: bytes
    scheme: str = SCHEME_L402
    location: str = DEFAULT_LOCATION
    memo: str = "LSAT"
    invoice_timeout: float = 30.0
    macaroon_expiry: Optional[int] = None  # seconds; adds an expires_at caveat

    def __post_init__(self) -> None:
        if not self.root_key:
            raise ValueError("lsat-middleware: root_key is required for macaroon signing")
        if isinstance(self.root_key, str):
            object.__setattr__(self, "root_key", self.root_key.encode("utf-8"))
        if self.invoice_timeout <= 0:
            raise ValueError("lsat-middleware: invoice_timeout must be positive")


@dataclass(frozen=True)
class LNDOptions:
    """LND REST endpoint authenticated with a hex-encoded invoice macaroon."""
    address: str
    macaroon_hex: str
    tls_cert_path: Optional[str] = None


@dataclass(frozen=True)
class LNURLOptions:
    """Lightning Address (user@domain) or LNURL-pay https URL."""
    address: str


@dataclass(frozen=True)
class NWCOptions:
    """Nostr Wallet Connect connection string (nostr+walletconnect://...)."""
    connection_url: str


@dataclass(frozen=True)
class LNClientConfig:
    ln_client_type: str
    lnd: Optional[LNDOptions] = None
    lnurl: Optional[LNURLOptions] = None
    nwc: Optional[NWCOptions] = None
