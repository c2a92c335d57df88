"""Tests for LSAT issuance and verification orchestration."""

import asyncio
import hashlib
import secrets
import time
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import AsyncMock

import pytest

from lsat_middleware.caveats import CaveatRegistry, PathSatisfier, path_caveat
from lsat_middleware.config import LsatConfig
from lsat_middleware.errors import ErrorKind, InvoiceGenerationFailedError
from lsat_middleware.ln import Invoice, LNClient
from lsat_middleware.middleware import (
    LSAT_TYPE_CHALLENGE,
    LSAT_TYPE_ERROR,
    LSAT_TYPE_FREE,
    LSAT_TYPE_PAID,
    LsatMiddleware,
)
from lsat_middleware.request import RequestContext

ROOT_KEY = b"test-secret-for-lsat-middleware"
LSAT_HEADERS = {"Accept-Authenticate": "L402"}


class FakeLNClient(LNClient):
    """Issues invoices for random preimages and remembers them."""

    def __init__(self):
        self.preimages = {}
        self.calls = []

    async def issue_invoice(self, amount_sats, memo, request=None):
        self.calls.append((amount_sats, memo, request))
        preimage = secrets.token_bytes(32)
        payment_hash = hashlib.sha256(preimage).digest()
        self.preimages[payment_hash] = preimage
        return Invoice(
            payment_hash=payment_hash,
            payment_request=f"lnbc{amount_sats}0n1test{payment_hash.hex()[:16]}",
            amount_sats=amount_sats,
        )


class SlowLNClient(LNClient):
    async def issue_invoice(self, amount_sats, memo, request=None):
        await asyncio.sleep(1)


def make_middleware(ln_client=None, caveat_func=None, **config_opts):
    config = LsatConfig(root_key=ROOT_KEY, **config_opts)
    return LsatMiddleware(
        config,
        ln_client or FakeLNClient(),
        amount_func=lambda request: 5,
        caveat_func=caveat_func,
    )


def make_request(path="/protected", headers=None):
    return RequestContext(method="GET", path=path, headers=headers or {})


def auth_headers(challenge, preimage):
    return {"Authorization": f"L402 {challenge.macaroon}:{preimage.hex()}"}


class TestHandle:
    @pytest.mark.asyncio
    async def test_free_without_signal(self):
        info = await make_middleware().handle(make_request())
        assert info.type == LSAT_TYPE_FREE

    @pytest.mark.asyncio
    async def test_bearer_token_is_not_a_credential(self):
        info = await make_middleware().handle(make_request(headers={"Authorization": "Bearer x"}))
        assert info.type == LSAT_TYPE_FREE

    @pytest.mark.asyncio
    async def test_challenge_with_signal(self):
        ln_client = FakeLNClient()
        middleware = make_middleware(ln_client)
        request = make_request(headers=LSAT_HEADERS)

        info = await middleware.handle(request)

        assert info.type == LSAT_TYPE_CHALLENGE
        assert ln_client.calls == [(5, "LSAT", request)]
        challenge = info.challenge
        assert challenge.header.startswith("L402 macaroon=")
        assert f"invoice={challenge.invoice.payment_request}" in challenge.header
        assert info.payment_hash == challenge.invoice.payment_hash

    @pytest.mark.asyncio
    async def test_challenge_then_paid(self):
        ln_client = FakeLNClient()
        middleware = make_middleware(ln_client)

        info = await middleware.handle(make_request(headers=LSAT_HEADERS))
        challenge = info.challenge
        preimage = ln_client.preimages[challenge.invoice.payment_hash]

        paid = await middleware.handle(make_request(headers=auth_headers(challenge, preimage)))
        assert paid.type == LSAT_TYPE_PAID
        assert paid.preimage == preimage
        assert paid.payment_hash == challenge.invoice.payment_hash

    @pytest.mark.asyncio
    async def test_credential_takes_precedence_over_signal(self):
        headers = {"Authorization": "L402 garbage", **LSAT_HEADERS}
        info = await make_middleware().handle(make_request(headers=headers))
        assert info.type == LSAT_TYPE_ERROR
        assert info.error_kind == ErrorKind.MALFORMED_HEADER


class TestIssuance:
    @pytest.mark.asyncio
    async def test_backend_failure(self):
        ln_client = AsyncMock(spec=LNClient)
        ln_client.issue_invoice.side_effect = RuntimeError("node unreachable")
        info = await make_middleware(ln_client).handle(make_request(headers=LSAT_HEADERS))

        assert info.type == LSAT_TYPE_ERROR
        assert info.error_kind == ErrorKind.INVOICE_GENERATION_FAILED
        assert isinstance(info.error.__cause__, RuntimeError)
        assert info.challenge is None

    @pytest.mark.asyncio
    async def test_backend_lsat_error_passes_through(self):
        ln_client = AsyncMock(spec=LNClient)
        ln_client.issue_invoice.side_effect = InvoiceGenerationFailedError("LND returned 500")
        info = await make_middleware(ln_client).handle(make_request(headers=LSAT_HEADERS))
        assert info.error.detail == "LND returned 500"

    @pytest.mark.asyncio
    async def test_backend_timeout(self):
        middleware = make_middleware(SlowLNClient(), invoice_timeout=0.05)
        info = await middleware.handle(make_request(headers=LSAT_HEADERS))
        assert info.error_kind == ErrorKind.INVOICE_GENERATION_FAILED
        assert "timed out" in info.error.detail

    @pytest.mark.asyncio
    async def test_bad_payment_hash_from_backend(self):
        ln_client = AsyncMock(spec=LNClient)
        ln_client.issue_invoice.return_value = Invoice(b"short", "lnbc1", 5)
        info = await make_middleware(ln_client).handle(make_request(headers=LSAT_HEADERS))
        assert info.error_kind == ErrorKind.INVOICE_GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_invalid_amount(self):
        middleware = LsatMiddleware(
            LsatConfig(root_key=ROOT_KEY), FakeLNClient(), amount_func=lambda request: 0
        )
        info = await middleware.handle(make_request(headers=LSAT_HEADERS))
        assert info.error_kind == ErrorKind.INVOICE_GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_async_amount_func(self):
        async def price(request):
            return 21

        ln_client = FakeLNClient()
        middleware = LsatMiddleware(LsatConfig(root_key=ROOT_KEY), ln_client, amount_func=price)
        challenge = await middleware.issue_challenge(make_request())
        assert challenge.invoice.amount_sats == 21

    @pytest.mark.asyncio
    async def test_fresh_token_per_issuance(self):
        middleware = make_middleware()
        first = await middleware.issue_challenge(make_request())
        second = await middleware.issue_challenge(make_request())
        assert first.macaroon != second.macaroon
        assert first.invoice.payment_hash != second.invoice.payment_hash


    @pytest.mark.asyncio
    async def test_caveat_func_failure(self):
        def scope(request):
            raise KeyError("tenant")

        ln_client = AsyncMock(spec=LNClient)
        info = await make_middleware(ln_client, caveat_func=scope).handle(
            make_request(headers=LSAT_HEADERS)
        )

        assert info.type == LSAT_TYPE_ERROR
        assert info.error_kind == ErrorKind.INVOICE_GENERATION_FAILED
        assert isinstance(info.error.__cause__, KeyError)
        ln_client.issue_invoice.assert_not_called()


class TestVerification:
    @pytest.mark.asyncio
    async def test_invalid_macaroon_encoding(self):
        info = make_middleware().verify_credential("L402 !!!:" + "00" * 32, make_request())
        assert info.error_kind == ErrorKind.INVALID_MACAROON_ENCODING

    @pytest.mark.asyncio
    async def test_invalid_preimage_encoding(self):
        middleware = make_middleware()
        challenge = await middleware.issue_challenge(make_request())
        info = middleware.verify_credential(f"L402 {challenge.macaroon}:zz", make_request())
        assert info.error_kind == ErrorKind.INVALID_PREIMAGE_ENCODING

    @pytest.mark.asyncio
    async def test_wrong_preimage(self):
        middleware = make_middleware()
        challenge = await middleware.issue_challenge(make_request())
        info = middleware.verify_credential(f"L402 {challenge.macaroon}:{'00' * 32}", make_request())
        assert info.type == LSAT_TYPE_ERROR
        assert info.error_kind == ErrorKind.PREIMAGE_MISMATCH
        assert info.error.detail.startswith("Invalid Preimage")

    @pytest.mark.asyncio
    async def test_different_root_key(self):
        ln_client = FakeLNClient()
        issuer = make_middleware(ln_client)
        challenge = await issuer.issue_challenge(make_request())
        preimage = ln_client.preimages[challenge.invoice.payment_hash]

        verifier = LsatMiddleware(
            LsatConfig(root_key=b"another-server"), ln_client, amount_func=lambda r: 5
        )
        info = verifier.verify_credential(
            f"L402 {challenge.macaroon}:{preimage.hex()}", make_request()
        )
        assert info.error_kind == ErrorKind.SIGNATURE_INVALID

    @pytest.mark.asyncio
    async def test_path_scoped_token(self):
        ln_client = FakeLNClient()
        middleware = make_middleware(ln_client, caveat_func=lambda r: [path_caveat(r.path)])
        challenge = await middleware.issue_challenge(make_request("/protected"))
        preimage = ln_client.preimages[challenge.invoice.payment_hash]
        header = f"L402 {challenge.macaroon}:{preimage.hex()}"

        assert middleware.verify_credential(header, make_request("/protected")).type == LSAT_TYPE_PAID
        other = middleware.verify_credential(header, make_request("/other"))
        assert other.error_kind == ErrorKind.CAVEAT_MISMATCH
        assert "path=/protected" in other.error.detail

    @pytest.mark.asyncio
    async def test_unscoped_token_rejected_when_caveats_expected(self):
        ln_client = FakeLNClient()
        issuer = make_middleware(ln_client)
        challenge = await issuer.issue_challenge(make_request())
        preimage = ln_client.preimages[challenge.invoice.payment_hash]

        scoped = make_middleware(ln_client, caveat_func=lambda r: [path_caveat(r.path)])
        info = scoped.verify_credential(f"L402 {challenge.macaroon}:{preimage.hex()}", make_request())
        assert info.error_kind == ErrorKind.CAVEAT_MISMATCH

    @pytest.mark.asyncio
    async def test_expiry_caveat(self, monkeypatch):
        ln_client = FakeLNClient()
        middleware = make_middleware(ln_client, macaroon_expiry=60)
        challenge = await middleware.issue_challenge(make_request())
        preimage = ln_client.preimages[challenge.invoice.payment_hash]
        header = f"L402 {challenge.macaroon}:{preimage.hex()}"

        assert middleware.verify_credential(header, make_request()).type == LSAT_TYPE_PAID

        later = time.time() + 120
        monkeypatch.setattr("lsat_middleware.caveats.time.time", lambda: later)
        info = middleware.verify_credential(header, make_request())
        assert info.error_kind == ErrorKind.CAVEAT_MISMATCH
        assert "expires_at" in info.error.detail

    @pytest.mark.asyncio
    async def test_legacy_lsat_scheme(self):
        ln_client = FakeLNClient()
        middleware = make_middleware(ln_client)
        challenge = await middleware.issue_challenge(make_request())
        preimage = ln_client.preimages[challenge.invoice.payment_hash]
        info = middleware.verify_credential(f"LSAT {challenge.macaroon}:{preimage.hex()}", make_request())
        assert info.type == LSAT_TYPE_PAID


    @pytest.mark.asyncio
    async def test_caveat_func_failure(self):
        ln_client = FakeLNClient()
        issuer = make_middleware(ln_client)
        challenge = await issuer.issue_challenge(make_request())
        preimage = ln_client.preimages[challenge.invoice.payment_hash]

        def scope(request):
            raise KeyError("tenant")

        verifier = make_middleware(ln_client, caveat_func=scope)
        info = await verifier.handle(make_request(headers=auth_headers(challenge, preimage)))

        assert info.type == LSAT_TYPE_ERROR
        assert info.error_kind == ErrorKind.CAVEAT_MISMATCH
        assert isinstance(info.error.__cause__, KeyError)


class TestConcurrentVerification:
    @pytest.mark.asyncio
    async def test_parallel_verifications_do_not_cross(self):
        ln_client = FakeLNClient()
        middleware = make_middleware(ln_client, caveat_func=lambda r: [path_caveat(r.path)])

        count = 32
        paths = [f"/resource/{i}" for i in range(count)]
        challenges = await asyncio.gather(
            *(middleware.issue_challenge(make_request(path)) for path in paths)
        )
        jobs = []
        for i, (path, challenge) in enumerate(zip(paths, challenges)):
            preimage = ln_client.preimages[challenge.invoice.payment_hash]
            if i % 3 == 0:
                # Pair this macaroon with the next token's preimage
                nxt = challenges[(i + 1) % count]
                preimage = ln_client.preimages[nxt.invoice.payment_hash]
            jobs.append((f"L402 {challenge.macaroon}:{preimage.hex()}", make_request(path)))

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda job: middleware.verify_credential(*job), jobs))

        for i, (challenge, info) in enumerate(zip(challenges, results)):
            if i % 3 == 0:
                assert info.error_kind == ErrorKind.PREIMAGE_MISMATCH
            else:
                assert info.type == LSAT_TYPE_PAID
                assert info.payment_hash == challenge.invoice.payment_hash


class TestConfig:
    def test_requires_root_key(self):
        with pytest.raises(ValueError, match="root_key is required"):
            LsatConfig(root_key=b"")

    def test_str_root_key_is_encoded(self):
        assert LsatConfig(root_key="secret").root_key == b"secret"

    def test_requires_callable_amount_func(self):
        with pytest.raises(ValueError, match="amount_func"):
            LsatMiddleware(LsatConfig(root_key=ROOT_KEY), FakeLNClient(), amount_func=5)

    def test_expiry_requires_expiry_satisfier(self):
        with pytest.raises(ValueError, match="expires_at"):
            LsatMiddleware(
                LsatConfig(root_key=ROOT_KEY, macaroon_expiry=60),
                FakeLNClient(),
                amount_func=lambda r: 5,
                registry=CaveatRegistry([PathSatisfier()]),
            )

    def test_custom_registry_without_expiry(self):
        middleware = LsatMiddleware(
            LsatConfig(root_key=ROOT_KEY),
            FakeLNClient(),
            amount_func=lambda r: 5,
            registry=CaveatRegistry([PathSatisfier()]),
        )
        assert "expires_at" not in middleware.registry
