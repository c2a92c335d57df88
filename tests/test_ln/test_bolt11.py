"""Tests for BOLT11 field extraction."""

import hashlib

import pytest

from lsat_middleware.ln.bolt11 import Bolt11Error, decode_payment_hash, extract_amount_sats

PAYMENT_HASH = hashlib.sha256(b"bolt11").digest()


class TestDecodePaymentHash:
    def test_payment_hash(self, make_invoice):
        assert decode_payment_hash(make_invoice(PAYMENT_HASH)) == PAYMENT_HASH

    def test_uppercase(self, make_invoice):
        assert decode_payment_hash(make_invoice(PAYMENT_HASH).upper()) == PAYMENT_HASH

    def test_bad_checksum(self, make_invoice):
        invoice = make_invoice(PAYMENT_HASH)
        corrupted = invoice[:-1] + ("q" if invoice[-1] != "q" else "p")
        with pytest.raises(Bolt11Error, match="checksum"):
            decode_payment_hash(corrupted)

    def test_not_lightning(self, make_invoice):
        with pytest.raises(Bolt11Error):
            decode_payment_hash(make_invoice(PAYMENT_HASH, hrp="bc"))

    def test_garbage(self):
        with pytest.raises(Bolt11Error):
            decode_payment_hash("lnbc1garbage")
        with pytest.raises(Bolt11Error):
            decode_payment_hash("")


class TestExtractAmountSats:
    @pytest.mark.parametrize(
        "invoice, expected",
        [
            ("lnbc10u1pjq", 1000),
            ("lnbc50n1pjq", 5),
            ("lnbc2500u1pjq", 250000),
            ("lnbc1m1pjq", 100000),
            ("lntb20n1pjq", 2),
            ("lnbc1pjq", None),
        ],
    )
    def test_amounts(self, invoice, expected):
        assert extract_amount_sats(invoice) == expected
