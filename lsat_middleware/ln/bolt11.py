"""Pure Python BOLT11 field extraction.

Only what LSAT needs: the payment hash (tagged field ``p``) and the amount in
the human-readable part. The bech32 checksum is verified; the node signature
is not.

BOLT11 layout: hrp "ln{network}{amount}{multiplier}" + "1" + data, where data
is a 35-bit timestamp, tagged fields, and a 520-bit signature.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import List, Optional

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]

_TIMESTAMP_WORDS = 7
_SIGNATURE_WORDS = 104
_TAG_PAYMENT_HASH = _CHARSET.index("p")
_PAYMENT_HASH_WORDS = 52

_HRP_RE = re.compile(r"^ln(?P<network>[a-z]+?)(?P<amount>\d+)?(?P<multiplier>[munp])?$")

_MULTIPLIERS = {
    "m": Decimal("0.001"),
    "u": Decimal("0.000001"),
    "n": Decimal("0.000000001"),
    "p": Decimal("0.000000000001"),
}

_SATS_PER_BTC = Decimal("100000000")


class Bolt11Error(ValueError):
    """Invoice could not be decoded."""


def _polymod(values: List[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _GENERATOR[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp: str) -> List[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _bech32_decode(invoice: str):
    if invoice.lower() != invoice and invoice.upper() != invoice:
        raise Bolt11Error("Mixed-case invoice")
    invoice = invoice.lower()

    pos = invoice.rfind("1")
    if pos < 1 or pos + 7 > len(invoice):
        raise Bolt11Error("Missing bech32 separator")

    hrp = invoice[:pos]
    try:
        words = [_CHARSET.index(c) for c in invoice[pos + 1:]]
    except ValueError as exc:
        raise Bolt11Error("Invalid bech32 character") from exc

    if _polymod(_hrp_expand(hrp) + words) != 1:
        raise Bolt11Error("Invalid bech32 checksum")

    return hrp, words[:-6]


def _words_to_bytes(words: List[int]) -> bytes:
    acc = 0
    bits = 0
    out = bytearray()
    for word in words:
        acc = (acc << 5) | word
        bits += 5
        while bits >= 8:
            bits -= 8
            out.append((acc >> bits) & 0xFF)
    return bytes(out)


def decode_payment_hash(invoice: str) -> bytes:
    """Extract the 32-byte payment hash from a BOLT11 invoice.

    Raises:
        Bolt11Error: If the invoice is malformed or carries no payment hash.
    """
    if not invoice:
        raise Bolt11Error("Empty invoice")

    hrp, words = _bech32_decode(invoice.strip())
    if not hrp.startswith("ln"):
        raise Bolt11Error(f"Not a lightning invoice: {hrp}")
    if len(words) < _TIMESTAMP_WORDS + _SIGNATURE_WORDS:
        raise Bolt11Error("Invoice too short")

    tagged = words[_TIMESTAMP_WORDS:-_SIGNATURE_WORDS]
    i = 0
    while i + 3 <= len(tagged):
        tag = tagged[i]
        length = tagged[i + 1] * 32 + tagged[i + 2]
        data = tagged[i + 3:i + 3 + length]
        i += 3 + length
        # Readers must skip a `p` field of unexpected length
        if tag == _TAG_PAYMENT_HASH and length == _PAYMENT_HASH_WORDS:
            return _words_to_bytes(data)[:32]

    raise Bolt11Error("Invoice has no payment hash")


def extract_amount_sats(invoice: str) -> Optional[int]:
    """Amount in satoshis from the human-readable part, or None for any-amount invoices."""
    if not invoice:
        return None

    invoice = invoice.strip().lower()
    pos = invoice.rfind("1")
    if pos < 1:
        return None

    match = _HRP_RE.match(invoice[:pos])
    if not match or match.group("amount") is None:
        return None

    btc_amount = Decimal(match.group("amount"))
    multiplier = match.group("multiplier")
    if multiplier:
        btc_amount *= _MULTIPLIERS[multiplier]

    return int(btc_amount * _SATS_PER_BTC)
