"""Shared test helpers."""

import pytest

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"


def _polymod(values):
    generator = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= generator[i] if ((top >> i) & 1) else 0
    return chk


def _hrp_expand(hrp):
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _to_words(data):
    acc = 0
    bits = 0
    words = []
    for byte in data:
        acc = (acc << 8) | byte
        bits += 8
        while bits >= 5:
            bits -= 5
            words.append((acc >> bits) & 31)
    if bits:
        words.append((acc << (5 - bits)) & 31)
    return words


def build_invoice(payment_hash: bytes, hrp: str = "lnbc50n") -> str:
    """Encode a minimal BOLT11 string: zero timestamp, a `p` field, zero signature."""
    hash_words = _to_words(payment_hash)
    words = [0] * 7
    words += [1, len(hash_words) >> 5, len(hash_words) & 31] + hash_words
    words += [0] * 104
    polymod = _polymod(_hrp_expand(hrp) + words + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(BECH32_CHARSET[w] for w in words + checksum)


@pytest.fixture
def make_invoice():
    return build_invoice
