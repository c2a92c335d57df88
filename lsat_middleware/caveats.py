"""
Caveat engine.

Caveats are first-party macaroon restrictions in canonical ``condition=value``
form. At issuance they are appended to the macaroon (each append re-signs the
chain inside pymacaroons). At verification every caveat carried by the
macaroon is dispatched by condition name to a satisfier; any caveat nobody
can satisfy fails the token.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from pymacaroons import Macaroon

from .errors import CaveatMismatchError
from .request import RequestContext


CONDITION_PATH = "path"
CONDITION_METHOD = "method"
CONDITION_EXPIRES_AT = "expires_at"


@dataclass(frozen=True)
class Caveat:
    condition: str
    value: str

    def __str__(self) -> str:
        return f"{self.condition}={self.value}"

    @classmethod
    def parse(cls, text: str) -> "Caveat":
        """
        Parse ``condition=value`` (whitespace around either side is ignored).

        Raises:
            CaveatMismatchError: If the text is not a well-formed caveat.
        """
        condition, sep, value = text.partition("=")
        condition = condition.strip()
        if not sep or not condition:
            raise CaveatMismatchError(text, "malformed caveat")
        return cls(condition=condition, value=value.strip())


def path_caveat(path: str) -> Caveat:
    return Caveat(CONDITION_PATH, path)


def method_caveat(method: str) -> Caveat:
    return Caveat(CONDITION_METHOD, method.upper())


def expiry_caveat(expires_at: int) -> Caveat:
    return Caveat(CONDITION_EXPIRES_AT, str(int(expires_at)))


class Satisfier(Protocol):
    """Predicate for a single caveat condition."""

    condition: str

    def evaluate(self, value: str, request: Optional[RequestContext]) -> bool:
        ...


class PathSatisfier:
    condition = CONDITION_PATH

    def evaluate(self, value: str, request: Optional[RequestContext]) -> bool:
        return request is not None and request.path == value


class MethodSatisfier:
    condition = CONDITION_METHOD

    def evaluate(self, value: str, request: Optional[RequestContext]) -> bool:
        return request is not None and request.method.upper() == value.upper()


class ExpirySatisfier:
    condition = CONDITION_EXPIRES_AT

    def evaluate(self, value: str, request: Optional[RequestContext]) -> bool:
        try:
            expires_at = int(value)
        except ValueError:
            return False
        return time.time() <= expires_at


class CaveatRegistry:
    """
    Lookup of satisfiers keyed by condition name.

    Unregistered conditions are never satisfied.
    """

    def __init__(self, satisfiers: Iterable[Satisfier] = ()):
        self._satisfiers: Dict[str, Satisfier] = {}
        for satisfier in satisfiers:
            self.register(satisfier)

    @classmethod
    def default(cls) -> "CaveatRegistry":
        return cls([PathSatisfier(), MethodSatisfier(), ExpirySatisfier()])

    def register(self, satisfier: Satisfier) -> None:
        self._satisfiers[satisfier.condition] = satisfier

    def get(self, condition: str) -> Optional[Satisfier]:
        return self._satisfiers.get(condition)

    def __contains__(self, condition: str) -> bool:
        return condition in self._satisfiers


def attach_caveats(macaroon: Macaroon, caveats: Sequence[Caveat]) -> Macaroon:
    """Append caveats in order as first-party caveats."""
    for caveat in caveats:
        macaroon.add_first_party_caveat(str(caveat))
    return macaroon


def macaroon_caveats(macaroon: Macaroon) -> List[str]:
    """Return the first-party caveat strings carried by a macaroon, in order."""
    result = []
    for caveat in macaroon.first_party_caveats():
        caveat_id = caveat.caveat_id
        if isinstance(caveat_id, bytes):
            caveat_id = caveat_id.decode("utf-8", errors="replace")
        result.append(caveat_id)
    return result


def satisfy_caveats(
    caveats: Sequence[str],
    expected: Sequence[Caveat] = (),
    request: Optional[RequestContext] = None,
    registry: Optional[CaveatRegistry] = None,
) -> None:
    """
    Check a macaroon's caveats against the expected set and the request.

    Args:
        caveats: Caveat strings carried by the macaroon, in chain order.
        expected: Caveats the caller's caveat function produces for this
            request. Each expected condition must appear in ``caveats`` and
            each macaroon caveat with that condition must carry one of the
            expected values.
        request: Current request metadata, handed to registered satisfiers.
        registry: Satisfiers for conditions; defaults to the built-ins.

    Raises:
        CaveatMismatchError: Naming the first caveat that fails.
    """
    if registry is None:
        registry = CaveatRegistry.default()

    expected_values: Dict[str, List[str]] = {}
    for caveat in expected:
        expected_values.setdefault(caveat.condition, []).append(caveat.value)

    parsed = [Caveat.parse(text) for text in caveats]

    present = {caveat.condition for caveat in parsed}
    for caveat in expected:
        if caveat.condition not in present:
            raise CaveatMismatchError(str(caveat), "missing from macaroon")

    for caveat in parsed:
        satisfier = registry.get(caveat.condition)
        if caveat.condition not in expected_values and satisfier is None:
            raise CaveatMismatchError(str(caveat), "no satisfier")

        values = expected_values.get(caveat.condition)
        if values is not None and caveat.value not in values:
            raise CaveatMismatchError(str(caveat))

        if satisfier is not None and not satisfier.evaluate(caveat.value, request):
            raise CaveatMismatchError(str(caveat))
