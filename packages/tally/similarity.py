"""String similarity scoring behind a small interface.

The fuzzy vendor matcher only needs ``score(a, b) -> float`` in ``[0, 1]``
(1.0 = identical). ``TokenScorer`` is the default. It averages rapidfuzz's
token-set ratio, which tolerates reordered or extra tokens such as store
numbers and city suffixes, with the token-sort ratio, which charges for
tokens only one side has. A short vendor whose tokens are a subset of the
description (``"SEATTLE"``, ``"POS PURCHASE"``) therefore scores below a
near-identical vendor instead of tying it at 1.0.
"""

from __future__ import annotations

import os
from typing import Protocol, runtime_checkable

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

# Maximum distance (1 - similarity) accepted as a fuzzy match.
DEFAULT_MAX_DISTANCE = 0.3
_MAX_DISTANCE_ENV = "TALLY_FUZZY_MAX_DISTANCE"


@runtime_checkable
class SimilarityScorer(Protocol):
    def score(self, a: str, b: str) -> float: ...


class TokenScorer:
    """Mean of token-set and token-sort ratios on lower-cased, punctuation-free strings."""

    def score(self, a: str, b: str) -> float:
        token_set = fuzz.token_set_ratio(a, b, processor=default_process)
        token_sort = fuzz.token_sort_ratio(a, b, processor=default_process)
        return (token_set + token_sort) / 200.0


def max_distance_from_env(default: float = DEFAULT_MAX_DISTANCE) -> float:
    """Return the configured maximum distance, validating the range ``[0, 1]``."""

    raw = os.getenv(_MAX_DISTANCE_ENV)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ValueError(f"{_MAX_DISTANCE_ENV} must be a number, got {raw!r}") from e
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{_MAX_DISTANCE_ENV} must be within [0, 1], got {value}")
    return value


__all__ = [
    "DEFAULT_MAX_DISTANCE",
    "SimilarityScorer",
    "TokenScorer",
    "max_distance_from_env",
]
