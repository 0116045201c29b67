"""Deterministic seeded random ordering."""

from __future__ import annotations

import time

from sqlalchemy import ColumnElement, Integer, cast

from ..errors import FilterValidationError

RANDOM_MODULUS = 2_147_483_647
SEED_SPACE = 100_000_000
_SQUARE_FACTOR = 52_959_209
_LINEAR_FACTOR = 1_047_483_763


def parse_random_sort(sort: str | None) -> tuple[bool, int | None]:
    """Split ``random`` / ``random_<seed>`` sort names.

    Returns ``(is_random, seed)``; the seed is reduced into the seed space.
    """

    if not sort:
        return False, None
    if sort == "random":
        return True, None
    if not sort.startswith("random_"):
        return False, None
    raw_seed = sort[len("random_"):]
    try:
        seed = int(raw_seed)
    except ValueError:
        raise FilterValidationError("sort", f"Invalid random seed {raw_seed!r}") from None
    return True, normalise_seed(seed)


def normalise_seed(seed: int) -> int:
    """Fold any integer seed into the seed space."""

    return abs(int(seed)) % SEED_SPACE


def generate_seed(user_id: int, now_ms: int | None = None) -> int:
    """Derive a fresh seed for a request that did not supply one."""

    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return (int(user_id) + now_ms) % SEED_SPACE


def seeded_sort_key(entity_id: int, seed: int) -> int:
    """Return the ordering key of ``entity_id`` under ``seed``."""

    mixed = entity_id + seed
    folded = mixed % RANDOM_MODULUS
    squared = folded * folded % RANDOM_MODULUS
    return (
        squared * _SQUARE_FACTOR % RANDOM_MODULUS
        + mixed * _LINEAR_FACTOR % RANDOM_MODULUS
    ) % RANDOM_MODULUS


def seeded_sort_expression(id_column: ColumnElement, seed: int) -> ColumnElement:
    """SQL twin of :func:`seeded_sort_key` over a string ID column.

    Every intermediate product is reduced before the next multiplication so
    the arithmetic stays inside 64-bit integers.
    """

    mixed = cast(id_column, Integer) + seed
    folded = mixed % RANDOM_MODULUS
    squared = folded * folded % RANDOM_MODULUS
    return (
        squared * _SQUARE_FACTOR % RANDOM_MODULUS
        + mixed * _LINEAR_FACTOR % RANDOM_MODULUS
    ) % RANDOM_MODULUS
