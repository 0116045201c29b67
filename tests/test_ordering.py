import pytest

from app.errors import FilterValidationError
from app.query.ordering import (
    RANDOM_MODULUS,
    SEED_SPACE,
    generate_seed,
    normalise_seed,
    parse_random_sort,
    seeded_sort_key,
)


def test_parse_random_sort_variants():
    assert parse_random_sort(None) == (False, None)
    assert parse_random_sort("title") == (False, None)
    assert parse_random_sort("random") == (True, None)
    assert parse_random_sort("random_42") == (True, 42)
    assert parse_random_sort(f"random_{SEED_SPACE + 7}") == (True, 7)


def test_parse_random_sort_rejects_garbage_seed():
    with pytest.raises(FilterValidationError) as excinfo:
        parse_random_sort("random_abc")
    assert excinfo.value.field == "sort"


def test_generate_seed_stays_in_seed_space():
    assert generate_seed(3, now_ms=10) == 13
    assert generate_seed(1, now_ms=SEED_SPACE * 5 + 4) == 5


def test_seeded_sort_key_is_stable_and_bounded():
    keys = [seeded_sort_key(entity_id, 42) for entity_id in range(1, 200)]

    assert keys == [seeded_sort_key(entity_id, 42) for entity_id in range(1, 200)]
    assert all(0 <= key < RANDOM_MODULUS for key in keys)
    assert len(set(keys)) == len(keys)
    assert keys != [seeded_sort_key(entity_id, 43) for entity_id in range(1, 200)]


def test_explicit_seeds_fold_into_seed_space():
    assert normalise_seed(42) == 42
    assert normalise_seed(-42) == 42
    assert normalise_seed(SEED_SPACE * 3 + 9) == 9
