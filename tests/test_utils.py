import pytest

from app.utils import chunked, format_upstream_timestamp, latest_timestamp, parse_timestamp


def test_chunked_splits_into_batches():
    assert list(chunked(range(5), 2)) == [[0, 1], [2, 3], [4]]


def test_chunked_rejects_non_positive_size():
    with pytest.raises(ValueError):
        list(chunked([1], 0))


def test_format_upstream_timestamp_strips_offset_and_pins_fraction():
    assert format_upstream_timestamp("2024-05-01T10:00:00+02:00") == "2024-05-01T10:00:00.999"
    assert format_upstream_timestamp("2024-05-01T10:00:00.123Z") == "2024-05-01T10:00:00.999"


def test_parse_timestamp_handles_zulu_and_blanks():
    parsed = parse_timestamp("2024-05-01T10:00:00Z")
    assert parsed is not None and parsed.utcoffset().total_seconds() == 0
    assert parse_timestamp("") is None
    assert parse_timestamp("not a date") is None


def test_latest_timestamp_compares_instants():
    earlier = "2024-05-01T10:00:00+02:00"
    later = "2024-05-01T09:30:00Z"
    assert latest_timestamp(earlier, later) == later
    assert latest_timestamp(None, earlier) == earlier
    assert latest_timestamp(later, None) == later
