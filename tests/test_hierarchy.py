import logging

from app.query.hierarchy import expand_ids

CHILDREN = {
    "1": {"2"},
    "2": {"3", "4"},
    "3": {"5"},
}


def test_depth_zero_keeps_roots():
    assert expand_ids(["1"], CHILDREN, 0) == {"1"}


def test_limited_depth_stops_after_levels():
    assert expand_ids(["1"], CHILDREN, 1) == {"1", "2"}
    assert expand_ids(["1"], CHILDREN, 2) == {"1", "2", "3", "4"}


def test_unbounded_depth_walks_subtree():
    assert expand_ids(["2"], CHILDREN, -1) == {"2", "3", "4", "5"}


def test_cycles_terminate_with_warning(caplog):
    cyclic = {"a": {"b"}, "b": {"c"}, "c": {"a"}}

    with caplog.at_level(logging.WARNING, logger="app.query.hierarchy"):
        found = expand_ids(["a"], cyclic, -1)

    assert found == {"a", "b", "c"}
    assert "cycle" in caplog.text


def test_diamond_is_not_reported_as_cycle(caplog):
    diamond = {"top": {"left", "right"}, "left": {"bottom"}, "right": {"bottom"}}

    with caplog.at_level(logging.WARNING, logger="app.query.hierarchy"):
        found = expand_ids(["top"], diamond, -1)

    assert found == {"top", "left", "right", "bottom"}
    assert "cycle" not in caplog.text
