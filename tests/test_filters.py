# tests/test_filters.py
import numpy as np
import pytest

from pydownscale.filters import (
    GreaterThan,
    GreaterEqual,
    LessEqual,
    NotEqual,
    as_filter,
    describe_filter,
    parse_filter,
    valid_indices,
)


# ---------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------


@pytest.mark.parametrize(
    "text, expected",
    [
        (">0", GreaterThan(0.0)),
        (" >= 1.5 ", GreaterEqual(1.5)),
        ("<=-2", LessEqual(-2.0)),
        ("!=0", NotEqual(0.0)),
        (">1e-3", GreaterThan(0.001)),
    ],
)
def test_parse_filter_accepts_comparisons(text, expected):
    assert parse_filter(text) == expected


@pytest.mark.parametrize("text", ["", "0", ">", "> x", "__import__('os')", ">0; 1"])
def test_parse_filter_rejects_anything_else(text):
    with pytest.raises(ValueError):
        parse_filter(text)


def test_as_filter_forms():
    assert as_filter(None) is None
    assert as_filter(">0") == GreaterThan(0.0)
    fn = lambda v: v < 3  # noqa: E731
    assert as_filter(fn) is fn
    with pytest.raises(TypeError):
        as_filter(5)


def test_comparison_str():
    assert str(GreaterThan(0.0)) == ">0"
    assert str(LessEqual(2.5)) == "<=2.5"


# ---------------------------------------------------------------------
# Valid indices
# ---------------------------------------------------------------------


def test_valid_indices_documented_scenario():
    y = np.array([1.0, np.nan, 3.0, 4.0])
    assert valid_indices(y).tolist() == [0, 2, 3]
    assert valid_indices(y, ">2").tolist() == [2, 3]
    assert valid_indices(y, GreaterThan(2.0)).tolist() == [2, 3]


def test_valid_indices_is_subset_and_monotone():
    rng = np.random.default_rng(1)
    y = rng.normal(size=200)
    y[rng.choice(200, size=30, replace=False)] = np.nan

    base = set(valid_indices(y).tolist())
    loose = set(valid_indices(y, ">-0.5").tolist())
    strict = set(valid_indices(y, ">0.5").tolist())

    assert loose <= base
    assert strict <= loose
    assert len(strict) <= len(loose) <= len(base)


def test_valid_indices_never_evaluates_missing_values():
    seen = []

    def strict_positive(values):
        seen.append(values.copy())
        assert not np.isnan(values).any()
        return values > 0

    y = np.array([np.nan, 1.0, -1.0, np.nan, 2.0])
    assert valid_indices(y, strict_positive).tolist() == [1, 4]
    assert len(seen) == 1 and seen[0].size == 3


def test_valid_indices_preserves_temporal_order():
    y = np.array([5.0, 1.0, 4.0, np.nan, 3.0, 2.0])
    idx = valid_indices(y, ">1.5")
    assert idx.tolist() == sorted(idx.tolist()) == [0, 2, 4, 5]


def test_valid_indices_column_shapes():
    col = np.array([[1.0], [np.nan], [2.0]])
    assert valid_indices(col).tolist() == [0, 2]
    with pytest.raises(ValueError):
        valid_indices(np.ones((3, 2)))


def test_valid_indices_all_missing_is_empty():
    assert valid_indices(np.full(4, np.nan), ">0").size == 0


def wet_day(values):
    return values > 0.1


def test_describe_filter():
    assert describe_filter(None) is None
    assert describe_filter(" >= 0.5 ") == ">=0.5"
    assert describe_filter(NotEqual(0)) == "!=0"
    assert describe_filter(wet_day) == "wet_day"
    assert describe_filter(lambda v: v > 0).endswith("<lambda>")
    assert "0x" not in describe_filter(lambda v: v > 0)
    with pytest.raises(ValueError):
        describe_filter("> zero")
    with pytest.raises(TypeError):
        describe_filter(3)
