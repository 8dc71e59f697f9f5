from __future__ import annotations

import numpy as np
import pandas as pd
import pytest

from mixdag.data import Dataset, VariableType
from mixdag.errors import ConfigError, DataError, MixDAGError


def _mixed(n: int = 40, seed: int = 0):
    rng = np.random.default_rng(seed)
    return np.column_stack([rng.normal(size=n), rng.integers(0, 3, size=n)])


def test_from_array_defaults():
    ds = Dataset.from_inputs(_mixed(), ["g", "c"], [1, 3])
    assert (ds.n, ds.p) == (40, 2)
    assert ds.names == ("V1", "V2")
    assert ds.types == (VariableType.CONTINUOUS, VariableType.CATEGORICAL)
    assert ds.snp == (False, False)
    assert np.all(ds.weights == 1.0)
    assert ds.is_categorical(1) and not ds.is_categorical(0)
    assert set(ds.codes(1).tolist()) <= {0, 1, 2}
    assert ds.codes(0) is None


def test_inputs_are_read_only():
    ds = Dataset.from_inputs(_mixed(), ["g", "c"], [1, 3])
    with pytest.raises(ValueError):
        ds.values[0, 0] = 1.0
    with pytest.raises(ValueError):
        ds.weights[0] = 2.0


def test_from_dataframe_factorizes_strings():
    df = pd.DataFrame({"x": [0.1, 0.5, -0.3, 1.2], "grp": ["b", "a", "b", "c"]})
    ds = Dataset.from_inputs(df, ["continuous", "categorical"], [1, 3])
    assert ds.names == ("x", "grp")
    assert ds.codes(1).tolist() == [1, 0, 1, 2]
    assert ds.index("grp") == 1
    with pytest.raises(KeyError):
        ds.index("missing")


@pytest.mark.parametrize(
    "kwargs",
    [
        {"type": ["g"], "level": [1, 3]},
        {"type": ["g", "c"], "level": [1]},
        {"type": ["g", "x"], "level": [1, 3]},
        {"type": ["g", "c"], "level": [1, 1]},
        {"type": ["g", "c"], "level": [2, 3]},
        {"type": ["g", "c"], "level": [1, 3], "SNP": [0]},
        {"type": ["g", "c"], "level": [1, 3], "SNP": [0, 2]},
        {"type": ["g", "c"], "level": [1, 3], "weights": np.ones(5)},
        {"type": ["g", "c"], "level": [1, 3], "weights": -np.ones(40)},
        {"type": ["g", "c"], "level": [1, 3], "weights": np.zeros(40)},
        {"type": ["g", "c"], "level": [1, 3], "names": ["a", "a"]},
    ],
)
def test_malformed_metadata_raises_config_error(kwargs):
    with pytest.raises(ConfigError):
        Dataset.from_inputs(_mixed(), **kwargs)


def test_config_error_is_value_error():
    assert issubclass(ConfigError, ValueError)
    assert issubclass(ConfigError, MixDAGError)


def test_missing_values_raise_data_error():
    X = _mixed()
    X[3, 0] = np.nan
    with pytest.raises(DataError) as exc:
        Dataset.from_inputs(X, ["g", "c"], [1, 3], names=["age", "grade"])
    assert exc.value.variable == "age"
    assert "age" in str(exc.value)


def test_too_many_categories_raise_data_error():
    with pytest.raises(DataError) as exc:
        Dataset.from_inputs(_mixed(), ["g", "c"], [1, 2])
    assert exc.value.variable == "V2"


def test_subset_rows_moves_weights_with_rows():
    X = _mixed(n=5)
    w = np.arange(1.0, 6.0)
    ds = Dataset.from_inputs(X, ["g", "c"], [1, 3], weights=w)
    order = [4, 3, 2, 1, 0]
    sub = ds.subset_rows(order)
    assert np.array_equal(sub.values, X[order])
    assert np.array_equal(sub.weights, w[order])
    assert sub.names == ds.names
