from __future__ import annotations

import numpy as np
import pytest

from mixdag.models.ci_tests import (
    association_statistic,
    orthonormal_basis,
    permutation_null,
    permutation_pvalue,
    permutation_test,
    residual_block,
)


def _rng(seed: int = 0) -> np.random.Generator:
    return np.random.default_rng(seed)


def test_pvalue_counts_observed_in_null():
    null = np.array([1.0, 6.0, 7.0])
    assert permutation_pvalue(5.0, null) == pytest.approx(0.75)
    assert permutation_pvalue(10.0, null) == pytest.approx(0.25)


def test_orthonormal_basis_drops_null_directions():
    R = np.column_stack([np.arange(5.0), 2 * np.arange(5.0)])
    Q = orthonormal_basis(R)
    assert Q.shape == (5, 1)
    assert np.allclose(Q.T @ Q, np.eye(1))
    assert orthonormal_basis(np.zeros((5, 2))).shape == (5, 0)


def test_statistic_is_squared_partial_correlation(gaussian_chain):
    Qx = residual_block(gaussian_chain, 0, [1])
    Qz = residual_block(gaussian_chain, 2, [1])
    t = association_statistic(Qx, Qz)

    X = gaussian_chain.values
    Z1 = np.column_stack([np.ones(X.shape[0]), X[:, 1]])
    rx = X[:, 0] - Z1 @ np.linalg.lstsq(Z1, X[:, 0], rcond=None)[0]
    rz = X[:, 2] - Z1 @ np.linalg.lstsq(Z1, X[:, 2], rcond=None)[0]
    r = np.corrcoef(rx, rz)[0, 1]
    assert t == pytest.approx(r * r, rel=1e-8)


def test_strong_dependence_gets_smallest_pvalue(gaussian_chain):
    res = permutation_test(gaussian_chain, 0, 1, (), nperm=99, rng=_rng())
    assert res.p_value == pytest.approx(1.0 / 100.0)
    assert not res.independent(0.05)
    assert res.level == 0 and res.cond == ()


def test_conditioning_removes_chain_dependence(gaussian_chain):
    marginal = permutation_test(gaussian_chain, 0, 2, (), nperm=50, rng=_rng())
    partial = permutation_test(gaussian_chain, 0, 2, (1,), nperm=50, rng=_rng())
    assert partial.statistic < 0.1 * marginal.statistic
    assert partial.p_value >= marginal.p_value
    assert partial.cond == (1,) and partial.level == 1


def test_mixed_pair_statistic(chain_dataset):
    # continuous C against binary E
    res = permutation_test(chain_dataset, 2, 4, (), nperm=99, rng=_rng(3))
    assert 0.0 < res.statistic <= 1.0
    assert res.p_value == pytest.approx(0.01)


def test_same_generator_seed_reproduces(chain_dataset):
    a = permutation_test(chain_dataset, 0, 3, (1, 2), nperm=200, rng=_rng(42))
    b = permutation_test(chain_dataset, 0, 3, (1, 2), nperm=200, rng=_rng(42))
    assert a == b


def test_chunking_does_not_change_result(chain_dataset):
    a = permutation_test(chain_dataset, 0, 3, (2,), nperm=120, rng=_rng(5), chunk_size=512)
    b = permutation_test(chain_dataset, 0, 3, (2,), nperm=120, rng=_rng(5), chunk_size=7)
    assert a.statistic == b.statistic
    assert a.p_value == b.p_value


def test_chunked_null_draws_the_same_permutations(chain_dataset):
    Qa = residual_block(chain_dataset, 0, (2,))
    Qb = residual_block(chain_dataset, 3, (2,))
    whole = permutation_null(Qa, Qb, 50, _rng(8), chunk_size=512)
    pieces = permutation_null(Qa, Qb, 50, _rng(8), chunk_size=7)
    np.testing.assert_allclose(whole, pieces, rtol=1e-10, atol=1e-12)


def test_result_to_dict_uses_names(chain_dataset):
    res = permutation_test(chain_dataset, 0, 2, (1,), nperm=20, rng=_rng())
    d = res.to_dict(chain_dataset.names)
    assert d["x"] == "A" and d["y"] == "C" and d["cond"] == ["B"]
    assert d["nperm"] == 20
