from __future__ import annotations

import networkx as nx
import numpy as np
import pytest

from mixdag.data import Dataset
from mixdag.errors import ConfigError, NumericalWarning, WarningLog
from mixdag.models.orientation import LocalScorer, OrientationConfig, OrientationSearch, orient_edges


def _skeleton(p, edges):
    S = np.zeros((p, p), dtype=int)
    for i, j in edges:
        S[i, j] = S[j, i] = 1
    return S


def _snp_pair(snp_first: bool) -> Dataset:
    rng = np.random.default_rng(8)
    n = 250
    s = rng.binomial(2, 0.3, size=n).astype(float)
    y = 0.8 * s + rng.normal(scale=0.7, size=n)
    if snp_first:
        return Dataset.from_inputs(np.column_stack([s, y]), ["g", "g"], [1, 1], SNP=[1, 0], names=["S", "Y"])
    return Dataset.from_inputs(np.column_stack([y, s]), ["g", "g"], [1, 1], SNP=[0, 1], names=["Y", "S"])


def test_chain_orientation_is_acyclic_and_within_skeleton(chain_dataset):
    S = _skeleton(5, [(0, 1), (1, 2), (2, 3), (2, 4)])
    dag = orient_edges(chain_dataset, S)
    assert dag.is_acyclic()
    assert np.all(dag.skeleton <= S)
    assert nx.is_directed_acyclic_graph(dag.to_networkx())
    assert len(dag.arcs) == 4


def test_score_equivalent_edge_points_low_to_high(gaussian_chain):
    dag = orient_edges(gaussian_chain, _skeleton(3, [(0, 1)]))
    assert dag.arcs == [("X", "Y")]


def test_snp_stays_a_root():
    ds = _snp_pair(snp_first=False)
    S = _skeleton(2, [(0, 1)])
    rooted = orient_edges(ds, S, snp_as_root=True)
    assert rooted.arcs == [("S", "Y")]
    assert rooted.parents("S") == []

    free = orient_edges(ds, S, snp_as_root=False)
    assert free.arcs == [("Y", "S")]


def test_empty_skeleton_gives_no_arcs(chain_dataset):
    dag = orient_edges(chain_dataset, np.zeros((5, 5), dtype=int))
    assert dag.arcs == []
    assert all(not info.nbr for info in dag.nodes.values())


def _weak_pair(names=("X", "Y"), snp=(0, 0)) -> Dataset:
    rng = np.random.default_rng(21)
    n = 200
    x = rng.normal(size=n)
    y = 0.12 * x + rng.normal(size=n)
    return Dataset.from_inputs(np.column_stack([x, y]), ["g", "g"], [1, 1], SNP=list(snp), names=list(names))


def test_unresolved_edge_is_oriented_low_to_high():
    ds = _weak_pair()
    dag = orient_edges(ds, _skeleton(2, [(0, 1)]))
    assert dag.arcs == [("X", "Y")]
    assert dag.skeleton[0, 1] == 1
    assert dag.undirected == []


def test_unresolved_edge_reversed_into_snp_root():
    ds = _weak_pair(names=("Y", "S"), snp=(0, 1))
    dag = orient_edges(ds, _skeleton(2, [(0, 1)]))
    assert dag.arcs == [("S", "Y")]


def test_edge_between_snp_roots_stays_undirected():
    ds = _weak_pair(names=("S1", "S2"), snp=(1, 1))
    dag = orient_edges(ds, _skeleton(2, [(0, 1)]))
    assert dag.arcs == []
    assert dag.undirected == [("S1", "S2")]
    assert dag.skeleton[0, 1] == 1
    assert dag.nodes["S1"].nbr == ("S2",)
    assert dag.nodes["S1"].parents == ()


def test_undirected_tie_break_keeps_pair_in_skeleton():
    ds = _weak_pair()
    dag = orient_edges(ds, _skeleton(2, [(0, 1)]), tie_break="undirected")
    assert len(dag.arcs) + len(dag.undirected) == 1
    assert dag.skeleton[0, 1] == 1


def test_max_iter_zero_warns_and_falls_back_to_tie_break(chain_dataset):
    log = WarningLog()
    dag = orient_edges(chain_dataset, _skeleton(5, [(0, 1)]), warnings=log, max_iter=0)
    assert dag.arcs == [("A", "B")]
    assert log.by_category(NumericalWarning)


def test_score_is_bic_of_final_graph(chain_dataset):
    S = _skeleton(5, [(0, 1), (1, 2), (2, 3), (2, 4)])
    dag = orient_edges(chain_dataset, S)
    scorer = LocalScorer(chain_dataset)
    idx = {nm: k for k, nm in enumerate(dag.names)}
    total = sum(scorer(idx[nm], {idx[p] for p in dag.parents(nm)}) for nm in dag.names)
    assert dag.score == pytest.approx(total, rel=1e-9)


def test_scorer_caches(chain_dataset):
    scorer = LocalScorer(chain_dataset)
    a = scorer(4, {2})
    b = scorer(4, (2,))
    assert a == b
    assert scorer.cache_size == 1


@pytest.mark.parametrize("kwargs", [{"max_iter": -1}, {"score": "aic"}, {"tie_break": "random"}])
def test_bad_settings_raise_config_error(kwargs):
    with pytest.raises(ConfigError):
        OrientationSearch(OrientationConfig(**kwargs))


def test_bad_skeleton_rejected(gaussian_chain):
    with pytest.raises(ConfigError):
        orient_edges(gaussian_chain, np.zeros((2, 2), dtype=int))
    S = np.zeros((3, 3), dtype=int)
    S[0, 2] = 1
    with pytest.raises(ConfigError):
        orient_edges(gaussian_chain, S)
