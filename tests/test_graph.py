from __future__ import annotations

import json

import networkx as nx
import numpy as np
import pytest

from mixdag.models.graph import MixedDAG, edge_list, is_symmetric, skeleton_from_matrix, topological_order


def test_from_arcs_derives_node_sets():
    dag = MixedDAG.from_arcs(["A", "B", "C"], [(0, 1), (2, 1)], score=-12.5)
    assert dag.arcs == [("A", "B"), ("C", "B")]
    assert dag.nodes["B"].parents == ("A", "C")
    assert dag.nodes["A"].children == ("B",)
    assert dag.nodes["B"].nbr == ("A", "C")
    assert dag.children("C") == ["B"]
    assert np.array_equal(dag.skeleton, dag.skeleton.T)
    assert dag.amat[0, 1] == 1 and dag.amat[1, 0] == 0
    assert dag.arc_indices == [(0, 1), (2, 1)]


@pytest.mark.parametrize("arcs", [[(0, 0)], [(0, 1), (1, 0)], [(0, 1), (1, 2), (2, 0)]])
def test_invalid_arc_sets_rejected(arcs):
    with pytest.raises(ValueError):
        MixedDAG.from_arcs(["A", "B", "C"], arcs)


def test_topological_order():
    assert topological_order(3, [(2, 0), (0, 1)]) == [2, 0, 1]
    assert topological_order(2, [(0, 1), (1, 0)]) is None
    dag = MixedDAG.from_arcs(["A", "B", "C"], [(2, 0), (0, 1)])
    assert dag.topological_order() == ["C", "A", "B"]


def test_skeleton_helpers():
    m = np.array([[0, 0.3, 0], [0, 0, 0], [1, 0, 1]])
    s = skeleton_from_matrix(m)
    assert is_symmetric(s)
    assert s.tolist() == [[0, 1, 1], [1, 0, 0], [1, 0, 0]]
    assert edge_list(s) == [(0, 1), (0, 2)]
    assert not is_symmetric(m)


def test_exports():
    dag = MixedDAG.from_arcs(["A", "B"], [(0, 1)])
    d = json.loads(dag.to_json())
    assert d["arcs"] == [["A", "B"]]
    assert d["nodes"]["B"] == {"nbr": ["A"], "parents": ["A"], "children": []}
    assert d["skeleton"] == [[0, 1], [1, 0]]
    assert d["score"] is None
    assert '"A" -> "B";' in dag.to_dot()
    g = dag.to_networkx()
    assert isinstance(g, nx.DiGraph) and list(g.edges) == [("A", "B")]
    assert "A -> B" in str(dag)


def test_stage_registry_aliases():
    from mixdag.models import MarkovBlanketEstimator, OrientationSearch, available_stages, create_stage

    est = create_stage("MB", rule_reg="AND")
    assert isinstance(est, MarkovBlanketEstimator)
    assert est.config.rule_reg == "AND"
    assert isinstance(create_stage("hc", max_iter=5), OrientationSearch)
    assert "stage2" in available_stages()
    with pytest.raises(KeyError):
        create_stage("pc")


def test_undirected_pairs_join_skeleton_not_arcs():
    dag = MixedDAG.from_arcs(["A", "B", "C"], [(0, 1)], undirected=[(2, 1)])
    assert dag.arcs == [("A", "B")]
    assert dag.undirected == [("B", "C")]
    assert dag.skeleton[1, 2] == 1 and dag.amat[1, 2] == 0
    assert dag.nodes["B"].nbr == ("A", "C")
    assert dag.nodes["B"].parents == ("A",)
    assert '"B" -> "C" [dir=none];' in dag.to_dot()
    assert json.loads(dag.to_json())["undirected"] == [["B", "C"]]
    with pytest.raises(ValueError):
        MixedDAG.from_arcs(["A", "B"], [(0, 1)], undirected=[(0, 1)])
