# mixdag/models/graph.py
# ======================================================================================
# mixdag
# Graph containers — skeleton helpers and the final MixedDAG result
# --------------------------------------------------------------------------------------
# Conventions
#   • Skeleton: symmetric [p, p] 0/1 matrix, zero diagonal.
#   • amat    : directed [p, p] 0/1 matrix, amat[i, j] = 1 iff arc i → j.
#   • arcs    : list of (from, to) variable-name tuples, ordered by (from, to) index.
#   • nodes   : name → NodeInfo(nbr, parents, children), each a sorted tuple of names.
#   • undirected: skeleton pairs left unoriented, part of nbr and skeleton only.
#
# Export: to_dict()/to_json() ({"arcs", "nodes", "skeleton"}), to_dot() (Graphviz text),
# to_networkx() (nx.DiGraph).
#
# License
# -------
# MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

import json
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np


# --------------------------------------------------------------------------------------
# Skeleton helpers
# --------------------------------------------------------------------------------------

def is_symmetric(m: np.ndarray) -> bool:
    m = np.asarray(m)
    return m.ndim == 2 and m.shape[0] == m.shape[1] and bool(np.array_equal(m != 0, (m != 0).T))


def skeleton_from_matrix(m: np.ndarray) -> np.ndarray:
    """Binary symmetric skeleton (zero diagonal) from any square matrix (OR of both directions)."""
    a = np.asarray(m) != 0
    s = (a | a.T).astype(int)
    np.fill_diagonal(s, 0)
    return s


def edge_list(m: np.ndarray) -> List[Tuple[int, int]]:
    """Undirected edges (i < j) of a skeleton, in row-major order."""
    iu, ju = np.nonzero(np.triu(np.asarray(m) != 0, 1))
    return [(int(i), int(j)) for i, j in zip(iu, ju)]


def topological_order(p: int, arcs: Iterable[Tuple[int, int]]) -> Optional[List[int]]:
    """Kahn's algorithm; None if the arcs contain a directed cycle."""
    children: List[List[int]] = [[] for _ in range(p)]
    indeg = [0] * p
    for u, v in arcs:
        children[u].append(v)
        indeg[v] += 1
    queue = deque(sorted(v for v in range(p) if indeg[v] == 0))
    order: List[int] = []
    while queue:
        u = queue.popleft()
        order.append(u)
        for v in sorted(children[u]):
            indeg[v] -= 1
            if indeg[v] == 0:
                queue.append(v)
    return order if len(order) == p else None


# --------------------------------------------------------------------------------------
# Result
# --------------------------------------------------------------------------------------

@dataclass(frozen=True)
class NodeInfo:
    nbr: Tuple[str, ...]
    parents: Tuple[str, ...]
    children: Tuple[str, ...]

    def to_dict(self) -> Dict[str, List[str]]:
        return {"nbr": list(self.nbr), "parents": list(self.parents), "children": list(self.children)}


@dataclass
class MixedDAG:
    """
    Final DAG over mixed-type variables.

    Attributes beyond arcs/nodes/skeleton are diagnostics from the pipeline:
    stage1_skeleton, stage2_skeleton, test_log, score and warnings.
    """
    names: Tuple[str, ...]
    arcs: List[Tuple[str, str]]
    nodes: Dict[str, NodeInfo]
    skeleton: np.ndarray
    amat: np.ndarray
    score: float = float("nan")
    warnings: Any = None
    stage1_skeleton: Optional[np.ndarray] = None
    stage2_skeleton: Optional[np.ndarray] = None
    test_log: List[Any] = field(default_factory=list)
    undirected: List[Tuple[str, str]] = field(default_factory=list)

    @classmethod
    def from_arcs(
        cls,
        names: Sequence[str],
        arc_indices: Iterable[Tuple[int, int]],
        score: float = float("nan"),
        undirected: Iterable[Tuple[int, int]] = (),
    ) -> "MixedDAG":
        """
        Build the result from directed index pairs. `undirected` holds skeleton pairs
        left unoriented; they count as neighbours but not as parents/children.
        """
        names = tuple(names)
        p = len(names)
        amat = np.zeros((p, p), dtype=int)
        for u, v in arc_indices:
            if u == v:
                raise ValueError(f"Self-loop on {names[u]}.")
            amat[u, v] = 1
        if np.any(amat & amat.T):
            raise ValueError("Arc set contains a pair oriented both ways.")
        if topological_order(p, zip(*np.nonzero(amat))) is None:
            raise ValueError("Arc set contains a directed cycle.")
        umat = np.zeros((p, p), dtype=int)
        for u, v in undirected:
            if amat[u, v] or amat[v, u]:
                raise ValueError(f"Pair {names[u]}-{names[v]} is both directed and undirected.")
            umat[u, v] = umat[v, u] = 1
        pairs = sorted((int(u), int(v)) for u, v in zip(*np.nonzero(amat)))
        arcs = [(names[u], names[v]) for u, v in pairs]
        adj = amat | amat.T | umat
        nodes: Dict[str, NodeInfo] = {}
        for k, nm in enumerate(names):
            parents = tuple(names[u] for u in np.flatnonzero(amat[:, k]))
            children = tuple(names[v] for v in np.flatnonzero(amat[k, :]))
            nbr = tuple(names[u] for u in np.flatnonzero(adj[k]))
            nodes[nm] = NodeInfo(nbr, parents, children)
        loose = [(names[u], names[v]) for u, v in edge_list(umat)]
        return cls(names, arcs, nodes, skeleton_from_matrix(adj), amat, float(score), undirected=loose)

    # ---- queries ----

    @property
    def arc_indices(self) -> List[Tuple[int, int]]:
        return [(int(u), int(v)) for u, v in sorted(zip(*np.nonzero(self.amat)))]

    def parents(self, name: str) -> List[str]:
        return list(self.nodes[name].parents)

    def children(self, name: str) -> List[str]:
        return list(self.nodes[name].children)

    def topological_order(self) -> List[str]:
        order = topological_order(len(self.names), self.arc_indices)
        if order is None:  # pragma: no cover - from_arcs rejects cycles
            raise ValueError("Graph is not acyclic.")
        return [self.names[k] for k in order]

    def is_acyclic(self) -> bool:
        return topological_order(len(self.names), self.arc_indices) is not None

    # ---- export ----

    def to_networkx(self) -> nx.DiGraph:
        g = nx.DiGraph()
        g.add_nodes_from(self.names)
        g.add_edges_from(self.arcs)
        return g

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "arcs": [list(a) for a in self.arcs],
            "nodes": {k: v.to_dict() for k, v in self.nodes.items()},
            "skeleton": self.skeleton.astype(int).tolist(),
            "names": list(self.names),
            "score": None if np.isnan(self.score) else self.score,
            "undirected": [list(e) for e in self.undirected],
        }
        if self.warnings is not None:
            out["warnings"] = self.warnings.to_list()
        return out

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def to_dot(self, shape: str = "rectangle") -> str:
        lines = ["digraph mixdag {", f"  node [shape={shape}];"]
        for nm in self.names:
            lines.append(f'  "{nm}";')
        for u, v in self.arcs:
            lines.append(f'  "{u}" -> "{v}";')
        for u, v in self.undirected:
            lines.append(f'  "{u}" -> "{v}" [dir=none];')
        lines.append("}")
        return "\n".join(lines)

    def __str__(self) -> str:
        body = "\n".join(f"  {u} -> {v}" for u, v in self.arcs) or "  (no arcs)"
        return f"MixedDAG over {len(self.names)} variables, {len(self.arcs)} arcs:\n{body}"
