# mixdag/models/orientation.py
# ======================================================================================
# mixdag
# Stage 3 — Greedy orientation of the refined skeleton into a DAG
# --------------------------------------------------------------------------------------
# Hill climbing from the empty graph, restricted to the pairs of the Stage 2 skeleton:
#
#   moves   : add u→v (u–v in skeleton, no arc yet), delete u→v, reverse u→v
#   score   : decomposable BIC, Σ_v [ loglik(v | pa(v)) − ½·k_v·log n ]
#             loglik from the VariableModel of v (Gaussian WLS, Firth logistic for
#             binary, multinomial logistic for K > 2 categories)
#   accept  : the move with the largest gain > 1e-9; stop when none improves
#
# Acyclicity is checked on the accepted graph before a move is applied:
#   add u→v      legal iff v does not reach u
#   reverse u→v  legal iff u does not reach v once u→v is ignored
# so a cycle never exists in the accepted state, not even transiently.
#
# Ties (|gain difference| ≤ 1e-9) are broken by move kind (add < reverse < delete),
# then by the lowest (from, to) index pair. Score-equivalent directions of an edge
# therefore resolve to lower index → higher index.
#
# SNP-flagged variables are roots when snp_as_root is set: no move creates an arc
# into them.
#
# Unresolved edges: a skeleton pair that the search leaves unjoined (no direction
# improves the score) is kept. With tie_break="lowest-index" it is oriented
# lower index → higher index, or the reverse when that direction would close a cycle
# or point into an SNP root; pairs where neither direction is allowed stay undirected.
# With tie_break="undirected" every such pair is reported in MixedDAG.undirected.
#
# License
# -------
# MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from ..data import Dataset
from ..errors import ConfigError, ConvergenceWarning, NumericalWarning, WarningLog
from ..utils.logging_utils import stage_logger
from .graph import MixedDAG, edge_list, is_symmetric
from .variable_model import VariableModel, encode_predictors

log = stage_logger("stage3")

_GAIN_TOL = 1e-9
_KIND_RANK = {"add": 0, "reverse": 1, "delete": 2}
TIE_BREAKS = ("lowest-index", "undirected")


@dataclass
class OrientationConfig:
    """
    Stage 3 settings.

    max_iter    : cap on accepted moves.
    score       : local score ("bic").
    snp_as_root : forbid arcs into SNP-flagged variables.
    tie_break   : "lowest-index" | "undirected" handling of unresolved skeleton edges.
    """
    max_iter: int = 1000
    score: str = "bic"
    snp_as_root: bool = True
    tie_break: str = "lowest-index"

    def validated(self) -> "OrientationConfig":
        if int(self.max_iter) < 0:
            raise ConfigError("max_iter must be >= 0.")
        if str(self.score).lower() != "bic":
            raise ConfigError(f"Unknown orientation score {self.score!r}; only 'bic' is available.")
        if self.tie_break not in TIE_BREAKS:
            raise ConfigError(f"tie_break must be one of {TIE_BREAKS}, got {self.tie_break!r}.")
        return OrientationConfig(int(self.max_iter), "bic", bool(self.snp_as_root), self.tie_break)


class LocalScorer:
    """
    BIC local scores with a (node, parents) cache.
    """

    def __init__(self, dataset: Dataset):
        self.dataset = dataset
        self._models = [VariableModel.for_column(dataset, j) for j in range(dataset.p)]
        self._cache: Dict[Tuple[int, Tuple[int, ...]], float] = {}
        self._log_n = math.log(max(float(np.count_nonzero(dataset.weights > 0)), 2.0))
        self.not_converged: Set[int] = set()

    def __call__(self, node: int, parents: Set[int] | Tuple[int, ...]) -> float:
        key = (node, tuple(sorted(parents)))
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        X, _ = encode_predictors(self.dataset, key[1])
        fit = self._models[node].loglik(X)
        if not fit.converged:
            self.not_converged.add(node)
        val = fit.loglik - 0.5 * fit.n_params * self._log_n
        self._cache[key] = val
        return val

    @property
    def cache_size(self) -> int:
        return len(self._cache)


@dataclass(frozen=True)
class Move:
    gain: float
    kind: str
    frm: int
    to: int

    def order_key(self) -> Tuple[int, int, int]:
        return (_KIND_RANK[self.kind], self.frm, self.to)


class OrientationSearch:
    """
    Stage 3: greedy hill climbing over orientations of a fixed skeleton.
    """

    def __init__(self, config: Optional[OrientationConfig] = None):
        self.config = (config or OrientationConfig()).validated()

    def orient(
        self,
        dataset: Dataset,
        skeleton: np.ndarray,
        warnings: Optional[WarningLog] = None,
    ) -> MixedDAG:
        cfg = self.config
        warnings = warnings if warnings is not None else WarningLog()
        p = dataset.p
        S = np.asarray(skeleton)
        if S.shape != (p, p):
            raise ConfigError(f"skeleton must be {p}x{p}, got {S.shape}.")
        if not is_symmetric(S):
            raise ConfigError("skeleton must be symmetric.")

        pairs = edge_list(S)
        parents: List[Set[int]] = [set() for _ in range(p)]
        children: List[Set[int]] = [set() for _ in range(p)]
        root_only = [cfg.snp_as_root and dataset.snp[v] for v in range(p)]
        scorer = LocalScorer(dataset)

        for v in range(p):
            VariableModel.for_column(dataset, v).check_degenerate()
        total = sum(scorer(v, ()) for v in range(p))

        def reaches(src: int, dst: int, skip: Optional[Tuple[int, int]] = None) -> bool:
            stack, seen = [src], {src}
            while stack:
                u = stack.pop()
                for c in children[u]:
                    if skip is not None and (u, c) == skip:
                        continue
                    if c == dst:
                        return True
                    if c not in seen:
                        seen.add(c)
                        stack.append(c)
            return False

        def candidate_moves() -> List[Move]:
            moves: List[Move] = []
            for a, b in pairs:
                if b in children[a] or a in children[b]:
                    continue
                for u, v in ((a, b), (b, a)):
                    if root_only[v] or reaches(v, u):
                        continue
                    gain = scorer(v, parents[v] | {u}) - scorer(v, parents[v])
                    moves.append(Move(gain, "add", u, v))
            for u in range(p):
                for v in sorted(children[u]):
                    d_v = scorer(v, parents[v] - {u}) - scorer(v, parents[v])
                    moves.append(Move(d_v, "delete", u, v))
                    if root_only[u] or reaches(u, v, skip=(u, v)):
                        continue
                    d_u = scorer(u, parents[u] | {v}) - scorer(u, parents[u])
                    moves.append(Move(d_v + d_u, "reverse", u, v))
            return moves

        n_moves = 0
        while n_moves < cfg.max_iter:
            moves = candidate_moves()
            if not moves:
                break
            best_gain = max(m.gain for m in moves)
            if best_gain <= _GAIN_TOL:
                break
            best = min((m for m in moves if m.gain >= best_gain - _GAIN_TOL), key=Move.order_key)
            self._apply(best, parents, children)
            total += best.gain
            n_moves += 1
            log.debug("Stage 3 move %d: %s %s→%s (gain=%.4f)", n_moves, best.kind,
                      dataset.names[best.frm], dataset.names[best.to], best.gain)
        else:
            if cfg.max_iter > 0 or pairs:
                warnings.add(
                    NumericalWarning,
                    "stage3",
                    f"orientation search stopped at max_iter={cfg.max_iter} before converging",
                )

        undirected: List[Tuple[int, int]] = []
        n_broken = 0
        for a, b in pairs:
            if b in children[a] or a in children[b]:
                continue
            if cfg.tie_break == "undirected":
                undirected.append((a, b))
                continue
            for u, v in ((a, b), (b, a)):
                if root_only[v] or reaches(v, u):
                    continue
                gain = scorer(v, parents[v] | {u}) - scorer(v, parents[v])
                self._apply(Move(gain, "add", u, v), parents, children)
                total += gain
                n_broken += 1
                break
            else:
                undirected.append((a, b))

        if scorer.not_converged:
            names = [dataset.names[v] for v in sorted(scorer.not_converged)]
            warnings.add(ConvergenceWarning, "stage3",
                         "local score fits did not fully converge", names)

        arcs = [(u, v) for u in range(p) for v in sorted(children[u])]
        dag = MixedDAG.from_arcs(dataset.names, arcs, score=total, undirected=undirected)
        log.info("Stage 3: %d arcs (%d by tie-break), %d undirected, from %d skeleton edges "
                 "(%d moves, BIC=%.3f)",
                 len(arcs), n_broken, len(undirected), len(pairs), n_moves, total)
        return dag

    @staticmethod
    def _apply(move: Move, parents: List[Set[int]], children: List[Set[int]]) -> None:
        u, v = move.frm, move.to
        if move.kind == "add":
            parents[v].add(u)
            children[u].add(v)
        elif move.kind == "delete":
            parents[v].discard(u)
            children[u].discard(v)
        else:
            parents[v].discard(u)
            children[u].discard(v)
            parents[u].add(v)
            children[v].add(u)


def orient_edges(
    dataset: Dataset,
    skeleton: np.ndarray,
    warnings: Optional[WarningLog] = None,
    **kwargs,
) -> MixedDAG:
    """Functional form of OrientationSearch.orient."""
    return OrientationSearch(OrientationConfig(**kwargs)).orient(dataset, skeleton, warnings)
