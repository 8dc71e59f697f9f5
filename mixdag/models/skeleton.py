# mixdag/models/skeleton.py
# ======================================================================================
# mixdag
# Stage 2 — Skeleton refinement by conditional-independence permutation testing
# --------------------------------------------------------------------------------------
# Input : the Stage 1 candidate skeleton (Markov-blanket graph).
# Output: a sub-skeleton where every removed edge has a recorded separating set.
#
# Search (PC-stable over the candidate edge set)
# ----------------------------------------------
#   for level ℓ = 0, 1, ..., max_cond_size:
#     freeze the current adjacency;
#     for each remaining edge i–j (i < j):
#       pool  = adj(i) ∩ adj(j)              (neighborhood="shared", default)
#             = adj(i) ∪ adj(j) \ {i, j}     (neighborhood="union")
#       test every size-ℓ subset S of pool (sorted order); on the first
#       p ≥ alpha remove i–j and store S as its separating set.
#   stop when no edge has a pool of size > ℓ.
#
# Only edges of the input skeleton are ever tested. Edges of one level are independent
# (frozen adjacency) and may run on a thread pool; each test draws from its own
# generator seeded by (seed, i, j, ℓ, subset index), so output never depends on
# scheduling.
#
# License
# -------
# MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

import itertools
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..data import Dataset
from ..errors import ConfigError, NumericalWarning, SearchBudgetWarning, WarningLog
from ..utils.logging_utils import stage_logger
from .ci_tests import CITestResult, permutation_test
from .graph import edge_list, is_symmetric

log = stage_logger("stage2")

NEIGHBORHOODS = ("shared", "union")


@dataclass
class SkeletonRefinerConfig:
    """
    Stage 2 settings.

    alpha               : significance level; p ≥ alpha means independent.
    nperm               : permutations per test.
    max_cond_size       : largest conditioning set tried.
    neighborhood        : "shared" (common neighbours) | "union" conditioning pool.
    seed                : base seed for the permutation generators (None → fresh entropy).
    n_jobs              : worker threads across edges within a level.
    time_budget_seconds : stop launching tests after this wall time (None → no limit).
    chunk_size          : permutations evaluated per vectorized batch.
    """
    alpha: float = 0.05
    nperm: int = 10000
    max_cond_size: int = 3
    neighborhood: str = "shared"
    seed: Optional[int] = None
    n_jobs: int = 1
    time_budget_seconds: Optional[float] = None
    chunk_size: int = 512

    def validated(self) -> "SkeletonRefinerConfig":
        try:
            alpha = float(self.alpha)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"alpha must be a number, got {self.alpha!r}.") from e
        if not 0.0 < alpha < 1.0:
            raise ConfigError(f"alpha must be in (0, 1), got {self.alpha!r}.")
        if isinstance(self.nperm, bool) or not isinstance(self.nperm, (int, np.integer)):
            if not (isinstance(self.nperm, float) and self.nperm.is_integer()):
                raise ConfigError(f"nperm must be a positive integer, got {self.nperm!r}.")
        nperm = int(self.nperm)
        if nperm < 1:
            raise ConfigError(f"nperm must be a positive integer, got {self.nperm!r}.")
        if int(self.max_cond_size) < 0:
            raise ConfigError("max_cond_size must be >= 0.")
        hood = str(self.neighborhood).lower()
        if hood not in NEIGHBORHOODS:
            raise ConfigError(f"neighborhood must be one of {NEIGHBORHOODS}, got {self.neighborhood!r}.")
        if int(self.n_jobs) < 1:
            raise ConfigError("n_jobs must be >= 1.")
        if self.seed is not None and int(self.seed) < 0:
            raise ConfigError("seed must be a nonnegative integer.")
        budget = self.time_budget_seconds
        if budget is not None and float(budget) <= 0:
            raise ConfigError("time_budget_seconds must be positive when given.")
        return SkeletonRefinerConfig(
            alpha=alpha,
            nperm=nperm,
            max_cond_size=int(self.max_cond_size),
            neighborhood=hood,
            seed=self.seed,
            n_jobs=int(self.n_jobs),
            time_budget_seconds=None if budget is None else float(budget),
            chunk_size=max(1, int(self.chunk_size)),
        )


@dataclass
class SkeletonResult:
    skeleton: np.ndarray
    test_log: List[CITestResult] = field(default_factory=list)
    sepsets: Dict[Tuple[int, int], Tuple[int, ...]] = field(default_factory=dict)
    max_pvalues: Dict[Tuple[int, int], float] = field(default_factory=dict)
    exhausted_budget: bool = False

    @property
    def n_edges(self) -> int:
        return int(np.triu(self.skeleton, 1).sum())

    def to_frame(self, names: Optional[Sequence[str]] = None) -> pd.DataFrame:
        rows = [r.to_dict(names) for r in self.test_log]
        cols = ["x", "y", "cond", "level", "statistic", "p_value", "nperm"]
        return pd.DataFrame(rows, columns=cols)


class SkeletonRefiner:
    """
    Stage 2: remove candidate edges whose endpoints test conditionally independent.
    """

    def __init__(self, config: Optional[SkeletonRefinerConfig] = None):
        self.config = (config or SkeletonRefinerConfig()).validated()

    # ------------------------------ Public API ----------------------------------------

    def refine(
        self,
        dataset: Dataset,
        skeleton: np.ndarray,
        warnings: Optional[WarningLog] = None,
    ) -> SkeletonResult:
        cfg = self.config
        warnings = warnings if warnings is not None else WarningLog()
        S0 = np.asarray(skeleton)
        p = dataset.p
        if S0.shape != (p, p):
            raise ConfigError(f"skeleton must be {p}x{p}, got {S0.shape}.")
        if not is_symmetric(S0):
            raise ConfigError("skeleton must be symmetric.")

        if 1.0 / (cfg.nperm + 1) > cfg.alpha:
            warnings.add(
                NumericalWarning,
                "stage2",
                f"nperm={cfg.nperm} gives a smallest attainable p-value of "
                f"{1.0 / (cfg.nperm + 1):.3g} > alpha={cfg.alpha}; no edge can be retained "
                "by a significant test",
            )

        G = (S0 != 0).astype(int)
        np.fill_diagonal(G, 0)
        test_log: List[CITestResult] = []
        sepsets: Dict[Tuple[int, int], Tuple[int, ...]] = {}
        max_p: Dict[Tuple[int, int], float] = {}
        seed = cfg.seed if cfg.seed is not None else int(np.random.SeedSequence().entropy % (2**32))
        start = time.monotonic()
        exhausted = False

        for level in range(cfg.max_cond_size + 1):
            adj = {v: set(np.flatnonzero(G[v]).tolist()) for v in range(p)}
            work = []
            for i, j in edge_list(G):
                pool = self._pool(adj, i, j)
                if len(pool) >= level:
                    work.append((i, j, pool))
            if not work:
                break

            def deadline_hit() -> bool:
                return (cfg.time_budget_seconds is not None
                        and time.monotonic() - start > cfg.time_budget_seconds)

            if cfg.n_jobs > 1 and len(work) > 1:
                with ThreadPoolExecutor(max_workers=cfg.n_jobs) as ex:
                    outcomes = list(ex.map(
                        lambda item: self._test_edge(dataset, item[0], item[1], item[2], level,
                                                     seed, deadline_hit),
                        work,
                    ))
            else:
                outcomes = [self._test_edge(dataset, i, j, pool, level, seed, deadline_hit)
                            for i, j, pool in work]

            removed = 0
            for (i, j, _), (results, sep, skipped) in zip(work, outcomes):
                test_log.extend(results)
                for r in results:
                    max_p[(i, j)] = max(max_p.get((i, j), 0.0), r.p_value)
                exhausted = exhausted or skipped
                if sep is not None:
                    G[i, j] = G[j, i] = 0
                    sepsets[(i, j)] = sep
                    removed += 1
            log.debug("Stage 2 level %d: %d edges tested, %d removed", level, len(work), removed)
            if exhausted:
                break

        if exhausted:
            warnings.add(
                SearchBudgetWarning,
                "stage2",
                f"time budget of {cfg.time_budget_seconds}s exhausted; "
                "edges not yet tested were kept",
            )

        log.info("Stage 2: %d of %d candidate edges retained (%d tests, nperm=%d, alpha=%g)",
                 int(np.triu(G, 1).sum()), int(np.triu(S0 != 0, 1).sum()),
                 len(test_log), cfg.nperm, cfg.alpha)
        return SkeletonResult(G, test_log, sepsets, max_p, exhausted)

    # ------------------------------ Internals -----------------------------------------

    def _pool(self, adj: Dict[int, set], i: int, j: int) -> List[int]:
        if self.config.neighborhood == "shared":
            pool = adj[i] & adj[j]
        else:
            pool = adj[i] | adj[j]
        pool.discard(i)
        pool.discard(j)
        return sorted(pool)

    def _test_edge(
        self,
        dataset: Dataset,
        i: int,
        j: int,
        pool: List[int],
        level: int,
        seed: int,
        deadline_hit,
    ) -> Tuple[List[CITestResult], Optional[Tuple[int, ...]], bool]:
        """
        Test i–j against each size-level subset of pool; stop at the first independence.
        Returns (results, separating set or None, skipped_due_to_budget).
        """
        cfg = self.config
        results: List[CITestResult] = []
        for k, S in enumerate(itertools.combinations(pool, level)):
            if deadline_hit():
                return results, None, True
            rng = np.random.default_rng(np.random.SeedSequence([seed, i, j, level, k]))
            res = permutation_test(dataset, i, j, S, cfg.nperm, rng,
                                   chunk_size=cfg.chunk_size, level=level)
            results.append(res)
            if res.independent(cfg.alpha):
                return results, tuple(S), False
        return results, None, False


def refine_skeleton(
    dataset: Dataset,
    skeleton: np.ndarray,
    alpha: float = 0.05,
    nperm: int = 10000,
    seed: Optional[int] = None,
    warnings: Optional[WarningLog] = None,
    **kwargs,
) -> SkeletonResult:
    """Functional form of SkeletonRefiner.refine."""
    cfg = SkeletonRefinerConfig(alpha=alpha, nperm=nperm, seed=seed, **kwargs)
    return SkeletonRefiner(cfg).refine(dataset, skeleton, warnings)


def expected_max_tests(skeleton: np.ndarray, max_cond_size: int, neighborhood: str = "shared") -> int:
    """Upper bound on the number of CI tests for a skeleton (useful for budgeting)."""
    G = (np.asarray(skeleton) != 0)
    np.fill_diagonal(G, False)
    total = 0
    for i, j in edge_list(G.astype(int)):
        if neighborhood == "shared":
            pool = int((G[i] & G[j]).sum())
        else:
            pool = int((G[i] | G[j]).sum()) - 2
        total += sum(math.comb(pool, l) for l in range(0, min(max_cond_size, pool) + 1))
    return total
