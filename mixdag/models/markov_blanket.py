# mixdag/models/markov_blanket.py
# ======================================================================================
# mixdag
# Stage 1 — Markov blanket estimation by regularized nodewise regression
# --------------------------------------------------------------------------------------
# For every variable i:
#   1) regress column i on all other columns with the VariableModel of i
#      (weighted lasso for continuous targets, L1 logistic for categorical targets),
#      over a decreasing lambda path;
#   2) pick the lambda minimizing EBIC(γ);
#   3) summarize the selected parameters per predictor variable j as
#      E[i, j] = mean |parameter| over all parameters linking j to i;
#   4) zero E[i, :] below the node's threshold τ_i:
#        LW   : τ = sqrt(d) · ||β_i||₂ · sqrt(log p / n)        (Loh & Wainwright)
#        HW   : τ = d · sqrt(log p / n)                          (Haslbeck & Waldorp)
#        none : τ = 0
#      with d = 1 for pairwise models.
# The two directed estimates of each pair are then combined:
#   AND → edge iff E[i, j] ≠ 0 and E[j, i] ≠ 0   (weight = mean of both)
#   OR  → edge iff E[i, j] ≠ 0 or  E[j, i] ≠ 0   (weight = mean of the nonzero ones)
#
# Per-variable regressions are independent and run on a thread pool when n_jobs > 1;
# each task writes only its own row of the result.
#
# License
# -------
# MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from ..data import Dataset
from ..errors import ConfigError, ConvergenceWarning, WarningLog
from ..utils.logging_utils import stage_logger
from .variable_model import VariableModel, encode_predictors

log = stage_logger("stage1")

RULES = ("AND", "OR")
THRESHOLDS = ("LW", "HW", "none")
SELECTION_CRITERIA = ("EBIC",)


@dataclass
class MarkovBlanketConfig:
    """
    Stage 1 settings.

    lambda_gamma     : EBIC hyperparameter γ.
    rule_reg         : "AND" | "OR" combination of the two directed estimates.
    threshold        : "LW" | "HW" | "none".
    lambda_sel       : lambda selection criterion (only "EBIC").
    alpha_sel        : elastic-net mixing selection criterion (only "EBIC"; pure lasso).
    n_lambda         : length of the regularization path.
    lambda_min_ratio : smallest lambda as a fraction of lambda_max.
    n_jobs           : worker threads for the nodewise regressions.
    max_iter         : solver iteration cap per fit.
    """
    lambda_gamma: float = 0.25
    rule_reg: str = "OR"
    threshold: str = "LW"
    lambda_sel: str = "EBIC"
    alpha_sel: str = "EBIC"
    n_lambda: int = 50
    lambda_min_ratio: float = 0.01
    n_jobs: int = 1
    max_iter: int = 5000

    def validated(self) -> "MarkovBlanketConfig":
        rule = str(self.rule_reg).upper()
        if rule not in RULES:
            raise ConfigError(f"ruleReg must be one of {RULES}, got {self.rule_reg!r}.")
        thr = {"lw": "LW", "hw": "HW", "none": "none"}.get(str(self.threshold).lower())
        if thr is None:
            raise ConfigError(f"threshold must be one of {THRESHOLDS}, got {self.threshold!r}.")
        for label, val in (("lambdaSel", self.lambda_sel), ("alphaSel", self.alpha_sel)):
            if str(val).upper() not in SELECTION_CRITERIA:
                raise ConfigError(f"{label} must be one of {SELECTION_CRITERIA}, got {val!r}.")
        gamma = float(self.lambda_gamma)
        if not math.isfinite(gamma) or gamma < 0:
            raise ConfigError(f"lambdaGam must be a nonnegative number, got {self.lambda_gamma!r}.")
        if int(self.n_lambda) < 1:
            raise ConfigError("n_lambda must be >= 1.")
        if not 0.0 < float(self.lambda_min_ratio) < 1.0:
            raise ConfigError("lambda_min_ratio must be in (0, 1).")
        if int(self.n_jobs) < 1:
            raise ConfigError("n_jobs must be >= 1.")
        if int(self.max_iter) < 1:
            raise ConfigError("max_iter must be >= 1.")
        return MarkovBlanketConfig(
            lambda_gamma=gamma,
            rule_reg=rule,
            threshold=thr,
            lambda_sel="EBIC",
            alpha_sel="EBIC",
            n_lambda=int(self.n_lambda),
            lambda_min_ratio=float(self.lambda_min_ratio),
            n_jobs=int(self.n_jobs),
            max_iter=int(self.max_iter),
        )


@dataclass
class NodeEstimate:
    """Selected nodewise regression for one target variable."""
    node: int
    estimates: np.ndarray          # [p] E[i, j] before thresholding (E[i, i] = 0)
    tau: float
    lambda_selected: float
    n_nonzero: int
    converged: bool = True


@dataclass
class MarkovBlanketResult:
    skeleton: np.ndarray           # [p, p] symmetric 0/1
    weights: np.ndarray            # [p, p] symmetric combined estimates
    directed: np.ndarray           # [p, p] thresholded E (row = target)
    nodes: List[NodeEstimate] = field(default_factory=list)

    @property
    def n_edges(self) -> int:
        return int(np.triu(self.skeleton, 1).sum())

    def neighbors(self, i: int) -> List[int]:
        return [int(j) for j in np.flatnonzero(self.skeleton[i])]


# --------------------------------------------------------------------------------------
# Nodewise regression
# --------------------------------------------------------------------------------------

def _threshold(beta: np.ndarray, rule: str, n: int, p: int, d: int = 1) -> float:
    if rule == "none" or p < 2:
        return 0.0
    rate = math.sqrt(math.log(p) / n)
    if rule == "LW":
        return math.sqrt(d) * float(np.linalg.norm(beta)) * rate
    return d * rate


def fit_node(dataset: Dataset, i: int, cfg: MarkovBlanketConfig) -> NodeEstimate:
    """Regress variable i on all others and summarize the EBIC-selected fit."""
    model = VariableModel.for_column(dataset, i)
    model.check_degenerate()
    others = [j for j in range(dataset.p) if j != i]
    X, groups = encode_predictors(dataset, others)
    path = model.fit_path(X, n_lambda=cfg.n_lambda, lambda_min_ratio=cfg.lambda_min_ratio,
                          max_iter=cfg.max_iter)
    ebic = path.ebic(dataset.n, X.shape[1], cfg.lambda_gamma)
    k = int(np.argmin(ebic))
    coef = np.asarray(path.coefs[k])
    coef2d = coef[None, :] if coef.ndim == 1 else coef  # [R, m]

    est = np.zeros(dataset.p)
    for j in others:
        cols = groups == j
        if np.any(cols):
            est[j] = float(np.mean(np.abs(coef2d[:, cols])))
    tau = _threshold(coef2d.ravel(), cfg.threshold, dataset.n, dataset.p)
    return NodeEstimate(
        node=i,
        estimates=est,
        tau=tau,
        lambda_selected=float(path.lambdas[k]),
        n_nonzero=int(path.df[k]),
        converged=path.converged,
    )


def combine_estimates(directed: np.ndarray, rule_reg: str) -> np.ndarray:
    """
    Symmetric combined weight matrix from thresholded directed estimates.
    """
    a = np.abs(directed)
    at = a.T
    nz_a, nz_b = a > 0, at > 0
    if rule_reg == "AND":
        present = nz_a & nz_b
        w = np.where(present, 0.5 * (a + at), 0.0)
    else:
        present = nz_a | nz_b
        count = nz_a.astype(float) + nz_b.astype(float)
        w = np.where(present, (a + at) / np.maximum(count, 1.0), 0.0)
    np.fill_diagonal(w, 0.0)
    return w


# --------------------------------------------------------------------------------------
# Estimator
# --------------------------------------------------------------------------------------

class MarkovBlanketEstimator:
    """
    Stage 1: nodewise regression → symmetric candidate skeleton.

    Example
    -------
        est = MarkovBlanketEstimator(MarkovBlanketConfig(rule_reg="AND"))
        res = est.estimate(dataset)
        res.skeleton  # [p, p] 0/1
    """

    def __init__(self, config: Optional[MarkovBlanketConfig] = None):
        self.config = (config or MarkovBlanketConfig()).validated()

    def estimate(self, dataset: Dataset, warnings: Optional[WarningLog] = None) -> MarkovBlanketResult:
        cfg = self.config
        warnings = warnings if warnings is not None else WarningLog()
        p = dataset.p
        if p < 2:
            z = np.zeros((p, p))
            return MarkovBlanketResult(z.astype(int), z, z.copy(), [])

        slots: List[Optional[NodeEstimate]] = [None] * p
        if cfg.n_jobs > 1:
            with ThreadPoolExecutor(max_workers=cfg.n_jobs) as ex:
                futures = {i: ex.submit(fit_node, dataset, i, cfg) for i in range(p)}
                for i, fut in futures.items():
                    slots[i] = fut.result()
        else:
            for i in range(p):
                slots[i] = fit_node(dataset, i, cfg)
        nodes: List[NodeEstimate] = [s for s in slots if s is not None]

        not_conv = [dataset.names[ne.node] for ne in nodes if not ne.converged]
        if not_conv:
            warnings.add(
                ConvergenceWarning,
                "stage1",
                f"nodewise regression did not fully converge for {len(not_conv)} variable(s); "
                "using the best available fit",
                not_conv,
            )

        directed = np.zeros((p, p))
        for ne in nodes:
            row = ne.estimates.copy()
            row[np.abs(row) < ne.tau] = 0.0
            directed[ne.node] = row
        weights = combine_estimates(directed, cfg.rule_reg)
        skeleton = (weights > 0).astype(int)

        result = MarkovBlanketResult(skeleton, weights, directed, nodes)
        log.debug("Stage 1 lambdas: %s", {dataset.names[ne.node]: ne.lambda_selected for ne in nodes})
        log.info("Stage 1: %d candidate edges (rule=%s, threshold=%s)",
                 result.n_edges, cfg.rule_reg, cfg.threshold)
        return result


def estimate_markov_blanket(
    dataset: Dataset,
    lambda_gamma: float = 0.25,
    rule_reg: str = "OR",
    lambda_sel: str = "EBIC",
    alpha_sel: str = "EBIC",
    threshold: str = "LW",
    warnings: Optional[WarningLog] = None,
    **kwargs,
) -> MarkovBlanketResult:
    """Functional form of MarkovBlanketEstimator.estimate (weights come from the dataset)."""
    cfg = MarkovBlanketConfig(
        lambda_gamma=lambda_gamma,
        rule_reg=rule_reg,
        threshold=threshold,
        lambda_sel=lambda_sel,
        alpha_sel=alpha_sel,
        **kwargs,
    )
    return MarkovBlanketEstimator(cfg).estimate(dataset, warnings)


__all__: List[str] = [
    "MarkovBlanketConfig",
    "MarkovBlanketEstimator",
    "MarkovBlanketResult",
    "NodeEstimate",
    "combine_estimates",
    "estimate_markov_blanket",
    "fit_node",
]
