# mixdag/models/__init__.py
# ======================================================================================
# mixdag
# models package — import surface for the three pipeline stages and their primitives
# --------------------------------------------------------------------------------------
#   • VariableModel, ContinuousModel, CategoricalModel   (per-column regression primitives)
#   • MarkovBlanketEstimator / MarkovBlanketConfig      (Stage 1)
#   • SkeletonRefiner / SkeletonRefinerConfig           (Stage 2)
#   • OrientationSearch / OrientationConfig             (Stage 3)
#   • MixedDAG                                          (result container)
#
# Registry keys (aliases) for create_stage():
#   "markov_blanket", "stage1", "mb"
#   "skeleton", "stage2", "refiner"
#   "orientation", "stage3", "hc"
#
# License
# -------
# MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

from typing import Any, Callable, Dict, List

from .ci_tests import CITestResult, permutation_test
from .graph import MixedDAG, NodeInfo, edge_list, is_symmetric, skeleton_from_matrix
from .markov_blanket import (
    MarkovBlanketConfig,
    MarkovBlanketEstimator,
    MarkovBlanketResult,
    estimate_markov_blanket,
)
from .orientation import OrientationConfig, OrientationSearch, orient_edges
from .skeleton import SkeletonRefiner, SkeletonRefinerConfig, SkeletonResult, refine_skeleton
from .variable_model import (
    CategoricalModel,
    ContinuousModel,
    VariableModel,
    make_variable_model,
)

_REGISTRY: Dict[str, Callable[..., Any]] = {}


def _register(names: List[str], factory: Callable[..., Any]) -> None:
    for n in names:
        _REGISTRY[n] = factory


_register(["markov_blanket", "stage1", "mb"],
          lambda **kw: MarkovBlanketEstimator(MarkovBlanketConfig(**kw)))
_register(["skeleton", "stage2", "refiner"],
          lambda **kw: SkeletonRefiner(SkeletonRefinerConfig(**kw)))
_register(["orientation", "stage3", "hc"],
          lambda **kw: OrientationSearch(OrientationConfig(**kw)))


def available_stages() -> List[str]:
    return sorted(_REGISTRY)


def create_stage(name: str, **kwargs: Any) -> Any:
    """Instantiate a stage by registry key with config keyword arguments."""
    key = name.strip().lower()
    if key not in _REGISTRY:
        raise KeyError(f"Unknown stage {name!r}. Available: {', '.join(available_stages())}")
    return _REGISTRY[key](**kwargs)


__all__ = [
    "CITestResult",
    "CategoricalModel",
    "ContinuousModel",
    "MarkovBlanketConfig",
    "MarkovBlanketEstimator",
    "MarkovBlanketResult",
    "MixedDAG",
    "NodeInfo",
    "OrientationConfig",
    "OrientationSearch",
    "SkeletonRefiner",
    "SkeletonRefinerConfig",
    "SkeletonResult",
    "VariableModel",
    "available_stages",
    "create_stage",
    "edge_list",
    "estimate_markov_blanket",
    "is_symmetric",
    "make_variable_model",
    "orient_edges",
    "permutation_test",
    "refine_skeleton",
    "skeleton_from_matrix",
]
