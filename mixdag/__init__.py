"""
mixdag — causal structure learning for mixed continuous/categorical/SNP data

The pipeline narrows a graph in three stages:
1) Markov blanket → nodewise regularized regression (EBIC), AND/OR combination, LW/HW threshold
2) skeleton       → conditional-independence permutation tests on the candidate edges
3) orientation    → greedy BIC hill climbing restricted to the skeleton, acyclic throughout

Quick start
-----------
    from mixdag import mdag
    from mixdag.datasets import make_example_data

    df, types, levels = make_example_data(n=200)
    dag = mdag(df, types, levels, nperm=150, seed=1)
    print(dag.arcs)

License: MIT
"""
from .data import Dataset, VariableType
from .errors import (
    ConfigError,
    ConvergenceWarning,
    DataError,
    MixDAGError,
    NumericalWarning,
    PipelineWarning,
    SearchBudgetWarning,
    WarningLog,
)
from .models.graph import MixedDAG, NodeInfo
from .pipeline import mdag, run_pipeline

__version__ = "0.3.0"

__all__ = [
    "ConfigError",
    "ConvergenceWarning",
    "DataError",
    "Dataset",
    "MixDAGError",
    "MixedDAG",
    "NodeInfo",
    "NumericalWarning",
    "PipelineWarning",
    "SearchBudgetWarning",
    "VariableType",
    "WarningLog",
    "__version__",
    "mdag",
    "run_pipeline",
]
