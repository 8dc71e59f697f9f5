"""
Synthetic example data.

make_example_data(): four continuous variables in a chain A → B → C → D plus a binary
categorical E with logistic dependence on C (E ← C). Used by the `example` CLI command
and the test-suite.
"""
from __future__ import annotations

from typing import List, Tuple

import numpy as np
import pandas as pd
from scipy.special import expit

EXAMPLE_TYPES: List[str] = ["g", "g", "g", "g", "c"]
EXAMPLE_LEVELS: List[int] = [1, 1, 1, 1, 2]
EXAMPLE_ARCS: List[Tuple[str, str]] = [("A", "B"), ("B", "C"), ("C", "D"), ("C", "E")]


def make_example_data(n: int = 200, seed: int = 0, strength: float = 0.8) -> Tuple[pd.DataFrame, List[str], List[int]]:
    rng = np.random.default_rng(seed)
    A = rng.normal(size=n)
    B = strength * A + rng.normal(scale=0.6, size=n)
    C = strength * B + rng.normal(scale=0.6, size=n)
    D = strength * C + rng.normal(scale=0.6, size=n)
    E = (rng.random(n) < expit(2.5 * C)).astype(int)
    df = pd.DataFrame({"A": A, "B": B, "C": C, "D": D, "E": E})
    return df, list(EXAMPLE_TYPES), list(EXAMPLE_LEVELS)
