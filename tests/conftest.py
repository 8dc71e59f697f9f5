"""
Shared pytest fixtures for mixdag tests.

Provides the synthetic chain data (A → B → C → D, binary E ← C), a Dataset built from it,
and a minimal YAML config in a temp folder whose outputs point to tmp_path.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Tuple

import numpy as np
import pandas as pd
import pytest

from mixdag.data import Dataset
from mixdag.datasets import make_example_data
from mixdag.utils.config_loader import resolve_config


_MIN_MDAG_YAML = """\
run:
  output_dir: "{OUT}"
  random_seed: 7
  n_jobs: 1

data:
  path: "{DATA}"
  weights_column: null

variables:
  A: {type: g, level: 1}
  B: {type: g, level: 1}
  C: {type: g, level: 1}
  D: {type: g, level: 1}
  E: {type: c, level: 2}

stage1:
  lambda_gamma: 0.25
  rule_reg: "OR"
  threshold: "LW"
  n_lambda: 30

stage2:
  alpha: 0.05
  nperm: 150
  max_cond_size: 2

stage3:
  max_iter: 200

logging:
  level: "INFO"
  to_file: false
"""


@pytest.fixture(scope="session")
def chain_data() -> Tuple[pd.DataFrame, List[str], List[int]]:
    """n=200 samples of the example chain (seed 0)."""
    return make_example_data(n=200, seed=0)


@pytest.fixture(scope="session")
def chain_dataset(chain_data) -> Dataset:
    df, types, levels = chain_data
    return Dataset.from_inputs(df, types, levels)


@pytest.fixture(scope="session")
def gaussian_chain() -> Dataset:
    """Three continuous variables X → Y → Z."""
    rng = np.random.default_rng(11)
    n = 300
    x = rng.normal(size=n)
    y = 0.9 * x + rng.normal(scale=0.5, size=n)
    z = 0.9 * y + rng.normal(scale=0.5, size=n)
    return Dataset.from_inputs(np.column_stack([x, y, z]), ["g", "g", "g"], [1, 1, 1],
                               names=["X", "Y", "Z"])


@pytest.fixture(scope="function")
def data_csv(tmp_path: Path, chain_data) -> Path:
    df, _, _ = chain_data
    p = tmp_path / "data" / "chain.csv"
    p.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(p, index=False)
    return p


@pytest.fixture(scope="function")
def cfg_path(tmp_path: Path, data_csv: Path) -> Path:
    """Writes a minimal mdag.yaml into tmp_path/configs/ and returns its path."""
    cfg_dir = tmp_path / "configs"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    out_dir = tmp_path / "outputs"
    text = (_MIN_MDAG_YAML
            .replace("{OUT}", str(out_dir.as_posix()))
            .replace("{DATA}", str(data_csv.as_posix())))
    p = cfg_dir / "mdag.yaml"
    p.write_text(text, encoding="utf-8")
    return p


@pytest.fixture(scope="function")
def cfg(cfg_path: Path) -> Dict:
    """Resolved config (defaults + the YAML produced by cfg_path)."""
    return resolve_config(cfg_path)
