# mixdag/data.py
# ======================================================================================
# mixdag
# Dataset — immutable mixed-type sample matrix with per-column metadata
# --------------------------------------------------------------------------------------
# A Dataset bundles:
#   • values  : [n, p] float matrix (rows = samples). Categorical columns keep their
#               numeric codes as given; string categories are factorized (sorted).
#   • types   : VariableType per column ('g' continuous, 'c' categorical)
#   • levels  : category count per column (1 for continuous)
#   • snp     : per-column SNP flag (genotype dosage coding, e.g. 0/1/2)
#   • weights : per-sample nonnegative weights (default all ones)
#   • names   : column names
#
# Arrays are stored read-only; every stage reads the same Dataset and never writes it.
#
# License
#   MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .errors import ConfigError, DataError


class VariableType(str, Enum):
    """Measurement scale of a variable."""

    CONTINUOUS = "g"  # Gaussian / continuous
    CATEGORICAL = "c"

    @classmethod
    def parse(cls, tag: Any) -> "VariableType":
        if isinstance(tag, VariableType):
            return tag
        key = str(tag).strip().lower()
        aliases = {
            "g": cls.CONTINUOUS,
            "gaussian": cls.CONTINUOUS,
            "continuous": cls.CONTINUOUS,
            "c": cls.CATEGORICAL,
            "categorical": cls.CATEGORICAL,
        }
        if key not in aliases:
            raise ConfigError(f"Unknown variable type {tag!r}; expected 'g' or 'c'.")
        return aliases[key]


def _readonly(a: np.ndarray) -> np.ndarray:
    a = np.array(a, dtype=float, copy=True)
    a.setflags(write=False)
    return a


def _frame_to_matrix(df: pd.DataFrame) -> np.ndarray:
    cols = []
    for name in df.columns:
        s = df[name]
        if pd.api.types.is_numeric_dtype(s) and not isinstance(s.dtype, pd.CategoricalDtype):
            cols.append(s.to_numpy(dtype=float))
        else:
            codes, _ = pd.factorize(s, sort=True)
            codes = codes.astype(float)
            codes[codes < 0] = np.nan
            cols.append(codes)
    if not cols:
        return np.zeros((len(df), 0))
    return np.column_stack(cols)


@dataclass(frozen=True, eq=False)
class Dataset:
    values: np.ndarray
    types: Tuple[VariableType, ...]
    levels: Tuple[int, ...]
    snp: Tuple[bool, ...]
    weights: np.ndarray
    names: Tuple[str, ...]

    # ---- construction ----

    @classmethod
    def from_inputs(
        cls,
        data: Any,
        type: Sequence[Any],
        level: Sequence[int],
        SNP: Optional[Sequence[Any]] = None,
        weights: Optional[Sequence[float]] = None,
        names: Optional[Sequence[str]] = None,
    ) -> "Dataset":
        """
        Validate raw inputs and build an immutable Dataset.

        Raises ConfigError for malformed metadata and DataError for values the
        pipeline cannot use (non-finite entries, more categories than declared).
        """
        if isinstance(data, pd.DataFrame):
            if names is None:
                names = [str(c) for c in data.columns]
            X = _frame_to_matrix(data)
        else:
            try:
                X = np.asarray(data, dtype=float)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"data must be numeric: {e}") from e
        if X.ndim != 2:
            raise ConfigError("data must be a 2D [n, p] matrix.")
        n, p = X.shape

        if names is None:
            names = [f"V{j + 1}" for j in range(p)]
        names = tuple(str(s) for s in names)
        if len(names) != p:
            raise ConfigError(f"names has length {len(names)}, expected {p}.")
        if len(set(names)) != p:
            raise ConfigError("Variable names must be unique.")

        if type is None or len(type) != p:
            raise ConfigError(f"type has length {0 if type is None else len(type)}, expected {p}.")
        types = tuple(VariableType.parse(t) for t in type)

        if level is None or len(level) != p:
            raise ConfigError(f"level has length {0 if level is None else len(level)}, expected {p}.")
        levels = []
        for j, (t, lv) in enumerate(zip(types, level)):
            try:
                lv_int = int(lv)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"level for {names[j]} must be an integer, got {lv!r}.") from e
            if lv_int != lv:
                raise ConfigError(f"level for {names[j]} must be an integer, got {lv!r}.")
            if t is VariableType.CATEGORICAL and lv_int < 2:
                raise ConfigError(f"Categorical variable {names[j]} needs level >= 2, got {lv_int}.")
            if t is VariableType.CONTINUOUS and lv_int != 1:
                raise ConfigError(f"Continuous variable {names[j]} must have level 1, got {lv_int}.")
            levels.append(lv_int)

        if SNP is None:
            SNP = [0] * p
        if len(SNP) != p:
            raise ConfigError(f"SNP has length {len(SNP)}, expected {p}.")
        snp = []
        for j, s in enumerate(SNP):
            if s not in (0, 1, True, False):
                raise ConfigError(f"SNP flag for {names[j]} must be 0/1, got {s!r}.")
            snp.append(bool(s))

        if weights is None:
            w = np.ones(n)
        else:
            w = np.asarray(weights, dtype=float).ravel()
            if w.shape[0] != n:
                raise ConfigError(f"weights has length {w.shape[0]}, expected {n}.")
            if not np.all(np.isfinite(w)) or np.any(w < 0):
                raise ConfigError("weights must be finite and nonnegative.")
            if n > 0 and not np.any(w > 0):
                raise ConfigError("weights must not be all zero.")

        for j in range(p):
            col = X[:, j]
            if not np.all(np.isfinite(col)):
                raise DataError(names[j], "contains missing or non-finite values")
            if types[j] is VariableType.CATEGORICAL:
                k = np.unique(col).size
                if k > levels[j]:
                    raise DataError(names[j], f"has {k} observed categories but level={levels[j]}")

        return cls(_readonly(X), types, tuple(levels), tuple(snp), _readonly(w), names)

    # ---- shape ----

    @property
    def n(self) -> int:
        return int(self.values.shape[0])

    @property
    def p(self) -> int:
        return int(self.values.shape[1])

    # ---- columns ----

    def column(self, j: int) -> np.ndarray:
        return self.values[:, j]

    def is_categorical(self, j: int) -> bool:
        return self.types[j] is VariableType.CATEGORICAL

    def codes(self, j: int) -> np.ndarray:
        """Integer category codes 0..K-1 (sorted by observed value)."""
        return self._codes[j]

    @cached_property
    def _codes(self) -> List[Optional[np.ndarray]]:
        out: List[Optional[np.ndarray]] = []
        for j in range(self.p):
            if self.is_categorical(j):
                _, inv = np.unique(self.values[:, j], return_inverse=True)
                out.append(inv.astype(int))
            else:
                out.append(None)
        return out

    def index(self, name: str) -> int:
        try:
            return self.names.index(name)
        except ValueError:
            raise KeyError(f"Unknown variable: {name}") from None

    def subset_rows(self, order: Sequence[int]) -> "Dataset":
        """Dataset with rows taken in the given order (weights follow their rows)."""
        idx = np.asarray(order, dtype=int)
        return Dataset(
            _readonly(self.values[idx]),
            self.types,
            self.levels,
            self.snp,
            _readonly(self.weights[idx]),
            self.names,
        )
