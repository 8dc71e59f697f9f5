"""
Errors and non-fatal warnings raised or collected by the mixdag pipeline.

- ConfigError  → malformed arguments; raised before any stage starts
- DataError    → degenerate or unusable data; raised by the stage that hits it
- Warnings     → collected in a WarningLog and returned with the result
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from .utils.logging_utils import get_logger, pipeline_fields


class MixDAGError(Exception):
    """Base class for all mixdag errors."""


class ConfigError(MixDAGError, ValueError):
    """Invalid arguments or configuration (lengths, enum values, ranges)."""


class DataError(MixDAGError, ValueError):
    """The data cannot support the requested model for a given variable."""

    def __init__(self, variable: str, reason: str):
        self.variable = variable
        self.reason = reason
        super().__init__(f"{variable}: {reason}")


# --------------------------------------------------------------------------------------
# Warning categories (collected, never raised by the pipeline)
# --------------------------------------------------------------------------------------

class ConvergenceWarning(UserWarning):
    """A regression fit did not converge; the best available fit was used."""


class NumericalWarning(UserWarning):
    """A numerical resolution problem, e.g. p-value granularity coarser than alpha."""


class SearchBudgetWarning(UserWarning):
    """The Stage 2 time budget ran out; untested edges were kept."""


@dataclass(frozen=True)
class PipelineWarning:
    category: str
    stage: str
    message: str
    variables: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, object]:
        d = asdict(self)
        d["variables"] = list(self.variables)
        return d


@dataclass
class WarningLog:
    """
    Ordered collection of PipelineWarning records.

    Every record added is also emitted on the ``mixdag.warnings`` logger at
    WARNING level so that interactive users still see it.
    """

    records: List[PipelineWarning] = field(default_factory=list)

    def add(
        self,
        category: type | str,
        stage: str,
        message: str,
        variables: Iterable[str] = (),
    ) -> PipelineWarning:
        name = category if isinstance(category, str) else category.__name__
        rec = PipelineWarning(name, stage, message, tuple(variables))
        self.records.append(rec)
        get_logger("mixdag.warnings").warning("[%s] %s: %s", stage, name, message,
                                              extra=pipeline_fields(stage, name, rec.variables))
        return rec

    def extend(self, other: "WarningLog") -> None:
        self.records.extend(other.records)

    def by_category(self, category: type | str) -> List[PipelineWarning]:
        name = category if isinstance(category, str) else category.__name__
        return [r for r in self.records if r.category == name]

    def affected_variables(self, category: type | str) -> Sequence[str]:
        out: List[str] = []
        for r in self.by_category(category):
            for v in r.variables:
                if v not in out:
                    out.append(v)
        return out

    def to_list(self) -> List[Dict[str, object]]:
        return [r.to_dict() for r in self.records]

    def __iter__(self) -> Iterator[PipelineWarning]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)
