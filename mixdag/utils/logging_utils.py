# mixdag/utils/logging_utils.py
# ======================================================================================
# mixdag
# Logging — run-scoped console, text and JSONL logs for the three-stage pipeline
# --------------------------------------------------------------------------------------
# Record fields
#   run_id    : stamped by the handlers that init_logging() installs
#   stage     : "stage1" | "stage2" | "stage3", on records logged through stage_logger()
#   category  : warning class name  } on records emitted by WarningLog.add, so the
#   variables : affected variables  } JSONL file holds the same records as MixedDAG.warnings
#
# Destinations (cfg["logging"])
#   console   always
#   to_file   <dir>/mixdag_<run_id>.log    text, run_id in every line
#   to_json   <dir>/mixdag_<run_id>.jsonl  one object per record
#
# Library modules only call get_logger()/stage_logger(); they never print.
#
# License
#   MIT (c) 2025 mixdag contributors
# ======================================================================================

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

_CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] [%(run_id)s] %(name)s: %(message)s"
_PIPELINE_FIELDS = ("stage", "category", "variables")


def _utc_stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


class _RunContextFilter(logging.Filter):
    """Stamps the run id on every record passing a mixdag handler."""

    def __init__(self, run_id: str) -> None:
        super().__init__()
        self.run_id = run_id

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = self.run_id
        return True


class _JSONLogHandler(logging.Handler):
    """
    Writes one JSON object per record (JSONL). Pipeline fields (stage, category,
    variables) are copied only when the record carries them.
    """

    def __init__(self, path: Path, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("a", encoding="utf-8")

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: Dict[str, Any] = {
                "time": datetime.fromtimestamp(record.created, timezone.utc)
                .isoformat().replace("+00:00", "Z"),
                "level": record.levelname,
                "logger": record.name,
                "run_id": getattr(record, "run_id", None),
                "msg": record.getMessage(),
            }
            for key in _PIPELINE_FIELDS:
                val = getattr(record, key, None)
                if val is not None:
                    entry[key] = list(val) if isinstance(val, (list, tuple)) else val
            self._fh.write(json.dumps(entry, ensure_ascii=False) + "\n")
            self._fh.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if not self._fh.closed:
                self._fh.close()
        finally:
            super().close()


def init_logging(cfg: Dict[str, Any], run_id: Optional[str] = None) -> str:
    """
    Configure the root logger from cfg["logging"] and return the run tag used in
    log file names (run_id, or a UTC timestamp when none is given).
    """
    log_cfg = cfg.get("logging", {}) if cfg else {}
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)

    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(level)

    run_tag = run_id or _utc_stamp()
    context = _RunContextFilter(run_tag)
    log_dir = Path(log_cfg.get("dir", "logs"))

    ch = logging.StreamHandler(sys.stdout)
    ch.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    handlers: list = [ch]

    if log_cfg.get("to_file", False):
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / f"mixdag_{run_tag}.log", encoding="utf-8")
        fh.setFormatter(logging.Formatter(_FILE_FORMAT))
        handlers.append(fh)

    if log_cfg.get("to_json", False):
        handlers.append(_JSONLogHandler(log_dir / f"mixdag_{run_tag}.jsonl"))

    for h in handlers:
        h.setLevel(level)
        h.addFilter(context)
        root.addHandler(h)

    root.debug("Logging initialized (run_id=%s, handlers=%d)", run_tag, len(handlers))
    return run_tag


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def pipeline_fields(
    stage: str,
    category: Optional[str] = None,
    variables: Sequence[str] = (),
) -> Dict[str, Any]:
    """`extra=` payload tagging a record with its stage and, for warnings, their details."""
    extra: Dict[str, Any] = {"stage": stage}
    if category is not None:
        extra["category"] = category
        extra["variables"] = list(variables)
    return extra


def stage_logger(stage: str) -> logging.LoggerAdapter:
    """Logger "mixdag.<stage>" whose records all carry stage=<stage>."""
    return logging.LoggerAdapter(logging.getLogger(f"mixdag.{stage}"), pipeline_fields(stage))


def add_run_metadata(logger: logging.Logger, run_id: str, cfg_hash: str) -> None:
    logger.info("[RunMeta] run_id=%s cfg_hash=%s", run_id, cfg_hash)
