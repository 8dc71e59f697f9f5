"""
Config loader & resolver

- load_yaml(path): loads YAML into dict (requires PyYAML)
- resolve_config(path, overrides_json): loads, applies JSON overrides, fills defaults
- stage_kwargs(cfg): flattens the stage sections into mdag() keyword arguments
"""
from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULTS: Dict[str, Any] = {
    "run": {"output_dir": "outputs", "random_seed": 42, "n_jobs": 1},
    "data": {"path": None, "weights_column": None},
    "variables": {},
    "stage1": {
        "lambda_gamma": 0.25,
        "rule_reg": "OR",
        "threshold": "LW",
        "n_lambda": 50,
        "lambda_min_ratio": 0.01,
    },
    "stage2": {
        "alpha": 0.05,
        "nperm": 10000,
        "max_cond_size": 3,
        "neighborhood": "shared",
        "time_budget_seconds": None,
    },
    "stage3": {"max_iter": 1000, "snp_as_root": True, "tie_break": "lowest-index"},
    "logging": {"level": "INFO", "to_file": False, "to_json": False, "dir": "logs"},
}


def load_yaml(path: str | Path) -> Dict[str, Any]:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config not found: {p}")
    return yaml.safe_load(p.read_text(encoding="utf-8")) or {}


def deep_merge(a: Dict, b: Dict) -> Dict:
    """Recursively merge dict b into a (returns a new dict)."""
    out = dict(a)
    for k, v in b.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def resolve_config(path: str | Path | None = None, overrides_json: Optional[str] = None) -> Dict:
    cfg = load_yaml(path) if path is not None else {}
    if overrides_json:
        # e.g. '{"stage2": {"nperm": 500}}'
        cfg = deep_merge(cfg, json.loads(overrides_json))
    return deep_merge(copy.deepcopy(DEFAULTS), cfg)


def stage_kwargs(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Map the resolved config sections onto mdag() keyword arguments.
    """
    s1, s2, s3, run = cfg["stage1"], cfg["stage2"], cfg["stage3"], cfg["run"]
    return {
        "lambdaGam": float(s1["lambda_gamma"]),
        "ruleReg": s1["rule_reg"],
        "threshold": s1["threshold"],
        "n_lambda": int(s1["n_lambda"]),
        "lambda_min_ratio": float(s1["lambda_min_ratio"]),
        "alpha": float(s2["alpha"]),
        "nperm": s2["nperm"],
        "max_cond_size": int(s2["max_cond_size"]),
        "neighborhood": s2["neighborhood"],
        "time_budget_seconds": s2.get("time_budget_seconds"),
        "max_iter": int(s3["max_iter"]),
        "snp_as_root": bool(s3["snp_as_root"]),
        "tie_break": s3.get("tie_break", "lowest-index"),
        "seed": run.get("random_seed"),
        "n_jobs": int(run.get("n_jobs", 1)),
    }
