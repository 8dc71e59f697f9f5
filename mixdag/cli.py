# FILE: mixdag/cli.py
# =============================================================================
# mixdag — Typer CLI
#
# Commands
# --------
#   run               Learn a mixed DAG from a CSV described by a YAML config
#   example           Run the three stages on the bundled synthetic chain data
#   show              Print a saved mdag_result.json (arcs, nodes, warnings)
#   effective-config  Emit the fully resolved config (after overrides) to JSON or YAML
#   selftest          Check that a config resolves and validates
#   version / env     Version and environment snapshot
#
# Logging controls on every command that runs the pipeline:
#   --run-id auto|<str>   → stamps file/JSON logs with a stable run id (auto = UTC timestamp)
#   --log-level LEVEL     → overrides config.logging.level (INFO|DEBUG|...)
#   --log-file/--no-log-file, --log-json/--no-log-json → force on/off regardless of config
#
# Exit codes: 0 ok, 2 configuration error, 3 data error.
#
# Usage examples
# --------------
#   python -m mixdag run -c configs/mdag.yaml --data data/cohort.csv --run-id auto --log-file
#   python -m mixdag example --n 300 --nperm 200 --seed 1
#   python -m mixdag effective-config -c configs/mdag.yaml -o '{"stage2": {"nperm": 500}}'
# =============================================================================

from __future__ import annotations

import hashlib
import json
import platform
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional, Tuple

import click
import typer
import yaml

from . import __version__
from .errors import ConfigError, DataError
from .models.graph import MixedDAG
from .pipeline import mdag, run_pipeline
from .utils.config_loader import resolve_config, stage_kwargs
from .utils.logging_utils import add_run_metadata, get_logger, init_logging

app = typer.Typer(add_completion=False, help="mixdag — causal DAG learning for mixed data")

EXIT_CONFIG = 2
EXIT_DATA = 3

# =============================================================================
# Helpers — time, hashing, IO
# =============================================================================


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _sha256_bytes(b: bytes) -> str:
    return "sha256:" + hashlib.sha256(b).hexdigest()


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return "sha256:" + h.hexdigest()


def _write_json(path: Path, obj: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(obj, indent=2, sort_keys=False), encoding="utf-8")


def _env_snapshot_dict() -> Dict[str, Any]:
    import numpy
    import pandas
    import scipy
    import sklearn

    return {
        "python": sys.version.replace("\n", " "),
        "platform": platform.platform(),
        "executable": sys.executable,
        "cwd": str(Path.cwd()),
        "mixdag": __version__,
        "numpy": numpy.__version__,
        "scipy": scipy.__version__,
        "pandas": pandas.__version__,
        "scikit-learn": sklearn.__version__,
    }


def _record_run_manifest(
    out_dir: Path,
    artifacts: Dict[str, Any],
    cfg_path: Optional[Path],
    cfg_obj: Dict[str, Any],
    run_id: str,
) -> Path:
    run_info = {
        "mixdag_version": __version__,
        "run_id": run_id,
        "timestamp_utc": _utc_now_iso(),
        "config_path": str(cfg_path.as_posix()) if cfg_path else None,
        "config_hash": _sha256_file(cfg_path) if cfg_path and cfg_path.exists() else None,
        "resolved_config_hash": _sha256_bytes(json.dumps(cfg_obj, sort_keys=True).encode("utf-8")),
        "artifacts": artifacts,
        "environment": _env_snapshot_dict(),
    }
    path = out_dir / "run_manifest.json"
    _write_json(path, run_info)
    return path


# =============================================================================
# Run-id & Logging overrides
# =============================================================================


def _auto_run_id() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")


def _merge_logging_overrides(cfg: Dict[str, Any],
                             level: Optional[str],
                             to_file: Optional[bool],
                             to_json: Optional[bool]) -> Dict[str, Any]:
    c = dict(cfg or {})
    lc = dict(c.get("logging", {}) or {})
    if level:
        lc["level"] = level
    if to_file is not None:
        lc["to_file"] = bool(to_file)
    if to_json is not None:
        lc["to_json"] = bool(to_json)
    lc.setdefault("dir", "logs")
    c["logging"] = lc
    return c


def _bootstrap_logging(cfg: Dict[str, Any],
                       run_id: Optional[str],
                       level: Optional[str],
                       to_file: Optional[bool],
                       to_json: Optional[bool]) -> Tuple[Dict[str, Any], str]:
    """
    Apply CLI logging overrides, compute run_id (auto|str), and initialize logging.
    Returns (merged_cfg, resolved_run_id).
    """
    merged = _merge_logging_overrides(cfg, level, to_file, to_json)
    rid = _auto_run_id() if (run_id == "auto" or not run_id) else run_id
    init_logging(merged, run_id=rid)
    add_run_metadata(get_logger("mixdag.cli"), rid,
                     _sha256_bytes(json.dumps(merged, sort_keys=True).encode("utf-8")))
    return merged, rid


def _fail(exc: Exception) -> NoReturn:
    """Report a library error and exit with its code."""
    code = EXIT_CONFIG if isinstance(exc, ConfigError) else EXIT_DATA
    typer.secho(f"error: {exc}", err=True, fg=typer.colors.RED)
    raise typer.Exit(code=code)


# =============================================================================
# Core CLI Commands
# =============================================================================


@app.command("version")
def cli_version():
    typer.echo(json.dumps({"mixdag_version": __version__, "timestamp_utc": _utc_now_iso()}, indent=2))


@app.command("env")
def cli_env():
    typer.echo(json.dumps(_env_snapshot_dict(), indent=2))


@app.command("effective-config")
def cli_effective_config(
    config: Optional[str] = typer.Option(None, "--config", "-c", help="Path to YAML config."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    out: Optional[str] = typer.Option(None, "--out", help="Write resolved config to this path (json|yaml)."),
):
    """
    Render the fully-resolved config (defaults + file + JSON overrides).
    """
    cfg = resolve_config(config, overrides_json=overrides)
    if out:
        outp = Path(out)
        outp.parent.mkdir(parents=True, exist_ok=True)
        if outp.suffix.lower() in (".yml", ".yaml"):
            outp.write_text(yaml.safe_dump(cfg, sort_keys=False), encoding="utf-8")
        else:
            _write_json(outp, cfg)
        typer.echo(f"Wrote resolved config → {outp.as_posix()}")
    else:
        typer.echo(json.dumps(cfg, indent=2))


@app.command("selftest")
def cli_selftest(
    config: str = typer.Option(..., "--config", "-c", help="Path to YAML config."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
):
    """
    Resolve the config and validate every stage setting without touching data.
    """
    from .models.markov_blanket import MarkovBlanketConfig
    from .models.orientation import OrientationConfig
    from .models.skeleton import SkeletonRefinerConfig

    cfg = resolve_config(config, overrides_json=overrides)
    kw = stage_kwargs(cfg)
    try:
        MarkovBlanketConfig(
            lambda_gamma=kw["lambdaGam"], rule_reg=kw["ruleReg"], threshold=kw["threshold"],
            n_lambda=kw["n_lambda"], lambda_min_ratio=kw["lambda_min_ratio"], n_jobs=kw["n_jobs"],
        ).validated()
        SkeletonRefinerConfig(
            alpha=kw["alpha"], nperm=kw["nperm"], max_cond_size=kw["max_cond_size"],
            neighborhood=kw["neighborhood"], seed=kw["seed"], n_jobs=kw["n_jobs"],
            time_budget_seconds=kw["time_budget_seconds"],
        ).validated()
        OrientationConfig(max_iter=kw["max_iter"], snp_as_root=kw["snp_as_root"],
                          tie_break=kw["tie_break"]).validated()
    except ConfigError as e:
        _fail(e)
    typer.echo(json.dumps({"status": "ok", "config_hash": _sha256_file(Path(config))}, indent=2))


# ------------------------------- PIPELINE -------------------------------------


@app.command("run")
def cli_run(
    config: str = typer.Option(..., "--config", "-c", help="Path to YAML config."),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="CSV file (overrides data.path)."),
    overrides: Optional[str] = typer.Option(None, "--override", "-o", help="JSON string of overrides."),
    run_id: str = typer.Option("auto", "--run-id", help='Run identifier ("auto" => UTC timestamp).'),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
    log_file: Optional[bool] = typer.Option(None, "--log-file/--no-log-file", help="Enable/disable file logging."),
    log_json: Optional[bool] = typer.Option(None, "--log-json/--no-log-json", help="Enable/disable JSONL logging."),
):
    """
    Learn a mixed DAG from a CSV and write mdag_result.json, mdag_graph.dot,
    stage2_tests.csv and run_manifest.json to run.output_dir.
    """
    cfg = resolve_config(config, overrides_json=overrides)
    cfg, rid = _bootstrap_logging(cfg, run_id, log_level, log_file, log_json)
    log = get_logger("mixdag.cli")
    log.info("=== mixdag :: RUN :: run_id=%s ===", rid)
    try:
        artifacts = run_pipeline(cfg, data_path=data)
    except (ConfigError, DataError) as e:
        _fail(e)
    out_dir = Path(cfg["run"]["output_dir"]).resolve()
    artifacts["run_id"] = rid
    manifest = _record_run_manifest(out_dir, artifacts, Path(config), cfg, rid)
    log.info("Run manifest → %s", manifest)
    typer.echo(json.dumps(artifacts, indent=2))


@app.command("example")
def cli_example(
    n: int = typer.Option(200, "--n", help="Number of synthetic samples."),
    nperm: int = typer.Option(150, "--nperm", help="Permutations per CI test."),
    seed: int = typer.Option(1, "--seed", help="Seed for data and permutations."),
    out: Optional[str] = typer.Option(None, "--out", help="Directory for example.csv and mdag_result.json."),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override logging level (e.g. INFO, DEBUG)."),
):
    """
    Run the pipeline on the synthetic chain A → B → C → D with binary E ← C.
    """
    from .datasets import make_example_data

    _bootstrap_logging({}, "example", log_level, False, False)
    df, types, levels = make_example_data(n=n, seed=seed)
    try:
        dag = mdag(df, types, levels, nperm=nperm, seed=seed)
    except (ConfigError, DataError) as e:
        _fail(e)
    if out:
        out_dir = Path(out)
        out_dir.mkdir(parents=True, exist_ok=True)
        df.to_csv(out_dir / "example.csv", index=False)
        (out_dir / "mdag_result.json").write_text(dag.to_json(), encoding="utf-8")
    typer.echo(str(dag))
    for rec in dag.warnings or []:
        typer.secho(f"warning [{rec.stage}] {rec.category}: {rec.message}", fg=typer.colors.YELLOW)


def _dag_from_result(obj: Dict[str, Any]) -> MixedDAG:
    """Rebuild a MixedDAG from the arcs/undirected/names of a saved mdag_result.json."""
    names = obj.get("names", [])
    idx = {nm: k for k, nm in enumerate(names)}
    try:
        return MixedDAG.from_arcs(
            names,
            [(idx[u], idx[v]) for u, v in obj.get("arcs", [])],
            undirected=[(idx[u], idx[v]) for u, v in obj.get("undirected", [])],
        )
    except (KeyError, ValueError) as e:
        typer.secho(f"error: malformed result file: {e}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=EXIT_CONFIG)


@app.command("show")
def cli_show(
    result: str = typer.Argument(..., help="Path to mdag_result.json."),
    fmt: str = typer.Option("text", "--format", "-f", click_type=click.Choice(["text", "json", "dot"])),
    pager: bool = typer.Option(False, "--pager", help="Page long output."),
):
    """
    Print a saved result as text, JSON or Graphviz DOT.
    """
    p = Path(result)
    if not p.exists():
        typer.secho(f"error: result file not found: {p}", err=True, fg=typer.colors.RED)
        raise typer.Exit(code=EXIT_CONFIG)
    obj = json.loads(p.read_text(encoding="utf-8"))
    if fmt == "json":
        text = json.dumps(obj, indent=2)
    elif fmt == "dot":
        text = _dag_from_result(obj).to_dot()
    else:
        rows = [f"{u} -> {v}" for u, v in obj.get("arcs", [])] or ["(no arcs)"]
        rows += [f"{u} -- {v} (undirected)" for u, v in obj.get("undirected", [])]
        for name, info in obj.get("nodes", {}).items():
            rows.append(f"{name}: parents={info['parents']} children={info['children']}")
        for w in obj.get("warnings", []):
            rows.append(f"warning [{w['stage']}] {w['category']}: {w['message']}")
        text = "\n".join(rows)
    if pager:
        click.echo_via_pager(text)
    else:
        typer.echo(text)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
