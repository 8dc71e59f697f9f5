from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from mixdag.cli import app
from mixdag.errors import WarningLog, NumericalWarning
from mixdag.models.graph import MixedDAG
from mixdag.utils.config_loader import DEFAULTS, deep_merge, resolve_config, stage_kwargs
from mixdag.utils.logging_utils import init_logging, stage_logger

runner = CliRunner()


@pytest.fixture(autouse=True)
def _restore_root_handlers():
    root = logging.getLogger()
    saved, level = list(root.handlers), root.level
    yield
    for h in list(root.handlers):
        if h not in saved:
            root.removeHandler(h)
            h.close()
    for h in saved:
        if h not in root.handlers:
            root.addHandler(h)
    root.setLevel(level)


def test_deep_merge_keeps_siblings():
    merged = deep_merge({"a": {"x": 1, "y": 2}}, {"a": {"y": 3}, "b": 4})
    assert merged == {"a": {"x": 1, "y": 3}, "b": 4}


def test_resolve_config_fills_defaults(cfg_path: Path):
    cfg = resolve_config(cfg_path, overrides_json='{"stage2": {"nperm": 500}}')
    assert cfg["stage2"]["nperm"] == 500
    assert cfg["stage2"]["neighborhood"] == DEFAULTS["stage2"]["neighborhood"]
    assert cfg["stage1"]["n_lambda"] == 30
    assert resolve_config()["stage3"]["snp_as_root"] is True


def test_stage_kwargs_maps_sections(cfg):
    kw = stage_kwargs(cfg)
    assert kw["lambdaGam"] == 0.25
    assert kw["ruleReg"] == "OR"
    assert kw["nperm"] == 150
    assert kw["max_cond_size"] == 2
    assert kw["seed"] == 7
    assert kw["max_iter"] == 200
    assert kw["neighborhood"] == "shared"
    assert kw["tie_break"] == "lowest-index"


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        resolve_config(tmp_path / "absent.yaml")


def test_file_and_json_logging(tmp_path: Path):
    cfg = {"logging": {"level": "DEBUG", "to_file": True, "to_json": True, "dir": str(tmp_path)}}
    assert init_logging(cfg, run_id="t1") == "t1"
    WarningLog().add(NumericalWarning, "stage2", "coarse p-values", ["A"])
    stage_logger("stage3").info("Stage 3: %d arcs", 4)
    for h in logging.getLogger().handlers:
        h.flush()
    text = (tmp_path / "mixdag_t1.log").read_text(encoding="utf-8")
    assert "[t1] mixdag.warnings" in text
    lines = (tmp_path / "mixdag_t1.jsonl").read_text(encoding="utf-8").strip().splitlines()
    records = [json.loads(line) for line in lines]
    assert all(r["run_id"] == "t1" for r in records)
    (warn,) = [r for r in records if r["logger"] == "mixdag.warnings"]
    assert warn["stage"] == "stage2"
    assert warn["category"] == "NumericalWarning"
    assert warn["variables"] == ["A"]
    (step,) = [r for r in records if r["logger"] == "mixdag.stage3"]
    assert step["stage"] == "stage3" and step["msg"] == "Stage 3: 4 arcs"
    assert "category" not in step


def test_cli_version():
    res = runner.invoke(app, ["version"])
    assert res.exit_code == 0
    assert "mixdag_version" in json.loads(res.stdout)


def test_cli_effective_config_yaml(cfg_path: Path, tmp_path: Path):
    out = tmp_path / "resolved.yaml"
    res = runner.invoke(app, ["effective-config", "-c", str(cfg_path), "-o", '{"stage1": {"rule_reg": "AND"}}',
                              "--out", str(out)])
    assert res.exit_code == 0
    assert yaml.safe_load(out.read_text())["stage1"]["rule_reg"] == "AND"


def test_cli_selftest_flags_bad_settings(cfg_path: Path):
    ok = runner.invoke(app, ["selftest", "-c", str(cfg_path)])
    assert ok.exit_code == 0
    bad = runner.invoke(app, ["selftest", "-c", str(cfg_path), "-o", '{"stage2": {"nperm": 0}}'])
    assert bad.exit_code == 2


def test_cli_run_writes_manifest_and_show(cfg_path: Path, cfg):
    res = runner.invoke(app, ["run", "-c", str(cfg_path), "--run-id", "cli-test", "--log-level", "WARNING"])
    assert res.exit_code == 0, res.output
    out_dir = Path(cfg["run"]["output_dir"])
    manifest = json.loads((out_dir / "run_manifest.json").read_text())
    assert manifest["run_id"] == "cli-test"
    assert Path(manifest["artifacts"]["result_file"]).exists()

    shown = runner.invoke(app, ["show", str(out_dir / "mdag_result.json"), "--format", "dot"])
    assert shown.exit_code == 0
    assert shown.stdout.startswith("digraph mixdag {")
    result = json.loads((out_dir / "mdag_result.json").read_text())
    assert shown.stdout.strip() == MixedDAG.from_arcs(
        result["names"],
        [(result["names"].index(u), result["names"].index(v)) for u, v in result["arcs"]],
        undirected=[(result["names"].index(u), result["names"].index(v))
                    for u, v in result["undirected"]],
    ).to_dot()


def test_cli_show_dot_keeps_undirected_pairs(tmp_path: Path):
    dag = MixedDAG.from_arcs(["S1", "S2", "Y"], [(0, 2)], undirected=[(0, 1)])
    path = tmp_path / "mdag_result.json"
    path.write_text(dag.to_json(), encoding="utf-8")
    shown = runner.invoke(app, ["show", str(path), "--format", "dot"])
    assert shown.exit_code == 0
    assert shown.stdout.strip() == dag.to_dot()
    assert '"S1" -> "S2" [dir=none];' in shown.stdout
    text = runner.invoke(app, ["show", str(path)])
    assert "S1 -- S2 (undirected)" in text.stdout


def test_cli_show_rejects_unknown_names(tmp_path: Path):
    path = tmp_path / "broken.json"
    path.write_text(json.dumps({"names": ["A"], "arcs": [["A", "Z"]]}), encoding="utf-8")
    res = runner.invoke(app, ["show", str(path), "--format", "dot"])
    assert res.exit_code == 2


def test_cli_run_data_error_exit_code(cfg_path: Path, tmp_path: Path, chain_data):
    df, _, _ = chain_data
    bad = df.assign(B=0.0)
    path = tmp_path / "bad.csv"
    bad.to_csv(path, index=False)
    res = runner.invoke(app, ["run", "-c", str(cfg_path), "--data", str(path), "--log-level", "ERROR"])
    assert res.exit_code == 3


def test_cli_example_writes_outputs(tmp_path: Path):
    res = runner.invoke(app, ["example", "--n", "120", "--nperm", "30", "--seed", "2",
                              "--out", str(tmp_path / "ex"), "--log-level", "ERROR"])
    assert res.exit_code == 0, res.output
    assert "MixedDAG over 5 variables" in res.stdout
    assert (tmp_path / "ex" / "example.csv").exists()
    assert json.loads((tmp_path / "ex" / "mdag_result.json").read_text())["names"] == list("ABCDE")
