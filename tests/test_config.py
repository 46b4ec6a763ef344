from pathlib import Path

import pytest
import yaml

from habitat_sdm.config import MODEL_VARIANTS, PipelineConfig, load_config


def _write_yaml(path, data):
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def test_defaults():
    config = PipelineConfig(occurrences="occ.csv", scenarios={"current": "r/current", "ssp585": "r/ssp585"})
    assert config.seed == 1
    assert config.absence_ratio == 2.0
    assert config.test_size == 0.3
    assert config.cv_folds == 10
    assert config.correlation_threshold == 0.8
    assert config.vif_policy == "report"
    assert config.crs_policy == "reproject"
    assert config.threshold == 0.5
    assert config.models == list(MODEL_VARIANTS)
    assert config.baseline_scenario == "current"
    assert config.future_scenarios == ["ssp585"]
    assert isinstance(config.occurrences, Path)


def test_explicit_baseline():
    config = PipelineConfig(occurrences="occ.csv", scenarios={"ssp585": "a", "current": "b"}, baseline="current")
    assert config.baseline_scenario == "current"
    assert config.future_scenarios == ["ssp585"]


@pytest.mark.parametrize("overrides", [
    {"scenarios": {}},
    {"baseline": "missing"},
    {"models": ["rf", "knn"]},
    {"crs_policy": "ignore"},
    {"vif_policy": "sometimes"},
    {"test_size": 1.5},
    {"cv_folds": 1},
])
def test_invalid_settings(overrides):
    kwargs = {"occurrences": "occ.csv", "scenarios": {"current": "r"}}
    kwargs.update(overrides)
    with pytest.raises(ValueError):
        PipelineConfig(**kwargs)


def test_params_for_returns_a_copy():
    config = PipelineConfig(occurrences="o.csv", scenarios={"c": "r"}, model_params={"rf": {"n_estimators": 50}})
    params = config.params_for("rf")
    params["n_estimators"] = 1
    assert config.model_params["rf"]["n_estimators"] == 50
    assert config.params_for("svm") == {}


def test_load_config_resolves_relative_paths(tmp_path):
    (tmp_path / "configs").mkdir()
    path = _write_yaml(tmp_path / "configs" / "run.yaml", {
        "occurrences": "../data/occ.csv",
        "scenarios": {"current": "../rasters/current", "future": "/abs/future"},
        "output_dir": "out",
        "models": ["rf"],
        "seed": 7,
    })
    config = load_config(path)
    base = (tmp_path / "configs").resolve()
    assert config.occurrences == base / "../data/occ.csv"
    assert config.scenarios["current"] == base / "../rasters/current"
    assert config.scenarios["future"] == Path("/abs/future")
    assert config.output_dir == base / "out"
    assert config.seed == 7
    assert config.boundary is None


def test_load_config_errors(tmp_path):
    with pytest.raises(SystemExit):
        load_config(tmp_path / "missing.yaml")
    with pytest.raises(SystemExit):
        load_config(_write_yaml(tmp_path / "list.yaml", ["a", "b"]))
    with pytest.raises(ValueError):
        load_config(_write_yaml(tmp_path / "unknown.yaml",
                                {"occurrences": "o.csv", "scenarios": {"c": "r"}, "colour": "red"}))
    with pytest.raises(ValueError):
        load_config(_write_yaml(tmp_path / "incomplete.yaml", {"occurrences": "o.csv"}))
