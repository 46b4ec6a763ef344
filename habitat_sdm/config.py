"""
Pipeline configuration.

All paths, seeds and thresholds used by the pipeline stages live on a single
PipelineConfig object that is passed explicitly to each stage. Nothing here
touches the working directory or keeps module level state.

A config is usually loaded from YAML:

    occurrences: data/occurrences.csv
    boundary: data/boundary/country.shp
    scenarios:
      current: data/rasters/current
      ssp245_2050: data/rasters/ssp245_2050
      ssp585_2050: data/rasters/ssp585_2050
    output_dir: outputs
    seed: 1
    models: [rf, svm, xgb, maxent]
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


MODEL_VARIANTS = ('rf', 'svm', 'xgb', 'maxent')
CRS_POLICIES = ('reproject', 'fail')
VIF_POLICIES = ('report', 'drop')


@dataclass
class PipelineConfig:
    occurrences: Path
    scenarios: Dict[str, Path]
    baseline: Optional[str] = None
    boundary: Optional[Path] = None
    crs_policy: str = 'reproject'
    band_names: Optional[List[str]] = None
    output_dir: Path = Path('outputs')
    seed: int = 1

    # Pseudo-absence sampling
    absence_ratio: float = 2.0
    n_absences: Optional[int] = None
    exclude_presence_cells: bool = True

    # Train/test partition and model selection
    test_size: float = 0.3
    cv_folds: int = 10

    # Collinearity filtering
    correlation_threshold: float = 0.8
    vif_threshold: float = 10.0
    vif_policy: str = 'report'

    models: List[str] = field(default_factory=lambda: list(MODEL_VARIANTS))
    model_params: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    threshold: float = 0.5

    ensemble: bool = True
    make_plots: bool = False
    quiet: bool = False

    def __post_init__(self):
        self.occurrences = Path(self.occurrences)
        self.scenarios = {str(name): Path(path) for name, path in self.scenarios.items()}
        self.output_dir = Path(self.output_dir)
        if self.boundary is not None:
            self.boundary = Path(self.boundary)
        self.validate()

    def validate(self):
        """Raise ValueError for settings no stage could run with."""
        if not self.scenarios:
            raise ValueError("At least one scenario (the baseline) must be configured")
        if self.baseline is not None and self.baseline not in self.scenarios:
            raise ValueError(f"Baseline scenario '{self.baseline}' not in scenarios: {list(self.scenarios)}")
        unknown = [m for m in self.models if m not in MODEL_VARIANTS]
        if unknown:
            raise ValueError(f"Unknown model variants {unknown}. Supported: {list(MODEL_VARIANTS)}")
        if self.crs_policy not in CRS_POLICIES:
            raise ValueError(f"crs_policy must be one of {CRS_POLICIES}, got '{self.crs_policy}'")
        if self.vif_policy not in VIF_POLICIES:
            raise ValueError(f"vif_policy must be one of {VIF_POLICIES}, got '{self.vif_policy}'")
        if not 0.0 < self.test_size < 1.0:
            raise ValueError(f"test_size must be in (0, 1), got {self.test_size}")
        if not 0.0 < self.correlation_threshold <= 1.0:
            raise ValueError(f"correlation_threshold must be in (0, 1], got {self.correlation_threshold}")
        if self.n_absences is None and self.absence_ratio <= 0:
            raise ValueError(f"absence_ratio must be positive, got {self.absence_ratio}")
        if self.cv_folds < 2:
            raise ValueError(f"cv_folds must be at least 2, got {self.cv_folds}")

    @property
    def baseline_scenario(self) -> str:
        """Name of the scenario every other scenario is compared against."""
        return self.baseline or next(iter(self.scenarios))

    @property
    def future_scenarios(self) -> List[str]:
        return [name for name in self.scenarios if name != self.baseline_scenario]

    def params_for(self, variant: str) -> Dict[str, Any]:
        return dict(self.model_params.get(variant, {}))


# -----------------------------------------------------------------------------
# YAML loading
# -----------------------------------------------------------------------------

def load_yaml(path: Path) -> Dict[str, Any]:
    """Load a YAML file and return it as a dict.

    Raises SystemExit on a missing file or a document that is not a mapping.
    """
    path = Path(path)
    if not path.exists():
        raise SystemExit(f"Config not found: {path}")
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if not isinstance(data, dict):
        raise SystemExit(f"Expected YAML mapping at {path}")
    return data


def load_config(path: Path) -> PipelineConfig:
    """
    Build a PipelineConfig from a YAML file.

    Relative paths in the file are resolved against the directory holding the
    YAML file, so a config can be moved together with its data.
    """
    path = Path(path)
    data = load_yaml(path)

    known = {f.name for f in fields(PipelineConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown config keys in {path}: {unknown}")

    base = path.resolve().parent

    def resolve(p):
        p = Path(p)
        return p if p.is_absolute() else base / p

    for key in ('occurrences', 'boundary', 'output_dir'):
        if data.get(key) is not None:
            data[key] = resolve(data[key])
    if isinstance(data.get('scenarios'), dict):
        data['scenarios'] = {name: resolve(p) for name, p in data['scenarios'].items()}

    missing = [key for key in ('occurrences', 'scenarios') if key not in data]
    if missing:
        raise ValueError(f"Missing required config keys in {path}: {missing}")

    return PipelineConfig(**data)
