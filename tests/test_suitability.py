import numpy as np
import pytest
from rasterio.transform import from_origin

from habitat_sdm.errors import GridMismatchError, InputReadError, PredictorMismatchError
from habitat_sdm.models import TrainedModel
from habitat_sdm.raster_stack import RasterStack
from habitat_sdm.suitability_predictor import (
    SuitabilityMap,
    SuitabilityPredictor,
    ensemble_mean,
    read_suitability_map,
    write_suitability_map,
)

TRANSFORM = from_origin(0.0, 10.0, 1.0, 1.0)


class ColumnScorer:
    def predict_proba(self, X):
        p = np.asarray(X)[:, 0]
        return np.column_stack([1.0 - p, p])


def _score_stack():
    score = np.linspace(0.0, 1.0, 100).reshape(10, 10)
    score[0, 0] = np.nan
    other = np.ones((10, 10))
    other[9, 9] = np.nan
    return RasterStack({"other": other, "score": score}, TRANSFORM, "EPSG:4326", name="current")


def _model():
    return TrainedModel(variant="rf", estimator=ColumnScorer(), predictor_names=["score"])


def test_prediction_covers_valid_cells_only():
    stack = _score_stack()
    suitability = SuitabilityPredictor(quiet=True).predict(_model(), stack)

    assert suitability.shape == (10, 10)
    assert suitability.values.dtype == np.float32
    assert np.isnan(suitability.values[0, 0])
    # 'other' is not a model predictor, so its no-data cell is still scored
    assert np.isfinite(suitability.values[9, 9])
    assert np.allclose(suitability.values[1:, :], stack["score"][1:, :])
    assert suitability.variant == "rf"
    assert suitability.scenario == "current"


def test_prediction_needs_every_model_predictor():
    stack = RasterStack({"other": np.ones((10, 10))}, TRANSFORM, "EPSG:4326", name="ssp585")
    with pytest.raises(PredictorMismatchError) as excinfo:
        SuitabilityPredictor(quiet=True).predict(_model(), stack)
    assert excinfo.value.predictor == "score"
    assert excinfo.value.variant == "rf"
    assert excinfo.value.scenario == "ssp585"


def test_prediction_does_not_depend_on_chunk_size():
    stack = _score_stack()
    small = SuitabilityPredictor(chunk_size=7, quiet=True).predict(_model(), stack)
    large = SuitabilityPredictor(quiet=True).predict(_model(), stack)
    assert np.array_equal(small.values, large.values, equal_nan=True)


def test_ensemble_mean():
    a = SuitabilityMap(np.array([[0.2, 0.4], [np.nan, 1.0]], dtype="float32"), TRANSFORM, "EPSG:4326", "rf", "s")
    b = SuitabilityMap(np.array([[0.6, 0.0], [0.5, 0.0]], dtype="float32"), TRANSFORM, "EPSG:4326", "xgb", "s")
    mean = ensemble_mean([a, b])
    assert mean.variant == "ensemble"
    assert mean.scenario == "s"
    assert np.allclose(mean.values[0], [0.4, 0.2])
    assert np.isnan(mean.values[1, 0])
    assert mean.values[1, 1] == pytest.approx(0.5)


def test_ensemble_mean_grid_mismatch():
    a = SuitabilityMap(np.zeros((2, 2), dtype="float32"), TRANSFORM, "EPSG:4326", "rf", "s")
    b = SuitabilityMap(np.zeros((2, 2), dtype="float32"), from_origin(1.0, 10.0, 1.0, 1.0), "EPSG:4326", "xgb", "s")
    with pytest.raises(GridMismatchError):
        ensemble_mean([a, b])


def test_write_and_read_suitability_map(tmp_path):
    suitability = SuitabilityPredictor(quiet=True).predict(_model(), _score_stack())
    path = write_suitability_map(suitability, str(tmp_path / "suitability" / "rf_current.tif"))
    loaded = read_suitability_map(path, variant="rf", scenario="current")
    assert loaded.same_grid(suitability)
    assert np.array_equal(loaded.values, suitability.values, equal_nan=True)

    with pytest.raises(InputReadError):
        read_suitability_map(str(tmp_path / "missing.tif"))
