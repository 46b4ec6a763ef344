import os
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from tqdm import tqdm

from .errors import GridMismatchError, InputReadError, PredictorMismatchError
from .raster_stack import same_transform, write_geotiff


@dataclass
class SuitabilityMap:
    """Continuous suitability scores on the grid of the stack they were predicted from (NaN = no data)."""
    values: np.ndarray
    transform: Any
    crs: Any
    variant: Optional[str] = None
    scenario: Optional[str] = None

    @property
    def shape(self):
        return self.values.shape

    def same_grid(self, other):
        return (
            self.values.shape == other.values.shape
            and same_transform(self.transform, other.transform)
            and self.crs == other.crs
        )


class SuitabilityPredictor:
    """
    Applies a TrainedModel to every cell of a RasterStack.

    Only cells where all of the model's predictors have values are scored; the
    rest are no-data. Cells are scored in row-major chunks, and the output does
    not depend on chunk_size.
    """

    def __init__(self, chunk_size=100_000, quiet=False):
        self.chunk_size = int(chunk_size)
        self.quiet = quiet

    def predict(self, model, stack):
        """
        Args:
            model: TrainedModel
            stack: RasterStack whose band names include every model predictor

        Returns:
            SuitabilityMap
        """
        try:
            model.check_predictors(stack.predictor_names, scenario=stack.name)
        except PredictorMismatchError as e:
            raise e.with_context(variant=model.variant, scenario=stack.name)

        names = model.predictor_names
        predictors = stack.subset(names, variant=model.variant)
        mask = predictors.valid_mask()
        X = predictors.to_matrix(names, mask=mask)

        scores = np.empty(X.shape[0], dtype='float64')
        starts = range(0, X.shape[0], self.chunk_size)
        for start in tqdm(starts, desc=f"Predicting {model.variant} / {stack.name}", disable=self.quiet):
            stop = min(start + self.chunk_size, X.shape[0])
            scores[start:stop] = model.predict_matrix(X[start:stop])

        values = np.full(stack.shape, np.nan, dtype='float32')
        values[mask] = scores.astype('float32')

        n_valid = int(mask.sum())
        print(f"Predicted {n_valid} of {mask.size} cells for {model.name} / {stack.name}")
        return SuitabilityMap(values, stack.transform, stack.crs, variant=model.variant, scenario=stack.name)


def ensemble_mean(maps, scenario=None):
    """
    Cell-wise mean of several suitability maps on the same grid.

    A cell is no-data if it is no-data in any input map.
    """
    maps = list(maps)
    if not maps:
        raise ValueError("ensemble_mean needs at least one suitability map")
    reference = maps[0]
    for other in maps[1:]:
        if not reference.same_grid(other):
            raise GridMismatchError(
                "Suitability maps are not on the same grid",
                variant=other.variant,
                scenario=other.scenario,
            )
    stacked = np.stack([m.values.astype('float64') for m in maps])
    values = stacked.mean(axis=0)  # NaN propagates
    return SuitabilityMap(
        values.astype('float32'),
        reference.transform,
        reference.crs,
        variant='ensemble',
        scenario=scenario if scenario is not None else reference.scenario,
    )


def write_suitability_map(suitability, path):
    """Write a SuitabilityMap as a float32 GeoTIFF with NaN no-data."""
    write_geotiff(
        path,
        suitability.values.astype('float32'),
        suitability.transform,
        suitability.crs,
        nodata=np.nan,
        description=f"suitability_{suitability.variant}_{suitability.scenario}",
    )
    print(f"GeoTIFF exported: {path}")
    return path


def read_suitability_map(path, variant=None, scenario=None):
    if not os.path.exists(path):
        raise InputReadError(f"Suitability map not found: {path}", variant=variant, scenario=scenario)
    try:
        with rasterio.open(path) as src:
            values = np.ma.filled(src.read(1, masked=True).astype('float32'), np.nan)
            return SuitabilityMap(values, src.transform, src.crs, variant=variant, scenario=scenario)
    except RasterioIOError as e:
        raise InputReadError(f"Cannot read suitability map {path}: {e}", variant=variant, scenario=scenario) from e
