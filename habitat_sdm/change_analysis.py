# Habitat change between two periods from binarized suitability maps
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd

from .errors import GridMismatchError
from .raster_stack import same_transform, write_geotiff

STABLE_UNSUITABLE = 0
STABLE_SUITABLE = 1
LOSS = 2
GAIN = 3
NODATA = 255

CHANGE_CLASSES = {
    STABLE_UNSUITABLE: 'stable_unsuitable',
    STABLE_SUITABLE: 'stable_suitable',
    LOSS: 'loss',
    GAIN: 'gain',
}

# Indexed by current_binary * 2 + future_binary
_CLASS_LOOKUP = np.array([STABLE_UNSUITABLE, GAIN, LOSS, STABLE_SUITABLE], dtype='uint8')


@dataclass
class ChangeMap:
    codes: np.ndarray
    transform: Any
    crs: Any
    variant: Optional[str] = None
    baseline: Optional[str] = None
    scenario: Optional[str] = None
    threshold: float = 0.5

    def summarize(self):
        """
        Cell counts, share of valid cells and area per change class.

        Area is in squared CRS units (degrees² for geographic CRSs).
        """
        cell_area = abs(self.transform.a * self.transform.e - self.transform.b * self.transform.d)
        valid = self.codes != NODATA
        n_valid = int(valid.sum())
        rows = []
        for code, label in CHANGE_CLASSES.items():
            count = int((self.codes == code).sum())
            rows.append({
                'variant': self.variant,
                'baseline': self.baseline,
                'scenario': self.scenario,
                'class': label,
                'cells': count,
                'percent': 100.0 * count / n_valid if n_valid else 0.0,
                'area': count * cell_area,
            })
        return pd.DataFrame(rows)


class ChangeAnalyzer:
    """
    Classifies every cell as stable-unsuitable, stable-suitable, loss or gain.

    A cell is suitable when its score is strictly greater than the threshold.
    Cells that are no-data in either map are no-data (255) in the result.
    """

    def __init__(self, threshold=0.5):
        self.threshold = threshold

    def check_grids(self, current, future):
        context = dict(variant=future.variant or current.variant, scenario=future.scenario)
        if current.values.shape != future.values.shape:
            raise GridMismatchError(
                f"Grid shapes differ: {current.values.shape} vs {future.values.shape}", **context
            )
        if not same_transform(current.transform, future.transform):
            raise GridMismatchError("Grid extent or resolution differs", **context)
        if current.crs != future.crs:
            raise GridMismatchError(f"Coordinate systems differ: {current.crs} vs {future.crs}", **context)

    def binarize(self, values):
        return np.asarray(values) > self.threshold

    def compare(self, current, future):
        """
        Args:
            current: SuitabilityMap for the baseline period
            future: SuitabilityMap for the compared scenario

        Returns:
            ChangeMap
        """
        self.check_grids(current, future)

        valid = np.isfinite(current.values) & np.isfinite(future.values)
        with np.errstate(invalid='ignore'):
            current_suitable = self.binarize(current.values).astype('uint8')
            future_suitable = self.binarize(future.values).astype('uint8')

        codes = _CLASS_LOOKUP[current_suitable * 2 + future_suitable]
        codes[~valid] = NODATA

        change = ChangeMap(
            codes=codes,
            transform=current.transform,
            crs=current.crs,
            variant=future.variant or current.variant,
            baseline=current.scenario,
            scenario=future.scenario,
            threshold=self.threshold,
        )
        summary = change.summarize().set_index('class')['cells']
        print(f"Change {current.scenario} -> {future.scenario} ({change.variant}): "
              + ", ".join(f"{label}={summary[label]}" for label in CHANGE_CLASSES.values()))
        return change


def write_change_map(change, path):
    """Write a ChangeMap as a uint8 GeoTIFF (255 = no data)."""
    write_geotiff(
        path,
        change.codes.astype('uint8'),
        change.transform,
        change.crs,
        nodata=NODATA,
        description=f"change_{change.variant}_{change.baseline}_to_{change.scenario}",
    )
    print(f"GeoTIFF exported: {path}")
    return path
