from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import rasterio
from rasterio.transform import from_origin

from habitat_sdm.raster_stack import RasterStack

# 40 x 40 cells of 0.25 degrees covering lon 70..80, lat 20..30
GRID_SHAPE = (40, 40)
GRID_TRANSFORM = from_origin(70.0, 30.0, 0.25, 0.25)
GRID_CRS = "EPSG:4326"
NODATA = -9999.0


def write_band(path, values, transform=GRID_TRANSFORM, crs=GRID_CRS, nodata=NODATA, description=None):
    values = np.where(np.isnan(values), nodata, values).astype("float32")
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=values.shape[0],
        width=values.shape[1],
        count=1,
        dtype="float32",
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(values, 1)
        if description:
            dst.set_band_description(1, description)
    return path


def make_bands(temp_shift=0.0, seed=0):
    """
    temp rises west to east, precip rises north to south, noise is random and
    temp_copy is an exact linear function of temp. The top-left 3 x 3 block is
    no-data in precip.
    """
    rows, cols = np.indices(GRID_SHAPE)
    temp = 10.0 + 0.5 * cols + temp_shift
    precip = 500.0 + 20.0 * rows
    precip[:3, :3] = np.nan
    noise = np.random.default_rng(seed).normal(0.0, 1.0, GRID_SHAPE)
    temp_copy = 2.0 * temp + 1.0
    return {"temp": temp, "precip": precip, "noise": noise, "temp_copy": temp_copy}


def write_scenario_dir(directory, bands):
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    for name, values in bands.items():
        write_band(directory / f"{name}.tif", values)
    return directory


def presence_points(n=60, seed=3, min_col=25):
    """Distinct cell centres in the warm eastern part of the grid."""
    rng = np.random.default_rng(seed)
    rows, cols = np.indices(GRID_SHAPE)
    eligible = np.flatnonzero((cols >= min_col) & (rows >= 3))
    chosen = rng.choice(eligible, size=n, replace=False)
    r, c = np.unravel_index(chosen, GRID_SHAPE)
    lons = 70.0 + 0.25 * c + 0.125
    lats = 30.0 - 0.25 * r - 0.125
    return pd.DataFrame({"longitude": lons, "latitude": lats})


@pytest.fixture
def current_dir(tmp_path):
    return write_scenario_dir(tmp_path / "rasters" / "current", make_bands())


@pytest.fixture
def future_dir(tmp_path):
    return write_scenario_dir(tmp_path / "rasters" / "future", make_bands(temp_shift=3.0))


@pytest.fixture
def stack():
    return RasterStack(make_bands(), GRID_TRANSFORM, GRID_CRS, name="current")


@pytest.fixture
def occurrences():
    return presence_points()


@pytest.fixture
def occurrences_csv(tmp_path, occurrences):
    path = tmp_path / "occurrences.csv"
    occurrences.to_csv(path, index=False)
    return path
