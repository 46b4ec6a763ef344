# Import necessary libraries for raster I/O and numerical work
import os
import re
import glob
import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.transform import rowcol, xy

from .errors import InputReadError, GeometryMismatchError, PredictorMismatchError

# Mapping of bioclim variable codes to human-readable names
bioclim_names = {
    'bio01': 'annual_mean_temperature',
    'bio02': 'mean_diurnal_range',
    'bio03': 'isothermality',
    'bio04': 'temperature_seasonality',
    'bio05': 'max_temperature_warmest_month',
    'bio06': 'min_temperature_coldest_month',
    'bio07': 'temperature_annual_range',
    'bio08': 'mean_temperature_wettest_quarter',
    'bio09': 'mean_temperature_driest_quarter',
    'bio10': 'mean_temperature_warmest_quarter',
    'bio11': 'mean_temperature_coldest_quarter',
    'bio12': 'annual_precipitation',
    'bio13': 'precipitation_wettest_month',
    'bio14': 'precipitation_driest_month',
    'bio15': 'precipitation_seasonality',
    'bio16': 'precipitation_wettest_quarter',
    'bio17': 'precipitation_driest_quarter',
    'bio18': 'precipitation_warmest_quarter',
    'bio19': 'precipitation_coldest_quarter'
}

# Matches WorldClim style names: 'bio1', 'bio_01', 'wc2.1_10m_bio_12', 'BIO5'
_BIOCLIM_PATTERN = re.compile(r'(?:^|_)bio_?(\d{1,2})$', re.IGNORECASE)


def same_transform(a, b):
    """True when two affine transforms agree to floating point tolerance."""
    return np.allclose(tuple(a)[:6], tuple(b)[:6], rtol=0.0, atol=1e-9)


def predictor_name(raw_name):
    """Translate a band or file name into the predictor name used in feature tables."""
    raw_name = raw_name.strip()
    match = _BIOCLIM_PATTERN.search(raw_name)
    if match:
        code = f"bio{int(match.group(1)):02d}"
        if code in bioclim_names:
            return bioclim_names[code]
    return raw_name


class RasterStack:
    """
    An ordered set of co-registered 2D grids, one per predictor.

    No-data cells are stored as NaN. All bands share one shape, one affine
    transform and one CRS; a stack violating that cannot be constructed.

    Args:
        bands: Mapping of predictor name -> 2D array (order is preserved)
        transform: rasterio Affine transform shared by every band
        crs: Coordinate reference system shared by every band
        name: Optional scenario name, used in error messages
    """

    def __init__(self, bands, transform, crs, name=None):
        if not bands:
            raise ValueError("A RasterStack needs at least one band")
        self.name = name
        self.transform = transform
        self.crs = crs
        self.bands = {}
        shape = None
        for band_name, values in bands.items():
            values = np.asarray(values, dtype='float64')
            if values.ndim != 2:
                raise GeometryMismatchError(
                    f"Band must be 2D, got shape {values.shape}", scenario=name, predictor=band_name
                )
            if shape is None:
                shape = values.shape
            elif values.shape != shape:
                raise GeometryMismatchError(
                    f"Band shape {values.shape} differs from stack shape {shape}", scenario=name, predictor=band_name
                )
            self.bands[band_name] = values
        self.shape = shape

    @property
    def predictor_names(self):
        return list(self.bands)

    def __contains__(self, band_name):
        return band_name in self.bands

    def __getitem__(self, band_name):
        return self.bands[band_name]

    def __len__(self):
        return len(self.bands)

    def require(self, names, variant=None):
        """Raise PredictorMismatchError if any of `names` is not a band of this stack."""
        missing = [n for n in names if n not in self.bands]
        if missing:
            raise PredictorMismatchError(
                f"Raster stack is missing required predictors {missing}; available: {self.predictor_names}",
                variant=variant,
                scenario=self.name,
                predictor=missing[0],
            )

    def subset(self, names, variant=None):
        self.require(names, variant=variant)
        return RasterStack({n: self.bands[n] for n in names}, self.transform, self.crs, name=self.name)

    def valid_mask(self, names=None):
        """Boolean grid, True where every requested band has a finite value."""
        names = self.predictor_names if names is None else list(names)
        self.require(names)
        mask = np.ones(self.shape, dtype=bool)
        for n in names:
            mask &= np.isfinite(self.bands[n])
        return mask

    def to_matrix(self, names, mask=None):
        """
        Flatten the requested bands into a (cells x predictors) matrix.

        Columns follow the order of `names`. If `mask` is given only cells where
        the mask is True are returned, in row-major order.
        """
        self.require(names)
        if mask is None:
            columns = [self.bands[n].ravel() for n in names]
        else:
            columns = [self.bands[n][mask] for n in names]
        return np.column_stack(columns) if columns else np.empty((0, 0))

    def cell_centers(self, rows, cols):
        """Return (xs, ys) arrays with the coordinates of the given cell centres."""
        xs, ys = xy(self.transform, rows, cols, offset='center')
        return np.asarray(xs, dtype='float64'), np.asarray(ys, dtype='float64')

    def cell_indices(self, xs, ys):
        """
        Return (rows, cols, inside) for the given coordinates.

        `inside` is False for points that fall outside the grid; their row/col
        values are clipped into range and must not be used.
        """
        xs = np.asarray(xs, dtype='float64')
        ys = np.asarray(ys, dtype='float64')
        if xs.size == 0:
            empty = np.array([], dtype=int)
            return empty, empty, np.array([], dtype=bool)
        rows, cols = rowcol(self.transform, xs, ys)
        rows = np.asarray(rows, dtype=int)
        cols = np.asarray(cols, dtype=int)
        inside = (rows >= 0) & (rows < self.shape[0]) & (cols >= 0) & (cols < self.shape[1])
        return np.clip(rows, 0, self.shape[0] - 1), np.clip(cols, 0, self.shape[1] - 1), inside

    def same_grid(self, other):
        """True when `other` has the same shape, transform and CRS."""
        return (
            self.shape == other.shape
            and same_transform(self.transform, other.transform)
            and self.crs == other.crs
        )

    def __repr__(self):
        return f"RasterStack(name={self.name!r}, shape={self.shape}, bands={self.predictor_names})"


# ------------------------------------
# Reading
# ------------------------------------

def _read_masked_band(src, index):
    """Read one band as float64 with no-data replaced by NaN."""
    data = src.read(index, masked=True).astype('float64')
    return np.ma.filled(data, np.nan)


def _load_single_file(path, name=None, band_names=None):
    try:
        with rasterio.open(path) as src:
            count = src.count
            if band_names is not None and len(band_names) != count:
                raise ValueError(f"{path} has {count} bands but {len(band_names)} band names were given")
            bands = {}
            for i in range(1, count + 1):
                if band_names is not None:
                    raw = band_names[i - 1]
                elif src.descriptions[i - 1]:
                    raw = src.descriptions[i - 1]
                elif count == 1:
                    raw = os.path.splitext(os.path.basename(path))[0]
                else:
                    raw = f"band_{i}"
                band = predictor_name(raw)
                if band in bands:
                    raise ValueError(f"Duplicate band name '{band}' in {path}")
                bands[band] = _read_masked_band(src, i)
            return RasterStack(bands, src.transform, src.crs, name=name)
    except RasterioIOError as e:
        raise InputReadError(f"Cannot read raster {path}: {e}", scenario=name) from e


def _load_directory(directory, name=None, band_names=None):
    files = sorted(glob.glob(os.path.join(directory, '*.tif')) + glob.glob(os.path.join(directory, '*.tiff')))
    if len(files) == 0:
        raise InputReadError(f"No .tif rasters found in {directory}", scenario=name)
    if band_names is not None and len(band_names) != len(files):
        raise ValueError(f"{directory} has {len(files)} rasters but {len(band_names)} band names were given")

    bands = {}
    reference = None
    for i, path in enumerate(files):
        raw = band_names[i] if band_names is not None else os.path.splitext(os.path.basename(path))[0]
        band = predictor_name(raw)
        try:
            with rasterio.open(path) as src:
                grid = (src.height, src.width), src.transform, src.crs
                values = _read_masked_band(src, 1)
        except RasterioIOError as e:
            raise InputReadError(f"Cannot read raster {path}: {e}", scenario=name, predictor=band) from e

        # Every file in a scenario directory must sit on the same grid
        if reference is None:
            reference = grid
        else:
            if grid[0] != reference[0] or not same_transform(grid[1], reference[1]):
                raise GeometryMismatchError(
                    f"{path} is not aligned with the other rasters in {directory}", scenario=name, predictor=band
                )
            if grid[2] != reference[2]:
                raise GeometryMismatchError(
                    f"{path} uses CRS {grid[2]} but {reference[2]} was expected", scenario=name, predictor=band
                )
        if band in bands:
            raise ValueError(f"Duplicate band name '{band}' in {directory}")
        bands[band] = values

    return RasterStack(bands, reference[1], reference[2], name=name)


def load_raster_stack(path, name=None, band_names=None):
    """
    Load a RasterStack from a multi-band raster file or a directory of single-band GeoTIFFs.

    Args:
        path: Raster file or directory of per-variable rasters
        name: Scenario name attached to the stack (used in error messages)
        band_names: Optional explicit names, one per band / file (sorted file order)

    Returns:
        RasterStack
    """
    path = str(path)
    if os.path.isdir(path):
        return _load_directory(path, name=name, band_names=band_names)
    if not os.path.exists(path):
        raise InputReadError(f"Raster not found: {path}", scenario=name)
    return _load_single_file(path, name=name, band_names=band_names)


# ------------------------------------
# Writing
# ------------------------------------

def write_geotiff(path, array, transform, crs, nodata=None, description=None):
    """Write a single 2D array as a one-band GeoTIFF and return the path."""
    array = np.asarray(array)
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with rasterio.open(
        path, "w",
        driver="GTiff",
        height=array.shape[0],
        width=array.shape[1],
        count=1,
        dtype=array.dtype,
        crs=crs,
        transform=transform,
        nodata=nodata,
    ) as dst:
        dst.write(array, 1)
        if description:
            dst.set_band_description(1, description)
    return path
