"""
Clip climate rasters to a study-area boundary.

The boundary is usually a country polygon. Output rasters are cropped to the
boundary's bounding box, cells outside the polygon are set to no-data, and
every input band is written to its own single-band GeoTIFF named after the
predictor (e.g. annual_mean_temperature.tif), which is the directory layout
load_raster_stack() reads.
"""

import glob
import os

import geopandas as gpd
import numpy as np
import rasterio
from rasterio.errors import RasterioIOError
from rasterio.mask import mask
from shapely.geometry import mapping
from tqdm import tqdm

from .errors import GeometryMismatchError, InputReadError
from .raster_stack import predictor_name

DEFAULT_NODATA = -9999.0


def load_boundary(boundary):
    """Read a boundary vector file into a GeoDataFrame (a GeoDataFrame is passed through)."""
    if isinstance(boundary, gpd.GeoDataFrame):
        return boundary
    path = str(boundary)
    if not os.path.exists(path):
        raise InputReadError(f"Boundary file not found: {path}")
    try:
        gdf = gpd.read_file(path)
    except (OSError, ValueError, RuntimeError) as e:
        raise InputReadError(f"Cannot read boundary {path}: {e}") from e
    if len(gdf) == 0:
        raise InputReadError(f"Boundary file {path} contains no features")
    return gdf


class RasterClipper:
    """
    Crops and masks rasters to a boundary polygon.

    Args:
        boundary: Vector file path or GeoDataFrame with the clipping polygon(s)
        crs_policy: 'reproject' to move the boundary into the raster CRS when
                    they differ, or 'fail' to raise GeometryMismatchError
        quiet: Disable progress bars
    """

    def __init__(self, boundary, crs_policy='reproject', quiet=False):
        if crs_policy not in ('reproject', 'fail'):
            raise ValueError(f"crs_policy must be 'reproject' or 'fail', got '{crs_policy}'")
        self.boundary = load_boundary(boundary)
        self.crs_policy = crs_policy
        self.quiet = quiet

    def shapes_for(self, raster_crs, scenario=None):
        """Boundary geometries as GeoJSON-like dicts in the raster CRS."""
        boundary = self.boundary
        if raster_crs is None:
            raise GeometryMismatchError("Raster has no coordinate reference system", scenario=scenario)
        if boundary.crs is None:
            raise GeometryMismatchError("Boundary has no coordinate reference system", scenario=scenario)
        if boundary.crs != raster_crs:
            if self.crs_policy == 'fail':
                raise GeometryMismatchError(
                    f"Boundary CRS {boundary.crs} differs from raster CRS {raster_crs}", scenario=scenario
                )
            boundary = boundary.to_crs(raster_crs)
        geometries = [g for g in boundary.geometry if g is not None and not g.is_empty]
        if not geometries:
            raise GeometryMismatchError("Boundary contains only empty geometries", scenario=scenario)
        return [mapping(g) for g in geometries]

    def clip(self, raster_path, out_dir, band_names=None, scenario=None):
        """
        Clip every band of one raster file and write one GeoTIFF per band.

        Args:
            raster_path: Single or multi-band raster
            out_dir: Output directory (created if missing)
            band_names: Optional names, one per band; default is the band
                        description, else the file name for single-band files
            scenario: Scenario name for error messages

        Returns:
            dict: predictor name -> written file path, in band order
        """
        raster_path = str(raster_path)
        if not os.path.exists(raster_path):
            raise InputReadError(f"Raster not found: {raster_path}", scenario=scenario)

        try:
            with rasterio.open(raster_path) as src:
                shapes = self.shapes_for(src.crs, scenario=scenario)
                # Output is float32, so the fill value need not fit the source dtype
                nodata = float(src.nodata) if src.nodata is not None else DEFAULT_NODATA
                try:
                    masked, transform = mask(src, shapes, crop=True, filled=False)
                except ValueError as e:
                    if 'do not overlap' not in str(e):
                        raise
                    raise GeometryMismatchError(f"Boundary does not overlap {raster_path}: {e}",
                                                scenario=scenario) from e
                clipped = np.ma.filled(masked.astype(np.float32), nodata)

                names = self._band_names(src, raster_path, band_names)
                profile = src.profile.copy()
        except RasterioIOError as e:
            raise InputReadError(f"Cannot read raster {raster_path}: {e}", scenario=scenario) from e

        profile.update(
            driver='GTiff',
            count=1,
            height=clipped.shape[1],
            width=clipped.shape[2],
            transform=transform,
            dtype='float32',
            nodata=nodata,
        )
        # Drop block/tiling options that may not fit the new size
        for key in ('blockxsize', 'blockysize', 'tiled', 'interleave'):
            profile.pop(key, None)

        os.makedirs(out_dir, exist_ok=True)
        written = {}
        for i, name in enumerate(tqdm(names, desc=f"Clipping {os.path.basename(raster_path)}", disable=self.quiet)):
            out_path = os.path.join(out_dir, f"{name}.tif")
            with rasterio.open(out_path, 'w', **profile) as dst:
                dst.write(clipped[i].astype(np.float32), 1)
                dst.set_band_description(1, name)
            written[name] = out_path

        print(f"Clipped {len(written)} band(s) from {raster_path} into {out_dir}")
        return written

    def clip_directory(self, raster_dir, out_dir, scenario=None):
        """Clip every GeoTIFF in a directory of per-variable rasters."""
        files = sorted(glob.glob(os.path.join(str(raster_dir), '*.tif')) +
                       glob.glob(os.path.join(str(raster_dir), '*.tiff')))
        if len(files) == 0:
            raise InputReadError(f"No .tif rasters found in {raster_dir}", scenario=scenario)
        written = {}
        for path in files:
            for name, out_path in self.clip(path, out_dir, scenario=scenario).items():
                if name in written:
                    raise ValueError(f"Two rasters in {raster_dir} map to the predictor name '{name}'")
                written[name] = out_path
        return written

    def _band_names(self, src, raster_path, band_names):
        if band_names is not None:
            if len(band_names) != src.count:
                raise ValueError(f"{raster_path} has {src.count} bands but {len(band_names)} band names were given")
            raw = list(band_names)
        elif src.count == 1 and not src.descriptions[0]:
            raw = [os.path.splitext(os.path.basename(raster_path))[0]]
        else:
            raw = [src.descriptions[i] or f"band_{i + 1}" for i in range(src.count)]
        names = [predictor_name(r) for r in raw]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate band names in {raster_path}: {names}")
        return names
