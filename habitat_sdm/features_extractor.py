import os
import numpy as np
import pandas as pd

from .errors import InputReadError
from .pseudo_absence_generator import PseudoAbsences

# Non-predictor columns of a feature table
COORDINATE_COLUMNS = ['longitude', 'latitude']
LABEL_COLUMN = 'label'
META_COLUMNS = COORDINATE_COLUMNS + [LABEL_COLUMN]

# Significant digits kept when a feature table is written as text
FEATURE_TABLE_FLOAT_FORMAT = '%.10g'


def predictor_columns(table):
    """Predictor column names of a feature table, in table order."""
    return [c for c in table.columns if c not in META_COLUMNS]


class Feature_Extractor():
    """
    Samples environmental predictor values from a RasterStack at point locations.
    """

    def __init__(self, stack):
        self.stack = stack

    def get_feature_values_at_points(self, lons, lats):
        """
        Extracts every predictor value at the given coordinates.

        Points outside the grid or on no-data cells get NaN.

        Returns:
            dict: predictor name -> 1D array of values
        """
        rows, cols, inside = self.stack.cell_indices(lons, lats)
        all_values = {}
        for name in self.stack.predictor_names:
            values = self.stack[name][rows, cols].astype('float64') if len(rows) else np.array([], dtype='float64')
            values[~inside] = np.nan
            all_values[name] = values
        return all_values

    def add_features(self, occurrences):
        """
        Adds environmental features to a set of occurrence points.

        Args:
            occurrences: DataFrame with 'longitude' and 'latitude' columns

        Returns:
            pandas.DataFrame: longitude, latitude and one column per predictor
        """
        lons = occurrences['longitude'].to_numpy(dtype='float64')
        lats = occurrences['latitude'].to_numpy(dtype='float64')
        values = self.get_feature_values_at_points(lons, lats)
        return pd.DataFrame({'longitude': lons, 'latitude': lats, **values})


def build_feature_table(stack, occurrences, n_absences=None, absence_ratio=2.0, seed=1,
                        exclude_presence_cells=True, drop_missing=True):
    """
    Assemble the labeled feature table used for model training.

    Presence rows (label 1) come first, in occurrence order, followed by the
    pseudo-absence rows (label 0) in draw order.

    Parameters:
    -----------
    stack : RasterStack
        Predictors for the baseline period
    occurrences : pandas.DataFrame
        Presence points with 'longitude' and 'latitude'
    n_absences : int, optional
        Number of pseudo-absences; defaults to round(len(occurrences) * absence_ratio)
    absence_ratio : float
        Pseudo-absences per presence when n_absences is not given (reference 1:2)
    seed : int
        Seed for pseudo-absence sampling
    exclude_presence_cells : bool
        Keep pseudo-absences out of cells that hold a presence
    drop_missing : bool
        Drop rows with any missing predictor value (never imputed)

    Returns:
    --------
    pandas.DataFrame
        Columns: longitude, latitude, label, then one column per predictor
    """
    if n_absences is None:
        if absence_ratio <= 0:
            raise ValueError(f"absence_ratio must be positive, got {absence_ratio}")
        n_absences = int(round(len(occurrences) * absence_ratio))

    extractor = Feature_Extractor(stack)

    # ------------------------------------
    # Presence rows
    # ------------------------------------
    presence = extractor.add_features(occurrences)
    presence.insert(2, LABEL_COLUMN, 1)

    # ------------------------------------
    # Pseudo-absence rows
    # ------------------------------------
    generator = PseudoAbsences(stack, seed=seed, exclude_presence_cells=exclude_presence_cells)
    absence_points = generator.generate_pseudo_absences(n_absences, presence_df=occurrences)
    absence = extractor.add_features(absence_points)
    absence.insert(2, LABEL_COLUMN, 0)

    table = pd.concat([presence, absence], ignore_index=True)
    table[LABEL_COLUMN] = table[LABEL_COLUMN].astype(int)
    print(f"Feature table: {len(presence)} presence + {len(absence)} pseudo-absence = {len(table)} rows")

    if drop_missing:
        table = drop_incomplete_rows(table)

    return table


def drop_incomplete_rows(table):
    """Remove rows with any missing predictor value."""
    predictors = predictor_columns(table)
    complete = table[predictors].notna().all(axis=1)
    n_dropped = int((~complete).sum())
    if n_dropped:
        n_presence = int((table.loc[~complete, LABEL_COLUMN] == 1).sum())
        print(f"Dropped {n_dropped} rows with missing predictor values "
              f"({n_presence} presence, {n_dropped - n_presence} pseudo-absence)")
    return table[complete].reset_index(drop=True)


def save_feature_table(table, path):
    """Write a feature table as CSV (see FEATURE_TABLE_FLOAT_FORMAT for precision)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    table.to_csv(path, index=False, float_format=FEATURE_TABLE_FLOAT_FORMAT)
    print(f"Feature table saved to {path}")
    return path


def load_feature_table(path):
    """Read a feature table written by save_feature_table."""
    if not os.path.exists(path):
        raise InputReadError(f"Feature table not found: {path}")
    try:
        table = pd.read_csv(path)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise InputReadError(f"Cannot read feature table {path}: {e}") from e
    missing = [c for c in META_COLUMNS if c not in table.columns]
    if missing:
        raise InputReadError(f"Feature table {path} is missing columns {missing}")
    table[LABEL_COLUMN] = table[LABEL_COLUMN].astype(int)
    predictors = predictor_columns(table)
    table[predictors] = table[predictors].astype('float64')
    return table
