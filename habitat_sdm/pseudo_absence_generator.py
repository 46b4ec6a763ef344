# Import necessary libraries for numerical computing
import numpy as np
import pandas as pd


class PseudoAbsences:
    """
    A class for generating pseudo-absence points for species distribution modeling.
    Pseudo-absences are artificially created absence points used when true absence data
    is not available, which is common in ecological studies.

    Candidate locations are the centres of raster cells where every predictor
    has a value. Cells are drawn without replacement with a seeded generator, so
    the same seed, raster and occurrences always give the same coordinates.
    """

    def __init__(self, stack, seed=1, exclude_presence_cells=True):
        """
        Args:
            stack: RasterStack defining the valid sampling extent
            seed: Seed for the random generator
            exclude_presence_cells: Never place an absence in a cell holding a presence
        """
        self.stack = stack
        self.seed = seed
        self.exclude_presence_cells = exclude_presence_cells

    def candidate_cells(self, presence_df=None):
        """
        Flat (row-major) indices of the cells a pseudo-absence may be placed in.
        """
        valid = self.stack.valid_mask()

        if self.exclude_presence_cells and presence_df is not None and len(presence_df) > 0:
            rows, cols, inside = self.stack.cell_indices(presence_df['longitude'].values,
                                                         presence_df['latitude'].values)
            valid[rows[inside], cols[inside]] = False

        return np.flatnonzero(valid)

    def generate_pseudo_absences(self, num_points, presence_df=None):
        """
        Draw `num_points` distinct pseudo-absence locations.

        Args:
            num_points: Number of pseudo-absence points to generate
            presence_df: DataFrame of presence points ['longitude', 'latitude'],
                         used to exclude presence cells

        Returns:
            pandas.DataFrame: DataFrame containing generated pseudo-absence points (longitude, latitude)
        """
        num_points = int(num_points)
        if num_points < 0:
            raise ValueError(f"Number of pseudo-absences must be non-negative, got {num_points}")

        candidates = self.candidate_cells(presence_df)
        if num_points > len(candidates):
            raise ValueError(
                f"Requested {num_points} pseudo-absences but only {len(candidates)} valid cells are available"
                + (f" in scenario '{self.stack.name}'" if self.stack.name else "")
            )

        print(f"Target number of points to generate: {num_points}")
        if num_points == 0:
            return pd.DataFrame({'longitude': np.array([], dtype='float64'),
                                 'latitude': np.array([], dtype='float64')})

        # A fresh generator per call keeps the draw independent of earlier calls
        rng = np.random.default_rng(self.seed)
        chosen = rng.choice(candidates, size=num_points, replace=False)

        rows, cols = np.unravel_index(chosen, self.stack.shape)
        lons, lats = self.stack.cell_centers(rows, cols)

        print(f"Total points generated: {num_points} from {len(candidates)} candidate cells")
        return pd.DataFrame({'longitude': lons, 'latitude': lats})
