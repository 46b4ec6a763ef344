# Import necessary libraries for API requests, file handling, and data processing
import csv       # For writing occurrence CSV files
import os
from time import sleep  # For adding delays between API calls (rate limiting)

import pandas as pd  # For data manipulation and analysis
import requests  # For making HTTP requests to GBIF API

from .errors import InputReadError

GBIF_OCCURRENCE_URL = "https://api.gbif.org/v1/occurrence/search"

# Column name pairs accepted for occurrence coordinates, in order of preference
COORDINATE_ALIASES = [
    ('longitude', 'latitude'),
    ('decimalLongitude', 'decimalLatitude'),
    ('lon', 'lat'),
    ('x', 'y'),
]


def get_coordinate_columns(df):
    """
    Find which pair of columns holds the coordinates in an occurrence table.

    Returns:
        tuple: (longitude column, latitude column)
    """
    for lon_col, lat_col in COORDINATE_ALIASES:
        if lon_col in df.columns and lat_col in df.columns:
            return lon_col, lat_col
    raise ValueError(f"DataFrame is missing required coordinate columns. Columns found: {list(df.columns)}")


class Presence_dataloader():
    """
    Loads species occurrence (presence) records.

    Occurrences come either from a local CSV (any of the coordinate column
    conventions in COORDINATE_ALIASES) or from the GBIF occurrence API.
    Either way the result is a DataFrame with unique ['longitude', 'latitude']
    rows, which the rest of the pipeline treats as read-only.
    """

    def __init__(self, session=None):
        # A requests.Session can be injected (tests pass a fake one)
        self.session = session or requests.Session()

    def load_occurrences(self, path):
        """
        Load and deduplicate occurrence records from a CSV file.

        Args:
            path: CSV file with longitude/latitude columns

        Returns:
            pandas.DataFrame: unique ['longitude', 'latitude'] pairs, original order kept
        """
        if not os.path.exists(path):
            raise InputReadError(f"Occurrence file not found: {path}")
        try:
            df = pd.read_csv(path)
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError) as e:
            raise InputReadError(f"Cannot read occurrence file {path}: {e}") from e

        try:
            lon_col, lat_col = get_coordinate_columns(df)
        except ValueError as e:
            raise InputReadError(f"Cannot read occurrence file {path}: {e}") from e
        df = df[[lon_col, lat_col]].rename(columns={lon_col: 'longitude', lat_col: 'latitude'})
        df = df.apply(pd.to_numeric, errors='coerce')

        # Records without usable coordinates cannot be placed on the grid
        n_invalid = int(df.isna().any(axis=1).sum())
        if n_invalid:
            print(f"Dropping {n_invalid} occurrence records without valid coordinates")
            df = df.dropna()

        # Remove duplicate coordinate pairs
        # Each location should appear only once to avoid spatial bias
        df_unique = df.drop_duplicates(subset=['longitude', 'latitude']).reset_index(drop=True)
        print(f"Loaded {len(df_unique)} unique occurrence points from {path}")
        return df_unique

    def fetch_gbif_occurrences(self, scientific_name, polygon_wkt, out_path, maxp=2000,
                               event_date=None, limit=300, pause=0.0):
        """
        Download occurrence coordinates from the GBIF API within a polygon.

        Makes paginated API calls until `maxp` unique points are collected or
        GBIF has no more records, then writes them to `out_path`.

        Args:
            scientific_name: Species (or genus) name to search for
            polygon_wkt: Study area polygon as WKT
            out_path: CSV file to write ['longitude', 'latitude'] rows to
            maxp: Maximum number of unique points to collect
            event_date: Optional GBIF date range filter, e.g. "2000-01-01,2023-12-31"
            limit: Records requested per page
            pause: Seconds to wait between API calls

        Returns:
            pandas.DataFrame: the unique points written
        """
        occurrence_points = []
        seen = set()
        offset = 0

        print(f'Beginning to find at least {maxp} presence points for {scientific_name} in input polygon')

        while True:
            params = {
                "scientificName": scientific_name,
                "geometry": polygon_wkt,
                "hasCoordinate": "true",
                "limit": limit,
                "offset": offset,
            }
            if event_date:
                params["eventDate"] = event_date

            response = self.session.get(GBIF_OCCURRENCE_URL, params=params, timeout=60)
            response.raise_for_status()  # Raise exception if HTTP error occurs
            payload = response.json()
            results = payload.get("results", [])

            for result in results:
                lon = result.get("decimalLongitude")
                lat = result.get("decimalLatitude")
                if lon is None or lat is None:
                    continue
                point = (lon, lat)
                if point not in seen:
                    seen.add(point)
                    occurrence_points.append(point)

            # Fewer results than requested or GBIF flags the last page: no more data
            if len(results) < limit or payload.get("endOfRecords", False):
                break
            if len(occurrence_points) >= maxp:
                break

            offset += limit
            if pause:
                sleep(pause)

        occurrence_points = occurrence_points[:maxp]

        os.makedirs(os.path.dirname(os.path.abspath(out_path)), exist_ok=True)
        with open(out_path, "w", newline="") as csvfile:
            writer = csv.writer(csvfile)
            writer.writerow(["longitude", "latitude"])
            writer.writerows(occurrence_points)
        print(f"Saved {len(occurrence_points)} unique occurrence points to {out_path}")

        return pd.DataFrame(occurrence_points, columns=["longitude", "latitude"])
