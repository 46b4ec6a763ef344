import numpy as np
import pandas as pd
import pytest

from habitat_sdm.errors import InputReadError
from habitat_sdm.features_extractor import (
    LABEL_COLUMN,
    Feature_Extractor,
    build_feature_table,
    load_feature_table,
    predictor_columns,
    save_feature_table,
)
from habitat_sdm.pseudo_absence_generator import PseudoAbsences

from conftest import presence_points


def test_pseudo_absences_are_deterministic(stack, occurrences):
    a = PseudoAbsences(stack, seed=7).generate_pseudo_absences(100, occurrences)
    b = PseudoAbsences(stack, seed=7).generate_pseudo_absences(100, occurrences)
    c = PseudoAbsences(stack, seed=8).generate_pseudo_absences(100, occurrences)
    pd.testing.assert_frame_equal(a, b)
    assert not a.equals(c)


def test_pseudo_absences_avoid_presence_and_nodata_cells(stack, occurrences):
    absences = PseudoAbsences(stack, seed=1).generate_pseudo_absences(500, occurrences)
    assert len(absences) == 500
    assert not absences.duplicated().any()

    rows, cols, inside = stack.cell_indices(absences["longitude"], absences["latitude"])
    assert inside.all()
    assert stack.valid_mask()[rows, cols].all()

    p_rows, p_cols, _ = stack.cell_indices(occurrences["longitude"], occurrences["latitude"])
    assert not set(zip(rows, cols)) & set(zip(p_rows, p_cols))


def test_pseudo_absence_request_larger_than_candidates(stack):
    with pytest.raises(ValueError):
        PseudoAbsences(stack).generate_pseudo_absences(10_000)
    empty = PseudoAbsences(stack).generate_pseudo_absences(0)
    assert len(empty) == 0
    assert list(empty.columns) == ["longitude", "latitude"]


def test_feature_values_outside_grid_are_nan(stack):
    values = Feature_Extractor(stack).get_feature_values_at_points(np.array([70.125, 60.0]),
                                                                   np.array([29.875, 25.0]))
    assert values["temp"][0] == 10.0
    assert np.isnan(values["temp"][1])


def test_reference_row_count_without_missing_value_drop(stack):
    occurrences = presence_points(n=188, min_col=0)
    table = build_feature_table(stack, occurrences, absence_ratio=2.0, seed=1, drop_missing=False)
    assert len(table) == 564
    assert int((table[LABEL_COLUMN] == 1).sum()) == 188
    assert int((table[LABEL_COLUMN] == 0).sum()) == 376


def test_feature_table_layout(stack, occurrences):
    table = build_feature_table(stack, occurrences, seed=1)
    assert list(table.columns[:3]) == ["longitude", "latitude", "label"]
    assert predictor_columns(table) == stack.predictor_names
    # presences first, then absences
    labels = table[LABEL_COLUMN].tolist()
    assert labels == sorted(labels, reverse=True)


def test_feature_table_is_deterministic(stack, occurrences):
    a = build_feature_table(stack, occurrences, seed=11)
    b = build_feature_table(stack, occurrences, seed=11)
    pd.testing.assert_frame_equal(a, b)


def test_no_missing_predictors_after_drop(stack):
    # includes presences in the no-data corner
    occurrences = pd.concat([presence_points(n=40, min_col=0),
                             pd.DataFrame({"longitude": [70.125, 70.375], "latitude": [29.875, 29.625]})],
                            ignore_index=True)
    table = build_feature_table(stack, occurrences, n_absences=50, seed=1)
    assert not table[predictor_columns(table)].isna().any().any()
    assert len(table) <= 40 + 50


def test_explicit_absence_count(stack, occurrences):
    table = build_feature_table(stack, occurrences, n_absences=25, seed=1, drop_missing=False)
    assert int((table[LABEL_COLUMN] == 0).sum()) == 25


def test_csv_round_trip_preserves_labels_and_values(tmp_path, stack, occurrences):
    table = build_feature_table(stack, occurrences, seed=1)
    path = save_feature_table(table, str(tmp_path / "out" / "feature_table.csv"))
    loaded = load_feature_table(path)

    assert list(loaded.columns) == list(table.columns)
    assert loaded[LABEL_COLUMN].tolist() == table[LABEL_COLUMN].tolist()
    assert np.allclose(loaded[predictor_columns(table)].to_numpy(),
                       table[predictor_columns(table)].to_numpy(), rtol=1e-9, atol=0)


def test_load_feature_table_errors(tmp_path):
    with pytest.raises(InputReadError):
        load_feature_table(str(tmp_path / "missing.csv"))
    path = tmp_path / "bad.csv"
    pd.DataFrame({"longitude": [1.0], "temp": [2.0]}).to_csv(path, index=False)
    with pytest.raises(InputReadError):
        load_feature_table(str(path))
