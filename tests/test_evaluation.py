import numpy as np
import pandas as pd
import pytest

from habitat_sdm.change_analysis import ChangeAnalyzer
from habitat_sdm.errors import EvaluationError
from habitat_sdm.evaluation import evaluate_model, metrics_table
from habitat_sdm.models import TrainedModel


class ColumnScorer:
    """Returns the first input column as the presence probability."""

    def predict_proba(self, X):
        p = np.asarray(X)[:, 0]
        return np.column_stack([1.0 - p, p])


def _model():
    return TrainedModel(variant="rf", estimator=ColumnScorer(), predictor_names=["score"])


def _test_frame(labels, scores):
    return pd.DataFrame({"longitude": 0.0, "latitude": 0.0, "label": labels, "score": scores})


def test_metrics_on_known_scores():
    frame = _test_frame([1, 1, 1, 0, 0, 0], [0.9, 0.5, 0.4, 0.6, 0.2, 0.1])
    result = evaluate_model(_model(), frame, threshold=0.5)

    assert result.auc == pytest.approx(7 / 9)
    # score == threshold counts as a predicted absence
    assert result.confusion_matrix.tolist() == [[2, 1], [2, 1]]
    assert result.sensitivity == pytest.approx(1 / 3)
    assert result.specificity == pytest.approx(2 / 3)
    assert result.tss == pytest.approx(0.0, abs=1e-12)
    assert result.kappa == pytest.approx(0.0, abs=1e-12)
    assert result.accuracy == pytest.approx(0.5)
    assert result.n_test == 6


def test_threshold_matches_change_analysis():
    scores = [0.5, 0.51, 0.49, 0.5]
    frame = _test_frame([1, 1, 0, 0], scores)
    result = evaluate_model(_model(), frame, threshold=0.5)
    predicted_presence = result.confusion_matrix[:, 1].sum()
    assert predicted_presence == int(ChangeAnalyzer(threshold=0.5).binarize(np.array(scores)).sum()) == 1


def test_perfect_separation():
    frame = _test_frame([1, 1, 0, 0], [0.8, 0.7, 0.3, 0.2])
    result = evaluate_model(_model(), frame)
    assert result.auc == pytest.approx(1.0)
    assert result.kappa == pytest.approx(1.0)
    assert result.fpr[0] == 0.0 and result.tpr[-1] == 1.0


def test_empty_test_set():
    with pytest.raises(EvaluationError):
        evaluate_model(_model(), _test_frame([], []))


def test_single_class_test_set():
    with pytest.raises(EvaluationError) as excinfo:
        evaluate_model(_model(), _test_frame([1, 1, 1], [0.2, 0.5, 0.9]))
    assert excinfo.value.variant == "rf"


def test_test_set_missing_predictor():
    frame = _test_frame([1, 0], [0.9, 0.1]).drop(columns=["score"])
    with pytest.raises(EvaluationError):
        evaluate_model(_model(), frame)


def test_metrics_table_has_one_row_per_model():
    frame = _test_frame([1, 1, 0, 0], [0.8, 0.4, 0.6, 0.2])
    table = metrics_table([evaluate_model(_model(), frame)])
    assert len(table) == 1
    assert {"variant", "auc", "kappa", "tss", "tn", "fp", "fn", "tp"} <= set(table.columns)
    assert table.loc[0, ["tn", "fp", "fn", "tp"]].tolist() == [1, 1, 1, 1]
