# Held-out evaluation of trained classifiers
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
import pandas as pd
from sklearn.metrics import accuracy_score, auc, cohen_kappa_score, confusion_matrix, roc_curve

from .errors import EvaluationError, PredictorMismatchError
from .features_extractor import LABEL_COLUMN


@dataclass
class EvaluationResult:
    variant: str
    auc: float
    # rows = true label [0, 1], columns = predicted label [0, 1]
    confusion_matrix: np.ndarray
    kappa: Optional[float]
    accuracy: float
    sensitivity: float
    specificity: float
    threshold: float = 0.5
    n_test: int = 0
    fpr: np.ndarray = field(default=None, repr=False)
    tpr: np.ndarray = field(default=None, repr=False)

    @property
    def tss(self):
        """True skill statistic (sensitivity + specificity - 1)."""
        return self.sensitivity + self.specificity - 1.0

    def as_row(self):
        tn, fp, fn, tp = self.confusion_matrix.ravel()
        return {
            'variant': self.variant,
            'auc': self.auc,
            'kappa': self.kappa,
            'accuracy': self.accuracy,
            'sensitivity': self.sensitivity,
            'specificity': self.specificity,
            'tss': self.tss,
            'threshold': self.threshold,
            'n_test': self.n_test,
            'tn': int(tn), 'fp': int(fp), 'fn': int(fn), 'tp': int(tp),
        }


def evaluate_model(model, test_df, threshold=0.5, dataset_name='Test'):
    """
    Score a trained model against held-out rows.

    AUC is integrated over the full-resolution ROC curve (every distinct score
    is a threshold). The confusion matrix and kappa use presence = score > threshold, the
    same rule ChangeAnalyzer uses for a suitable cell.

    Parameters:
    -----------
    model : TrainedModel
        Trained classifier bound to its predictor names
    test_df : pandas.DataFrame
        Held-out rows with 'label' and the model's predictors
    threshold : float, default=0.5
        Decision threshold for the confusion matrix
    dataset_name : str
        Name shown in the printed report

    Returns:
    --------
    EvaluationResult
    """
    if test_df is None or len(test_df) == 0:
        raise EvaluationError("Test set is empty", variant=model.variant)

    y_true = test_df[LABEL_COLUMN].to_numpy(dtype=int)
    classes = np.unique(y_true)
    if len(classes) < 2:
        raise EvaluationError(
            f"Test set contains a single class ({classes.tolist()}); AUC is undefined",
            variant=model.variant,
        )

    try:
        scores = model.predict_proba(test_df)
    except PredictorMismatchError as e:
        raise EvaluationError(f"Test set cannot be scored: {e.message}", variant=model.variant,
                              predictor=e.predictor) from e
    if not np.all(np.isfinite(scores)):
        raise EvaluationError("Model produced non-finite scores on the test set", variant=model.variant)

    fpr, tpr, _ = roc_curve(y_true, scores)
    auc_value = float(auc(fpr, tpr))

    y_pred = (scores > threshold).astype(int)
    cm = confusion_matrix(y_true, y_pred, labels=[0, 1])
    tn, fp, fn, tp = cm.ravel()
    sensitivity = tp / (tp + fn)  # True Positive Rate
    specificity = tn / (tn + fp)  # True Negative Rate

    kappa = cohen_kappa_score(y_true, y_pred, labels=[0, 1])
    kappa = None if np.isnan(kappa) else float(kappa)

    result = EvaluationResult(
        variant=model.variant,
        auc=auc_value,
        confusion_matrix=cm,
        kappa=kappa,
        accuracy=float(accuracy_score(y_true, y_pred)),
        sensitivity=float(sensitivity),
        specificity=float(specificity),
        threshold=threshold,
        n_test=len(y_true),
        fpr=fpr,
        tpr=tpr,
    )

    # Display evaluation results
    print(f"\n{dataset_name} Set Evaluation ({model.name}):")
    print(f"AUC: {result.auc:.4f}")
    print(f"Kappa: {result.kappa:.4f}" if result.kappa is not None else "Kappa: undefined")
    print(f"True Positive Rate: {result.sensitivity:.4f}")
    print(f"True Negative Rate: {result.specificity:.4f}")
    print("Confusion Matrix:")
    print(result.confusion_matrix)

    return result


def metrics_table(results):
    """One row per evaluated model, ready to be written as CSV."""
    return pd.DataFrame([r.as_row() for r in results])
