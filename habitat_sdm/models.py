# Import necessary libraries for data manipulation and machine learning
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import joblib
import numpy as np
import pandas as pd
from elapid import MaxentModel
from sklearn.ensemble import RandomForestClassifier
from sklearn.inspection import permutation_importance
from sklearn.metrics import roc_auc_score
from sklearn.model_selection import GridSearchCV, StratifiedKFold, train_test_split
from sklearn.pipeline import Pipeline
from sklearn.preprocessing import StandardScaler
from sklearn.svm import SVC
from xgboost import XGBClassifier

from .errors import PredictorMismatchError, TrainingError
from .features_extractor import LABEL_COLUMN, predictor_columns

# Human readable names for the variant tags used throughout the pipeline
VARIANT_NAMES = {
    'rf': 'RandomForest',
    'svm': 'SupportVectorMachine',
    'xgb': 'GradientBoostedTrees',
    'maxent': 'MaximumEntropy',
}


@dataclass
class TrainedModel:
    """
    A fitted classifier bound to the exact, ordered predictor list it was trained on.

    Scoring always selects columns by name, so a frame with extra or reordered
    columns is scored correctly and a frame lacking a predictor is rejected.
    """
    variant: str
    estimator: Any
    predictor_names: List[str]
    best_params: Dict[str, Any] = field(default_factory=dict)
    cv_score: Optional[float] = None
    importance: Optional[pd.DataFrame] = None

    @property
    def name(self):
        return VARIANT_NAMES.get(self.variant, self.variant)

    def check_predictors(self, available, scenario=None):
        missing = [p for p in self.predictor_names if p not in set(available)]
        if missing:
            raise PredictorMismatchError(
                f"Input is missing predictors {missing} required by the {self.name} model",
                variant=self.variant,
                scenario=scenario,
                predictor=missing[0],
            )

    def predict_matrix(self, X):
        """Presence scores in [0, 1] for a matrix whose columns follow predictor_names."""
        X = np.asarray(X, dtype='float64')
        if X.shape[0] == 0:
            return np.array([], dtype='float64')
        scores = self.estimator.predict_proba(X)[:, 1]
        return np.clip(np.asarray(scores, dtype='float64'), 0.0, 1.0)

    def predict_proba(self, frame, scenario=None):
        """Presence scores in [0, 1] for every row of a DataFrame, selected by column name."""
        self.check_predictors(frame.columns, scenario=scenario)
        return self.predict_matrix(frame[self.predictor_names].to_numpy(dtype='float64'))


def split_feature_table(table, test_size=0.3, seed=1):
    """
    Stratified train/test partition of a feature table.

    Returns:
        tuple: (train DataFrame, test DataFrame), each keeping the original index
    """
    labels = table[LABEL_COLUMN]
    if labels.nunique() < 2:
        raise TrainingError(f"Cannot split a feature table with a single class ({labels.unique().tolist()})")
    train, test = train_test_split(table, test_size=test_size, random_state=seed, stratify=labels)
    return train, test


def check_training_data(X, y, predictors, variant=None):
    """Raise TrainingError for a single-class training set or a constant predictor."""
    classes = np.unique(y)
    if len(classes) < 2:
        raise TrainingError(
            f"Training data must contain both presence and absence rows, found classes {classes.tolist()}",
            variant=variant,
        )
    for i, name in enumerate(predictors):
        column = X[:, i]
        if np.all(column == column[0]):
            raise TrainingError(
                f"Predictor is constant in the training data (value {column[0]})",
                variant=variant,
                predictor=name,
            )


def _auc_scorer(estimator, X, y):
    return roc_auc_score(y, estimator.predict_proba(X)[:, 1])


class Models:
    """
    Trains the classifier variants used for species distribution modeling.

    Every variant takes the training subset of a feature table and returns a
    TrainedModel. Random forest and SVM pick hyperparameters with stratified
    k-fold cross-validation on ROC-AUC; gradient boosting and MaxEnt use the
    given hyperparameters as they are.
    """

    def __init__(self, seed=1, cv_folds=10, n_jobs=None, importance_repeats=10):
        """
        Parameters:
        -----------
        seed : int
            random_state for every estimator, CV split and permutation
        cv_folds : int
            Number of folds for hyperparameter selection
        n_jobs : int, optional
            Passed to GridSearchCV; results do not depend on it
        importance_repeats : int
            Shuffles per predictor for permutation importance
        """
        self.seed = seed
        self.cv_folds = cv_folds
        self.n_jobs = n_jobs
        self.importance_repeats = importance_repeats
        self.trainers = {
            'rf': self.RandomForest,
            'svm': self.SupportVectorMachine,
            'xgb': self.GradientBoostedTrees,
            'maxent': self.MaximumEntropy,
        }

    # ------------------------------------
    # Shared helpers
    # ------------------------------------

    def _cv(self, y):
        # Fewer folds than the minority class count would leave folds without presences
        n_splits = int(min(self.cv_folds, np.bincount(y.astype(int)).min()))
        if n_splits < 2:
            raise TrainingError("Each class needs at least 2 rows for cross-validation")
        return StratifiedKFold(n_splits=n_splits, shuffle=True, random_state=self.seed)

    def _grid_search(self, estimator, grid, X, y, variant):
        search = GridSearchCV(
            estimator,
            grid,
            scoring='roc_auc',
            cv=self._cv(y),
            n_jobs=self.n_jobs,
            refit=True,
        )
        search.fit(X, y)
        print(f"  {VARIANT_NAMES[variant]} best params: {search.best_params_} (CV AUC {search.best_score_:.4f})")
        return search.best_estimator_, dict(search.best_params_), float(search.best_score_)

    def variable_importance(self, estimator, X, y, predictors):
        """
        Permutation importance (mean drop in ROC-AUC) for each predictor.

        Returns:
            pandas.DataFrame: predictor, importance, importance_std sorted descending
        """
        result = permutation_importance(
            estimator, X, y,
            scoring=_auc_scorer,
            n_repeats=self.importance_repeats,
            random_state=self.seed,
        )
        importance = pd.DataFrame({
            'predictor': predictors,
            'importance': result.importances_mean,
            'importance_std': result.importances_std,
        })
        return importance.sort_values('importance', ascending=False, kind='mergesort').reset_index(drop=True)

    # ------------------------------------
    # Variants
    # ------------------------------------

    def RandomForest(self, X, y, n_estimators=500, max_features=(2, 3, 4, 5, 6)):
        """
        Random forest with the features-per-split count chosen by cross-validation.

        Parameters:
        -----------
        X : array-like
            Feature matrix
        y : array-like
            Target labels
        n_estimators : int, default=500
            Number of trees
        max_features : int, str or sequence of them
            Candidate features-per-split values; integers are clipped to the
            predictor count, 'sqrt' and 'log2' are passed to scikit-learn

        Returns:
        --------
        tuple
            Fitted estimator, best params, best CV AUC
        """
        candidates = [max_features] if np.isscalar(max_features) else list(max_features)
        n_features = X.shape[1]
        grid = []
        for m in candidates:
            if isinstance(m, str):
                if m not in ('sqrt', 'log2'):
                    raise ValueError(f"max_features must be a positive integer, 'sqrt' or 'log2', got '{m}'")
                value = m
            else:
                if int(m) < 1:
                    raise ValueError(f"max_features must be a positive integer, 'sqrt' or 'log2', got {m}")
                value = min(int(m), n_features)
            if value not in grid:
                grid.append(value)

        clf = RandomForestClassifier(n_estimators=n_estimators, random_state=self.seed)
        return self._grid_search(clf, {'max_features': grid}, X, y, 'rf')

    def SupportVectorMachine(self, X, y, C=(0.25, 0.5, 1.0, 2.0, 4.0), gamma=('scale', 0.01, 0.1)):
        """
        RBF-kernel SVM on standardized predictors, C and gamma chosen by cross-validation.

        Scores are Platt-scaled probabilities (SVC(probability=True)), so they
        can be thresholded at 0.5 like the other variants.
        """
        C = [C] if np.isscalar(C) else list(C)
        gamma = [gamma] if np.isscalar(gamma) else list(gamma)
        pipeline = Pipeline([
            ('scale', StandardScaler()),
            ('svc', SVC(kernel='rbf', probability=True, random_state=self.seed)),
        ])
        grid = {'svc__C': C, 'svc__gamma': gamma}
        return self._grid_search(pipeline, grid, X, y, 'svm')

    def GradientBoostedTrees(self, X, y, learning_rate=0.3, max_depth=6, n_estimators=100):
        """Gradient boosted trees (XGBoost) with fixed hyperparameters."""
        clf = XGBClassifier(
            learning_rate=learning_rate,
            max_depth=max_depth,
            n_estimators=n_estimators,
            objective='binary:logistic',
            eval_metric='logloss',
            random_state=self.seed,
            n_jobs=1,
        )
        clf.fit(X, y)
        params = {'learning_rate': learning_rate, 'max_depth': max_depth, 'n_estimators': n_estimators}
        return clf, params, None

    def MaximumEntropy(self, X, y, feature_types=('linear', 'hinge', 'product'), beta_multiplier=1.0,
                       transform='cloglog'):
        """MaxEnt (elapid) with fixed settings; the cloglog transform keeps scores in [0, 1]."""
        clf = MaxentModel(
            feature_types=list(feature_types),
            beta_multiplier=beta_multiplier,
            transform=transform,
        )
        clf.fit(X, y)
        params = {'feature_types': list(feature_types), 'beta_multiplier': beta_multiplier, 'transform': transform}
        return clf, params, None

    # ------------------------------------
    # Entry point
    # ------------------------------------

    def train(self, variant, train_df, predictors=None, **params):
        """
        Train one classifier variant on the training subset of a feature table.

        Parameters:
        -----------
        variant : str
            One of 'rf', 'svm', 'xgb', 'maxent'
        train_df : pandas.DataFrame
            Training rows with a 'label' column and predictor columns
        predictors : list of str, optional
            Predictors to use, in order; defaults to every predictor column
        **params
            Variant hyperparameters overriding the defaults

        Returns:
        --------
        TrainedModel
        """
        if variant not in self.trainers:
            raise ValueError(f"Unknown model variant '{variant}'. Supported: {list(self.trainers)}")

        predictors = list(predictors) if predictors is not None else predictor_columns(train_df)
        missing = [p for p in predictors if p not in train_df.columns]
        if missing:
            raise PredictorMismatchError(
                f"Training data is missing predictors {missing}", variant=variant, predictor=missing[0]
            )

        X = train_df[predictors].to_numpy(dtype='float64')
        y = train_df[LABEL_COLUMN].to_numpy(dtype=int)
        if np.isnan(X).any():
            raise TrainingError("Training data contains missing predictor values", variant=variant)
        check_training_data(X, y, predictors, variant=variant)

        print(f"\n=== {VARIANT_NAMES[variant]} ({len(y)} rows, {len(predictors)} predictors) ===")
        try:
            estimator, best_params, cv_score = self.trainers[variant](X, y, **params)
        except TrainingError as e:
            raise e.with_context(variant=variant)

        importance = self.variable_importance(estimator, X, y, predictors)
        print("  Permutation importance:")
        for _, row in importance.iterrows():
            print(f"    {row['predictor']}: {row['importance']:.4f}")

        return TrainedModel(
            variant=variant,
            estimator=estimator,
            predictor_names=predictors,
            best_params=best_params,
            cv_score=cv_score,
            importance=importance,
        )


def save_model(model, path):
    """Persist a TrainedModel with joblib."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    joblib.dump(model, path)
    print(f"Model saved to {path}")
    return path


def load_model(path):
    return joblib.load(path)
