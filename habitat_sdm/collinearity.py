from dataclasses import dataclass, field
from typing import List

import numpy as np
import pandas as pd
from statsmodels.stats.outliers_influence import variance_inflation_factor
from statsmodels.tools.tools import add_constant

from .features_extractor import META_COLUMNS, predictor_columns


@dataclass
class CollinearityResult:
    table: pd.DataFrame
    retained: List[str]
    removed: List[str]
    correlation: pd.DataFrame
    vif: pd.DataFrame
    # (removed predictor, kept predictor it correlated with, r) for the audit trail
    removed_pairs: List[tuple] = field(default_factory=list)
    removed_by_vif: List[str] = field(default_factory=list)

    def removed_frame(self):
        """Removed predictors with the reason for removal, one row each."""
        rows = [
            {'predictor': dropped, 'reason': 'correlation', 'partner': kept, 'value': r}
            for dropped, kept, r in self.removed_pairs
        ]
        rows += [
            {'predictor': name, 'reason': 'vif', 'partner': None, 'value': np.nan}
            for name in self.removed_by_vif
        ]
        return pd.DataFrame(rows, columns=['predictor', 'reason', 'partner', 'value'])


def compute_vif(frame):
    """
    Variance inflation factor for every column of `frame`.

    An intercept is added before fitting so each VIF is the centered one.
    Perfectly collinear columns get an infinite VIF.
    """
    columns = list(frame.columns)
    if len(columns) == 0:
        return pd.DataFrame(columns=['predictor', 'vif'])
    if len(columns) == 1:
        return pd.DataFrame({'predictor': columns, 'vif': [1.0]})

    exog = add_constant(frame.to_numpy(dtype='float64'), has_constant='add')
    values = []
    with np.errstate(divide='ignore', invalid='ignore'):
        for i in range(1, exog.shape[1]):
            values.append(float(variance_inflation_factor(exog, i)))
    return pd.DataFrame({'predictor': columns, 'vif': values})


class CollinearityFilter:
    """
    Removes redundant predictors from a feature table.

    Pairwise Pearson correlation drives removal: for every pair (i, j), i < j in
    table column order, with |r| > threshold where neither member is already
    removed, the later column j is dropped. VIF is computed on what remains and
    reported; with vif_policy='drop' the highest-VIF predictor is also removed
    repeatedly until every VIF is <= vif_threshold.
    """

    def __init__(self, threshold=0.8, vif_threshold=10.0, vif_policy='report'):
        if vif_policy not in ('report', 'drop'):
            raise ValueError(f"vif_policy must be 'report' or 'drop', got '{vif_policy}'")
        self.threshold = threshold
        self.vif_threshold = vif_threshold
        self.vif_policy = vif_policy

    def correlation_matrix(self, table):
        return table[predictor_columns(table)].corr(method='pearson')

    def fit(self, table):
        """
        Filter `table` and return a CollinearityResult.

        The returned table keeps the coordinate and label columns and the
        retained predictors in their original order.
        """
        predictors = predictor_columns(table)
        corr = self.correlation_matrix(table)

        removed = []
        removed_pairs = []
        for i, first in enumerate(predictors):
            if first in removed:
                continue
            for second in predictors[i + 1:]:
                if second in removed:
                    continue
                r = corr.loc[first, second]
                if np.isfinite(r) and abs(r) > self.threshold:
                    removed.append(second)
                    removed_pairs.append((second, first, float(r)))

        retained = [p for p in predictors if p not in removed]
        for dropped, kept, r in removed_pairs:
            print(f"Removed '{dropped}' (|r| = {abs(r):.3f} with '{kept}')")

        vif = compute_vif(table[retained])
        removed_by_vif = []
        if self.vif_policy == 'drop':
            while len(retained) > 1 and vif['vif'].max() > self.vif_threshold:
                worst = vif.loc[vif['vif'].idxmax()]
                print(f"Removed high VIF predictor: {worst['predictor']} (VIF: {worst['vif']:.2f})")
                removed_by_vif.append(worst['predictor'])
                retained = [p for p in retained if p != worst['predictor']]
                vif = compute_vif(table[retained])
        else:
            high = vif[vif['vif'] > self.vif_threshold]
            for _, row in high.iterrows():
                print(f"Warning: '{row['predictor']}' has VIF {row['vif']:.2f} > {self.vif_threshold} (reported only)")

        meta = [c for c in table.columns if c in META_COLUMNS]
        filtered = table[meta + retained].copy()
        print(f"Retained {len(retained)} of {len(predictors)} predictors")

        return CollinearityResult(
            table=filtered,
            retained=retained,
            removed=removed + removed_by_vif,
            correlation=corr,
            vif=vif,
            removed_pairs=removed_pairs,
            removed_by_vif=removed_by_vif,
        )
