import os

import matplotlib
matplotlib.use('Agg')
import matplotlib.colors as mcolors
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
from matplotlib.patches import Patch
from rasterio.plot import plotting_extent

from .change_analysis import CHANGE_CLASSES, NODATA
from .models import VARIANT_NAMES

# Define custom color map (gradient from red to blue)
colors = [
    '#FF0000',  # 0.0 - red
    '#FF4500',  # 0.1
    '#FF8C00',  # 0.2
    '#FFD700',  # 0.3
    '#ADFF2F',  # 0.4
    '#00CED1',  # 0.5
    '#4169E1',  # 0.6 - royal blue
]
SUITABILITY_CMAP = mcolors.LinearSegmentedColormap.from_list("custom_prob_cmap", colors)

# stable-unsuitable, stable-suitable, loss, gain
CHANGE_COLORS = ['#d9d9d9', '#1a9641', '#d7191c', '#2b83ba']


def _save(fig, output_png):
    os.makedirs(os.path.dirname(os.path.abspath(output_png)), exist_ok=True)
    fig.savefig(output_png, dpi=300, bbox_inches='tight')
    plt.close(fig)
    print(f"Saved visualization to: {output_png}")
    return output_png


def plot_suitability_map(suitability, output_png, title=None):
    fig, ax = plt.subplots(figsize=(10, 8))
    img = ax.imshow(
        np.ma.masked_invalid(suitability.values),
        cmap=SUITABILITY_CMAP, vmin=0, vmax=1,
        extent=plotting_extent(suitability.values, suitability.transform),
    )
    fig.colorbar(img, ax=ax, label='Suitability')
    ax.set_xlabel('Longitude')
    ax.set_ylabel('Latitude')
    name = VARIANT_NAMES.get(suitability.variant, suitability.variant)
    ax.set_title(title or f'Habitat suitability: {name} / {suitability.scenario}')
    return _save(fig, output_png)


def plot_change_map(change, output_png, title=None):
    cmap = mcolors.ListedColormap(CHANGE_COLORS)
    norm = mcolors.BoundaryNorm([-0.5, 0.5, 1.5, 2.5, 3.5], cmap.N)
    codes = np.ma.masked_equal(change.codes, NODATA)

    fig, ax = plt.subplots(figsize=(10, 8))
    ax.imshow(codes, cmap=cmap, norm=norm, interpolation='nearest',
              extent=plotting_extent(change.codes, change.transform))
    handles = [Patch(color=CHANGE_COLORS[code], label=label.replace('_', ' '))
               for code, label in CHANGE_CLASSES.items()]
    ax.legend(handles=handles, loc='lower left', frameon=True)
    ax.set_xlabel('Longitude')
    ax.set_ylabel('Latitude')
    ax.set_title(title or f'Habitat change {change.baseline} -> {change.scenario} ({change.variant})')
    return _save(fig, output_png)


def plot_roc_curves(results, output_png):
    """ROC curve of every evaluated model on one figure."""
    fig, ax = plt.subplots(figsize=(7, 7))
    for result in results:
        ax.plot(result.fpr, result.tpr,
                label=f"{VARIANT_NAMES.get(result.variant, result.variant)} (AUC = {result.auc:.3f})")
    ax.plot([0, 1], [0, 1], linestyle='--', color='grey', linewidth=1)
    ax.set_xlabel('False Positive Rate')
    ax.set_ylabel('True Positive Rate')
    ax.set_title('ROC curves (held-out data)')
    ax.legend(loc='lower right')
    return _save(fig, output_png)


def plot_variable_importance(model, output_png):
    importance = model.importance
    fig, ax = plt.subplots(figsize=(8, max(3, 0.4 * len(importance))))
    sns.barplot(data=importance, x='importance', y='predictor', color='#4169E1', ax=ax)
    ax.set_xlabel('Permutation importance (AUC drop)')
    ax.set_ylabel('')
    ax.set_title(f'Variable importance: {model.name}')
    return _save(fig, output_png)
