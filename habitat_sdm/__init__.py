"""
habitat_sdm: species distribution modeling under climate scenarios.

Clips bioclimatic rasters to a study area, builds a presence / pseudo-absence
feature table, filters collinear predictors, trains and evaluates several
classifiers, projects habitat suitability onto future climate scenarios and
classifies habitat change between periods.
"""

from .change_analysis import ChangeAnalyzer, ChangeMap
from .collinearity import CollinearityFilter, CollinearityResult
from .config import PipelineConfig, load_config
from .errors import (
    EvaluationError,
    GeometryMismatchError,
    GridMismatchError,
    InputReadError,
    PredictorMismatchError,
    SDMError,
    TrainingError,
)
from .evaluation import EvaluationResult, evaluate_model
from .features_extractor import build_feature_table, load_feature_table, save_feature_table
from .models import Models, TrainedModel, load_model, save_model
from .pipeline import PipelineResult, SDMPipeline
from .raster_clipper import RasterClipper
from .raster_stack import RasterStack, load_raster_stack
from .suitability_predictor import SuitabilityMap, SuitabilityPredictor, ensemble_mean

__version__ = "0.1.0"
