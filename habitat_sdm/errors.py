# Exception types raised by the habitat_sdm pipeline stages.
# Every error can carry the predictor / scenario / model variant that triggered it,
# because the same code runs for many (model x scenario) combinations.


class SDMError(Exception):
    """
    Base class for all pipeline errors.

    Parameters:
    -----------
    message : str
        Human readable description of the failure
    variant : str, optional
        Model variant tag ('rf', 'svm', 'xgb', 'maxent') involved in the failure
    scenario : str, optional
        Scenario name (e.g. 'current', 'ssp585_2050') involved in the failure
    predictor : str, optional
        Predictor (band) name involved in the failure
    """

    def __init__(self, message, variant=None, scenario=None, predictor=None):
        self.message = message
        self.variant = variant
        self.scenario = scenario
        self.predictor = predictor
        super().__init__(message)

    def with_context(self, variant=None, scenario=None, predictor=None):
        """Fill in any context fields that are still empty and return self."""
        self.variant = self.variant or variant
        self.scenario = self.scenario or scenario
        self.predictor = self.predictor or predictor
        return self

    def __str__(self):
        context = [
            f"{key}={value}"
            for key, value in (('variant', self.variant), ('scenario', self.scenario), ('predictor', self.predictor))
            if value is not None
        ]
        if context:
            return f"{self.message} [{', '.join(context)}]"
        return self.message


class InputReadError(SDMError, OSError):
    """A raster, boundary, occurrence or table file could not be read."""


class GeometryMismatchError(SDMError):
    """Coordinate reference system or extent mismatch between raster and boundary or between rasters."""


class TrainingError(SDMError):
    """Training data is degenerate (single class or constant predictor)."""


class EvaluationError(SDMError):
    """Held-out data is degenerate (empty or single class)."""


class PredictorMismatchError(SDMError):
    """Scoring input does not supply every predictor the model was trained on."""


class GridMismatchError(SDMError):
    """Two suitability grids cannot be compared cell by cell."""
