"""
End-to-end species distribution modeling run.

Stages, in order:
    1. (optional) clip every scenario raster to the boundary
    2. build the feature table from the baseline rasters and occurrences
    3. collinearity filtering
    4. stratified train/test split
    5. train + evaluate every configured model variant
    6. predict suitability for every (variant x scenario), plus the ensemble mean
    7. habitat change from the baseline to every other scenario

Every output is written under config.output_dir with names that identify the
variant and scenario; see SDMPipeline.suitability_path and change_path.
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pandas as pd
from tqdm import tqdm

from .change_analysis import ChangeAnalyzer, write_change_map
from .collinearity import CollinearityFilter, CollinearityResult
from .errors import SDMError
from .evaluation import EvaluationResult, evaluate_model, metrics_table
from .features_extractor import build_feature_table, save_feature_table
from .models import Models, TrainedModel, save_model, split_feature_table
from .presence_dataloader import Presence_dataloader
from .raster_clipper import RasterClipper
from .raster_stack import load_raster_stack
from .suitability_predictor import SuitabilityPredictor, ensemble_mean, write_suitability_map


@dataclass
class PipelineResult:
    feature_table: pd.DataFrame
    collinearity: CollinearityResult
    train: pd.DataFrame
    test: pd.DataFrame
    models: Dict[str, TrainedModel]
    evaluations: Dict[str, EvaluationResult]
    # keyed by (variant, scenario); the ensemble uses variant 'ensemble'
    suitability: Dict[Tuple[str, str], object] = field(default_factory=dict)
    # keyed by (variant, scenario) for the baseline -> scenario comparison
    change: Dict[Tuple[str, str], object] = field(default_factory=dict)
    change_summary: Optional[pd.DataFrame] = None
    written: List[str] = field(default_factory=list)


class SDMPipeline:
    """
    Runs the full pipeline for one species from a PipelineConfig.

    Nothing is read from or written to the working directory implicitly;
    all inputs and outputs come from the config.
    """

    def __init__(self, config):
        self.config = config
        self.written = []

    # ------------------------------------
    # Output layout
    # ------------------------------------

    def path(self, *parts):
        return os.path.join(str(self.config.output_dir), *parts)

    def suitability_path(self, variant, scenario):
        return self.path('suitability', f"{variant}_{scenario}.tif")

    def change_path(self, variant, scenario):
        return self.path('change', f"{variant}_{self.config.baseline_scenario}_to_{scenario}.tif")

    def _record(self, path):
        self.written.append(str(path))
        return path

    def _write_csv(self, frame, *parts):
        out_path = self.path(*parts)
        os.makedirs(os.path.dirname(out_path), exist_ok=True)
        frame.to_csv(out_path, index=False)
        return self._record(out_path)

    # ------------------------------------
    # Stages
    # ------------------------------------

    def clip_rasters(self):
        """
        Clip every scenario to the boundary.

        Returns:
            dict: scenario -> directory of clipped single-band rasters
        """
        config = self.config
        clipper = RasterClipper(config.boundary, crs_policy=config.crs_policy, quiet=config.quiet)
        clipped = {}
        for scenario, source in config.scenarios.items():
            out_dir = self.path('clipped', scenario)
            try:
                if os.path.isdir(source):
                    written = clipper.clip_directory(source, out_dir, scenario=scenario)
                else:
                    written = clipper.clip(source, out_dir, band_names=config.band_names, scenario=scenario)
            except SDMError as e:
                raise e.with_context(scenario=scenario)
            for p in written.values():
                self._record(p)
            clipped[scenario] = out_dir
        return clipped

    def raster_sources(self):
        if self.config.boundary is not None:
            return self.clip_rasters()
        return dict(self.config.scenarios)

    def load_stack(self, scenario, source):
        # Clipped directories already carry predictor names in their file names
        band_names = self.config.band_names if self.config.boundary is None else None
        return load_raster_stack(source, name=scenario, band_names=band_names)

    def build_table(self, baseline_stack):
        config = self.config
        occurrences = Presence_dataloader().load_occurrences(config.occurrences)
        table = build_feature_table(
            baseline_stack,
            occurrences,
            n_absences=config.n_absences,
            absence_ratio=config.absence_ratio,
            seed=config.seed,
            exclude_presence_cells=config.exclude_presence_cells,
            drop_missing=True,
        )
        return table

    def filter_collinearity(self, table):
        config = self.config
        result = CollinearityFilter(
            threshold=config.correlation_threshold,
            vif_threshold=config.vif_threshold,
            vif_policy=config.vif_policy,
        ).fit(table)
        self._record(save_feature_table(result.table, self.path('feature_table.csv')))
        self._write_csv(result.removed_frame(), 'collinearity_removed.csv')
        self._write_csv(result.vif, 'vif.csv')
        return result

    def train_models(self, train):
        config = self.config
        trainer = Models(seed=config.seed, cv_folds=config.cv_folds)
        models = {}
        for variant in tqdm(config.models, desc="Training models", disable=config.quiet):
            try:
                model = trainer.train(variant, train, **config.params_for(variant))
            except SDMError as e:
                raise e.with_context(variant=variant)
            models[variant] = model
            self._record(save_model(model, self.path('models', f"{variant}.joblib")))
            self._write_csv(model.importance, 'importance', f"{variant}.csv")
        return models

    def evaluate_models(self, models, test):
        evaluations = {}
        for variant, model in models.items():
            try:
                evaluations[variant] = evaluate_model(model, test, threshold=self.config.threshold)
            except SDMError as e:
                raise e.with_context(variant=variant)
        metrics = metrics_table(evaluations.values())
        self._write_csv(metrics, 'evaluation_metrics.csv')
        print("\nModel summary:")
        print(metrics[['variant', 'auc', 'kappa', 'sensitivity', 'specificity', 'tss']].to_string(index=False))
        return evaluations

    def predict_scenarios(self, models, sources, baseline_stack):
        config = self.config
        predictor = SuitabilityPredictor(quiet=config.quiet)
        suitability = {}
        for scenario in config.scenarios:
            stack = baseline_stack if scenario == config.baseline_scenario else self.load_stack(scenario, sources[scenario])
            scenario_maps = []
            for variant, model in models.items():
                suitability_map = predictor.predict(model, stack)
                self._record(write_suitability_map(suitability_map, self.suitability_path(variant, scenario)))
                suitability[(variant, scenario)] = suitability_map
                scenario_maps.append(suitability_map)
            if config.ensemble and len(scenario_maps) > 1:
                mean_map = ensemble_mean(scenario_maps, scenario=scenario)
                self._record(write_suitability_map(mean_map, self.suitability_path('ensemble', scenario)))
                suitability[('ensemble', scenario)] = mean_map
        return suitability

    def analyze_change(self, suitability):
        config = self.config
        analyzer = ChangeAnalyzer(threshold=config.threshold)
        baseline = config.baseline_scenario
        variants = sorted({variant for variant, _ in suitability}, key=self._variant_order)
        change = {}
        summaries = []
        for scenario in config.future_scenarios:
            for variant in variants:
                change_map = analyzer.compare(suitability[(variant, baseline)], suitability[(variant, scenario)])
                self._record(write_change_map(change_map, self.change_path(variant, scenario)))
                change[(variant, scenario)] = change_map
                summaries.append(change_map.summarize())
        summary = pd.concat(summaries, ignore_index=True) if summaries else pd.DataFrame()
        if summaries:
            self._write_csv(summary, 'change_summary.csv')
        return change, summary

    def _variant_order(self, variant):
        order = list(self.config.models) + ['ensemble']
        return order.index(variant) if variant in order else len(order)

    def make_plots(self, result):
        # Imported here so runs without plots never load matplotlib
        from . import plotting

        self._record(plotting.plot_roc_curves(result.evaluations.values(), self.path('plots', 'roc_curves.png')))
        for variant, model in result.models.items():
            self._record(plotting.plot_variable_importance(model, self.path('plots', f"importance_{variant}.png")))
        for (variant, scenario), suitability_map in result.suitability.items():
            self._record(plotting.plot_suitability_map(
                suitability_map, self.path('plots', f"suitability_{variant}_{scenario}.png")))
        for (variant, scenario), change_map in result.change.items():
            self._record(plotting.plot_change_map(
                change_map, self.path('plots', f"change_{variant}_{scenario}.png")))

    # ------------------------------------
    # Entry point
    # ------------------------------------

    def run(self):
        config = self.config
        os.makedirs(str(config.output_dir), exist_ok=True)

        sources = self.raster_sources()
        baseline = config.baseline_scenario
        baseline_stack = self.load_stack(baseline, sources[baseline])
        print(f"Baseline scenario '{baseline}': {baseline_stack}")

        table = self.build_table(baseline_stack)
        collinearity = self.filter_collinearity(table)
        train, test = split_feature_table(collinearity.table, test_size=config.test_size, seed=config.seed)
        print(f"Train/test split: {len(train)} / {len(test)} rows")

        models = self.train_models(train)
        evaluations = self.evaluate_models(models, test)
        suitability = self.predict_scenarios(models, sources, baseline_stack)
        change, change_summary = self.analyze_change(suitability)

        result = PipelineResult(
            feature_table=collinearity.table,
            collinearity=collinearity,
            train=train,
            test=test,
            models=models,
            evaluations=evaluations,
            suitability=suitability,
            change=change,
            change_summary=change_summary,
        )
        if config.make_plots:
            self.make_plots(result)
        result.written = list(self.written)
        print(f"\nPipeline finished: {len(self.written)} files written under {config.output_dir}")
        return result
