"""
Pipeline Module
===============

Runs ingestion → normalization → features → aggregation → trend model →
prediction evaluation for one configured dataset, and exports the results.

A trend that cannot be fit does not fail the run: the records and aggregates
are still returned, with the model left empty and the reason recorded. A
running total that cannot be built is recorded the same way per aggregate.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, Union, IO

import pandas as pd

from .aggregation import build_aggregates
from .data_loader import DatasetSchema, load_records
from .errors import DegenerateInputError
from .evaluation import evaluate_model
from .features import derive_features
from .model import LinearTrendModel, train_trend_model
from .normalization import NormalizationRules, normalize_records

logger = logging.getLogger(__name__)

PHASES = ('ingest', 'normalize', 'features', 'aggregate', 'model', 'all')


@dataclass
class PipelineResult:
    """Everything one run hands to the reporting layer."""

    name: str
    raw: Optional[pd.DataFrame] = None
    records: Optional[pd.DataFrame] = None
    aggregates: Dict[str, pd.DataFrame] = field(default_factory=dict)
    aggregate_errors: Dict[str, str] = field(default_factory=dict)
    model: Optional[LinearTrendModel] = None
    model_error: Optional[str] = None
    predictions: Optional[pd.DataFrame] = None
    metrics: Dict[str, Any] = field(default_factory=dict)


def _model_input(result: PipelineResult, source: str) -> pd.DataFrame:
    if source == 'records':
        return result.records
    if source not in result.aggregates:
        raise ValueError(f"Model source '{source}' is not a configured aggregate")
    return result.aggregates[source]


def run_pipeline(
    config: Dict[str, Any],
    data_source: Union[str, Path, IO[str]],
    phase: str = 'all'
) -> PipelineResult:
    """
    Run the pipeline up to and including `phase`.

    Args:
        config: Full configuration dictionary
        data_source: Path to the input CSV or an open text buffer
        phase: Last phase to run (see PHASES)

    Returns:
        PipelineResult

    Raises:
        ParseError: If the input data is malformed
    """
    if phase not in PHASES:
        raise ValueError(f"Unknown phase: {phase}. Choose from: {', '.join(PHASES)}")

    name = config.get('dataset', {}).get('name', 'dataset')
    result = PipelineResult(name=name)

    logger.info("=" * 60)
    logger.info(f"STARTING PIPELINE: {name}")
    logger.info("=" * 60)

    schema = DatasetSchema.from_config(config.get('dataset', {}))
    result.raw = load_records(data_source, schema)
    if phase == 'ingest':
        return result

    rules = NormalizationRules.from_config(config.get('normalization', {}))
    canonical = normalize_records(result.raw, rules)
    if phase == 'normalize':
        result.records = canonical
        return result

    result.records = derive_features(canonical, config['features'])
    if phase == 'features':
        return result

    result.aggregates = build_aggregates(
        result.records, config.get('aggregates', {}), errors=result.aggregate_errors
    )
    if phase == 'aggregate':
        return result

    model_config = config.get('model')
    if not model_config:
        logger.info("No model configured; skipping trend fit")
        return result

    fit_df = _model_input(result, model_config.get('source', 'records'))
    x_column = model_config['x']
    y_column = model_config['y']

    try:
        result.model = train_trend_model(
            fit_df, x_column, y_column,
            save_path=model_config.get('save_path')
        )
    except DegenerateInputError as e:
        result.model_error = str(e)
        logger.error(f"Trend fit failed; aggregates remain valid: {e}")
        return result

    evaluation = evaluate_model(result.model, fit_df, x_column, y_column)
    result.predictions = evaluation['predictions']
    result.metrics = evaluation['metrics']

    logger.info("=" * 60)
    logger.info(f"PIPELINE COMPLETE: {name}")
    logger.info("=" * 60)

    return result


def export_results(result: PipelineResult, output_dir: str = "reports/") -> Dict[str, str]:
    """
    Write the run's tables and summaries to disk.

    Args:
        result: Pipeline result
        output_dir: Directory for output files

    Returns:
        Mapping of artifact name -> file path
    """
    output_dir = Path(output_dir) / result.name
    output_dir.mkdir(parents=True, exist_ok=True)

    paths: Dict[str, str] = {}

    if result.records is not None:
        paths['records'] = str(output_dir / "records.csv")
        result.records.to_csv(paths['records'], index=False)

    for agg_name, buckets in result.aggregates.items():
        paths[agg_name] = str(output_dir / f"{agg_name}.csv")
        buckets.to_csv(paths[agg_name], index=False)

    if result.aggregate_errors:
        paths['aggregate_errors'] = str(output_dir / "aggregate_errors.json")
        with open(paths['aggregate_errors'], 'w') as f:
            json.dump(result.aggregate_errors, f, indent=2)

    if result.model is not None or result.model_error is not None:
        summary = {'error': result.model_error}
        if result.model is not None:
            summary.update(result.model.summary().to_dict())
        paths['model_summary'] = str(output_dir / "model_summary.json")
        with open(paths['model_summary'], 'w') as f:
            json.dump(summary, f, indent=2)

    if result.predictions is not None:
        paths['predictions'] = str(output_dir / "predictions.csv")
        result.predictions.to_csv(paths['predictions'], index=False)

        paths['metrics'] = str(output_dir / "evaluation_metrics.json")
        with open(paths['metrics'], 'w') as f:
            json.dump(result.metrics, f, indent=2)

    for artifact, path in paths.items():
        logger.info(f"Saved {artifact} to {path}")

    return paths
