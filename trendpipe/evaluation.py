"""
Prediction Evaluation Module
============================

Applies a fitted trend model and pairs predictions with actual values.

Features:
    - Positional actual/predicted/residual table
    - RMSE, MAE, R² and residual summary
    - Evaluation against the fit data or a disjoint evaluation set
"""

import logging
from typing import Dict, Any, Optional

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, mean_absolute_error, r2_score

from .model import LinearTrendModel

logger = logging.getLogger(__name__)


def predict_pairs(
    model: LinearTrendModel,
    x,
    actual,
    x_name: Optional[str] = None
) -> pd.DataFrame:
    """
    Predict for each x and pair with the actual value at the same position.

    Args:
        model: Fitted trend model
        x: Independent values
        actual: Actual dependent values, same length as x
        x_name: Name of the x column (defaults to the model's)

    Returns:
        DataFrame with columns [x_name, actual, predicted, residual]
    """
    x = np.asarray(x, dtype=float)
    actual = np.asarray(actual, dtype=float)

    if len(x) != len(actual):
        raise ValueError(
            f"Expected one actual value per x, got {len(x)} x and {len(actual)} actual"
        )

    predicted = model.predict(x)

    return pd.DataFrame({
        x_name or model.x_name: x,
        'actual': actual,
        'predicted': predicted,
        'residual': actual - predicted
    })


def calculate_metrics(actual, predicted) -> Dict[str, Any]:
    """
    Calculate evaluation metrics for predicted values.

    Args:
        actual: Ground truth values
        predicted: Predicted values

    Returns:
        Dictionary of metrics
    """
    actual = np.asarray(actual, dtype=float)
    predicted = np.asarray(predicted, dtype=float)
    residuals = actual - predicted

    if len(actual) == 0:
        return {'n_samples': 0}

    return {
        'rmse': float(np.sqrt(mean_squared_error(actual, predicted))),
        'mae': float(mean_absolute_error(actual, predicted)),
        'r2': float(r2_score(actual, predicted)) if len(actual) > 1 else float('nan'),
        'mean_residual': float(np.mean(residuals)),
        'max_abs_residual': float(np.max(np.abs(residuals))),
        'n_samples': int(len(actual))
    }


def evaluate_model(
    model: LinearTrendModel,
    fit_df: pd.DataFrame,
    x_column: str,
    y_column: str,
    eval_df: Optional[pd.DataFrame] = None
) -> Dict[str, Any]:
    """
    Predict over the fit data (or a disjoint evaluation set) and score it.

    Rows missing either value are left out, as they were when fitting.

    Args:
        model: Fitted trend model
        fit_df: Data the model was fit on
        x_column: Independent variable column
        y_column: Dependent variable column
        eval_df: Disjoint evaluation data (optional)

    Returns:
        Dictionary containing the prediction table and metrics
    """
    logger.info("=" * 60)
    logger.info("EVALUATING TREND PREDICTIONS")
    logger.info("=" * 60)

    source = 'evaluation' if eval_df is not None else 'fit'
    frame = (eval_df if eval_df is not None else fit_df)[[x_column, y_column]].dropna()

    predictions = predict_pairs(model, frame[x_column], frame[y_column], x_name=x_column)
    metrics = calculate_metrics(predictions['actual'], predictions['predicted'])
    metrics['source'] = source

    logger.info(f"  Samples ({source}): {metrics['n_samples']}")
    if metrics['n_samples']:
        logger.info(f"  RMSE: {metrics['rmse']:.6f}")
        logger.info(f"  MAE: {metrics['mae']:.6f}")

    return {
        'predictions': predictions,
        'metrics': metrics
    }
