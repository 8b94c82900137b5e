"""
Trend Model Module
==================

Single-predictor ordinary least squares trend fitting.

Features:
    - Closed-form OLS via scipy.stats.linregress (fully deterministic)
    - Coefficient of determination and slope significance (t distribution)
    - Model persistence (save/load)
"""

import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional

import numpy as np
import pandas as pd
import joblib
from scipy import stats

from .errors import DegenerateInputError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrendFit:
    """Fitted parameters and summary statistics of a linear trend."""

    intercept: float
    slope: float
    r_squared: float
    p_value: float
    std_err: float
    n_obs: int
    x_name: str = "x"
    y_name: str = "y"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def fit_trend(x, y, x_name: str = "x", y_name: str = "y") -> TrendFit:
    """
    Fit y = intercept + slope * x by ordinary least squares (scipy linregress).

    The slope's p-value is two-sided under a t distribution with n - 2
    degrees of freedom; it is NaN when n = 2 (no residual degrees of freedom).
    R² is NaN when y is constant.

    Args:
        x: Independent values
        y: Dependent values
        x_name: Name of the independent variable
        y_name: Name of the dependent variable

    Returns:
        TrendFit

    Raises:
        DegenerateInputError: Fewer than two points, mismatched lengths,
            non-finite values, or fewer than two distinct x values
    """
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)

    if x.shape != y.shape or x.ndim != 1:
        raise DegenerateInputError(
            f"x and y must be 1-D with equal length, got {x.shape} and {y.shape}"
        )
    n = len(x)
    if n < 2:
        raise DegenerateInputError(f"At least two points are required, got {n}")
    if not (np.isfinite(x).all() and np.isfinite(y).all()):
        raise DegenerateInputError("x and y must be finite")

    if np.ptp(x) == 0:
        raise DegenerateInputError(
            f"'{x_name}' has zero variance; slope is undefined"
        )

    regression = stats.linregress(x, y)

    # linregress reports r = 0 for constant y and fills in zero error at n = 2
    r_squared = float(regression.rvalue ** 2) if np.ptp(y) > 0 else float('nan')
    if n > 2:
        std_err = float(regression.stderr)
        p_value = float(regression.pvalue)
    else:
        std_err = float('nan')
        p_value = float('nan')

    return TrendFit(
        intercept=float(regression.intercept),
        slope=float(regression.slope),
        r_squared=r_squared,
        p_value=p_value,
        std_err=std_err,
        n_obs=n,
        x_name=x_name,
        y_name=y_name
    )


class LinearTrendModel:
    """
    Linear trend y = intercept + slope * x fit by ordinary least squares.
    """

    def __init__(self, x_name: str = "x", y_name: str = "y"):
        self.x_name = x_name
        self.y_name = y_name

        self.fit_: Optional[TrendFit] = None
        self.training_info: Dict[str, Any] = {}
        self._is_fitted = False

    def fit(self, x, y) -> 'LinearTrendModel':
        """
        Fit the trend.

        Args:
            x: Independent values
            y: Dependent values

        Returns:
            Self for method chaining
        """
        self.fit_ = fit_trend(x, y, self.x_name, self.y_name)
        self.training_info = {
            'n_samples': self.fit_.n_obs,
            'trained_at': datetime.now().isoformat()
        }
        self._is_fitted = True

        logger.info(f"Fitted {self.y_name} ~ {self.x_name}: "
                    f"intercept={self.fit_.intercept:.6g}, slope={self.fit_.slope:.6g}, "
                    f"R²={self.fit_.r_squared:.4f}, p={self.fit_.p_value:.4g}")
        return self

    @property
    def intercept(self) -> float:
        return self.summary().intercept

    @property
    def slope(self) -> float:
        return self.summary().slope

    def summary(self) -> TrendFit:
        if not self._is_fitted:
            raise ValueError("Model must be fitted first. Call fit() first.")
        return self.fit_

    def predict(self, x) -> np.ndarray:
        """
        Predict dependent values.

        Args:
            x: Independent values

        Returns:
            intercept + slope * x
        """
        if not self._is_fitted:
            raise ValueError("Model must be fitted before prediction. Call fit() first.")
        x = np.asarray(x, dtype=float)
        return self.fit_.intercept + self.fit_.slope * x

    def save(self, filepath: str) -> None:
        """
        Save the fitted model to disk.

        Args:
            filepath: Path to save the model
        """
        if not self._is_fitted:
            raise ValueError("Cannot save unfitted model.")

        state = {
            'x_name': self.x_name,
            'y_name': self.y_name,
            'fit': self.fit_.to_dict(),
            'training_info': self.training_info
        }

        Path(filepath).parent.mkdir(parents=True, exist_ok=True)
        joblib.dump(state, filepath)
        logger.info(f"Model saved to {filepath}")

    @classmethod
    def load(cls, filepath: str) -> 'LinearTrendModel':
        """
        Load a fitted model from disk.

        Args:
            filepath: Path to the saved model

        Returns:
            Loaded LinearTrendModel instance
        """
        state = joblib.load(filepath)

        model = cls(x_name=state['x_name'], y_name=state['y_name'])
        model.fit_ = TrendFit(**state['fit'])
        model.training_info = state['training_info']
        model._is_fitted = True

        logger.info(f"Model loaded from {filepath}")
        return model


def train_trend_model(
    df: pd.DataFrame,
    x_column: str,
    y_column: str,
    save_path: Optional[str] = None
) -> LinearTrendModel:
    """
    Fit a trend between two columns of a record or bucket collection.

    Rows missing either value (undefined ratios) are left out.

    Args:
        df: Records or buckets
        x_column: Independent variable column
        y_column: Dependent variable column
        save_path: Path to save the fitted model (optional)

    Returns:
        Fitted LinearTrendModel

    Raises:
        DegenerateInputError: If the remaining pairs cannot define a trend
    """
    logger.info("=" * 60)
    logger.info(f"FITTING TREND: {y_column} ~ {x_column}")
    logger.info("=" * 60)

    pairs = df[[x_column, y_column]].dropna()
    dropped = len(df) - len(pairs)
    if dropped:
        logger.info(f"Excluded {dropped} rows with missing '{x_column}' or '{y_column}'")

    model = LinearTrendModel(x_name=x_column, y_name=y_column)
    model.fit(pairs[x_column].to_numpy(dtype=float), pairs[y_column].to_numpy(dtype=float))

    if save_path:
        model.save(save_path)

    return model
