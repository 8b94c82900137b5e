"""
Feature Derivation Module
=========================

Derives temporal and ratio features from canonical records.

Day offsets are computed in two phases: a reduction over the whole dataset
(`min_date`) followed by a per-record mapping that takes that minimum as an
explicit argument (`day_offset`).

Functions:
    - parse_dates: Text dates to datetime values
    - day_of_week: Ordered weekday labels
    - min_date: Earliest date in a dataset
    - day_offset: Days elapsed since a start date
    - safe_ratio / derive_ratio: Ratio fields with undefined-denominator handling
    - derive_difference: Period-over-period change of a cumulative measure
    - derive_features: Apply all configured derivations
"""

import logging
from typing import Dict, Any, List, Optional

import numpy as np
import pandas as pd

from .errors import ParseError, UndefinedRatioError

logger = logging.getLogger(__name__)

DAY_LABELS = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"
)

DEFAULT_DATE_FIELD = "event_date"
DEFAULT_WEEKDAY_FIELD = "day_of_week"
DEFAULT_OFFSET_FIELD = "day_offset"


def parse_dates(series: pd.Series, date_format: str = "iso") -> pd.Series:
    """
    Parse a text date column.

    Args:
        series: Column of date strings
        date_format: "iso" or a strptime pattern such as "%m/%d/%Y"

    Returns:
        Series of datetime64 values truncated to midnight

    Raises:
        ParseError: On the first value that does not match the format
    """
    if pd.api.types.is_datetime64_any_dtype(series):
        return series.dt.normalize()

    text = series.astype(str).str.strip()
    pattern = "ISO8601" if date_format.lower() == "iso" else date_format
    parsed = pd.to_datetime(text, format=pattern, errors='coerce')

    bad = parsed.isna()
    if bad.any():
        position = int(np.argmax(bad.values))
        raise ParseError(
            f"Cannot parse date {series.iloc[position]!r} with format '{date_format}'",
            row=position + 1,
            column=series.name
        )

    return parsed.dt.normalize()


def day_of_week(dates: pd.Series) -> pd.Series:
    """Map dates to ordered weekday labels, Sunday first."""
    labels = pd.Categorical(dates.dt.day_name(), categories=DAY_LABELS, ordered=True)
    return pd.Series(labels, index=dates.index, name=DEFAULT_WEEKDAY_FIELD)


def min_date(dates: pd.Series) -> pd.Timestamp:
    """
    Earliest date across the whole dataset.

    Raises:
        ValueError: If there are no dates
    """
    if dates.empty:
        raise ValueError("Cannot compute the minimum date of an empty dataset")
    return dates.min()


def day_offset(dates: pd.Series, start: pd.Timestamp) -> pd.Series:
    """Whole days between each date and `start`."""
    return (dates - start).dt.days.astype(int)


def safe_ratio(numerator: float, denominator: float, scale: float = 1.0) -> float:
    """
    Scalar ratio that refuses to divide by zero.

    Raises:
        UndefinedRatioError: If the denominator is zero or either value is missing
    """
    if (numerator is None or denominator is None
            or pd.isna(numerator) or pd.isna(denominator) or denominator == 0):
        raise UndefinedRatioError(
            f"Ratio {numerator!r}/{denominator!r} is undefined"
        )
    return scale * numerator / denominator


def derive_ratio(
    df: pd.DataFrame,
    name: str,
    numerator: str,
    denominator: str,
    scale: float = 1.0
) -> pd.DataFrame:
    """
    Add `name = scale * numerator / denominator`.

    Each row goes through `safe_ratio`; rows where it raises
    UndefinedRatioError get NaN in `name` and every downstream aggregate or
    fit over `name` excludes them. Other columns of those rows are unaffected.

    Args:
        df: Input records or buckets
        name: Output column
        numerator: Numerator column
        denominator: Denominator column
        scale: Multiplier (e.g. 1000 for "per thousand")

    Returns:
        New DataFrame with the ratio column
    """
    num = df[numerator].astype(float)
    den = df[denominator].astype(float)

    values = []
    for n, d in zip(num, den):
        try:
            values.append(safe_ratio(n, d, scale))
        except UndefinedRatioError:
            values.append(np.nan)

    ratio = pd.Series(values, index=df.index, dtype=float)

    n_undefined = int(ratio.isna().sum())
    if n_undefined:
        logger.warning(
            f"Ratio '{name}' undefined for {n_undefined} rows "
            f"(zero or missing {denominator}); excluded from '{name}' aggregates"
        )

    return df.assign(**{name: ratio})


def derive_difference(
    df: pd.DataFrame,
    name: str,
    column: str,
    order_by: str,
    partition_by: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Add the change of a cumulative measure since the previous row.

    The first row of each partition keeps its own value (prior of zero), so
    the differences of a partition always sum to its last cumulative value.

    Args:
        df: Input records or buckets
        name: Output column (e.g. "new_cases")
        column: Cumulative measure column (e.g. "cases")
        order_by: Column defining the period order
        partition_by: Columns identifying independent series

    Returns:
        New DataFrame with the difference column
    """
    partition_by = list(partition_by or [])
    ordered = df.sort_values(partition_by + [order_by], kind='mergesort')

    if partition_by:
        previous = ordered.groupby(
            partition_by, sort=False, observed=True, dropna=False
        )[column].shift(1)
    else:
        previous = ordered[column].shift(1)

    change = ordered[column].astype(float) - previous.astype(float).fillna(0)
    return df.assign(**{name: change.reindex(df.index)})


def apply_ratios(df: pd.DataFrame, specs: List[Dict[str, Any]]) -> pd.DataFrame:
    """Apply a list of ratio specs from configuration."""
    for spec in specs or []:
        df = derive_ratio(
            df,
            name=spec['name'],
            numerator=spec['numerator'],
            denominator=spec['denominator'],
            scale=float(spec.get('scale', 1.0))
        )
    return df


def apply_differences(df: pd.DataFrame, specs: List[Dict[str, Any]]) -> pd.DataFrame:
    """Apply a list of difference specs from configuration."""
    for spec in specs or []:
        df = derive_difference(
            df,
            name=spec['name'],
            column=spec['column'],
            order_by=spec['order_by'],
            partition_by=spec.get('partition_by')
        )
    return df


def derive_features(df: pd.DataFrame, config: Dict[str, Any]) -> pd.DataFrame:
    """
    Derive all configured features.

    Args:
        df: Canonical records
        config: The `features` configuration section

    Returns:
        New DataFrame with date, weekday, offset, ratio and difference columns
    """
    date_column = config['date_column']
    date_format = config.get('date_format', 'iso')
    date_field = config.get('date_field', DEFAULT_DATE_FIELD)
    weekday_field = config.get('weekday_field', DEFAULT_WEEKDAY_FIELD)
    offset_field = config.get('offset_field', DEFAULT_OFFSET_FIELD)

    logger.info("=" * 60)
    logger.info("DERIVING FEATURES")
    logger.info("=" * 60)

    dates = parse_dates(df[date_column], date_format)

    if dates.empty:
        logger.warning("No records; feature columns will be empty")
        result = df.assign(**{
            date_field: dates,
            weekday_field: pd.Categorical([], categories=DAY_LABELS, ordered=True),
            offset_field: pd.Series([], index=df.index, dtype=int)
        })
    else:
        # Global barrier: the minimum must cover every record before any offset.
        start = min_date(dates)
        offsets = day_offset(dates, start)
        logger.info(f"Date range: {start.date()} to {dates.max().date()} "
                    f"({int(offsets.max()) + 1} days)")

        result = df.assign(**{
            date_field: dates,
            weekday_field: day_of_week(dates),
            offset_field: offsets
        })

    result = apply_ratios(result, config.get('ratios', []))
    result = apply_differences(result, config.get('differences', []))

    logger.info(f"Derived features for {len(result)} records")
    return result
