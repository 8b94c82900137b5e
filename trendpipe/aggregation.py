"""
Aggregation Module
==================

Grouped counts/sums and cumulative (running-total) series.

Functions:
    - aggregate_measures: One bucket per distinct key combination
    - cumulative: Running total along an ordering key
    - build_aggregates: Named aggregates from configuration
"""

import logging
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Union

import pandas as pd

from .errors import AggregationError
from .features import apply_ratios, apply_differences

logger = logging.getLogger(__name__)

COUNT = "count"
SUPPORTED_HOW = ("count", "sum", "max", "min", "mean")


@dataclass(frozen=True)
class Measure:
    """
    A measure computed per bucket.

    Attributes:
        name: Output column
        column: Input column; None counts records
        how: Reduction ("count", "sum", "max", "min", "mean")
    """

    name: str
    column: Optional[str] = None
    how: str = "sum"

    def __post_init__(self):
        if self.how not in SUPPORTED_HOW:
            raise ValueError(f"Unsupported reduction '{self.how}'. Choose from: {SUPPORTED_HOW}")

    @property
    def is_count(self) -> bool:
        return self.column is None

    @classmethod
    def from_config(cls, name: str, spec: Union[str, Dict[str, Any]]) -> 'Measure':
        """Parse `count` or `{column: ..., how: ...}`."""
        if spec == COUNT:
            return cls(name=name, column=None, how=COUNT)
        if isinstance(spec, str):
            return cls(name=name, column=spec, how="sum")
        return cls(name=name, column=spec.get('column'), how=spec.get('how', 'sum'))


def aggregate_measures(
    df: pd.DataFrame,
    keys: List[str],
    measures: List[Measure]
) -> pd.DataFrame:
    """
    Group records by `keys` and reduce each measure.

    Rows whose measure column is missing (e.g. an undefined ratio) are left
    out of that measure only; counts always include every record.

    Args:
        df: Feature-augmented records
        keys: Grouping key columns
        measures: Measures to compute

    Returns:
        DataFrame with the key columns followed by one column per measure,
        sorted by key
    """
    keys = list(keys)
    columns = keys + [m.name for m in measures]

    if df.empty:
        return pd.DataFrame(columns=columns)

    group_options = dict(sort=True, observed=True, dropna=False)
    result = None

    for measure in measures:
        if measure.is_count:
            reduced = df.groupby(keys, **group_options).size()
        else:
            valid = df[df[measure.column].notna()]
            excluded = len(df) - len(valid)
            if excluded:
                logger.info(f"  {measure.name}: {excluded} rows without "
                            f"'{measure.column}' excluded")
            reduced = valid.groupby(keys, **group_options)[measure.column].agg(measure.how)

        reduced = reduced.rename(measure.name)
        result = reduced.to_frame() if result is None else result.join(reduced, how='outer')

    result = result.sort_index().reset_index()
    return result[columns]


def cumulative(
    buckets: pd.DataFrame,
    order_by: str,
    value: str,
    name: str = "running_total",
    partition_by: Optional[List[str]] = None
) -> pd.DataFrame:
    """
    Add a running total of `value` along `order_by`.

    Buckets are stable-sorted by partition, ordering key, then the remaining
    columns so ties resolve the same way on every run. The running total of
    each partition is its prefix sum and ends at the partition's total.

    Args:
        buckets: Aggregated buckets
        order_by: Ordering key column (a date or day offset)
        value: Measure column to accumulate
        name: Output column
        partition_by: Columns with an independent running total each

    Returns:
        New sorted DataFrame with the running-total column

    Raises:
        AggregationError: If the measure has negative values
    """
    partition_by = list(partition_by or [])

    if buckets.empty:
        return pd.DataFrame(columns=list(buckets.columns) + [name])

    valid = buckets[buckets[value].notna()]
    if len(valid) < len(buckets):
        logger.info(f"  {name}: {len(buckets) - len(valid)} buckets without "
                    f"'{value}' excluded")

    if (valid[value] < 0).any():
        raise AggregationError(
            f"Cannot accumulate negative values of '{value}' into '{name}'"
        )

    tie_breakers = [c for c in valid.columns if c not in partition_by + [order_by, value]]
    ordered = valid.sort_values(partition_by + [order_by] + tie_breakers, kind='mergesort')

    if partition_by:
        running = ordered.groupby(partition_by, sort=False, observed=True, dropna=False)[value].cumsum()
    else:
        running = ordered[value].cumsum()

    return ordered.assign(**{name: running}).reset_index(drop=True)


def build_aggregates(
    df: pd.DataFrame,
    config: Dict[str, Any],
    errors: Optional[Dict[str, str]] = None
) -> Dict[str, pd.DataFrame]:
    """
    Build the named aggregates declared in the `aggregates` config section.

    Each entry declares `keys` and `measures`, and optionally `source` (an
    earlier aggregate to roll up instead of the records), post-aggregation
    `ratios` and `differences`, and a `cumulative` running total.

    Ratio and difference columns are added even when there are no buckets,
    so later aggregates and the trend fit always find them.

    Args:
        df: Feature-augmented records
        config: Mapping of aggregate name -> spec
        errors: If given, a running total that cannot be built is recorded
            here under the aggregate name and the buckets are kept without it;
            otherwise the AggregationError propagates

    Returns:
        Mapping of aggregate name -> bucket DataFrame
    """
    logger.info("=" * 60)
    logger.info("BUILDING AGGREGATES")
    logger.info("=" * 60)

    results: Dict[str, pd.DataFrame] = {}

    for agg_name, spec in (config or {}).items():
        source = spec.get('source')
        if source is None:
            frame = df
        elif source in results:
            frame = results[source]
        else:
            raise ValueError(f"Aggregate '{agg_name}' refers to unknown source '{source}'")

        measures = [
            Measure.from_config(name, m) for name, m in (spec.get('measures') or {COUNT: COUNT}).items()
        ]
        buckets = aggregate_measures(frame, spec['keys'], measures)
        buckets = apply_ratios(buckets, spec.get('ratios', []))
        buckets = apply_differences(buckets, spec.get('differences', []))

        running = spec.get('cumulative')
        if running:
            try:
                buckets = cumulative(
                    buckets,
                    order_by=running['order_by'],
                    value=running['value'],
                    name=running.get('name', 'running_total'),
                    partition_by=running.get('partition_by')
                )
            except AggregationError as e:
                if errors is None:
                    raise
                errors[agg_name] = str(e)
                logger.error(f"Aggregate '{agg_name}': {e}; kept without running total")

        results[agg_name] = buckets
        logger.info(f"Aggregate '{agg_name}': {len(buckets)} buckets by {spec['keys']}")

    return results
