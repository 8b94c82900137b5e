"""
Normalization Module
====================

Rewrites missing or malformed categorical values to a single sentinel.

Matching is exact and case-sensitive, one field at a time. Fields without
rules are never touched.

Functions:
    - normalize_records: Canonicalize every designated field of a DataFrame
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Any, FrozenSet, Iterable

import pandas as pd

logger = logging.getLogger(__name__)

UNKNOWN = "UNKNOWN"

DEFAULT_NULL_MARKERS = ("", "(null)")


@dataclass(frozen=True)
class NormalizationRules:
    """
    Per-field sets of values to rewrite to UNKNOWN.

    Attributes:
        bad_values: Mapping of field name -> values considered missing/malformed
    """

    bad_values: Dict[str, FrozenSet[str]] = field(default_factory=dict)

    @classmethod
    def from_config(cls, section: Dict[str, Any]) -> 'NormalizationRules':
        """
        Build rules from the `normalization` config section.

        Every field listed under `fields` gets the union of `null_markers`,
        `unknown_codes` and `bad_codes`; `overrides` adds per-field values.
        """
        shared = set(section.get('null_markers', DEFAULT_NULL_MARKERS))
        shared.update(section.get('unknown_codes', []))
        shared.update(str(code) for code in section.get('bad_codes', []))

        bad_values = {name: frozenset(shared) for name in section.get('fields', [])}

        for name, extra in (section.get('overrides') or {}).items():
            values = set(bad_values.get(name, shared))
            values.update(str(v) for v in extra)
            bad_values[name] = frozenset(values)

        return cls(bad_values=bad_values)

    @property
    def fields(self) -> Iterable[str]:
        return self.bad_values.keys()


def normalize_records(df: pd.DataFrame, rules: NormalizationRules) -> pd.DataFrame:
    """
    Canonicalize the designated fields of a record collection.

    Args:
        df: Raw records
        rules: Per-field normalization rules

    Returns:
        New DataFrame with designated fields rewritten
    """
    logger.info("=" * 60)
    logger.info("NORMALIZING CATEGORICAL FIELDS")
    logger.info("=" * 60)

    rewritten = {}
    for name, bad_values in rules.bad_values.items():
        if name not in df.columns:
            logger.warning(f"Normalization field '{name}' not present in data; skipped")
            continue

        column = df[name]
        mask = column.isna() | column.isin(bad_values)
        rewritten[name] = column.where(~mask, UNKNOWN)
        logger.info(f"  {name}: {int(mask.sum())} values rewritten to {UNKNOWN}")

    result = df.assign(**rewritten) if rewritten else df.copy()
    return result
