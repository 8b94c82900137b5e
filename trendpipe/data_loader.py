"""
Data Loader Module
==================

Handles configuration loading, CSV ingestion and schema validation.

Functions:
    - load_config: Load YAML configuration file
    - load_records: Load CSV rows as typed raw records
    - get_data_summary: Generate basic statistics
    - print_data_summary: Console summary of a loaded dataset
"""

import csv
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List, Optional, Tuple, Union, IO

import pandas as pd
import numpy as np
import yaml

from .errors import ParseError
from .features import parse_dates

logger = logging.getLogger(__name__)

FLAG_VALUES = {"true": 1, "false": 0, "1": 1, "0": 0}


@dataclass(frozen=True)
class DatasetSchema:
    """
    Declared shape of an input dataset.

    Attributes:
        required_columns: Columns that must be present in the header
        date_columns: Mapping of date column -> format ("iso" or strptime pattern)
        numeric_columns: Columns converted to numbers
        flag_columns: Boolean text columns converted to 0/1 integers
    """

    required_columns: List[str] = field(default_factory=list)
    date_columns: Dict[str, str] = field(default_factory=dict)
    numeric_columns: List[str] = field(default_factory=list)
    flag_columns: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, section: Dict[str, Any]) -> 'DatasetSchema':
        return cls(
            required_columns=list(section.get('required_columns', [])),
            date_columns=dict(section.get('date_columns', {})),
            numeric_columns=list(section.get('numeric_columns', [])),
            flag_columns=list(section.get('flag_columns', []))
        )

    def all_required(self) -> List[str]:
        """All columns the schema depends on, in declaration order."""
        columns = list(self.required_columns)
        for col in [*self.date_columns, *self.numeric_columns, *self.flag_columns]:
            if col not in columns:
                columns.append(col)
        return columns


def load_config(config_path: str = "config/shootings.yaml") -> Dict[str, Any]:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Dictionary containing configuration parameters

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is malformed
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        config = yaml.safe_load(f) or {}

    logger.info(f"Loaded configuration from {config_path}")
    return config


def _read_rows(stream: IO[str]) -> Tuple[List[str], List[List[str]]]:
    """
    Tokenize the stream once, checking every row against the header width.

    pandas pads short rows silently, so field counts are checked while
    tokenizing and the frame is built from the validated rows.
    """
    reader = csv.reader(stream)
    header: Optional[List[str]] = None
    rows: List[List[str]] = []

    for fields in reader:
        if not fields:
            continue
        if header is None:
            header = [name.strip() for name in fields]
            continue
        if len(fields) != len(header):
            raise ParseError(
                f"Row field count does not match header: expected {len(header)} "
                f"fields, saw {len(fields)} (line {reader.line_num})",
                row=len(rows) + 1
            )
        rows.append(fields)

    if header is None:
        raise ParseError("Input has no header row")
    return header, rows


def _convert_numeric(df: pd.DataFrame, column: str) -> pd.Series:
    converted = pd.to_numeric(df[column].str.strip(), errors='coerce')
    bad = converted.isna()
    if bad.any():
        position = int(np.argmax(bad.values))
        raise ParseError(
            f"Cannot parse number from {df[column].iloc[position]!r}",
            row=position + 1,
            column=column
        )
    return converted


def _convert_flag(df: pd.DataFrame, column: str) -> pd.Series:
    converted = df[column].str.strip().str.lower().map(FLAG_VALUES)
    bad = converted.isna()
    if bad.any():
        position = int(np.argmax(bad.values))
        raise ParseError(
            f"Cannot parse flag from {df[column].iloc[position]!r}",
            row=position + 1,
            column=column
        )
    return converted.astype(int)


def load_records(
    source: Union[str, Path, IO[str]],
    schema: Optional[DatasetSchema] = None
) -> pd.DataFrame:
    """
    Load CSV rows as raw records, validated against the dataset schema.

    All cells are read as text (empty cells stay empty strings). Declared
    numeric columns become numbers and flag columns become 0/1 integers;
    declared date columns are checked against their format but kept as text.

    Args:
        source: Path to a CSV file or an open text buffer
        schema: Declared dataset schema (optional)

    Returns:
        DataFrame with one row per input row, in input order

    Raises:
        FileNotFoundError: If a data file path doesn't exist
        ParseError: If a row or a required field is malformed
    """
    schema = schema or DatasetSchema()

    if isinstance(source, (str, Path)):
        source = Path(source)
        if not source.exists():
            raise FileNotFoundError(f"Data file not found: {source}")
        with open(source, 'r', newline='', encoding='utf-8-sig') as f:
            header, rows = _read_rows(f)
    else:
        header, rows = _read_rows(source)

    duplicates = sorted({name for name in header if header.count(name) > 1})
    if duplicates:
        raise ParseError(f"Duplicate header columns: {duplicates}")

    df = pd.DataFrame(rows, columns=header, dtype=object)

    missing = [col for col in schema.all_required() if col not in df.columns]
    if missing:
        raise ParseError(f"Missing required columns: {missing}. Columns: {header}")

    for col, date_format in schema.date_columns.items():
        parse_dates(df[col], date_format)

    converted = {}
    for col in schema.numeric_columns:
        converted[col] = _convert_numeric(df, col)
    for col in schema.flag_columns:
        converted[col] = _convert_flag(df, col)
    if converted:
        df = df.assign(**converted)

    logger.info(f"Loaded {df.shape[0]} rows × {df.shape[1]} columns")
    return df


def get_data_summary(df: pd.DataFrame) -> Dict[str, Any]:
    """
    Generate summary statistics for a record collection.

    Args:
        df: DataFrame to summarize

    Returns:
        Dictionary containing summary statistics
    """
    summary = {
        "shape": df.shape,
        "columns": list(df.columns),
        "dtypes": df.dtypes.astype(str).to_dict(),
        "non_empty": {},
        "statistics": {}
    }

    for col in df.columns:
        if pd.api.types.is_string_dtype(df[col].dtype):
            summary["non_empty"][col] = int((df[col].notna() & (df[col] != "")).sum())
        else:
            summary["non_empty"][col] = int(df[col].count())

    for col in df.select_dtypes(include=[np.number]).columns:
        if df[col].count() == 0:
            continue
        summary["statistics"][col] = {
            "count": int(df[col].count()),
            "mean": float(df[col].mean()),
            "std": float(df[col].std()) if df[col].count() > 1 else 0.0,
            "min": float(df[col].min()),
            "50%": float(df[col].quantile(0.50)),
            "max": float(df[col].max()),
            "sum": float(df[col].sum())
        }

    return summary


def print_data_summary(df: pd.DataFrame) -> None:
    """
    Print a formatted summary of the dataset to console.

    Args:
        df: DataFrame to summarize
    """
    summary = get_data_summary(df)

    print("\n" + "=" * 60)
    print("DATASET SUMMARY")
    print("=" * 60)
    print(f"Shape: {df.shape[0]} rows × {df.shape[1]} columns")
    print("\nColumn Information:")
    print("-" * 40)

    for col in df.columns:
        non_empty = summary["non_empty"][col]
        empty_pct = (1 - non_empty / len(df)) * 100 if len(df) else 0.0
        print(f"  {col}: {df[col].dtype} | {non_empty} non-empty ({empty_pct:.1f}% empty)")

    if summary["statistics"]:
        print("\nNumeric Columns:")
        print("-" * 40)
        for col, stats in summary["statistics"].items():
            print(f"  {col}: min={stats['min']:.2f} max={stats['max']:.2f} "
                  f"mean={stats['mean']:.2f} sum={stats['sum']:.2f}")
    print("=" * 60 + "\n")
