"""
Trend Pipeline
==============

A batch pipeline turning event-log and time-series tables into cleaned,
aggregated datasets with a fitted linear trend.

Modules:
    - data_loader: Configuration and CSV ingestion with schema validation
    - normalization: Canonicalization of missing/malformed categories
    - features: Dates, weekday, day offset, ratio and difference fields
    - aggregation: Grouped measures and cumulative series
    - model: Single-predictor OLS trend model
    - evaluation: Predictions paired with actual values
    - pipeline: End-to-end run and export
"""

__version__ = "1.0.0"
__author__ = "Trend Pipeline Maintainers"
