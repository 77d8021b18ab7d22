"""Standardized vegetation-stress anomalies from multi-year satellite time series."""

__version__ = "0.1.0"
