"""Monthly compositing, harmonic detrending and climatology normalization."""

from .climatology import (
    AnomalyRecord,
    ClimatologyNormalizer,
    iter_anomaly_records,
    monthly_climatology,
    zscores,
)
from .harmonic import (
    HARMONIC_EPOCH,
    HarmonicDetrender,
    HarmonicModel,
    coefficient_names,
    design_matrix,
    fit_ols,
    fractional_years,
    linear_slope,
)
from .monthly import (
    Composite,
    CompositeInfo,
    EmptyComposite,
    RealComposite,
    dense_stack,
    monthly_composites,
    real_composites,
    stack_composites,
)

__all__ = [
    # Monthly compositing
    "CompositeInfo",
    "RealComposite",
    "EmptyComposite",
    "Composite",
    "monthly_composites",
    "real_composites",
    "stack_composites",
    "dense_stack",
    # Harmonic regression
    "HARMONIC_EPOCH",
    "fractional_years",
    "coefficient_names",
    "design_matrix",
    "fit_ols",
    "HarmonicModel",
    "HarmonicDetrender",
    "linear_slope",
    # Climatology
    "monthly_climatology",
    "zscores",
    "AnomalyRecord",
    "ClimatologyNormalizer",
    "iter_anomaly_records",
]
