"""In-memory snapshot cache for the ProtoPedia prototype catalog."""

from .config import AppConfig, FetcherConfig, StoreConfig, load_config
from .errors import (
    ConfigurationError,
    DataSizeExceededError,
    SizeEstimationError,
    StoreError,
    ValidationError,
)
from .models import FetchParams, Prototype, PrototypeAnalysis, SnapshotStats
from .results import FetchFailure, FetchSuccess, SnapshotFailure, SnapshotSuccess

__all__ = [
    "AppConfig",
    "ConfigurationError",
    "DataSizeExceededError",
    "FetchFailure",
    "FetchParams",
    "FetchSuccess",
    "FetcherConfig",
    "Prototype",
    "PrototypeAnalysis",
    "SizeEstimationError",
    "SnapshotFailure",
    "SnapshotStats",
    "SnapshotSuccess",
    "StoreConfig",
    "StoreError",
    "ValidationError",
    "load_config",
]
