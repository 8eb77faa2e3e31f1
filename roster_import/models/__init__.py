"""Domain models for the client roster importer.

This package contains all domain model classes used throughout the application:
raw tabular sheets, canonical client records, chunks/outcomes/reports and the
configuration dataclasses.
"""

from .canonical_record import CanonicalRecord, split_equipment
from .config_models import DatabaseConfig, DispatchPolicy, ImportConfig, PacingConfig, TargetConfig, TargetMode
from .error_record import ErrorRecord
from .import_stage import ImportStage
from .processing_result import (
    BatchStatsAccumulator,
    Chunk,
    DispatchStrategy,
    ImportOutcome,
    ImportReport,
    RecordError,
)
from .raw_sheet import HeaderMetadata, RawSheet, SourceFormat

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "DispatchPolicy",
    "ImportConfig",
    "PacingConfig",
    "TargetConfig",
    "TargetMode",
    # Tabular models
    "RawSheet",
    "HeaderMetadata",
    "SourceFormat",
    # Processing models
    "CanonicalRecord",
    "split_equipment",
    "Chunk",
    "DispatchStrategy",
    "ImportOutcome",
    "ImportReport",
    "RecordError",
    "BatchStatsAccumulator",
    "ErrorRecord",
    "ImportStage",
]
