"""Parameter validation: schema, ground-truth checks, historical calibration."""

from editguard.validation.color_presence import ColorPresence, PixelSample, check_color_presence
from editguard.validation.history import HistoryCalibration, calibrate_with_history
from editguard.validation.schema import SchemaResult, validate_schema
from editguard.validation.validator import ParameterValidator

__all__ = [
    "ColorPresence",
    "HistoryCalibration",
    "ParameterValidator",
    "PixelSample",
    "SchemaResult",
    "calibrate_with_history",
    "check_color_presence",
    "validate_schema",
]
