"""
Exceptions raised by calibundle.

Recoverable errors (UnknownPatternType, DetectionTimeout) are caught and logged
by the observation pipeline. Everything else propagates to the caller.
"""


class CalibrationError(Exception):
    """Base class for calibundle errors."""


class ConfigIOError(CalibrationError):
    """A configuration file could not be opened or read."""


class ConfigParseError(CalibrationError):
    """A configuration document is malformed or references unknown entities."""


class UnknownPatternType(CalibrationError):
    """A target's pattern type is not one the observer can detect."""


class DetectionTimeout(CalibrationError):
    """A camera observer did not finish within the allowed time."""


class UnresolvedParameterBlock(CalibrationError):
    """An observation references a camera or target missing from the registry."""


class MissingObserverError(CalibrationError):
    """A camera in a scene has no observer attached."""


class JobBusyError(CalibrationError):
    """A calibration run was requested while another one is in progress."""


class TransformTimeout(CalibrationError):
    """A frame transform did not become available in time."""


class TransformUnavailable(CalibrationError):
    """A frame transform is not known."""
