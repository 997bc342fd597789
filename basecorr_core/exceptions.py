"""Exception classes for the base correlation engine."""


class CorrelationError(Exception):
    """Base exception for correlation-related errors."""

    pass


class ConfigurationError(CorrelationError, ValueError):
    """
    Exception raised when correlation objects are mis-specified.

    Covers mismatched array lengths, missing required arrays and
    inconsistent model choices across mixed surfaces.
    """

    pass


class UnsupportedMethodError(CorrelationError, NotImplementedError):
    """Exception raised when a strike method or mixing combination has no implementation."""

    def __init__(self, message: str, method: object = None):
        """Initialize with a message and the offending method value."""
        super().__init__(message)
        self.method = method


class NumericalError(CorrelationError, ArithmeticError):
    """Exception raised when a numerical result is out of range or a solve fails."""

    pass
