"""
Exception hierarchy for the flow engine.

- FlowEngineError: base for everything raised by this package
- ValidationError: malformed flow/operation configuration
- ConversionError: a conversion stage failed
- TransformExecutionError: a named pipe transform failed or is unknown
- FlowIOError: filesystem failure while reading or writing a flow target

Conflicts are never raised. They are reported as data (see core.conflicts).
"""

from typing import List, Optional


class FlowEngineError(Exception):
    """Base exception for flow engine errors."""
    pass


class ValidationError(FlowEngineError, ValueError):
    """Flow, operation or context configuration is invalid."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors: List[str] = list(errors) if errors else [message]


class ContextValidationError(ValidationError):
    """A conversion context violates one of its invariants."""
    pass


class ConversionError(FlowEngineError):
    """A conversion stage failed; remaining stages are abandoned."""

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class TransformExecutionError(FlowEngineError):
    """A named transform could not be found or raised while running."""

    def __init__(self, message: str, transform_name: Optional[str] = None):
        super().__init__(message)
        self.transform_name = transform_name


class FlowIOError(FlowEngineError):
    """Reading or writing a flow source/target failed."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path
