"""Error taxonomy for Herald.

Fatal errors abort the process before any election attempt:
- ConfigurationError: missing or invalid settings
- CoordinatorConnectError: the lease backend cannot be reached

Non-fatal errors are logged and the sidecar keeps running:
- MarkerWriteError: a marker write, touch or removal failed
- LabelPatchError: the cluster metadata labeler could not patch the role
- HealthServerError: the health server stopped; the election loop continues
"""

from __future__ import annotations

from pathlib import Path


class HeraldError(Exception):
    """Base class for all Herald errors."""

    pass


class ConfigurationError(HeraldError):
    """Raised when required settings are missing or invalid."""

    pass


class CoordinatorConnectError(HeraldError):
    """Raised when the election backend cannot be reached."""

    pass


class MarkerWriteError(HeraldError):
    """Raised when a status marker cannot be written, touched or removed."""

    def __init__(self, operation: str, path: Path, cause: OSError) -> None:
        self.operation = operation
        self.path = path
        self.cause = cause
        super().__init__(f"failed to {operation} {path}: {cause}")


class LabelPatchError(HeraldError):
    """Raised when the role label cannot be applied to a cluster resource."""

    def __init__(self, resource: str, value: str, reason: str) -> None:
        self.resource = resource
        self.value = value
        self.reason = reason
        super().__init__(f"failed to label {resource} with role={value}: {reason}")


class HealthServerError(HeraldError):
    """Raised when the health server fails to start or stops unexpectedly."""

    pass
