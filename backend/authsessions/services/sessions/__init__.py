"""Session lifecycle services: rotation and diagnostics."""

from .diagnostics import Diagnostics, DiagnosticsReporter, TokenInspection
from .rotation import RotationOutcome, RotationProtocol, RotationState

__all__ = [
    "Diagnostics",
    "DiagnosticsReporter",
    "RotationOutcome",
    "RotationProtocol",
    "RotationState",
    "TokenInspection",
]
