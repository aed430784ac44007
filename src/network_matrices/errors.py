from __future__ import annotations

"""
Exception hierarchy for network matrix construction.

Every error derives from `NetworkMatrixError` and from the builtin exception that
callers of numeric code usually catch (`ValueError` for bad input, `RuntimeError`
for numerical failures), so existing `except ValueError` handlers keep working.
"""

__all__ = [
    "ConfigurationError",
    "InvalidSlackConfiguration",
    "NetworkMatrixError",
    "SingularSystemError",
    "TopologyError",
    "UnsupportedSolverError",
]


class NetworkMatrixError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(NetworkMatrixError, ValueError):
    """Unrecognized solver identifier, malformed option or inconsistent settings."""


class InvalidSlackConfiguration(ConfigurationError):
    """Distributed slack weights that cannot be applied to the network."""


class UnsupportedSolverError(ConfigurationError):
    """Requested backend is not implemented (or not installed) for the requested matrix."""


class TopologyError(NetworkMatrixError, ValueError):
    """Malformed topology: unknown buses, duplicated labels, islands without reference bus."""


class SingularSystemError(NetworkMatrixError, RuntimeError):
    """Factorization or solve failed for reasons other than the reference-bus null space."""
