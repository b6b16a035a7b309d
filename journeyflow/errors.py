"""Error hierarchy shared by the runtime, the store and the HTTP layer.

Everything that touches the oracle or the database is converted into one
of these before it reaches a visitor-facing layer.  The FastAPI exception
handlers in ``server.py`` map each class to a status code.
"""

from __future__ import annotations


class JourneyFlowError(Exception):
    """Base for all journeyflow errors."""


class NotFoundError(JourneyFlowError):
    """Resource not found (also used for unknown or cleared public tokens)."""


class ValidationError(JourneyFlowError):
    """Invalid input."""


class ConflictError(JourneyFlowError):
    """Resource conflict (duplicate key, published version edited, ...)."""


class SessionStateError(ConflictError):
    """The action is not valid in the session's current state."""


class UnauthorizedError(JourneyFlowError):
    """An authoring operation was attempted without an identity."""


class ConfigurationError(JourneyFlowError):
    """The graph cannot be run (no nodes, dangling edges, ...)."""


class OracleError(JourneyFlowError):
    """An oracle call failed.  Turn-scoped and recoverable."""

    def __init__(self, message: str, operation: str):
        self.operation = operation
        super().__init__(message)


class OracleContractError(OracleError):
    """The oracle answered, but not with the JSON shape that was asked for."""

    def __init__(self, message: str, operation: str, raw_text: str = ""):
        self.raw_text = raw_text
        super().__init__(message, operation)


class OracleUnavailableError(OracleError):
    """The oracle call itself raised or timed out."""


class PersistenceError(JourneyFlowError):
    """A durable write failed; nothing was stored."""
