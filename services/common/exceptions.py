"""
Internal exceptions raised between repositories and services.

They never leave the engine: the orchestrator converts each one into a
Result failure carrying the matching ErrorCode.
"""

from services.common.result import ErrorCode


class EngineError(Exception):
    """Base class for engine failures"""
    code = None

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class InvalidInteractionError(EngineError):
    """An interaction event failed validation and was not applied"""
    code = ErrorCode.INVALID_INPUT


class DealNotFoundError(EngineError):
    """A referenced deal, link or session does not exist"""
    code = ErrorCode.DATA_MISSING


class ConcurrencyConflictError(EngineError):
    """A deal row changed between read and write"""
    code = ErrorCode.CONCURRENCY_CONFLICT


class PersistenceError(EngineError):
    """The backing store rejected a write"""
    code = ErrorCode.PERSISTENCE_FAILURE


class InvalidTransitionError(EngineError):
    """A status change the lifecycle does not allow"""
    code = ErrorCode.INVALID_INPUT
