"""
Result Pattern Implementation
Every public engine operation returns a Result instead of raising, so a
failure in scoring, stage progression or task generation never escapes into
the host process as an unhandled exception
"""

from typing import TypeVar, Generic, Optional, Any, Dict, Callable
from dataclasses import dataclass
from enum import Enum

T = TypeVar('T')


class ErrorCode(str, Enum):
    """Failure taxonomy shared by all engine operations"""
    DATA_MISSING = 'DATA_MISSING'
    INVALID_INPUT = 'INVALID_INPUT'
    PERSISTENCE_FAILURE = 'PERSISTENCE_FAILURE'
    CONCURRENCY_CONFLICT = 'CONCURRENCY_CONFLICT'
    TIMEOUT = 'TIMEOUT'


@dataclass
class Result(Generic[T]):
    """
    Either a successful value or a typed failure.

    Examples:
        result = Result.success(metrics)
        if result.is_success:
            print(result.data.total_score)

        result = Result.failure("Deal 7 not found", code=ErrorCode.DATA_MISSING)
        if result.is_failure and result.error_code == ErrorCode.DATA_MISSING:
            ...
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T = None, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a successful result.

        Args:
            data: The successful result data
            metadata: Optional metadata about the operation

        Returns:
            A Result instance representing success
        """
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[ErrorCode] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Error message describing the failure
            code: Error code for programmatic handling
            metadata: Optional metadata about the failure

        Returns:
            A Result instance representing failure
        """
        return cls(success=False, error=error, error_code=code, metadata=metadata)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def unwrap(self) -> T:
        """
        Get the data from a successful result.

        Raises:
            ValueError: If called on a failure result
        """
        if self.is_failure:
            raise ValueError(f"Cannot unwrap a failure result: {self.error}")
        return self.data

    def unwrap_or(self, default: T) -> T:
        """Get the data if successful, otherwise the default value."""
        return self.data if self.is_success else default

    def map(self, func: Callable[[T], Any]) -> 'Result':
        """Transform the data if successful; failures pass through unchanged."""
        if self.is_success:
            return Result.success(func(self.data), self.metadata)
        return self

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        code = self.error_code.value if self.error_code else None
        return f"Result.failure(error={self.error!r}, code={code!r})"
