"""
Result Pattern Implementation
Provides a standardized way for services and channel providers to report
success or failure without raising across the service boundary
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    A generic Result class for service method returns.

    Encapsulates either a successful result with data or a failure with error information.

    Examples:
        result = Result.success(contact)
        if result.is_success:
            print(result.data.id)

        result = Result.failure("Slack signature mismatch", code="INVALID_SIGNATURE")
        if result.is_failure:
            print(result.error_code)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T = None, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a successful result.

        Args:
            data: The successful result data
            metadata: Optional metadata about the operation (e.g. ``{'duplicate': True}``)
        """
        return cls(
            success=True,
            data=data,
            error=None,
            error_code=None,
            metadata=metadata
        )

    @classmethod
    def failure(cls,
                error: str,
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Human-readable error message, safe to show to the end user
            code: Error code for programmatic handling (see services.common.errors)
            metadata: Optional metadata about the failure
        """
        return cls(
            success=False,
            data=None,
            error=error,
            error_code=code,
            metadata=metadata
        )

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def __bool__(self) -> bool:
        """Allow Result to be used in boolean context."""
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
