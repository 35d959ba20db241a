"""
Result Pattern Implementation
Provides a standardized way for services to return results with success/failure status
"""

from typing import TypeVar, Generic, Optional, Any, Dict
from dataclasses import dataclass

from services.common.errors import BrokerError

T = TypeVar('T')


@dataclass
class Result(Generic[T]):
    """
    A generic Result class for service method returns.

    Orchestration methods return a Result instead of raising so that routes and
    CLI commands have a single shape to inspect. The error_code carries the error
    kind from services.common.errors (VALIDATION_ERROR, BUSINESS_ERROR, ...).

    Examples:
        result = Result.success(campaign_data)
        if result.is_success:
            print(result.data)

        result = Result.failure("Campaign not found", code="NOT_FOUND")
        if result.is_failure:
            print(result.error)
    """

    success: bool
    data: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    @classmethod
    def success(cls, data: T, metadata: Optional[Dict[str, Any]] = None) -> 'Result[T]':
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
                code: Optional[str] = None,
                metadata: Optional[Dict[str, Any]] = None,
                data: Optional[T] = None) -> 'Result[T]':
        """
        Create a failure result.

        Args:
            error: Error message describing the failure
            code: Optional error code for programmatic handling
            metadata: Optional metadata about the failure
            data: Optional partial data (e.g. the campaign left in draft)

        Returns:
            A Result instance representing failure
        """
        return cls(success=False, data=data, error=error, error_code=code, metadata=metadata)

    @classmethod
    def from_error(cls, exc: BrokerError, data: Optional[T] = None) -> 'Result[T]':
        """Build a failure from one of the broker's exceptions, keeping its details."""
        return cls.failure(exc.message, code=exc.code, metadata=exc.details or None, data=data)

    @property
    def is_success(self) -> bool:
        return self.success

    @property
    def is_failure(self) -> bool:
        return not self.success

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.is_success:
            return f"Result.success(data={self.data!r})"
        return f"Result.failure(error={self.error!r}, code={self.error_code!r})"
