"""
Analysis Services Errors - Failure taxonomy for the server reconciler.

Not-found is kept distinct from every other failure so callers can treat
absence as a state transition instead of an error.
"""

from typing import Optional


class AnalysisServicesError(Exception):
    """Base class for all reconciler errors."""

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        resource_group: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.message = message
        self.name = name
        self.resource_group = resource_group
        self.cause = cause
        super().__init__(message)


class ConfigurationError(AnalysisServicesError):
    """Raised when raw configuration input fails validation."""


class ResourceIdError(AnalysisServicesError):
    """Raised when a persisted resource ID cannot be parsed."""


class ApiError(AnalysisServicesError):
    """Raised when the Resource Manager API returns an error response."""

    def __init__(
        self,
        message: str,
        status: int,
        code: Optional[str] = None,
        name: Optional[str] = None,
        resource_group: Optional[str] = None,
    ):
        self.status = status
        self.code = code
        super().__init__(message, name=name, resource_group=resource_group)

    @property
    def not_found(self) -> bool:
        return self.status == 404


class ResourceNotFoundError(ApiError):
    """Raised when the remote server does not exist."""

    def __init__(
        self,
        message: str,
        name: Optional[str] = None,
        resource_group: Optional[str] = None,
    ):
        super().__init__(
            message,
            status=404,
            code="ResourceNotFound",
            name=name,
            resource_group=resource_group,
        )


class ImportAsExistsError(AnalysisServicesError):
    """Raised when Create finds a server that must be imported instead."""

    def __init__(self, resource_type: str, resource_id: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"A resource with the ID {resource_id!r} already exists - to be "
            f"managed it needs to be imported into the state. Please see the "
            f"import command for {resource_type!r} for more information."
        )


class RetrievalError(AnalysisServicesError):
    """Raised when a remote lookup fails for any reason other than not-found."""


class OperationTimeoutError(AnalysisServicesError):
    """Raised when an operation deadline elapses before a terminal state."""


class MissingIdentifierError(AnalysisServicesError):
    """Raised when the remote API succeeds but returns no usable ID."""


class RemoteOperationError(AnalysisServicesError):
    """Raised when a long-running operation ends in a non-success state."""

    def __init__(
        self,
        message: str,
        status: Optional[str] = None,
        name: Optional[str] = None,
        resource_group: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        self.status = status
        super().__init__(
            message, name=name, resource_group=resource_group, cause=cause
        )
