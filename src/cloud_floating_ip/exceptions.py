"""
Exception hierarchy for floating IP management.

Every error raised by the core modules derives from FloatingIPError so the
CLI has a single place to turn failures into an exit code. Provider client
exceptions (HttpError, ClientError, requests errors) are never leaked raw:
they are wrapped in ProviderAPIError with the table/route context attached.
"""

from typing import Any, Optional


class FloatingIPError(Exception):
    """Base class for all floating IP errors."""


class ConfigurationError(FloatingIPError):
    """Missing or invalid configuration (IP, hoster, identity fields)."""


class EmptyTableSetAfterFilter(ConfigurationError):
    """The route table filter selected nothing to reconcile."""


class MultipleProvidersDetected(ConfigurationError):
    """More than one hosting provider claims the running environment."""

    def __init__(self, names):
        self.names = list(names)
        super().__init__(
            f"Several hosting providers detected ({', '.join(self.names)}), "
            f"please specify one with --hoster"
        )


class EndpointError(FloatingIPError):
    """Base class for network endpoint resolution failures."""


class EndpointNotFound(EndpointError):
    """No attached network endpoint matches the instance / disambiguator."""


class AmbiguousEndpoint(EndpointError):
    """Several network endpoints are candidates and no disambiguator was given."""

    def __init__(self, instance: str, candidates):
        self.instance = instance
        self.candidates = list(candidates)
        super().__init__(
            f"Instance {instance} has {len(self.candidates)} network interfaces "
            f"({', '.join(self.candidates)}): use --interface, --subnet or --target-ip"
        )


class UnsupportedProvider(FloatingIPError):
    """The requested hosting provider name is not registered."""


class NoProviderDetected(FloatingIPError):
    """Auto-detection found no hosting provider for the running environment."""


class ProviderAPIError(FloatingIPError):
    """
    A call to the hosting provider's API failed.

    Attributes:
        table_id: Route table (or network) the failing call targeted, if any.
        cause: The underlying client exception, if any.
    """

    def __init__(self, message: str, table_id: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        self.table_id = table_id
        self.cause = cause
        if table_id:
            message = f"{message} (table {table_id})"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class OperationFailed(ProviderAPIError):
    """An asynchronous provider operation completed with an error payload."""

    def __init__(self, operation: str, payload: Any, table_id: Optional[str] = None):
        self.operation = operation
        self.payload = payload
        super().__init__(f"Operation {operation} failed with {payload!r}", table_id=table_id)


class OperationTimeout(ProviderAPIError):
    """An asynchronous provider operation did not finish within the poll bound."""

    def __init__(self, operation: str, attempts: int, table_id: Optional[str] = None):
        self.operation = operation
        self.attempts = attempts
        super().__init__(
            f"Timeout waiting for operation {operation} to finish after {attempts} attempts",
            table_id=table_id,
        )
