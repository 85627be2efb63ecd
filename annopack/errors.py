"""Exception hierarchy for annopack."""


class AnnopackError(Exception):
    """Base class for all annopack errors."""


class ConfigurationError(AnnopackError):
    """The annotation config store is unreachable or misconfigured.

    Fatal to the session: it is raised before any package is loaded.
    """


class ProviderError(AnnopackError):
    """A provider call failed; the caller may retry."""

    def __init__(self, message: str, package_id: str | None = None) -> None:
        super().__init__(message)
        self.package_id = package_id


class OperationInProgressError(AnnopackError):
    """Another operation already holds the requested exclusion slot."""

    def __init__(self, operation: str, key: str, active: str) -> None:
        super().__init__(
            f"Cannot {operation} {key!r}: {active} is already in progress"
        )
        self.operation = operation
        self.key = key
        self.active = active


class PackageStateError(AnnopackError, ValueError):
    """A package was asked to enter a state its invariants forbid."""
