from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    AZURE_ERROR = 4
    RUNTIME_ERROR = 5
    DATA_ERROR = 6


class PolicyExporterError(Exception):
    """Base error for the policy export pipeline."""


class ConfigError(PolicyExporterError):
    """Raised for configuration or argument issues."""


class AuthResolutionError(PolicyExporterError):
    """Raised when Azure credentials or the subscription cannot be resolved."""


class AzureClientError(PolicyExporterError):
    """Raised when Azure SDK operations fail."""


class SourceReadError(PolicyExporterError):
    """Raised when a policy source cannot be read."""


class ExportError(PolicyExporterError):
    """Raised when writing an exported artifact fails."""


class LayoutError(PolicyExporterError):
    """Raised when a sheet schema does not declare its dynamic column anchor."""


class CodecError(PolicyExporterError):
    """Base error for spreadsheet cell and row decoding."""


class MissingColumnError(CodecError):
    """Raised when a required column is absent from a sheet row."""

    def __init__(self, column: str, row: object = None) -> None:
        self.column = column
        self.row = row
        message = f"value for column '{column}' does not exist"
        if row is not None:
            message = f"{message} in row {row!r}"
        super().__init__(message)


class MissingTypeError(CodecError):
    """Raised when a parameter value has no declared type in the row."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"the parameter type of '{name}' is not provided")


class ParameterTypeError(CodecError, TypeError):
    """Raised when a declared parameter type is not supported."""

    def __init__(self, declared_type: str) -> None:
        self.declared_type = declared_type
        super().__init__(f"unsupported parameter type '{declared_type}'")


class CellFormatError(CodecError, ValueError):
    """Raised when cell text cannot be parsed for its declared type."""


class EmptyIdentityWarning(UserWarning):
    """Emitted when a record without identity key is dropped from reconciliation."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (LayoutError, ConfigError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, CodecError):
        return int(ExitCode.DATA_ERROR)
    if isinstance(exc, ValueError):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, AuthResolutionError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, AzureClientError):
        return int(ExitCode.AZURE_ERROR)
    if isinstance(exc, (SourceReadError, ExportError, PolicyExporterError)):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


def _azure_error_types() -> tuple[type[BaseException], ...]:
    try:
        from azure.core.exceptions import AzureError  # type: ignore
    except Exception:
        return ()
    return (AzureError,)


def is_azure_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like an Azure SDK error.
    """
    azure_types = _azure_error_types()
    if azure_types and isinstance(exc, azure_types):
        return True
    return exc.__class__.__module__.startswith("azure.")


def map_azure_error(exc: BaseException, context: str) -> AzureClientError | None:
    """
    Wrap Azure SDK errors with AzureClientError for consistent exit codes.
    """
    if not is_azure_error(exc):
        return None
    return AzureClientError(f"{context}: {exc}")
