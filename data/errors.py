import click


class ScanError(click.ClickException):
    """Base class for group scan failures; the CLI prints these without a traceback."""


class InvalidInputError(ScanError):
    """A scoring or gap function was called with a missing record or benchmark."""


class NotFoundError(ScanError):
    """No billing record exists for the requested NPI."""


class UpstreamError(ScanError):
    """The data source behind a resolver failed or timed out."""


class BatchValidationError(ScanError):
    """A group scan request was rejected before any provider was scanned."""
