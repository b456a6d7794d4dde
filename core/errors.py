"""
Error taxonomy for the Geopolitical Analyzer.

Every fatal error raised by a pipeline run derives from ``AnalysisError`` and
carries a user-displayable message (``str(exc)``) plus the HTTP status the
web layer answers with. ``PersistenceError`` is the odd one out: it is raised
by the storage layer and only ever logged by the history store.
"""

from __future__ import annotations


class AnalysisError(Exception):
    """Base exception for a failed analysis run."""

    status_code: int = 500


class ConfigurationError(AnalysisError):
    """Raised when the credential is missing or the request setup is unsupported."""

    status_code = 503


class CredentialError(AnalysisError):
    """Raised when the backend rejects the configured credential."""

    status_code = 502


class BackendError(AnalysisError):
    """Raised for any other remote-call failure.

    Args:
        message: User-facing message (embeds the backend's own text).
        detail: The backend's original message, unmodified.
        kind: The backend failure kind, if one was reported.
        upstream_status: HTTP status reported by the backend, if any.
    """

    status_code = 502

    def __init__(
        self,
        message: str,
        detail: str = "",
        kind: str | None = None,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(message)
        self.detail = detail
        self.kind = kind
        self.upstream_status = upstream_status


class FormatError(AnalysisError):
    """Raised when the reply is not parseable as a structured object."""

    status_code = 502


class ValidationError(AnalysisError):
    """Raised when the parsed reply lacks required fields.

    Args:
        missing_fields: Names (as sent by the model) of the absent or invalid fields.
    """

    status_code = 502

    def __init__(self, missing_fields: list[str]) -> None:
        self.missing_fields = list(missing_fields)
        super().__init__(
            "The API response was incomplete or did not adhere to the requested "
            f"JSON structure. Missing or invalid fields: {', '.join(self.missing_fields)}."
        )


class PersistenceError(Exception):
    """Raised by the storage layer when a read or write fails."""
