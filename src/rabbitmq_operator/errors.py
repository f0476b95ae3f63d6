"""Error taxonomy for reconciler operations.

Every error carries the operation, object kind and natural key it was
raised for, so callers can render a diagnostic without parsing messages:

- RemoteUnavailable: the broker could not be reached (network, DNS, TLS)
- RemoteRejected: the broker answered with a 4xx/5xx other than not-found
- NotFound: the broker answered 404 (converted to absence by Read/Delete)
- MalformedIdentifier: an import token failed structural validation
- ConfigurationInvalid: desired attributes failed local validation
- ReplaceRequired: an in-place update was asked for a replace-only change

None of these are retried inside the reconcilers.
"""

from __future__ import annotations

from typing import Any


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        kind: str | None = None,
        key: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.kind = kind
        self.key = key

    def with_context(
        self,
        *,
        operation: str | None = None,
        kind: str | None = None,
        key: str | None = None,
    ) -> ReconcileError:
        """Fill in context fields that are still unset and return self."""
        if self.operation is None:
            self.operation = operation
        if self.kind is None:
            self.kind = kind
        if self.key is None:
            self.key = key
        return self

    @property
    def context(self) -> dict[str, Any]:
        """Structured context suitable for logging `extra=`."""
        return {
            "operation": self.operation,
            "kind": self.kind,
            "key": self.key,
            "error": self.message,
        }

    def __str__(self) -> str:
        parts = [p for p in (self.operation, self.kind, self.key) if p]
        if not parts:
            return self.message
        return f"{' '.join(parts)}: {self.message}"


class RemoteUnavailable(ReconcileError):
    """Raised when the broker management API cannot be reached."""

    pass


class RemoteRejected(ReconcileError):
    """Raised when the broker responds with an error status."""

    def __init__(self, status: int, body: Any = None, **context: Any) -> None:
        super().__init__(f"broker responded with status {status}: {body!r}", **context)
        self.status = status
        self.body = body


class NotFound(ReconcileError):
    """Raised when the broker reports the object does not exist."""

    pass


class MalformedIdentifier(ReconcileError):
    """Raised when an import token does not match the expected format."""

    def __init__(self, token: str, expected_format: str, **context: Any) -> None:
        super().__init__(
            f"Expected import identifier with format: {expected_format}. Got: {token!r}",
            **context,
        )
        self.token = token
        self.expected_format = expected_format


class ConfigurationInvalid(ReconcileError):
    """Raised when desired attributes fail validation before any network call."""

    def __init__(self, message: str, errors: list[str] | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.errors = errors or []


class ReplaceRequired(ReconcileError):
    """Raised when a change can only be applied by destroying and recreating."""

    def __init__(self, fields: list[str], **context: Any) -> None:
        super().__init__(
            f"attributes {', '.join(fields)} cannot be updated in place",
            **context,
        )
        self.fields = fields
