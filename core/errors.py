"""
Shared error types for core services.

Every error raised toward the invocation surface carries a stable
``error_code`` and the HTTP-style ``status_code`` it maps to.
"""


class MemospaceError(Exception):
    status_code = 500
    error_code = "internal_error"

    def __init__(self, message: str, error_code: str | None = None, data: dict | None = None):
        super().__init__(message)
        if error_code is not None:
            self.error_code = error_code
        self.data = data


class ValidationIssue(MemospaceError, ValueError):
    status_code = 400
    error_code = "invalid_input"

    def __init__(
        self,
        message: str,
        field: str = "unknown",
        error_type: str = "invalid",
        error_code: str | None = None,
        data: dict | None = None,
    ):
        super().__init__(message, error_code=error_code, data=data)
        self.field = field
        self.error_type = error_type


class InvalidNamespaceError(ValidationIssue):
    error_code = "invalid_namespace"

    def __init__(self, message: str, field: str = "namespace"):
        super().__init__(message, field=field, error_type="invalid_namespace")


class NotFoundError(MemospaceError):
    status_code = 404

    def __init__(self, entity: str, message: str | None = None):
        super().__init__(message or f"{entity.capitalize()} not found", error_code=f"{entity}_not_found")
        self.entity = entity


class PivotNotFoundError(NotFoundError):
    def __init__(self, memo_id: str):
        super().__init__("pivot", f"Pivot memo not found: {memo_id}")
        self.memo_id = memo_id


class NamespaceRenameConflict(MemospaceError):
    """Raised when the rename destination already holds a colliding memo or relation."""

    status_code = 409
    error_code = "namespace_rename_conflict"


class TransactionsUnsupportedError(MemospaceError):
    """Raised when the active engine cannot run a multi-statement transaction."""

    status_code = 500
    error_code = "transactions_unsupported"


class UnauthorizedError(MemospaceError):
    status_code = 401
    error_code = "unauthorized"


class EmbeddingProviderError(MemospaceError, RuntimeError):
    """Raised when the embedding provider is unavailable."""

    status_code = 503
    error_code = "embedding_unavailable"
