"""
Application error taxonomy.

Services raise these; app.main maps them to HTTP responses.
"""


class AppError(Exception):
    """Base exception for the backend."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class NotFound(AppError):
    """Role, user or permission ID does not resolve."""

    status_code = 404

    def __init__(self, entity: str, identifier: object = None) -> None:
        message = f"{entity} not found" if identifier is None else f"{entity} {identifier} not found"
        super().__init__(message)
        self.entity = entity
        self.identifier = identifier


class AlreadyExists(AppError):
    """Duplicate unique name."""

    status_code = 409


class InUse(AppError):
    """Delete blocked by an active reference."""

    status_code = 409


class InvalidInput(AppError):
    """Malformed module, action or grant type."""

    status_code = 400


class StoreError(AppError):
    """Underlying persistence failure."""

    status_code = 503
