"""Error taxonomy shared by services and the HTTP layer."""


class AppError(Exception):
    """Base class for errors rendered as the structured error envelope."""

    status_code = 500
    code = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"

    def __init__(self, resource: str, identifier=None):
        if identifier is None:
            super().__init__(f"{resource} not found")
        else:
            super().__init__(f"{resource} {identifier} not found")


class ValidationError(AppError):
    status_code = 400
    code = "validation_error"


class AuthorizationError(AppError):
    """The actor lacks rights over the target entity."""

    status_code = 403
    code = "forbidden"


class AuthenticationError(AuthorizationError):
    """No actor could be established for the request."""

    status_code = 401
    code = "unauthorized"


class AlreadyProcessedError(AppError):
    status_code = 409
    code = "already_processed"


class UpstreamError(AppError):
    """LLM or embedding provider failure, or a malformed provider response."""

    status_code = 502
    code = "upstream_error"
