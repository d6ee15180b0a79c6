"""Error taxonomy surfaced to API callers as ``{"error": message}``."""


class PortalError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFound(PortalError):
    status_code = 404


class ValidationError(PortalError):
    status_code = 400


class AuthenticationRequired(PortalError):
    status_code = 401


class Forbidden(PortalError):
    status_code = 403


class Conflict(PortalError):
    status_code = 400


class InvalidTransition(PortalError):
    status_code = 400

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Cannot move application from {current} to {requested}")
        self.current = current
        self.requested = requested
