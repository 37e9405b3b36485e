"""Domain error taxonomy.

Services raise these; route handlers translate them into HTTP responses
and the gateway turns them into `error` frames for the caller only.
Each class carries the HTTP status it maps to.
"""


class SkillwaveError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""


class AuthenticationError(SkillwaveError):
    """Missing or invalid credentials."""

    status_code = 401


class ValidationError(SkillwaveError):
    """Request fields are missing or malformed."""

    status_code = 400


class NotFoundError(SkillwaveError):
    """Referenced record does not exist."""

    status_code = 404


class InvalidStateError(SkillwaveError):
    """Lifecycle transition not allowed from the current status."""

    status_code = 400


class SelfAcceptError(InvalidStateError):
    """A requester tried to accept their own request."""


class ForbiddenError(SkillwaveError):
    """Caller is not allowed to act on this record."""

    status_code = 403


class UpstreamError(SkillwaveError):
    """An external service (SMTP, AI provider) failed."""

    status_code = 502


class PersistenceError(SkillwaveError):
    """The database rejected or failed a query."""

    status_code = 500


class PayloadTooLargeError(ValidationError):
    """Uploaded content exceeds the configured size limit."""

    status_code = 413
