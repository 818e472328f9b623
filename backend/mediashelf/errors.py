"""Domain exceptions, translated to HTTP responses in main.py."""


class MediaShelfError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 500


class NotFoundError(MediaShelfError):
    status_code = 404


class ConflictError(MediaShelfError):
    status_code = 409


class ValidationError(MediaShelfError):
    status_code = 400


class ConfigurationError(MediaShelfError):
    """Missing or inconsistent settings. Raised at startup, never per request."""
