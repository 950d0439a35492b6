# civichub/errors.py
from typing import Optional


class CivicHubError(Exception):
    """Base class for domain errors raised by the services."""

    def __init__(self, detail: str, *, entity: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.entity = entity


class Unauthorized(CivicHubError):
    """No authenticated principal was supplied with the request."""


class Forbidden(CivicHubError):
    """The principal is outside the jurisdiction of the target record."""


class NotFound(CivicHubError):
    """A referenced hierarchy node, user or content record does not exist."""


class ValidationFailure(CivicHubError):
    """Malformed input, a missing parent reference or a duplicate code."""
