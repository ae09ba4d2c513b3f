class MovieServiceError(Exception):
    """Base class for errors raised by the movie cache service."""


class ConfigurationError(MovieServiceError):
    """The OMDb credential is missing or rejected."""


class NotFoundError(MovieServiceError):
    """The identifier is unknown to both the store and OMDb."""


class TransportError(MovieServiceError):
    """An OMDb call failed or timed out. The cause is chained."""


class QueryValidationError(MovieServiceError):
    """Malformed query parameters."""
