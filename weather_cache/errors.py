"""Error taxonomy shared by the store, aggregators, sweeper and HTTP layer."""


class WeatherCacheError(Exception):
    """Base class for all weather cache errors."""
    status_code: int = 500

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(WeatherCacheError):
    """Malformed or missing required snapshot fields. Never retried automatically."""
    status_code = 422


class ConflictError(WeatherCacheError):
    """Cache-key collision with a different non-expired snapshot."""
    status_code = 409


class NotFoundError(WeatherCacheError):
    """Lookup by id or cache key found nothing."""
    status_code = 404


class NotReadyError(WeatherCacheError):
    """Summary requested on a snapshot whose data is incomplete."""
    status_code = 409


class CanceledError(WeatherCacheError):
    """Caller cancelled a scan or its deadline passed."""
    status_code = 408


class StorageUnavailableError(WeatherCacheError):
    """The underlying persistence layer failed."""
    status_code = 503
