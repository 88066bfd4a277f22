# storefront/domain/errors.py


class StorefrontError(Exception):
    """Base for every error raised by the storefront engine."""


class ValidationError(StorefrontError):
    """Bad input, e.g. a non-positive quantity on add."""


class StockError(StorefrontError):
    def __init__(self, product_id: str, requested: int, available: int):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Requested {requested} of {product_id}, only {available} available"
        )


class SchemaError(StorefrontError):
    """Stored record or remote payload has the wrong version or shape."""


class StorageQuotaError(StorefrontError):
    """Durable write rejected because the store is full."""


class FetchError(StorefrontError):
    """Remote read failed."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class NetworkError(FetchError):
    """Timeout or connectivity failure. Retryable."""


class ServerError(FetchError):
    """Remote answered 5xx. Retryable."""


class ClientError(FetchError):
    """Remote answered 4xx. Not retried."""


class FetchCancelledError(StorefrontError):
    """Caller cancelled the fetch; any late result is discarded."""
