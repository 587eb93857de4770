class ProviderError(Exception):
    """Base exception for prediction provider errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderTimeoutError(ProviderError):
    """Request exceeded the configured timeout."""

    pass


class ProviderHTTPError(ProviderError):
    """Provider answered with a non-success status."""

    pass


class ProviderResponseError(ProviderError):
    """Provider payload could not be parsed."""

    pass
