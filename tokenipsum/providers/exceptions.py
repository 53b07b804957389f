"""Provider adapter exceptions."""


class ProviderError(Exception):
    """Base class for provider adapter errors."""


class MalformedRequestError(ProviderError):
    """Raised when a native request body is missing required fields."""


class ProviderRegistryError(ValueError):
    """Raised when a provider key or route is unknown."""
