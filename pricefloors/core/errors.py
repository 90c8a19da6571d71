class FloorsError(Exception):
    """Base class for price floor errors."""


class ConfigError(FloorsError):
    """Floors configuration is missing or malformed."""


class FieldRegistrationError(ConfigError):
    """A custom schema field could not be registered."""


class FetchError(FloorsError):
    """Remote rule catalog could not be fetched."""


class CurrencyConversionError(FloorsError):
    """No rate available to convert between two currencies."""
