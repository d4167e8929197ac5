"""Exceptions raised by secretsctl."""


class SecretsCLIError(Exception):
    """Base exception for errors that end the command."""
    pass


class ConfigurationError(SecretsCLIError):
    """Config file or flag value is unusable."""
    pass


class APIError(SecretsCLIError):
    """Secrets API request failed."""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class VersionCheckError(SecretsCLIError):
    """Latest version could not be determined."""
    pass


class UpdateError(SecretsCLIError):
    """Self-update failed."""
    pass
