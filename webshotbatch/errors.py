"""Exceptions that abort a whole webshotbatch run."""


class WebShotBatchError(Exception):
    """Base class for run-level failures."""


class ConfigError(WebShotBatchError):
    """The server config file is missing, unreadable or malformed."""


class InputFileError(WebShotBatchError):
    """The URL list could not be opened."""


class ServerUnavailableError(WebShotBatchError):
    """The rendering server did not answer the pre-flight HEAD request."""
