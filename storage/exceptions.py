class KeyValueStoreError(Exception):
    """Base class for per-request failures raised by the request handlers."""


class Unauthorized(KeyValueStoreError):
    """The presented bearer token does not match the operation's token."""


class NoContent(KeyValueStoreError):
    """The requested key has no entry."""


class InvalidBody(KeyValueStoreError):
    """The request body is not valid UTF-8 text."""
