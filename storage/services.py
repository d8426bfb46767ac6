import logging
from typing import Callable, NamedTuple, Optional, Union

from django.utils.http import http_date

from storage.exceptions import InvalidBody, NoContent, Unauthorized
from storage.store import KeyValueStore

logger = logging.getLogger(__name__)


class ReadResult(NamedTuple):
    value: str
    last_modified: Optional[str] = None


def read_value(store: KeyValueStore, key: str, auth_token: Optional[str]) -> ReadResult:
    """
    Authorize a read and fetch the value for a key.

    Args:
        store: The store to read from
        key: The key to look up
        auth_token: Bearer token presented by the client, None if absent

    Returns:
        The value, plus the HTTP-date of the last write when timestamps
        are tracked

    Raises:
        Unauthorized: If the token does not match the store's read token
        NoContent: If the key has no entry
    """
    if auth_token != store.read_token:
        logger.warning(f"Rejected read of key {key!r}: token mismatch")
        raise Unauthorized(key)

    entry = store.get(key)
    if entry is None:
        logger.debug(f"Read of missing key {key!r}")
        raise NoContent(key)

    last_modified = None
    if entry.modified_at is not None:
        last_modified = http_date(entry.modified_at.timestamp())
    return ReadResult(entry.value, last_modified)


def write_value(
    store: KeyValueStore,
    key: str,
    auth_token: Optional[str],
    body: Union[bytes, Callable[[], bytes]],
) -> None:
    """
    Authorize a write and store the raw body under a key.

    ``body`` may be a callable returning the bytes; it is only invoked once
    the token has been accepted, so rejected requests never read their
    body. The body is stored verbatim and only decoded from UTF-8 so values
    stay strings.

    Raises:
        Unauthorized: If the token does not match the store's write token
        InvalidBody: If the body is not valid UTF-8
    """
    if auth_token != store.write_token:
        logger.warning(f"Rejected write of key {key!r}: token mismatch")
        raise Unauthorized(key)

    if callable(body):
        body = body()

    try:
        value = body.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidBody(key) from exc

    store.put(key, value)
    logger.debug(f"Stored {len(value)} characters under key {key!r}")
