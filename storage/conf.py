"""
Configuration for the key-value store.

The store needs three scalars (listening port, read token, write token) and
the timestamp tracking flag. They come from the ``KVSTORE`` Django setting
when it is set, otherwise from the INI file named by
``KVSTORE_CONFIG_FILE``:

    [keyvaluestore]
    port = 8080
    read_token = r
    write_token = w
    track_modified = true
"""

import configparser
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Union

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured

logger = logging.getLogger(__name__)

CONFIG_SECTION = "keyvaluestore"
MAX_PORT = 65535


@dataclass(frozen=True)
class StoreConfig:
    port: int
    read_token: str
    write_token: str
    track_modified: bool = True


def load_store_config() -> StoreConfig:
    """Load the store configuration from Django settings or the INI file."""
    mapping = getattr(settings, "KVSTORE", None)
    if mapping is not None:
        return config_from_mapping(mapping)
    return read_config_file(settings.KVSTORE_CONFIG_FILE)


def config_from_mapping(mapping: Mapping[str, Any]) -> StoreConfig:
    """
    Build a StoreConfig from a ``KVSTORE``-style dict.

    Raises:
        ImproperlyConfigured: If a required key is missing or malformed
    """
    for name in ("PORT", "READ_TOKEN", "WRITE_TOKEN"):
        if name not in mapping:
            raise ImproperlyConfigured(f"KVSTORE setting is missing {name}")

    return StoreConfig(
        port=_parse_port(mapping["PORT"]),
        read_token=_require_token("READ_TOKEN", mapping["READ_TOKEN"]),
        write_token=_require_token("WRITE_TOKEN", mapping["WRITE_TOKEN"]),
        track_modified=_parse_flag("TRACK_MODIFIED", mapping.get("TRACK_MODIFIED", True)),
    )


def read_config_file(path: Union[str, Path]) -> StoreConfig:
    """
    Read the ``[keyvaluestore]`` section of an INI file.

    Raises:
        ImproperlyConfigured: If the file, the section, or a required
            option is missing or malformed
    """
    parser = configparser.ConfigParser()
    try:
        with open(path, encoding="utf-8") as fp:
            parser.read_file(fp)
    except OSError as exc:
        raise ImproperlyConfigured(f"Cannot read configuration file {path}: {exc}") from exc
    except configparser.Error as exc:
        raise ImproperlyConfigured(f"Malformed configuration file {path}: {exc}") from exc

    if not parser.has_section(CONFIG_SECTION):
        raise ImproperlyConfigured(f"{path} has no [{CONFIG_SECTION}] section")
    section = parser[CONFIG_SECTION]

    for option in ("port", "read_token", "write_token"):
        if option not in section:
            raise ImproperlyConfigured(f"{path} is missing '{option}' in [{CONFIG_SECTION}]")

    try:
        track_modified = section.getboolean("track_modified", fallback=True)
    except ValueError as exc:
        raise ImproperlyConfigured(f"Invalid track_modified in {path}: {exc}") from exc

    logger.debug(f"Loaded store configuration from {path}")
    return StoreConfig(
        port=_parse_port(section["port"]),
        read_token=_require_token("read_token", section["read_token"]),
        write_token=_require_token("write_token", section["write_token"]),
        track_modified=track_modified,
    )


def _parse_port(raw: Any) -> int:
    try:
        port = int(raw)
    except (TypeError, ValueError) as exc:
        raise ImproperlyConfigured(f"Port must be an integer, got {raw!r}") from exc
    if not 0 <= port <= MAX_PORT:
        raise ImproperlyConfigured(f"Port {port} is outside 0..{MAX_PORT}")
    return port


def _require_token(name: str, raw: Any) -> str:
    if not isinstance(raw, str) or not raw:
        raise ImproperlyConfigured(f"{name} must be a non-empty string")
    return raw


def _parse_flag(name: str, raw: Any) -> bool:
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.lower() in configparser.ConfigParser.BOOLEAN_STATES:
        return configparser.ConfigParser.BOOLEAN_STATES[raw.lower()]
    raise ImproperlyConfigured(f"{name} must be a boolean, got {raw!r}")
