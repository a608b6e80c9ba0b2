"""Configuration infrastructure module."""

from keyrelay.infrastructure.config.key_source import parse_key_text, read_key_source
from keyrelay.infrastructure.config.settings import (
    RelaySettings,
    load_prefixed_credentials,
    parse_key_list,
)

__all__ = [
    "RelaySettings",
    "load_prefixed_credentials",
    "parse_key_list",
    "parse_key_text",
    "read_key_source",
]
