from dissect.hivetree.exceptions import (
    Error,
    InvalidCountError,
    InvalidHeaderError,
    KeyCycleError,
    MalformedCellSizeError,
    RegistryKeyNotFoundError,
    RootKeyNotFoundError,
    TruncatedReadError,
    UnknownSubkeyEncodingError,
)
from dissect.hivetree.hive import KeyNode, RegistryHive, find_root, translate, validate_header

__all__ = [
    "RegistryHive",
    "KeyNode",
    "find_root",
    "translate",
    "validate_header",
    "Error",
    "InvalidCountError",
    "InvalidHeaderError",
    "KeyCycleError",
    "MalformedCellSizeError",
    "RegistryKeyNotFoundError",
    "RootKeyNotFoundError",
    "TruncatedReadError",
    "UnknownSubkeyEncodingError",
]
