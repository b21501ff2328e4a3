from __future__ import annotations

import logging
import os
import struct
from functools import cached_property, lru_cache
from typing import TYPE_CHECKING, BinaryIO

from dissect.util.ts import wintimestamp

from dissect.hivetree.c_hivetree import (
    BLOCK_SIZE,
    CELL_SIZE_LENGTH,
    CHECKSUM_OFFSET,
    HBIN_OFFSET,
    HBIN_SIGNATURE,
    HEADER_SIZE,
    KEY_COMP_NAME,
    KEY_INDEX_HEADER_SIZE,
    KEY_NODE_SIZE,
    KEY_NON_ROOT,
    KEY_ROOT,
    KEY_SYM_LINK,
    MAX_CELL_SIZE,
    NO_OFFSET,
    REGF_SIGNATURE,
    c_hivetree,
)
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

if TYPE_CHECKING:
    from collections.abc import Iterator
    from datetime import datetime

log = logging.getLogger(__name__)
log.setLevel(os.getenv("DISSECT_LOG_HIVETREE", "CRITICAL"))


STABLE = 0

WINDOWS_TICK = 10_000_000
SEC_TO_UNIX_EPOCH = 11_644_473_600

# Names of these key types are always stored as 8-bit characters
KEY_TYPES = (KEY_ROOT, KEY_NON_ROOT, KEY_SYM_LINK)


class ByteSource:
    """Random access reads on a hive file-like object."""

    def __init__(self, fh: BinaryIO):
        self.fh = fh

    def read(self, offset: int, size: int) -> bytes:
        self.fh.seek(offset)
        data = self.fh.read(size)

        if len(data) != size:
            raise TruncatedReadError(f"Read {len(data)} of {size} bytes at offset {offset:#x}")

        return data


class RegistryHive:
    def __init__(self, fh: BinaryIO, scan_limit: int | None = None):
        self.fh = fh
        self.source = ByteSource(fh)

        try:
            data = self.source.read(0, HEADER_SIZE)
        except TruncatedReadError as e:
            raise InvalidHeaderError("Registry file is too small to hold a hive header") from e

        if not validate_header(data):
            raise InvalidHeaderError("Registry file failed basic validation")

        self.header = c_hivetree._HIVE_HEADER(data)
        self.version = (self.header.Major, self.header.Minor, self.header.Release, self.header.Build)
        log.debug("Hive version %d.%d.%d.%d, checksum OK", *self.version)

        self.in_transaction = self.header.Sequence1 != self.header.Sequence2
        if self.in_transaction:
            log.warning(
                "The hive is undergoing a transaction (sequence %d != %d), may not be able to read keys properly",
                self.header.Sequence1,
                self.header.Sequence2,
            )

        self._root = find_root(self.source, HBIN_OFFSET, scan_limit)

        self.key = lru_cache(4096)(self.key)

    @cached_property
    def timestamp(self) -> datetime:
        return wintimestamp(self.header.TimeStamp)

    @cached_property
    def unix_timestamp(self) -> int:
        return filetime_to_unix(self.header.TimeStamp)

    def root(self) -> KeyNode:
        return self._root

    def key(self, offset: int) -> KeyNode:
        return read_key_node(self.source, offset)

    def subkey_list(self, offset: int, nested: bool = False) -> KeyIndex:
        """Read the subkey list at the given cell offset.

        Top level lists may be ``lh``, ``lf`` or ``ri``. Lists referenced from an
        ``ri`` list may be ``lh``, ``lf`` or ``li``.
        """
        position = translate(offset)
        header = c_hivetree._CM_KEY_INDEX_HEADER(self.source.read(position, KEY_INDEX_HEADER_SIZE))

        classes = _NESTED_LIST_CLASSES if nested else _LIST_CLASSES
        if (cls := classes.get(header.Signature)) is None:
            kind = "subentry of ri list" if nested else "subkey type"
            raise UnknownSubkeyEncodingError(f"Unknown {kind} {header.Signature!r} at offset {offset:#x}")

        if header.Count < 0:
            raise InvalidCountError(f"Negative entry count {header.Count} in {cls.__name__} at offset {offset:#x}")

        data = self.source.read(position, KEY_INDEX_HEADER_SIZE + header.Count * cls.__entry_size__)
        return cls(self, data)

    def children(self, key: KeyNode) -> Iterator[KeyNode]:
        """Yield the subkeys of ``key`` in on-disk order."""
        if not has_subkeys(key):
            return

        subkey_list = self.subkey_list(key.subkeys_offset)
        if isinstance(subkey_list, (HashLeaf, FastLeaf)) and subkey_list.count != key.num_subkeys:
            log.warning(
                "Number of subkeys does not match, KeyNode %s has %d subkeys, while the %s has %d elements",
                key.name,
                key.num_subkeys,
                subkey_list.__class__.__name__,
                subkey_list.count,
            )

        yield from subkey_list

    def walk(self, key: KeyNode | None = None) -> Iterator[tuple[int, KeyNode]]:
        """Walk the key tree depth-first, yielding ``(depth, key)`` tuples.

        The walk keeps its own stack of pending subkey iterators, so deeply
        nested hives do not exhaust the interpreter stack. Visiting a key
        offset twice means the subkey lists form a loop.
        """
        key = key or self._root
        seen = {key.offset}

        yield 0, key
        stack = [(1, self.children(key))]

        while stack:
            depth, subkeys = stack[-1]

            try:
                subkey = next(subkeys)
            except StopIteration:
                stack.pop()
                continue

            if subkey.offset in seen:
                raise KeyCycleError(f"KeyNode {subkey.name} at offset {subkey.offset:#x} was already visited")
            seen.add(subkey.offset)

            yield depth, subkey
            stack.append((depth + 1, self.children(subkey)))

    def subkey(self, key: KeyNode, name: str) -> KeyNode:
        if has_subkeys(key) and (sk := self.subkey_list(key.subkeys_offset).subkey(name)):
            return sk

        raise RegistryKeyNotFoundError(name)

    def open(self, path: str) -> KeyNode:
        path = path.strip("\\")
        parts = path.split("\\") if path else []

        node = self._root
        for part in parts:
            node = self.subkey(node, part)

        return node


class Cell:
    __signature__ = b""
    __struct__ = None

    def __init__(self, data: bytes):
        if data[:2] != self.__signature__:
            raise Error(f"Invalid {self.__class__.__name__} signature {data[:2]!r}, expected {self.__signature__!r}")

        self.cell = self.__struct__(data)


class KeyNode(Cell):
    __signature__ = b"nk"
    __struct__ = c_hivetree._CM_KEY_NODE

    def __init__(self, data: bytes, offset: int):
        if len(data) < KEY_NODE_SIZE:
            raise TruncatedReadError(f"KeyNode at offset {offset:#x} is {len(data)} bytes, expected {KEY_NODE_SIZE}")

        super().__init__(data)
        self.offset = offset

        name_length = self.cell.NameLength
        name_blob = data[KEY_NODE_SIZE:][:name_length]
        if len(name_blob) != name_length:
            raise TruncatedReadError(
                f"KeyNode at offset {offset:#x} has a name of {name_length} bytes, only {len(name_blob)} available"
            )

        is_comp_name = self.type in KEY_TYPES or bool(self.type & KEY_COMP_NAME)
        self.name = decode_name(name_blob, name_length, is_comp_name)

    def __repr__(self) -> str:
        return (
            f"<KeyNode {self.name} type={self.type:#x} parent={self.parent:#x} "
            f"subkeys={self.num_subkeys}@{self.subkeys_offset:#x} values={self.num_values}@{self.values_offset:#x} "
            f"security={self.security_offset:#x}>"
        )

    @property
    def type(self) -> int:
        return self.cell.Type

    @property
    def is_root(self) -> bool:
        return self.cell.Type == KEY_ROOT

    @property
    def is_symlink(self) -> bool:
        return self.cell.Type == KEY_SYM_LINK

    @property
    def parent(self) -> int:
        return self.cell.Parent

    @property
    def num_subkeys(self) -> int:
        return self.cell.SubKeyCounts[STABLE]

    @property
    def subkeys_offset(self) -> int:
        return self.cell.SubKeyLists[STABLE]

    @property
    def num_values(self) -> int:
        return self.cell.ValueList.Count

    @property
    def values_offset(self) -> int:
        return self.cell.ValueList.List

    @property
    def security_offset(self) -> int:
        return self.cell.Security

    @property
    def class_name_offset(self) -> int:
        return self.cell.Class

    @property
    def class_name_length(self) -> int:
        return self.cell.ClassLength

    @cached_property
    def timestamp(self) -> datetime:
        return wintimestamp(self.cell.LastWriteTime)

    @cached_property
    def unix_timestamp(self) -> int:
        return filetime_to_unix(self.cell.LastWriteTime)


class KeyIndex(Cell):
    __entry_size__ = 4

    def __init__(self, hive: RegistryHive, data: bytes):
        super().__init__(data)
        self.hive = hive

    def __len__(self) -> int:
        return self.count

    def __iter__(self) -> Iterator[KeyNode]:
        raise NotImplementedError

    @cached_property
    def count(self) -> int:
        return self.cell.Count

    def subkey(self, name: str) -> KeyNode | None:
        raise NotImplementedError


class IndexRoot(KeyIndex):
    __signature__ = b"ri"
    __struct__ = c_hivetree._CM_KEY_INDEX

    def __iter__(self) -> Iterator[KeyNode]:
        for entry in self.cell.List:
            yield from self.hive.subkey_list(entry, nested=True)

    def subkey(self, name: str) -> KeyNode | None:
        for entry in self.cell.List:
            if sk := self.hive.subkey_list(entry, nested=True).subkey(name):
                return sk
        return None


class IndexLeaf(KeyIndex):
    __signature__ = b"li"
    __struct__ = c_hivetree._CM_KEY_INDEX

    def __iter__(self) -> Iterator[KeyNode]:
        for entry in self.cell.List:
            yield self.hive.key(entry)

    def subkey(self, name: str) -> KeyNode | None:
        name = name.lower()

        for entry in self.cell.List:
            if (sk := self.hive.key(entry)).name.lower() == name:
                return sk
        return None


class HashLeaf(KeyIndex):
    __signature__ = b"lh"
    __struct__ = c_hivetree._CM_KEY_HASH_INDEX
    __entry_size__ = 8

    def __iter__(self) -> Iterator[KeyNode]:
        for entry in self.cell.List:
            yield self.hive.key(entry.Cell)

    def subkey(self, name: str) -> KeyNode | None:
        name_hash = hashname(name)
        name = name.lower()

        for entry in self.cell.List:
            if name_hash == entry.HashKey and (sk := self.hive.key(entry.Cell)).name.lower() == name:
                return sk

        return None


class FastLeaf(KeyIndex):
    __signature__ = b"lf"
    __struct__ = c_hivetree._CM_KEY_FAST_INDEX
    __entry_size__ = 8

    def __iter__(self) -> Iterator[KeyNode]:
        for entry in self.cell.List:
            yield self.hive.key(entry.Cell)

    def subkey(self, name: str) -> KeyNode | None:
        name = name.lower()
        name_hint = name[:4]

        for entry in self.cell.List:
            # Names shorter than 4 characters are padded with 0-bytes in the hint
            if (
                name_hint == entry.NameHint.rstrip(b"\x00").decode("latin1").lower()
                and (sk := self.hive.key(entry.Cell)).name.lower() == name
            ):
                return sk

        return None


_LIST_CLASSES = {
    HashLeaf.__signature__: HashLeaf,
    FastLeaf.__signature__: FastLeaf,
    IndexRoot.__signature__: IndexRoot,
}

_NESTED_LIST_CLASSES = {
    HashLeaf.__signature__: HashLeaf,
    FastLeaf.__signature__: FastLeaf,
    IndexLeaf.__signature__: IndexLeaf,
}


def translate(offset: int) -> int:
    """Convert a stored cell offset to the file offset of the cell payload."""
    return offset + HBIN_OFFSET + CELL_SIZE_LENGTH


def validate_header(data: bytes) -> bool:
    if len(data) < HEADER_SIZE:
        log.warning("Hive header is %d bytes, expected %d", len(data), HEADER_SIZE)
        return False

    if data[:4] != REGF_SIGNATURE:
        log.warning("Invalid hive signature %r, expected %r", data[:4], REGF_SIGNATURE)
        return False

    checksum = c_hivetree.uint32(data[CHECKSUM_OFFSET : CHECKSUM_OFFSET + 4])
    if (crc := xor32_crc(data[:CHECKSUM_OFFSET])) != checksum:
        log.warning("Checksum failed, calculated %#010x, stored %#010x", crc, checksum)
        return False

    return True


def read_key_node(source: ByteSource, offset: int) -> KeyNode:
    """Decode the key node at the given cell offset.

    The name length is part of the fixed header, so the record is read twice:
    once for the fixed header and once more for the header plus the name.
    """
    position = translate(offset)

    header = c_hivetree._CM_KEY_NODE(source.read(position, KEY_NODE_SIZE))
    data = source.read(position, KEY_NODE_SIZE + header.NameLength)

    return KeyNode(data, offset)


def find_root(source: ByteSource, offset: int = HBIN_OFFSET, end: int | None = None) -> KeyNode:
    """Scan the cells from ``offset`` onwards for the root key node.

    The scan gives up with :class:`RootKeyNotFoundError` once the cursor reaches
    ``end``. Without an ``end`` it runs until a read comes back short.
    """
    while end is None or offset < end:
        if offset % BLOCK_SIZE == 0 and source.read(offset, 4) == HBIN_SIGNATURE:
            block = c_hivetree._HBIN(source.read(offset, len(c_hivetree._HBIN)))
            log.debug("Skipping hbin at %#x (size %#x)", offset, block.Size)
            offset += len(c_hivetree._HBIN)

        cell_offset = offset
        size = struct.unpack("<i", source.read(offset, CELL_SIZE_LENGTH))[0]
        offset += CELL_SIZE_LENGTH

        # Allocated cells store their size negated, including the size field itself
        real_size = -size - CELL_SIZE_LENGTH
        if real_size < 0 or real_size > MAX_CELL_SIZE:
            raise MalformedCellSizeError(f"Cell at offset {cell_offset:#x} has an invalid size {size}")

        data = source.read(offset, real_size)
        offset += real_size

        if data[:2] == KeyNode.__signature__:
            key = KeyNode(data, cell_offset - HBIN_OFFSET)
            if key.is_root:
                log.debug("Found root key %r at offset %#x", key.name, cell_offset)
                return key

    raise RootKeyNotFoundError(f"No root key found before offset {end:#x}")


def has_subkeys(key: KeyNode) -> bool:
    return bool(key.num_subkeys) and key.subkeys_offset not in (0, NO_OFFSET)


def filetime_to_unix(ticks: int) -> int:
    return ticks // WINDOWS_TICK - SEC_TO_UNIX_EPOCH


def decode_name(blob: bytes, size: int, is_comp_name: bool) -> str:
    if is_comp_name:
        try:
            return blob.decode()
        except UnicodeDecodeError:
            pass

        try:
            return blob.decode("latin1")
        except UnicodeDecodeError:
            pass
    elif size % 2:
        log.debug("UTF-16 name %r has an odd length of %d bytes", blob, size)
    else:
        try:
            return c_hivetree.wchar[size // 2](blob)
        except UnicodeDecodeError:
            pass

    return repr(blob)


def hashname(name: str) -> int:
    # Names of keys are only supposed to contain printable characters except `\'
    name_hash = 0
    for char in name.upper():
        name_hash = (name_hash * 37 + ord(char)) & 0xFFFFFFFF

    return name_hash


def xor32_crc(data: bytes) -> int:
    crc = 0
    for ii in c_hivetree.uint32[len(data) // 4](data):
        crc ^= ii

    return crc
